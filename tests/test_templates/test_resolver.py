"""Unit tests for template identifier classification (template_forge.templates.resolver).

Tests cover:
- URL, local path, hosted-repo shorthand and builtin classification
- Rule ordering (first match wins)
- #ref and subdirectory parsing, .git suffix stripping
- Explicit ref/subdir hints
- Unknown builtin fallback (never raises)
- describe_source round-tripping
"""

from __future__ import annotations

import pytest

from template_forge.models import SourceType, TemplateSource
from template_forge.templates.resolver import (
    BUILTIN_TEMPLATES,
    SourceResolver,
    describe_source,
)


@pytest.fixture
def resolver() -> SourceResolver:
    return SourceResolver()


# ---------------------------------------------------------------------------
# URL sources
# ---------------------------------------------------------------------------

class TestUrlSources:
    @pytest.mark.unit
    @pytest.mark.parametrize("identifier", [
        "https://example.com/template.tar.gz",
        "http://example.com/t.zip",
        "https://github.com/owner/repo",
    ])
    def test_http_schemes_resolve_to_url(self, resolver, identifier):
        source = resolver.resolve(identifier)
        assert source.type is SourceType.URL
        assert source.location == identifier

    @pytest.mark.unit
    def test_url_wins_over_shorthand_shape(self, resolver):
        # "https://a/b" contains a slash but the protocol rule comes first.
        assert resolver.resolve("https://a/b").type is SourceType.URL


# ---------------------------------------------------------------------------
# Local sources
# ---------------------------------------------------------------------------

class TestLocalSources:
    @pytest.mark.unit
    @pytest.mark.parametrize("identifier", [
        "./local-template",
        "/abs/path/template",
        "../sibling",
        "~/templates/mine",
    ])
    def test_path_prefixes_resolve_to_local(self, resolver, identifier):
        source = resolver.resolve(identifier)
        assert source.type is SourceType.LOCAL
        assert source.location == identifier

    @pytest.mark.unit
    def test_local_path_that_looks_like_owner_repo(self, resolver):
        source = resolver.resolve("./owner/repo")
        assert source.type is SourceType.LOCAL


# ---------------------------------------------------------------------------
# Hosted repositories
# ---------------------------------------------------------------------------

class TestHostedSources:
    @pytest.mark.unit
    def test_shorthand_with_ref(self, resolver):
        source = resolver.resolve("my-org/my-template#v2")
        assert source == TemplateSource(
            type=SourceType.HOSTED_REPO, location="my-org/my-template", ref="v2"
        )

    @pytest.mark.unit
    def test_shorthand_without_ref(self, resolver):
        source = resolver.resolve("owner/repo")
        assert source.type is SourceType.HOSTED_REPO
        assert source.location == "owner/repo"
        assert source.ref is None
        assert source.subdir is None

    @pytest.mark.unit
    def test_prefix_form(self, resolver):
        source = resolver.resolve("github:owner/repo#main")
        assert source.type is SourceType.HOSTED_REPO
        assert source.location == "owner/repo"
        assert source.ref == "main"

    @pytest.mark.unit
    def test_extra_segments_become_subdir(self, resolver):
        source = resolver.resolve("owner/repo/templates/react#next")
        assert source.location == "owner/repo"
        assert source.subdir == "templates/react"
        assert source.ref == "next"

    @pytest.mark.unit
    def test_git_suffix_stripped(self, resolver):
        assert resolver.resolve("github:owner/repo.git").location == "owner/repo"

    @pytest.mark.unit
    def test_explicit_hints_override_parsed_values(self, resolver):
        source = resolver.resolve("owner/repo/a#v1", ref="v9", subdir="b")
        assert source.ref == "v9"
        assert source.subdir == "b"

    @pytest.mark.unit
    def test_prefix_without_repo_falls_back_to_builtin(self, resolver):
        source = resolver.resolve("github:lonely")
        assert source.type is SourceType.BUILTIN
        assert source.fallback_from == "github:lonely"


# ---------------------------------------------------------------------------
# Builtin registry
# ---------------------------------------------------------------------------

class TestBuiltinSources:
    @pytest.mark.unit
    @pytest.mark.parametrize("name", sorted(BUILTIN_TEMPLATES))
    def test_registered_names(self, resolver, name):
        source = resolver.resolve(name)
        assert source.type is SourceType.BUILTIN
        assert source.location == name
        assert source.fallback_from is None

    @pytest.mark.unit
    @pytest.mark.parametrize("identifier", ["no-such-template", "", "   ", "bad id with spaces", "#"])
    def test_unknown_names_fall_back_to_default(self, resolver, identifier):
        source = resolver.resolve(identifier)
        assert source.type is SourceType.BUILTIN
        assert source.location == "default"
        assert source.fallback_from == identifier.strip()

    @pytest.mark.unit
    def test_custom_registry_and_default(self):
        resolver = SourceResolver(registry={"base": "Base"}, default_builtin="base")
        assert resolver.resolve("other").location == "base"
        assert resolver.list_builtin() == ["base"]

    @pytest.mark.unit
    def test_sources_are_immutable(self, resolver):
        source = resolver.resolve("owner/repo")
        with pytest.raises(Exception):
            source.location = "elsewhere"


# ---------------------------------------------------------------------------
# describe_source
# ---------------------------------------------------------------------------

class TestDescribeSource:
    @pytest.mark.unit
    def test_hosted_round_trip(self, resolver):
        original = resolver.resolve("owner/repo/sub#v1")
        text = describe_source(original)
        assert text == "github:owner/repo/sub#v1"
        assert resolver.resolve(text) == original

    @pytest.mark.unit
    def test_other_types_use_location(self, resolver):
        assert describe_source(resolver.resolve("./here")) == "./here"
