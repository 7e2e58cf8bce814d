"""Classify free-form template identifiers into typed sources.

Resolution is pure: no filesystem or network access, and it never raises.
Rules are tried in order and the first match wins:

1. ``http://`` / ``https://``          -> ``url``
2. ``./``, ``/``, ``..``, ``~/``        -> ``local``
3. ``github:`` prefix or ``owner/repo`` -> ``hosted-repo`` (``#ref`` split off)
4. anything else                      -> ``builtin`` (unknown names fall back
   to the default entry, recorded in ``fallback_from``)
"""

from __future__ import annotations

import re

from template_forge.models import SourceType, TemplateSource

# ---------------------------------------------------------------------------
# Built-in registry
# ---------------------------------------------------------------------------

BUILTIN_TEMPLATES: dict[str, str] = {
    "default": "TypeScript package with tests and a build step",
    "library": "Publishable TypeScript library with dual ESM/CJS output",
    "cli": "Command-line tool with an executable entry point",
}

DEFAULT_BUILTIN = "default"

_URL_PREFIXES = ("http://", "https://")
_LOCAL_PREFIXES = ("./", "/", "..", "~/")
_HOSTED_PREFIXES = ("github:",)

_SHORTHAND_RE = re.compile(r"^[\w.-]+/[\w.-]+(?:/[^#\s]*)?(?:#[\w./-]+)?$")


class SourceResolver:
    """Turns an identifier string into a :class:`TemplateSource`."""

    def __init__(
        self,
        registry: dict[str, str] | None = None,
        default_builtin: str = DEFAULT_BUILTIN,
        hosted_prefixes: tuple[str, ...] = _HOSTED_PREFIXES,
    ) -> None:
        self.registry = dict(BUILTIN_TEMPLATES if registry is None else registry)
        self.default_builtin = default_builtin
        self.hosted_prefixes = hosted_prefixes

    def resolve(
        self,
        identifier: str,
        ref: str | None = None,
        subdir: str | None = None,
    ) -> TemplateSource:
        """Classify *identifier*.

        Explicit *ref* / *subdir* hints take precedence over values parsed
        out of the identifier itself.
        """
        value = (identifier or "").strip()

        if value.startswith(_URL_PREFIXES):
            return TemplateSource(type=SourceType.URL, location=value, ref=ref, subdir=subdir)

        if value.startswith(_LOCAL_PREFIXES):
            return TemplateSource(type=SourceType.LOCAL, location=value, ref=ref, subdir=subdir)

        for prefix in self.hosted_prefixes:
            if value.startswith(prefix):
                hosted = _parse_hosted(value[len(prefix):], ref, subdir)
                if hosted is not None:
                    return hosted
                return self._builtin(value)

        if _SHORTHAND_RE.match(value):
            hosted = _parse_hosted(value, ref, subdir)
            if hosted is not None:
                return hosted

        return self._builtin(value)

    def list_builtin(self) -> list[str]:
        """Names of every registered built-in template."""
        return sorted(self.registry)

    def _builtin(self, name: str) -> TemplateSource:
        if name in self.registry:
            return TemplateSource(type=SourceType.BUILTIN, location=name)
        return TemplateSource(
            type=SourceType.BUILTIN,
            location=self.default_builtin,
            fallback_from=name,
        )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_hosted(body: str, ref: str | None, subdir: str | None) -> TemplateSource | None:
    """Split ``owner/repo[/sub/dir][#ref]``; ``None`` if there is no owner/repo pair."""
    parsed_ref: str | None = None
    if "#" in body:
        body, parsed_ref = body.split("#", 1)
        parsed_ref = parsed_ref or None

    parts = [p for p in body.split("/") if p]
    if len(parts) < 2:
        return None

    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        return None
    parsed_subdir = "/".join(parts[2:]) or None

    return TemplateSource(
        type=SourceType.HOSTED_REPO,
        location=f"{owner}/{repo}",
        ref=ref or parsed_ref,
        subdir=subdir or parsed_subdir,
    )


def describe_source(source: TemplateSource) -> str:
    """Render a source back into an identifier a user could pass again."""
    if source.type is SourceType.HOSTED_REPO:
        text = f"github:{source.location}"
        if source.subdir:
            text += f"/{source.subdir}"
        if source.ref:
            text += f"#{source.ref}"
        return text
    return source.location
