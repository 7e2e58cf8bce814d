"""Render a template tree into a project directory.

Templates use ``<%= name %>`` placeholders (``<% ... %>`` for control flow,
``<%# ... %>`` for comments) in both file contents and relative paths.  The
Jinja2 environment is configured with those delimiters.  A placeholder whose
value the context cannot supply (a missing name, a missing ``it.`` attribute,
or a filter applied to either) is written back out exactly as it appears in
the template, so it survives into the output instead of failing the render.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from pathlib import Path
from typing import Any

from jinja2 import ChainableUndefined, Environment, TemplateError, Undefined, UndefinedError, meta

from template_forge.config import Config
from template_forge.exceptions import RenderError
from template_forge.models import (
    FileAction,
    FileOperation,
    TemplateContext,
    TemplateMetadata,
)
from template_forge.utils import console, iter_files

_PLACEHOLDER_RE = re.compile(r"<%=(?P<expr>.*?)%>", re.DOTALL)


class PreservingUndefined(ChainableUndefined):
    """Renders a missing name as a placeholder for it.

    Only reached for expressions that depend on loop or ``set`` variables;
    other unresolved placeholders are kept verbatim before rendering.
    """

    def __str__(self) -> str:
        return f"<%= {self._undefined_name} %>"


class _ValueUndefined(ChainableUndefined):
    """Tolerates truth tests and attribute chains, fails once the value is used."""

    __str__ = __iter__ = __len__ = Undefined._fail_with_undefined_error


def _slugify_filter(value: str) -> str:
    result = re.sub(r"[^a-z0-9]+", "-", str(value).lower())
    return result.strip("-")


def _pascal_case_filter(value: str) -> str:
    parts = re.split(r"[^a-zA-Z0-9]+", str(value))
    return "".join(p[:1].upper() + p[1:] for p in parts if p)


def _camel_case_filter(value: str) -> str:
    pascal = _pascal_case_filter(value)
    return pascal[:1].lower() + pascal[1:]


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Walks a template directory and writes the rendered project."""

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or Config()
        self.env = Environment(
            block_start_string="<%",
            block_end_string="%>",
            variable_start_string="<%=",
            variable_end_string="%>",
            comment_start_string="<%#",
            comment_end_string="%>",
            undefined=PreservingUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self.env.filters["slugify"] = _slugify_filter
        self.env.filters["pascal_case"] = _pascal_case_filter
        self.env.filters["camel_case"] = _camel_case_filter
        self._value_env = self.env.overlay(undefined=_ValueUndefined)

    # -- String rendering ---------------------------------------------------

    def render_string(self, text: str, context: TemplateContext | dict[str, Any]) -> str:
        """Render *text*. Raises ``jinja2.TemplateError`` on syntax errors."""
        namespace = context.render_variables() if isinstance(context, TemplateContext) else context
        # ``it`` exposes the same names for templates written as ``<%= it.projectName %>``.
        variables = {**namespace, "it": namespace}
        return self.env.from_string(self._keep_unresolved(text, variables)).render(variables)

    def _keep_unresolved(self, text: str, variables: dict[str, Any]) -> str:
        """Wrap placeholders the context cannot satisfy in ``raw`` blocks."""
        if "<%=" not in text:
            return text
        free_names = meta.find_undeclared_variables(self.env.parse(text))

        def _replace(match: re.Match[str]) -> str:
            placeholder = match.group(0)
            try:
                names = meta.find_undeclared_variables(self.env.parse(placeholder))
                if not names <= free_names:
                    return placeholder
                compiled = self._value_env.compile_expression(
                    match.group("expr"), undefined_to_none=False
                )
                value = compiled(**variables)
            except UndefinedError:
                return f"<% raw %>{placeholder}<% endraw %>"
            except TemplateError:
                return placeholder
            if isinstance(value, Undefined):
                return f"<% raw %>{placeholder}<% endraw %>"
            return placeholder

        return _PLACEHOLDER_RE.sub(_replace, text)

    def _render_or_keep(
        self, text: str, namespace: dict[str, Any], label: str, warnings: list[str]
    ) -> str:
        if "<%" not in text:
            return text
        try:
            return self.render_string(text, namespace)
        except TemplateError as exc:
            warnings.append(f"Could not render {label}, copied as-is: {exc}")
            return text

    # -- Tree rendering -----------------------------------------------------

    async def render(
        self,
        template_path: str | Path,
        output_dir: str | Path,
        context: TemplateContext,
        warnings: list[str] | None = None,
    ) -> list[FileOperation]:
        """Render every template file into *output_dir*.

        Args:
            template_path: Fetched, validated template directory.
            output_dir: Project directory to write into (created if missing).
            context: Values substituted into paths and contents.
            warnings: Optional list that receives per-file render warnings.

        Returns:
            One :class:`FileOperation` per file written, in walk order.

        Raises:
            RenderError: If a file cannot be read or written.
        """
        sink = warnings if warnings is not None else []
        return await asyncio.to_thread(
            self._render_tree, Path(template_path), Path(output_dir), context, sink
        )

    def _render_tree(
        self,
        template_root: Path,
        output_root: Path,
        context: TemplateContext,
        warnings: list[str],
    ) -> list[FileOperation]:
        namespace = context.render_variables()
        excluded = [*self.config.pipeline.ignore_patterns, self.config.pipeline.descriptor_name]
        operations: list[FileOperation] = []

        try:
            output_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RenderError(f"Cannot create output directory {output_root}: {exc}", str(output_root)) from exc
        resolved_root = output_root.resolve()

        for rel in iter_files(template_root, excluded):
            rel_str = rel.as_posix()
            target_rel = self._strip_template_extension(
                self._render_or_keep(rel_str, namespace, f"path {rel_str}", warnings)
            )
            target = output_root / target_rel
            if not target.resolve().is_relative_to(resolved_root):
                raise RenderError(f"Rendered path escapes the output directory: {target_rel}", target_rel)

            action = FileAction.OVERWRITE if target.exists() else FileAction.CREATE
            try:
                self._write_one(template_root / rel, target, namespace, rel_str, warnings)
            except OSError as exc:
                raise RenderError(f"Failed to write {target_rel}: {exc}", target_rel) from exc

            operations.append(FileOperation(path=target_rel, action=action, source=rel_str))
            if self.config.pipeline.verbose:
                console.print(f"  [green]+[/green] {target_rel}")

        return operations

    def _write_one(
        self,
        source: Path,
        target: Path,
        namespace: dict[str, Any],
        label: str,
        warnings: list[str],
    ) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        raw = source.read_bytes()
        text: str | None = None
        if b"\x00" not in raw:
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError:
                text = None

        if text is None:
            shutil.copy2(source, target)
            return
        target.write_text(self._render_or_keep(text, namespace, label, warnings), encoding="utf-8")

    def _strip_template_extension(self, rel: str) -> str:
        for ext in self.config.pipeline.template_extensions:
            if rel.endswith(ext) and len(Path(rel).name) > len(ext):
                return rel[: -len(ext)]
        return rel


def check_context(context: TemplateContext, metadata: TemplateMetadata) -> list[str]:
    """Names of required descriptor variables the context does not supply."""
    provided = context.render_variables()
    return [
        variable.name
        for variable in metadata.variables
        if variable.required and variable.default is None and variable.name not in provided
    ]
