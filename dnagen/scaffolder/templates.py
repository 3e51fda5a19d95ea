"""Jinja2 template rendering for project scaffolding.

Provides the TemplateRenderer class which loads the base project templates
from ``dnagen/scaffolder/templates/`` and renders module templates straight
from the module directories they ship in.  Output paths declared by modules
are themselves Jinja2 strings and are rendered with the same context.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape
from jinja2 import TemplateError as JinjaTemplateError

from dnagen.errors import TemplateError


# ---------------------------------------------------------------------------
# Template directory discovery
# ---------------------------------------------------------------------------

_DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"


# ---------------------------------------------------------------------------
# TemplateRenderer
# ---------------------------------------------------------------------------


class TemplateRenderer:
    """Renders Jinja2 templates for project scaffolding.

    Base templates are looked up by name under *template_dir*; module
    templates are rendered from an explicit file path.  Undefined variables
    raise instead of rendering as empty strings.
    """

    def __init__(self, template_dir: str | Path | None = None) -> None:
        self.template_dir = Path(template_dir) if template_dir is not None else _DEFAULT_TEMPLATE_DIR
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape([]),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters.update(
            slugify=_slugify_filter,
            pascal_case=_pascal_case_filter,
            snake_case=_snake_case_filter,
            camel_case=_camel_case_filter,
        )

    # -- Rendering ---------------------------------------------------------

    def render(self, template_path: str, context: dict[str, Any]) -> str:
        """Render a base template with the provided context.

        Args:
            template_path: Path relative to the template directory (e.g.
                ``"README.md.j2"``).
            context: Dictionary of variables available inside the template.

        Raises:
            TemplateError: If the template is missing or fails to render.
        """
        try:
            template = self.env.get_template(template_path)
            return template.render(**context)
        except JinjaTemplateError as exc:
            raise _wrap(exc, template_path) from exc

    def render_string(self, template_string: str, context: dict[str, Any]) -> str:
        """Render an inline template string with the provided context.

        Used for module output paths such as ``src/lib/{{ project_name_slug }}.ts``.
        """
        try:
            template = self.env.from_string(template_string)
            return template.render(**context)
        except JinjaTemplateError as exc:
            raise _wrap(exc, template_string) from exc

    def render_path(self, path: str | Path, context: dict[str, Any]) -> str:
        """Render the template stored at *path* (outside the template directory)."""
        source = Path(path)
        try:
            text = source.read_text(encoding="utf-8")
        except OSError as exc:
            raise TemplateError(
                f"Cannot read template {source}: {exc}",
                "TEMPLATE_NOT_FOUND",
                context={"template": str(source)},
            ) from exc
        try:
            return self.env.from_string(text).render(**context)
        except JinjaTemplateError as exc:
            raise _wrap(exc, str(source)) from exc

    # -- Utility -----------------------------------------------------------

    def list_templates(self, prefix: str = "") -> list[str]:
        """Sorted ``.j2`` names below *prefix*, relative to ``template_dir``."""
        root = self.template_dir / prefix
        if not root.is_dir():
            return []
        return sorted(p.relative_to(self.template_dir).as_posix() for p in root.rglob("*.j2"))

    def has_template(self, template_path: str) -> bool:
        return (self.template_dir / template_path).is_file()


# ---------------------------------------------------------------------------
# Jinja2 custom filters
# ---------------------------------------------------------------------------

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def _words(value: str) -> list[str]:
    """Split ``MyApp``, ``my-app``, ``my_app`` and ``My App`` into words."""
    return re.findall(r"[A-Za-z0-9]+", _CAMEL_BOUNDARY.sub(" ", value))


def _slugify_filter(value: str) -> str:
    """``My Cool App!`` -> ``my-cool-app``."""
    return "-".join(re.findall(r"[a-z0-9]+", value.lower()))


def _pascal_case_filter(value: str) -> str:
    return "".join(word.capitalize() for word in _words(value))


def _snake_case_filter(value: str) -> str:
    """``MyCoolApp`` / ``my-cool-app`` / ``My Cool App`` -> ``my_cool_app``."""
    return "_".join(word.lower() for word in _words(value))


def _camel_case_filter(value: str) -> str:
    pascal = _pascal_case_filter(value)
    return pascal[:1].lower() + pascal[1:]


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _wrap(exc: JinjaTemplateError, template: str) -> TemplateError:
    return TemplateError(
        f"Failed to render template {template}: {exc}",
        "TEMPLATE_RENDER_FAILED",
        context={"template": template},
    )
