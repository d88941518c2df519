"""Template store for Lantern.

Every template file of a host is read, normalized and compiled into one
immutable TemplateGroup backed by a Jinja2 environment. A reload builds a
complete new group; a group that fails to compile is never returned, so
callers keep serving the previous one.

Key objects:
- TemplateGroup: A compiled generation of a host's templates.
- TemplateFunctions: The function set bound into every template.
- load_templates: Build a TemplateGroup from a directory.
- fix_deprecated_syntax: Rewrite old template spellings.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from jinja2 import (
    DictLoader,
    Environment,
    Template,
    TemplateError,
    TemplateNotFound,
    pass_context,
    select_autoescape,
)
from markupsafe import Markup, escape

from .utils import get_int, is_external_link, safe_join

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE = "index.tpl"
SEARCH_TEMPLATE = "search.tpl"
TEMPLATE_EXTENSION = ".tpl"

_DEPRECATED_SYNTAX: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(\{\{-?\s*)link\b"), r"\1anchor"),
    (re.compile(r"\bjstext\b"), "js"),
    (re.compile(r"\bhtmltext\b"), "html"),
]


class TemplateLoadError(Exception):
    """A template generation could not be built.

    Attributes:
        source_path: Template file or directory that caused the error.
        message: Human-readable error message.
        original_error: The underlying exception, if any.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


def fix_deprecated_syntax(source: str) -> str:
    """Rewrite deprecated template spellings to the current ones.

    ``{{ link(...) }}`` becomes ``{{ anchor(...) }}``, ``jstext`` becomes
    ``js`` and ``htmltext`` becomes ``html``. Applying it twice is a no-op.
    """
    for pattern, replacement in _DEPRECATED_SYNTAX:
        source = pattern.sub(replacement, source)
    return source


class TemplateFunctions:
    """Functions exposed to the templates of one host.

    Attributes:
        mount_path: Path the host is mounted under (``""`` for the root).
        document_root: Directory ``include`` reads from.
    """

    def __init__(self, mount_path: str, document_root: Path):
        self.mount_path = mount_path
        self.document_root = document_root

    def asset(self, url: str) -> str:
        """Prefix a local asset path with the host's mount path."""
        if is_external_link(url):
            return url
        url = url.lstrip("/")
        prefix = self.mount_path.strip("/")
        if not prefix:
            return f"/{url}"
        return f"/{prefix}/{url}"

    def anchor(self, url: str, text: str) -> Markup:
        """Build a link; external targets open in a new window.

        The link text is trusted template input and may carry markup.
        """
        href = escape(self.asset(url))
        if is_external_link(url):
            return Markup(f'<a target="_blank" href="{href}">{text}</a>')
        return Markup(f'<a href="{href}">{text}</a>')

    @staticmethod
    @pass_context
    def url(context, url: str) -> str:
        """Build a protocol-relative URL on the requesting hostname."""
        if is_external_link(url):
            return url
        request_host = context.get("request_host") or ""
        return f"//{request_host}/{url.lstrip('/')}"

    def include(self, name: str) -> str:
        """Return the contents of a file relative to the document root."""
        target = safe_join(self.document_root, name)
        if target is None:
            logger.warning("include: refusing path outside document root: %s", name)
            return ""
        try:
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("include: could not read file %s: %s", target, exc)
            return ""

    @staticmethod
    def js(text: str) -> Markup:
        return Markup(text)

    @staticmethod
    def html(text: str) -> Markup:
        return Markup(text)

    def as_globals(self) -> dict[str, Callable[..., Any]]:
        return {
            "url": self.url,
            "anchor": self.anchor,
            "asset": self.asset,
            "getint": get_int,
            "include": self.include,
            "js": self.js,
            "html": self.html,
        }


class TemplateGroup:
    """One compiled, immutable generation of a host's templates.

    Attributes:
        name: Owning host name.
        root: Directory the templates were read from.
        env: Jinja2 environment holding the normalized sources.
    """

    def __init__(self, name: str, root: Path, env: Environment, templates: Mapping[str, Template]):
        self.name = name
        self.root = root
        self.env = env
        self._templates = dict(templates)

    @property
    def names(self) -> list[str]:
        return sorted(self._templates)

    def lookup(self, name: str) -> Template | None:
        return self._templates.get(name)

    def render(self, name: str, context: Mapping[str, Any]) -> str:
        """Execute a template by name.

        Raises:
            TemplateNotFound: If the group has no template with that name.
            jinja2.TemplateError: If execution fails.
        """
        template = self.lookup(name)
        if template is None:
            raise TemplateNotFound(name)
        return template.render(**context)

    def render_string(self, source: str, context: Mapping[str, Any]) -> str:
        """Execute an ad hoc template with this group's function set."""
        return self.env.from_string(fix_deprecated_syntax(source)).render(**context)


def load_templates(
    name: str,
    template_dir: Path,
    functions: TemplateFunctions,
) -> TemplateGroup:
    """Read and compile every ``*.tpl`` file in template_dir.

    Args:
        name: Host name, for logging.
        template_dir: Directory holding the template files.
        functions: Function set bound into every template.

    Returns:
        A fully compiled TemplateGroup.

    Raises:
        TemplateLoadError: If the directory is missing, any template fails
            to compile, or ``index.tpl`` is absent.
    """
    if not template_dir.is_dir():
        raise TemplateLoadError(template_dir, "template directory not found")

    sources: dict[str, str] = {}
    for path in sorted(template_dir.glob(f"*{TEMPLATE_EXTENSION}")):
        if not path.is_file():
            continue
        try:
            sources[path.name] = fix_deprecated_syntax(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise TemplateLoadError(path, f"could not read template: {exc}", exc) from exc

    env = Environment(
        loader=DictLoader(sources),
        autoescape=select_autoescape(default=True, default_for_string=True),
        enable_async=False,
    )
    env.globals.update(functions.as_globals())

    compiled: dict[str, Template] = {}
    for template_name in sources:
        try:
            compiled[template_name] = env.get_template(template_name)
        except TemplateError as exc:
            lineno = getattr(exc, "lineno", None)
            where = f" on line {lineno}" if lineno else ""
            raise TemplateLoadError(
                template_dir / template_name,
                f"template syntax error{where}: {exc}",
                exc,
            ) from exc
        logger.debug("Parsed host %s template: %s", name, template_name)

    if DEFAULT_TEMPLATE not in compiled:
        raise TemplateLoadError(
            template_dir, f"default template {DEFAULT_TEMPLATE} could not be found"
        )

    logger.info("Loaded templates for %s from %s", name, template_dir)
    return TemplateGroup(name, template_dir, env, compiled)
