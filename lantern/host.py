"""Virtual hosts for Lantern.

A Host serves one site: it resolves request paths under its document
root, renders content through its templates and writes the access log.

Its settings and templates form one immutable HostState. Requests take
the current state once, under a short lock, and render from that local
reference; reloads build a complete new state outside the lock and only
swap the reference under it. A request therefore never sees settings or
templates from two different generations.

Key objects:
- Host: One configured site.
- HostState: Settings and templates of one reload generation.
- HostError: A host could not be created.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from http import HTTPStatus
from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import TemplateError
from markupsafe import Markup

from .config import HOST_SETTINGS_FILE, ConfigError, Settings, load_settings
from .frontmatter import Frontmatter, FrontmatterError, extract_frontmatter, parse_block, split_frontmatter
from .http import Request, Response
from .page import Page
from .renderers import MARKDOWN_EXTENSION, render_body
from .resolver import Resolved, resolve
from .search import DEFAULT_INDEX_NAME, SearchBridge, render_results
from .templates import (
    DEFAULT_TEMPLATE,
    SEARCH_TEMPLATE,
    TEMPLATE_EXTENSION,
    TemplateFunctions,
    TemplateGroup,
    TemplateLoadError,
    load_templates,
)
from .utils import safe_join

if TYPE_CHECKING:
    from .watcher import HostWatcher

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("lantern.access")

SEARCH_PATH = "/search"
CONTENT_DIRECTORIES = ("content", "markdown")


class HostError(Exception):
    """A host could not be created.

    Attributes:
        name: Host name.
        message: Human-readable error message.
        original_error: The underlying configuration or template error.
    """

    def __init__(self, name: str, message: str, original_error: Exception | None = None):
        self.name = name
        self.message = message
        self.original_error = original_error
        super().__init__(f"could not start host {name}: {message}")


@dataclass(frozen=True)
class HostState:
    """Settings and templates of one reload generation."""

    settings: Settings
    templates: TemplateGroup


def mount_path_for(name: str) -> str:
    """Return the path a host name mounts under.

    >>> mount_path_for("example.com/blog/")
    '/blog'
    >>> mount_path_for("default")
    ''
    """
    name = name.rstrip("/")
    index = name.find("/")
    if index == -1:
        return ""
    return name[index:].rstrip("/")


def _chunk(value: str) -> str:
    return value if value else "-"


def format_access_line(
    request: Request, status: int, size: int | None, when: datetime | None = None
) -> str:
    """Format one access log line in Common Log Format."""
    when = when or datetime.now().astimezone()
    fields = [
        _chunk(request.remote_addr),
        "-",
        "-",
        "[" + when.strftime("%d/%b/%Y:%H:%M:%S %z") + "]",
        f'"{request.method} {request.target} {request.protocol}"',
        str(int(status)),
        "-" if size is None else str(size),
    ]
    return " ".join(fields)


class Host:
    """One virtual site.

    Attributes:
        name: Host name as configured (trailing slashes removed).
        path: Mount path, ``""`` when mounted at the root.
        document_root: Site directory holding ``site.yaml``.
        functions: Template function set bound to this host.
        watcher: Live-reload watcher, when started.
    """

    def __init__(
        self,
        name: str,
        document_root: Path,
        state: HostState,
        functions: TemplateFunctions,
    ):
        self.name = name.rstrip("/")
        self.path = mount_path_for(name)
        self.document_root = document_root
        self.functions = functions
        self.watcher: HostWatcher | None = None
        self._lock = threading.Lock()
        self._state = state

    @classmethod
    def create(cls, name: str, document_root: Path, watch: bool = True) -> Host:
        """Create a host, loading its settings and templates.

        Args:
            name: Host name from the global ``hosts`` mapping.
            document_root: Site directory.
            watch: Start the live-reload watcher.

        Raises:
            HostError: If the settings or the templates cannot be loaded.
        """
        functions = TemplateFunctions(mount_path_for(name), document_root)
        try:
            settings = load_settings(document_root / HOST_SETTINGS_FILE)
            templates = cls._load_templates(name, document_root, settings, functions)
        except (ConfigError, TemplateLoadError) as exc:
            logger.error("Could not start host %s: %s", name, exc)
            raise HostError(name, str(exc), exc) from exc

        host = cls(name, document_root, HostState(settings, templates), functions)
        if watch:
            from .watcher import HostWatcher

            host.watcher = HostWatcher(host)
            host.watcher.start()
        logger.info("Routing: %s -> %s", name, document_root)
        return host

    # -- state ---------------------------------------------------------

    def snapshot(self) -> HostState:
        """Return the current generation."""
        with self._lock:
            return self._state

    @property
    def settings(self) -> Settings:
        return self.snapshot().settings

    @property
    def templates(self) -> TemplateGroup:
        return self.snapshot().templates

    @property
    def settings_path(self) -> Path:
        return self.document_root / HOST_SETTINGS_FILE

    def template_dir(self, settings: Settings | None = None) -> Path:
        settings = settings or self.settings
        return self.document_root / (settings.get_str("content", "templates") or "templates")

    def webroot_dir(self, settings: Settings | None = None) -> Path:
        settings = settings or self.settings
        return self.document_root / (settings.get_str("content", "webroot") or "webroot")

    def content_dir(self, settings: Settings | None = None) -> Path | None:
        """Return the content directory, or None if it does not exist."""
        settings = settings or self.settings
        configured = settings.get_str("content", "markdown")
        directories = [configured] if configured else list(CONTENT_DIRECTORIES)
        for directory in directories:
            path = self.document_root / directory
            if path.is_dir():
                return path
        return None

    def index_path(self, settings: Settings | None = None) -> Path:
        """Return the search index path for this host."""
        settings = settings or self.settings
        configured = settings.get_str("searchindex")
        if configured:
            path = Path(configured)
            return path if path.is_absolute() else self.document_root / path
        return self.document_root / DEFAULT_INDEX_NAME

    @staticmethod
    def _load_templates(
        name: str, document_root: Path, settings: Settings, functions: TemplateFunctions
    ) -> TemplateGroup:
        template_dir = document_root / (settings.get_str("content", "templates") or "templates")
        return load_templates(name, template_dir, functions)

    # -- reload --------------------------------------------------------

    def _swap(self, **changes: Any) -> None:
        with self._lock:
            self._state = dataclasses.replace(self._state, **changes)

    def reload_settings(self) -> bool:
        """Re-read ``site.yaml`` and swap it in.

        Returns:
            True on success; on failure the previous settings stay active.
        """
        logger.info("%s: Reloading host settings %s...", self.name, self.settings_path)
        try:
            settings = load_settings(self.settings_path)
        except ConfigError as exc:
            logger.error("%s: Could not reload host settings: %s", self.name, exc)
            return False
        self._swap(settings=settings)
        return True

    def reload_templates(self) -> bool:
        """Recompile every template and swap the new group in.

        Returns:
            True on success; on failure the previous group stays active.
        """
        settings = self.settings
        try:
            templates = self._load_templates(self.name, self.document_root, settings, self.functions)
        except TemplateLoadError as exc:
            logger.error("%s: Could not reload templates: %s", self.name, exc)
            return False
        self._swap(templates=templates)
        return True

    def reload(self) -> bool:
        """Reload settings and templates as a single generation."""
        try:
            settings = load_settings(self.settings_path)
            templates = self._load_templates(self.name, self.document_root, settings, self.functions)
        except (ConfigError, TemplateLoadError) as exc:
            logger.error("%s: Reload failed: %s", self.name, exc)
            return False
        with self._lock:
            self._state = HostState(settings, templates)
        return True

    def close(self) -> None:
        """Release the live-reload watcher."""
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None

    # -- request handling ----------------------------------------------

    def handle(self, request: Request) -> Response:
        """Serve a request and write its access log line."""
        try:
            response = self._serve(request, self.snapshot())
        except Exception:
            logger.exception("%s: Error serving %s", self.name, request.target)
            response = Response.error(HTTPStatus.INTERNAL_SERVER_ERROR)
        access_logger.info(format_access_line(request, response.status, response.size))
        return response

    def _relative_path(self, url_path: str) -> str:
        reqpath = url_path.rstrip("/")
        if self.path and (reqpath == self.path or reqpath.startswith(self.path + "/")):
            reqpath = reqpath[len(self.path) :]
        return reqpath.rstrip("/")

    def _serve(self, request: Request, state: HostState) -> Response:
        settings = state.settings
        reqpath = self._relative_path(request.path)

        webroot_file = safe_join(self.webroot_dir(settings), reqpath)
        if webroot_file is not None and webroot_file.is_file():
            return Response.file(webroot_file)

        content_dir = self.content_dir(settings)
        if content_dir is None:
            logger.error("%s: content directory was not found", self.name)
            return Response.error(HTTPStatus.INTERNAL_SERVER_ERROR, "content directory was not found")

        candidate = safe_join(content_dir, reqpath)
        if candidate is None:
            logger.warning("%s: Path not found: %s", self.name, reqpath)
            return Response.error(HTTPStatus.NOT_FOUND, "Not found")

        if candidate.is_file() and not _is_rendered_source(candidate.name):
            return Response.file(candidate)

        resolved = resolve(candidate, descend=True)
        if resolved is None:
            if reqpath == SEARCH_PATH:
                return self._serve_search(request, state, content_dir)
            logger.warning("%s: Path not found: %s", self.name, reqpath)
            return Response.error(HTTPStatus.NOT_FOUND, "Not found")

        redirect = self._redirect_for(request, reqpath, resolved)
        if redirect is not None:
            return redirect

        return self._serve_content(request, state, content_dir, resolved)

    def _redirect_for(self, request: Request, reqpath: str, resolved: Resolved) -> Response | None:
        """Files are served without a trailing slash, directories with one."""
        if not reqpath:
            return None
        query = f"?{request.query_string}" if request.query_string else ""
        has_slash = request.path.endswith("/")
        if not resolved.is_dir and has_slash:
            return Response.redirect(f"{self.path}{reqpath}{query}")
        if resolved.is_dir and not has_slash:
            return Response.redirect(f"{request.path}/{query}")
        return None

    def _new_page(self, request: Request, state: HostState, file_path: Path, file_dir: Path, base_path: str) -> Page:
        return Page(
            url=request.path,
            file_path=file_path,
            file_dir=file_dir,
            base_path=base_path,
            host_name=self.name,
            mount_path=self.path,
            site=state.settings,
            query=request.query,
        )

    def _serve_content(
        self, request: Request, state: HostState, content_dir: Path, resolved: Resolved
    ) -> Response:
        templates = state.templates
        file_path = resolved.path
        file_dir = file_path if resolved.is_dir else file_path.parent
        relative_dir = file_dir.relative_to(content_dir).as_posix()
        base_path = "/" if relative_dir == "." else f"/{relative_dir}/"

        page = self._new_page(request, state, file_path, file_dir, base_path)
        meta = self.read_defaults(file_dir)
        template_name = DEFAULT_TEMPLATE

        if not resolved.is_dir:
            try:
                content, meta = self.read_content_file(file_path, templates, request, meta)
            except (OSError, UnicodeDecodeError, FrontmatterError, TemplateError) as exc:
                logger.error("%s: Could not read content file %s: %s", self.name, file_path, exc)
            else:
                page.content = Markup(content)
                if meta.template and templates.lookup(meta.template) is not None:
                    template_name = meta.template
            page.toc = meta.mdtoc
            page.data = meta.data

        page.content_header = self._read_partial(file_dir / "_header", templates, request)
        page.content_footer = self._read_partial(file_dir / "_footer", templates, request)
        page.is_home = self.path.strip("/") == request.path.strip("/")
        page.derive_title()
        page.build_navigation(content_dir)
        return self._render(request, templates, template_name, page)

    def _serve_search(self, request: Request, state: HostState, content_dir: Path) -> Response:
        terms = " ".join(request.query.get("terms", [])).strip()
        results = SearchBridge(self.index_path(state.settings)).search(terms)

        page = self._new_page(request, state, content_dir, content_dir, "/")
        page.title = "Search"
        page.search_terms = terms
        page.search_results = results
        page.content = Markup(render_results(terms, results, self.path))
        page.content_header = self._read_partial(content_dir / "_header", state.templates, request)
        page.content_footer = self._read_partial(content_dir / "_footer", state.templates, request)
        page.build_navigation(content_dir)

        template_name = SEARCH_TEMPLATE
        if state.templates.lookup(template_name) is None:
            template_name = DEFAULT_TEMPLATE
        return self._render(request, state.templates, template_name, page)

    def _render(self, request: Request, templates: TemplateGroup, template_name: str, page: Page) -> Response:
        try:
            body = templates.render(template_name, {"page": page, "request_host": request.host})
        except TemplateError as exc:
            logger.error("%s: Error executing template %s: %s", self.name, template_name, exc)
            return Response.error(HTTPStatus.INTERNAL_SERVER_ERROR, str(exc))
        return Response.html(body)

    # -- content files -------------------------------------------------

    def read_content_file(
        self,
        path: Path,
        templates: TemplateGroup,
        request: Request | None = None,
        meta: Frontmatter | None = None,
    ) -> tuple[str, Frontmatter]:
        """Read a content file and render its body.

        ``*.tpl`` files are executed as templates first and carry no
        frontmatter; the rest have their frontmatter extracted. Markdown
        is rendered unless the frontmatter sets ``Raw``.

        Returns:
            Tuple of (HTML, Frontmatter).

        Raises:
            OSError: If the file cannot be read.
            FrontmatterError: If the frontmatter is malformed.
            jinja2.TemplateError: If a ``*.tpl`` file fails to execute.
        """
        meta = meta if meta is not None else Frontmatter()
        text = path.read_text(encoding="utf-8")
        name = path.name
        if name.endswith(TEMPLATE_EXTENSION):
            host_header = request.host if request is not None else ""
            text = templates.render_string(text, {"request_host": host_header})
            name = name[: -len(TEMPLATE_EXTENSION)]
        else:
            meta, text = extract_frontmatter(text, meta)
        return render_body(name, text, meta), meta

    def read_defaults(self, directory: Path) -> Frontmatter:
        """Read the ``_defaults`` frontmatter of a directory.

        The file is either a delimited frontmatter block or, for
        ``_defaults.yaml``, a plain YAML mapping. Errors are logged and
        yield empty defaults.
        """
        meta = Frontmatter()
        found = resolve(directory / "_defaults", descend=True)
        if found is None or found.is_dir:
            return meta
        try:
            text = found.path.read_text(encoding="utf-8")
            values, _ = split_frontmatter(text)
            if values is None and found.path.suffix == ".yaml":
                values = parse_block(text)
        except (OSError, UnicodeDecodeError, FrontmatterError) as exc:
            logger.error("%s: Could not read defaults %s: %s", self.name, found.path, exc)
            return meta
        if values:
            meta.update(values)
        return meta

    def _read_partial(self, candidate: Path, templates: TemplateGroup, request: Request) -> Markup:
        found = resolve(candidate, descend=True)
        if found is None or found.is_dir:
            return Markup("")
        try:
            content, _ = self.read_content_file(found.path, templates, request)
        except (OSError, UnicodeDecodeError, FrontmatterError, TemplateError) as exc:
            logger.error("%s: Could not read %s: %s", self.name, found.path, exc)
            return Markup("")
        return Markup(content)

    def __repr__(self) -> str:
        return f"Host(name={self.name!r}, path={self.path!r}, document_root={str(self.document_root)!r})"


def _is_rendered_source(name: str) -> bool:
    """Return True for files that go through the content pipeline."""
    return name.endswith(MARKDOWN_EXTENSION) or name.endswith(TEMPLATE_EXTENSION)
