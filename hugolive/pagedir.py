"""Hugo page directory: the site's URL <-> source file manifest.

The site embeds the manifest in every rendered page:

    <script type="application/json">{"pageDirectory": [
      {"lang": "en", "base": "http://localhost:1313/",
       "pages": [{"rel": "/foo/"}, {"rel": "/bar/", "file": "/site/content/bar.md", "aliases": ["/old-bar/"]}]}
    ]}</script>
"""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from pathlib import Path

import requests
from loguru import logger
from PySide6.QtCore import QObject, QRunnable, QThreadPool, QUrl, Signal

from hugolive.config import DEFAULT_FETCH_TIMEOUT_S
from hugolive.server import HugoServer

SCRIPT_OPEN_RE = re.compile(r"<script[^<>]*>", re.IGNORECASE)
SCRIPT_CLOSE_RE = re.compile(r"</script", re.IGNORECASE)
JSON_SCRIPT_TYPE_RE = re.compile(r"application/json", re.IGNORECASE)


class PageDirectoryParseError(Exception):
    """The site does not publish a usable page directory."""


class PageDirectoryFetchError(Exception):
    """The page directory could not be retrieved (transport level)."""


@dataclass(frozen=True)
class PageInfo:
    url: str
    lang: str
    source: Path | None = None
    aliases: tuple[str, ...] = ()


def normalize_url(url: str) -> str:
    """Fully percent-encoded form of url, the key for every URL lookup."""
    return bytes(QUrl(url).toEncoded()).decode("ascii")


def _with_path(base: str, path: str) -> str:
    url = QUrl(base)
    # Hugo permalinks arrive percent-encoded already.
    url.setPath(path if path.startswith("/") else f"/{path}", QUrl.ParsingMode.TolerantMode)
    return bytes(url.toEncoded()).decode("ascii")


def source_key(path: Path | str) -> str:
    return os.path.normcase(os.path.normpath(str(path)))


def parse_page_directory(html_text: str) -> list[PageInfo]:
    """Extract the page directory from the first JSON script block that carries one."""
    for opening in SCRIPT_OPEN_RE.finditer(html_text):
        if not JSON_SCRIPT_TYPE_RE.search(opening.group(0)):
            continue
        start = opening.end()
        closing = SCRIPT_CLOSE_RE.search(html_text, start)
        if closing is None:
            continue
        try:
            data = json.loads(html_text[start:closing.start()])
        except ValueError:
            continue
        pages = _import_page_directory(data)
        if pages is not None:
            return pages
    raise PageDirectoryParseError("Page directory malformed or missing")


def _import_page_directory(data: object) -> list[PageInfo] | None:
    if not isinstance(data, dict):
        return None
    groups = data.get("pageDirectory")
    if not isinstance(groups, list) or not groups:
        return None
    pages: list[PageInfo] = []
    for group in groups:
        imported = _import_page_group(group)
        if imported is None:
            return None
        pages.extend(imported)
    return pages


def _import_page_group(group: object) -> list[PageInfo] | None:
    if not isinstance(group, dict):
        return None
    lang = group.get("lang")
    base = group.get("base")
    entries = group.get("pages")
    if not isinstance(lang, str) or not isinstance(base, str) or not isinstance(entries, list):
        return None

    pages: list[PageInfo] = []
    for entry in entries:
        if not isinstance(entry, dict):
            return None
        rel = entry.get("rel")
        if not isinstance(rel, str):
            return None
        file_name = entry.get("file")
        if "file" in entry and not isinstance(file_name, str):
            return None
        aliases = entry.get("aliases", [])
        if not isinstance(aliases, list) or not all(isinstance(alias, str) for alias in aliases):
            return None
        pages.append(
            PageInfo(
                url=_with_path(base, rel),
                lang=lang,
                source=Path(file_name) if file_name else None,
                aliases=tuple(_with_path(base, alias) for alias in aliases),
            )
        )
    return pages


def fetch_page_directory(url: str, timeout_s: float = DEFAULT_FETCH_TIMEOUT_S) -> list[PageInfo]:
    """Download a rendered page and parse the directory embedded in it."""
    scheme = QUrl(url).scheme()
    if scheme not in ("http", "https"):
        raise PageDirectoryFetchError(f"Unsupported protocol {scheme}")
    try:
        response = requests.get(url, timeout=timeout_s)
    except requests.RequestException as exc:
        raise PageDirectoryFetchError(f"HTTP request failed: {exc}") from exc
    if response.status_code != 200:
        raise PageDirectoryFetchError(f"HTTP request failed (Status {response.status_code})")
    return parse_page_directory(response.content.decode("utf-8", errors="replace"))


class PageDirectoryFetchWorkerSignals(QObject):
    """Signals emitted by background page directory fetches."""

    finished = Signal(int, object, object)


class PageDirectoryFetchWorker(QRunnable):
    """Fetch and parse the page directory off the UI thread."""

    def __init__(self, url: str, request_id: int, timeout_s: float = DEFAULT_FETCH_TIMEOUT_S):
        super().__init__()
        self.url = url
        self.request_id = request_id
        self.timeout_s = timeout_s
        self.signals = PageDirectoryFetchWorkerSignals()

    def run(self) -> None:
        try:
            pages = fetch_page_directory(self.url, self.timeout_s)
        except Exception as exc:
            self.signals.finished.emit(self.request_id, None, exc)
            return
        self.signals.finished.emit(self.request_id, pages, None)


class PageDirectoryService(QObject):
    """Caches the page directory of one server and refreshes it after rebuilds.

    Only the most recently issued fetch is applied. The source map is rebuilt
    on every refresh; the URL map only ever grows, so a URL whose slug was
    renamed still leads back to its source file (history navigation).
    """

    updated = Signal()

    def __init__(
        self,
        server: HugoServer,
        thread_pool: QThreadPool | None = None,
        timeout_s: float = DEFAULT_FETCH_TIMEOUT_S,
    ):
        super().__init__()
        self._server = server
        self._pool = thread_pool or QThreadPool.globalInstance()
        self._timeout_s = timeout_s
        self._request_id = 0
        self._pending_request_id: int | None = None
        self._active_workers: set[PageDirectoryFetchWorker] = set()
        self._page_by_url: dict[str, PageInfo] = {}
        self._page_by_source: dict[str, PageInfo] = {}
        self._disposed = False
        # None until the first fetch settles.
        self.page_directory_not_available: bool | None = None

    def start(self) -> None:
        """Fetch now and again after every completed rebuild."""
        self._server.rebuilt.connect(self.refresh)
        self.refresh()

    def dispose(self) -> None:
        self._disposed = True
        try:
            self._server.rebuilt.disconnect(self.refresh)
        except (RuntimeError, TypeError):
            # Already disconnected.
            pass

    def refresh(self) -> None:
        if self._disposed or self._server.terminated or self._server.build_errors:
            return
        self._request_id += 1
        self._pending_request_id = self._request_id
        self._dispatch(self._request_id, self._server.urls[0])

    def source_file_by_url(self, url: str) -> Path | None:
        """Source file behind a content URL; outdated URLs keep resolving."""
        page = self._page_by_url.get(normalize_url(url))
        if page is None or page.source is None:
            return None
        if source_key(page.source) not in self._page_by_source:
            return None
        return page.source

    def url_by_source_file(self, source: Path | str, preferred_alias: str | None = None) -> str | None:
        """Primary content URL for a source file, or preferred_alias if it is one of the page's aliases."""
        page = self._page_by_source.get(source_key(source))
        if page is None:
            return None
        if preferred_alias is not None and normalize_url(preferred_alias) in page.aliases:
            return preferred_alias
        return page.url

    def _dispatch(self, request_id: int, url: str) -> None:
        worker = PageDirectoryFetchWorker(url, request_id, self._timeout_s)
        self._active_workers.add(worker)
        worker.signals.finished.connect(self._on_fetch_finished)
        self._pool.start(worker)

    def _on_fetch_finished(self, request_id: int, pages: list[PageInfo] | None, error: Exception | None) -> None:
        finished = {worker for worker in self._active_workers if worker.request_id == request_id}
        self._active_workers -= finished
        if self._disposed:
            return
        latest = request_id == self._pending_request_id
        if error is None and pages is not None:
            if latest:
                self._apply(pages)
                self.page_directory_not_available = False
            else:
                logger.debug("Discarding superseded page directory result #{}", request_id)
        elif latest and isinstance(error, PageDirectoryParseError):
            self.page_directory_not_available = True
        else:
            logger.warning("Page directory refresh #{} failed: {}", request_id, error)
        if latest:
            self._pending_request_id = None
        self.updated.emit()

    def _apply(self, pages: list[PageInfo]) -> None:
        by_source: dict[str, PageInfo] = {}
        for page in pages:
            if page.source is not None:
                by_source[source_key(page.source)] = page
            self._link(page.url, page)
            for alias in page.aliases:
                self._link(alias, page)
        self._page_by_source = by_source

    def _link(self, url: str, page: PageInfo) -> None:
        if self._server.can_serve_url(url):
            self._page_by_url[normalize_url(url)] = page
