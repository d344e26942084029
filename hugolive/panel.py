"""PreviewPanel: reconciles server, page directory and checkins into one panel state."""

from __future__ import annotations

from functools import partial
from pathlib import Path
from typing import Callable

from loguru import logger
from PySide6.QtCore import QObject, QUrl, Signal

from hugolive import panel_state, protocol
from hugolive.clickmap import map_click_to_source
from hugolive.config import PreviewSettings
from hugolive.display import DisplayService
from hugolive.pagedir import PageDirectoryService, normalize_url, source_key
from hugolive.panel_state import (
    BuildFailed,
    Disposed,
    Initialising,
    PanelState,
    PreviewStatus,
    Ready,
    ServerFailed,
    ServerStarting,
    SiteMisconfigured,
)
from hugolive.server import HugoServer, HugoServerManager, ServerRequest

DEFAULT_TITLE = "Hugo Live Preview"


def _read_document(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def _same_url(left: str, right: str) -> bool:
    return normalize_url(left) == normalize_url(right)


class PreviewPanel(QObject):
    """Orchestrates one preview pane.

    The pane talks to us through handle_message(); everything we tell it goes
    out through message_to_embedder. We don't remember which source file was
    requested: whenever things may have improved and nothing is previewed,
    content_wanted asks the owner to call set_source_path() again.
    """

    content_wanted = Signal()
    external_link_clicked = Signal(str)
    preview_status_changed = Signal()
    create_partial_requested = Signal()
    reveal_source_requested = Signal(str, int)
    title_changed = Signal(str)
    message_to_embedder = Signal(object)
    closed = Signal()

    def __init__(
        self,
        manager: HugoServerManager,
        settings: PreviewSettings | None = None,
        read_document: Callable[[Path], str] | None = None,
        page_directory_factory: Callable[[HugoServer], PageDirectoryService] | None = None,
    ):
        super().__init__()
        self.settings = settings or manager.settings
        self.state: PanelState = panel_state.initialising()
        self.origin: str | None = None
        self.title = DEFAULT_TITLE
        self._manager = manager
        self._read_document = read_document or _read_document
        self._page_directory_factory = page_directory_factory or (
            lambda server: PageDirectoryService(server, timeout_s=self.settings.fetch_timeout_s)
        )
        self._server_request: ServerRequest | None = None
        self._server: HugoServer | None = None
        self._page_directory: PageDirectoryService | None = None
        self._subscriptions: list[tuple[object, Callable]] = []
        self.display_service = DisplayService(self._post, timeout_ms=self.settings.checkin_timeout_ms, parent=self)
        self.display_service.loaded.connect(self._update_state)

    @property
    def server(self) -> HugoServer | None:
        return self._server

    @property
    def page_directory(self) -> PageDirectoryService | None:
        return self._page_directory

    def showing_preview(self) -> bool:
        return isinstance(self.state, Ready) and self.state.preview_status != PreviewStatus.NO_PREVIEW_AVAILABLE

    def navigate_back(self) -> None:
        if self.showing_preview():
            self._post(protocol.navigate_back())

    def navigate_forward(self) -> None:
        if self.showing_preview():
            self._post(protocol.navigate_forward())

    def set_source_path(self, path: Path | str | None) -> None:
        """Preview the page generated from path, if there is one."""
        if not isinstance(self.state, Ready):
            return
        page_directory = self._page_directory
        display = self.display_service.display
        source = Path(path) if path is not None else None
        shown_path = self._display_path(source) if source is not None else None
        if source is None or page_directory is None:
            self._set_state(panel_state.ready_no_preview_available(display is not None, shown_path))
            return
        content_url = page_directory.url_by_source_file(source)
        if content_url is None:
            self._set_state(panel_state.ready_no_preview_available(display is not None, shown_path))
            return
        displayed_source = page_directory.source_file_by_url(display.url) if display is not None else None
        if displayed_source is None or source_key(displayed_source) != source_key(source):
            self.display_service.set_url(content_url)
        self._set_state(panel_state.ready_showing_preview())

    def content_url(self) -> str | None:
        """URL on screen, or None while a placeholder or status screen is shown."""
        display = self.display_service.display
        if not self.showing_preview() or display is None:
            return None
        return display.url

    def source_path(self) -> Path | None:
        """Source file of the page on screen (not necessarily the last set_source_path)."""
        url = self.content_url()
        if url is None or self._page_directory is None:
            return None
        return self._page_directory.source_file_by_url(url)

    def handle_message(self, message: object) -> None:
        if isinstance(self.state, Disposed):
            return
        kind = protocol.message_type(message)
        if kind is None:
            logger.debug("Ignoring malformed preview message: {!r}", message)
            return
        if kind != protocol.UPDATE_INTERSECTIONS:
            logger.debug("Preview message: {}", kind)

        if kind == protocol.DISCLOSE_ORIGIN:
            origin = message.get("origin")
            if isinstance(self.state, Initialising) and isinstance(origin, str) and origin:
                self.origin = origin
                self._provision_server()
        elif kind == protocol.CHECKIN:
            self.display_service.handle_checkin(message.get("href"), message.get("stext"))
        elif kind == protocol.UPDATE_INTERSECTIONS:
            self.display_service.handle_intersections(message.get("hidden"), message.get("revealed"))
        elif kind == protocol.NAVIGATE_TO:
            self._navigate_to(message.get("url"))
        elif kind == protocol.RESTART_SERVER:
            self.restart_server()
        elif kind == protocol.CREATE_LIVE_PREVIEW_PARTIAL:
            self.create_partial_requested.emit()
        elif kind == protocol.CLICK:
            offset = message.get("offset")
            if isinstance(offset, (int, float)) and not isinstance(offset, bool):
                self.handle_click(int(offset))
        else:
            logger.debug("Unknown preview message type: {}", kind)

    def restart_server(self) -> None:
        """Retry after a server failure; other states ignore the request."""
        if not isinstance(self.state, ServerFailed):
            return
        self._release_server(stop=False)
        self.display_service.reset()
        self._provision_server()

    def handle_click(self, offset: int) -> None:
        source = self.source_path()
        display = self.display_service.display
        if source is None or display is None:
            return
        try:
            text = self._read_document(source)
        except OSError as exc:
            logger.warning("Cannot read {}: {}", source, exc)
            return
        self.reveal_source_requested.emit(str(source), map_click_to_source(text, display.content, offset))

    def dispose(self) -> None:
        """The pane was closed by its host. Terminal."""
        if isinstance(self.state, Disposed):
            return
        self._release_server(stop=True)
        self.display_service.reset()
        self.state = panel_state.disposed()
        self.closed.emit()

    def _provision_server(self) -> None:
        if self.origin is None:
            logger.error("internal error: embedder origin not yet known")
            return
        self._set_state(panel_state.server_starting())
        request = self._manager.request_server(self.origin)
        self._server_request = request
        if request.is_finished():
            self._on_server_request_finished(request)
        else:
            request.finished.connect(partial(self._on_server_request_finished, request))

    def _on_server_request_finished(self, request: ServerRequest) -> None:
        # A restart or disposal may have happened meanwhile.
        if request is not self._server_request or not isinstance(self.state, ServerStarting):
            return
        server = request.server
        if server is None:
            self._server_failed(request.error or "Hugo server failed to start")
            return
        if server.terminated:
            self._server_failed("Hugo server terminated")
            return

        self._post(protocol.set_allowed_content_origins(server.content_origins()))
        self._server = server
        self._subscribe(server.server_terminated, self._server_failed)
        self._subscribe(server.rebuilt, self._on_server_rebuilt)
        page_directory = self._page_directory_factory(server)
        self._page_directory = page_directory
        self._subscribe(page_directory.updated, self._update_state)
        page_directory.start()
        self._set_state(panel_state.ready_no_preview_available())

    def _server_failed(self, err: object) -> None:
        if isinstance(self.state, Disposed):
            return
        self._post(protocol.set_allowed_content_origins([]))
        self._set_state(panel_state.server_failed(err))

    def _on_server_rebuilt(self) -> None:
        self.display_service.checkin_timed_out = None
        self._update_state()

    def _update_state(self) -> None:
        server = self._server
        page_directory = self._page_directory
        if server is None or page_directory is None:
            return
        if not isinstance(self.state, (BuildFailed, SiteMisconfigured, Ready)):
            return

        self._follow_renamed_slug(page_directory)

        if server.build_errors:
            self._set_state(panel_state.build_failed())
        elif self.display_service.checkin_timed_out or page_directory.page_directory_not_available:
            self._set_state(
                panel_state.site_misconfigured(
                    self.display_service.checkin_timed_out,
                    page_directory.page_directory_not_available,
                )
            )
        elif not isinstance(self.state, Ready):
            self._set_state(panel_state.ready_no_preview_available())
        else:
            self._update_title()

        if isinstance(self.state, Ready) and self.state.preview_status != PreviewStatus.SHOWING_PREVIEW:
            self.content_wanted.emit()

    def _follow_renamed_slug(self, page_directory: PageDirectoryService) -> None:
        display = self.display_service.display
        if display is None:
            return
        source = page_directory.source_file_by_url(display.url)
        if source is None:
            return
        preferred = page_directory.url_by_source_file(source, display.url)
        if preferred is not None and not _same_url(preferred, display.url):
            self.display_service.replace_url(preferred)

    def _navigate_to(self, url: object) -> None:
        if not self.showing_preview() or not isinstance(url, str):
            return
        if self._server is not None and self._server.can_serve_url(url):
            # Switching languages on a multi-host site.
            self.display_service.set_url(url)
        else:
            self.external_link_clicked.emit(url)

    def _set_state(self, state: PanelState) -> None:
        was_showing_preview = self.showing_preview()
        self.state = state
        self._update_title()
        self._post(protocol.set_state(panel_state.state_to_message(state)))
        if was_showing_preview != self.showing_preview():
            self.preview_status_changed.emit()

    def _update_title(self) -> None:
        display = self.display_service.display
        if self.showing_preview() and display is not None:
            title = QUrl(display.url).path() or display.url
        else:
            title = DEFAULT_TITLE
        if title != self.title:
            self.title = title
            self.title_changed.emit(title)

    def _post(self, message: dict) -> None:
        if isinstance(self.state, Disposed):
            return
        self.message_to_embedder.emit(message)

    def _subscribe(self, signal, slot: Callable) -> None:
        signal.connect(slot)
        self._subscriptions.append((signal, slot))

    def _release_server(self, stop: bool) -> None:
        for signal, slot in self._subscriptions:
            try:
                signal.disconnect(slot)
            except (RuntimeError, TypeError):
                # The sender is already gone.
                pass
        self._subscriptions = []
        if self._page_directory is not None:
            self._page_directory.dispose()
        if stop and self._server is not None:
            self._server.stop()
        elif stop and self._server_request is not None:
            self._server_request.process.stop()
        self._server = None
        self._server_request = None
        self._page_directory = None

    def _display_path(self, path: Path) -> str:
        try:
            return str(path.relative_to(self._manager.project_root))
        except ValueError:
            return str(path)
