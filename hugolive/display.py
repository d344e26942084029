"""What the content pane actually shows, as reported by the page itself."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from PySide6.QtCore import QObject, QTimer, Signal

from hugolive import protocol
from hugolive.config import DEFAULT_CHECKIN_TIMEOUT_MS
from hugolive.stext import EMPTY_STEXT, StructuredText, parse_stext


@dataclass(frozen=True)
class Display:
    url: str
    content: StructuredText


class DisplayService(QObject):
    """Drive the content pane and track its checkins.

    Every navigation arms a timeout. A page carrying the instrumentation
    checks in before it fires; when it doesn't, `checkin_timed_out` is set
    until the next checkin. `loaded` fires in both cases. Loading the URL
    already on screen is not short-circuited here.

    `visible_node_ids` mirrors the intersection reports of the current page.
    It is state exposed for the embedding UI; the panel does not act on it.
    """

    loaded = Signal()

    def __init__(self, send: Callable[[dict], None], timeout_ms: int = DEFAULT_CHECKIN_TIMEOUT_MS, parent=None):
        super().__init__(parent)
        self._send = send
        self.display: Display | None = None
        self.checkin_timed_out: bool | None = False
        self.visible_node_ids: set[int] = set()
        self._checkin_timer = QTimer(self)
        self._checkin_timer.setSingleShot(True)
        self._checkin_timer.setInterval(timeout_ms)
        self._checkin_timer.timeout.connect(self._on_checkin_timeout)

    def set_url(self, url: str) -> None:
        self._open(url, replace=False)

    def replace_url(self, url: str) -> None:
        """Like set_url, but replaces the current history entry."""
        self._open(url, replace=True)

    def reset(self) -> None:
        """Forget the current page and any pending checkin."""
        self._checkin_timer.stop()
        self.display = None
        self.checkin_timed_out = None
        self.visible_node_ids = set()

    def handle_checkin(self, href: object, stext: object) -> None:
        content = parse_stext(stext)
        self.display = Display(url=str(href), content=content if content is not None else EMPTY_STEXT)
        self.checkin_timed_out = False
        self.visible_node_ids = set()
        self._checkin_timer.stop()
        self.loaded.emit()

    def handle_intersections(self, hidden: object, revealed: object) -> None:
        if isinstance(hidden, list):
            self.visible_node_ids.difference_update(item for item in hidden if isinstance(item, int))
        if isinstance(revealed, list):
            self.visible_node_ids.update(item for item in revealed if isinstance(item, int))

    def _open(self, url: str, replace: bool) -> None:
        self._send(protocol.set_url(url, replace=replace))
        # Only the latest navigation's deadline counts.
        self._checkin_timer.start()

    def _on_checkin_timeout(self) -> None:
        self.checkin_timed_out = True
        self.loaded.emit()
