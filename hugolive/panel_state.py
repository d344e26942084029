"""Preview panel states. Build them through the factory functions below."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class PanelStateType(str, Enum):
    INITIALISING = "initialising"
    SERVER_STARTING = "serverStarting"
    SERVER_FAILED = "serverFailed"
    BUILD_FAILED = "buildFailed"
    SITE_MISCONFIGURED = "siteMisconfigured"
    READY = "ready"
    DISPOSED = "disposed"


class PreviewStatus(str, Enum):
    SHOWING_PREVIEW = "showingPreview"
    NO_PREVIEW_AVAILABLE = "noPreviewAvailable"
    # Shown over the page still on screen when the selected file is only a part of it.
    NO_PREVIEW_AVAILABLE_BANNER = "noPreviewAvailableBanner"


@dataclass(frozen=True)
class Initialising:
    """Waiting for the embedder to disclose its origin."""

    type: PanelStateType = PanelStateType.INITIALISING


@dataclass(frozen=True)
class ServerStarting:
    type: PanelStateType = PanelStateType.SERVER_STARTING


@dataclass(frozen=True)
class ServerFailed:
    """Server failed to start or terminated; the user may retry."""

    err: str = ""
    type: PanelStateType = PanelStateType.SERVER_FAILED


@dataclass(frozen=True)
class BuildFailed:
    """Hugo reported build errors; its own error page is shown as is."""

    type: PanelStateType = PanelStateType.BUILD_FAILED


@dataclass(frozen=True)
class SiteMisconfigured:
    """The page directory or the instrumentation script is missing."""

    checkin_timed_out: bool | None = None
    page_directory_not_available: bool | None = None
    type: PanelStateType = PanelStateType.SITE_MISCONFIGURED


@dataclass(frozen=True)
class Ready:
    preview_status: PreviewStatus = PreviewStatus.NO_PREVIEW_AVAILABLE
    # Without a preview: "no preview available for <source_path>" or "select a file".
    source_path: str | None = None
    type: PanelStateType = PanelStateType.READY


@dataclass(frozen=True)
class Disposed:
    type: PanelStateType = PanelStateType.DISPOSED


PanelState = Union[Initialising, ServerStarting, ServerFailed, BuildFailed, SiteMisconfigured, Ready, Disposed]


def initialising() -> Initialising:
    return Initialising()


def server_starting() -> ServerStarting:
    return ServerStarting()


def server_failed(err: object) -> ServerFailed:
    return ServerFailed(err=str(err))


def build_failed() -> BuildFailed:
    return BuildFailed()


def site_misconfigured(checkin_timed_out: bool | None, page_directory_not_available: bool | None) -> SiteMisconfigured:
    return SiteMisconfigured(
        checkin_timed_out=checkin_timed_out,
        page_directory_not_available=page_directory_not_available,
    )


def ready_showing_preview() -> Ready:
    return Ready(preview_status=PreviewStatus.SHOWING_PREVIEW)


def ready_no_preview_available(has_display: bool = False, path: str | None = None) -> Ready:
    status = PreviewStatus.NO_PREVIEW_AVAILABLE
    if path is not None and has_display:
        status = PreviewStatus.NO_PREVIEW_AVAILABLE_BANNER
    return Ready(preview_status=status, source_path=path)


def disposed() -> Disposed:
    return Disposed()


def state_to_message(state: PanelState) -> dict:
    """JSON-friendly form sent to the embedder with setState."""
    if isinstance(state, ServerFailed):
        return {"type": state.type.value, "err": state.err}
    if isinstance(state, SiteMisconfigured):
        return {
            "type": state.type.value,
            "checkinTimedOut": state.checkin_timed_out,
            "pageDirectoryNotAvailable": state.page_directory_not_available,
        }
    if isinstance(state, Ready):
        return {
            "type": state.type.value,
            "previewStatus": state.preview_status.value,
            "sourcePath": state.source_path,
        }
    return {"type": state.type.value}
