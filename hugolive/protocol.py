"""Messages exchanged between the orchestrator, the embedder page and the content page."""

from __future__ import annotations

# orchestrator -> embedder
NAVIGATE_BACK = "navigateBack"
NAVIGATE_FORWARD = "navigateForward"
SET_URL = "setUrl"
REPLACE_URL = "replaceUrl"
SET_STATE = "setState"
SET_ALLOWED_CONTENT_ORIGINS = "setAllowedContentOrigins"

# embedder -> orchestrator
DISCLOSE_ORIGIN = "discloseOrigin"
RESTART_SERVER = "restartServer"
CREATE_LIVE_PREVIEW_PARTIAL = "createLivePreviewPartial"

# content -> orchestrator, relayed by the embedder after an origin check
CHECKIN = "checkin"
NAVIGATE_TO = "navigateTo"
CLICK = "click"
UPDATE_INTERSECTIONS = "updateIntersections"

CONTENT_MESSAGE_TYPES = (CHECKIN, NAVIGATE_TO, CLICK, UPDATE_INTERSECTIONS)


def navigate_back() -> dict:
    return {"msg": NAVIGATE_BACK}


def navigate_forward() -> dict:
    return {"msg": NAVIGATE_FORWARD}


def set_url(url: str, replace: bool = False) -> dict:
    return {"msg": REPLACE_URL if replace else SET_URL, "url": url}


def set_state(state: dict) -> dict:
    return {"msg": SET_STATE, "state": state}


def set_allowed_content_origins(origins: list[str]) -> dict:
    return {"msg": SET_ALLOWED_CONTENT_ORIGINS, "origins": list(origins)}


def message_type(message: object) -> str | None:
    """Return the message discriminator, or None for anything that isn't a message."""
    if not isinstance(message, dict):
        return None
    kind = message.get("msg")
    return kind if isinstance(kind, str) else None
