"""Runtime settings: ~/.hugolive.json merged with command line overrides."""

from __future__ import annotations

import json
import shlex
from dataclasses import dataclass, replace
from pathlib import Path

CONFIG_FILE_NAME = ".hugolive.json"
DEFAULT_EMBEDDER_ORIGIN = "http://hugolive.localhost"
DEFAULT_CHECKIN_TIMEOUT_MS = 1000
DEFAULT_FETCH_TIMEOUT_S = 10.0
# {file}, {line} and {column} are substituted per argument.
DEFAULT_EDITOR_COMMAND = "code --goto {file}:{line}:{column}"
HUGO_CONFIG_CANDIDATES = (
    "hugo.toml",
    "hugo.yaml",
    "hugo.json",
    "config.toml",
    "config.yaml",
    "config.json",
)


@dataclass(frozen=True)
class PreviewSettings:
    hugo: str = "hugo"
    hugo_args: tuple[str, ...] = ()
    editor: str = DEFAULT_EDITOR_COMMAND
    embedder_origin: str = DEFAULT_EMBEDDER_ORIGIN
    checkin_timeout_ms: int = DEFAULT_CHECKIN_TIMEOUT_MS
    fetch_timeout_s: float = DEFAULT_FETCH_TIMEOUT_S

    def with_overrides(self, **overrides) -> "PreviewSettings":
        """Return a copy with every non-None override applied."""
        applied = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **applied)


def _config_file_path() -> Path:
    return Path.home() / CONFIG_FILE_NAME


def load_settings(path: Path | None = None) -> PreviewSettings:
    """Read settings from the JSON config file, falling back to defaults."""
    cfg_path = path if path is not None else _config_file_path()
    try:
        if not cfg_path.exists():
            return PreviewSettings()
        payload = json.loads(cfg_path.read_text(encoding="utf-8"))
    except Exception:
        # Unreadable or malformed config should never block the preview.
        return PreviewSettings()
    if not isinstance(payload, dict):
        return PreviewSettings()

    values: dict[str, object] = {}
    for key in ("hugo", "editor", "embedder_origin"):
        raw = payload.get(key)
        if isinstance(raw, str) and raw.strip():
            values[key] = raw.strip()
    raw_args = payload.get("hugo_args")
    if isinstance(raw_args, list) and all(isinstance(arg, str) for arg in raw_args):
        values["hugo_args"] = tuple(raw_args)
    raw_timeout = payload.get("checkin_timeout_ms")
    if isinstance(raw_timeout, int) and not isinstance(raw_timeout, bool) and raw_timeout > 0:
        values["checkin_timeout_ms"] = raw_timeout
    raw_fetch = payload.get("fetch_timeout_s")
    if isinstance(raw_fetch, (int, float)) and not isinstance(raw_fetch, bool) and raw_fetch > 0:
        values["fetch_timeout_s"] = float(raw_fetch)
    return PreviewSettings(**values)


def find_hugo_config(root: Path) -> Path | None:
    """Locate the site configuration that marks root as a Hugo project."""
    for name in HUGO_CONFIG_CANDIDATES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    config_dir = root / "config"
    if config_dir.is_dir():
        return config_dir
    return None


def editor_command(template: str, path: Path, line: int = 1, column: int = 1) -> list[str]:
    """Expand the editor command template into an argv list."""
    return [part.format(file=str(path), line=line, column=column) for part in shlex.split(template)]
