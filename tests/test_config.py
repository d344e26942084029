import json
from pathlib import Path

from hugolive.config import (
    DEFAULT_EDITOR_COMMAND,
    PreviewSettings,
    editor_command,
    find_hugo_config,
    load_settings,
)


def test_missing_config_gives_defaults(tmp_path):
    assert load_settings(tmp_path / "absent.json") == PreviewSettings()


def test_malformed_config_gives_defaults(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text("{broken", encoding="utf-8")
    assert load_settings(path) == PreviewSettings()
    path.write_text("[1, 2]", encoding="utf-8")
    assert load_settings(path) == PreviewSettings()


def test_config_values_are_type_checked(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(
        json.dumps(
            {
                "hugo": " /usr/local/bin/hugo ",
                "hugo_args": ["--port", "1400"],
                "editor": "",
                "checkin_timeout_ms": True,
                "fetch_timeout_s": 3,
            }
        ),
        encoding="utf-8",
    )
    settings = load_settings(path)
    assert settings.hugo == "/usr/local/bin/hugo"
    assert settings.hugo_args == ("--port", "1400")
    assert settings.editor == DEFAULT_EDITOR_COMMAND
    assert settings.checkin_timeout_ms == 1000
    assert settings.fetch_timeout_s == 3.0


def test_overrides_skip_none():
    settings = PreviewSettings().with_overrides(hugo=None, embedder_origin="http://preview.localhost")
    assert settings.hugo == "hugo"
    assert settings.embedder_origin == "http://preview.localhost"


def test_editor_command_substitutes_per_argument():
    command = editor_command(DEFAULT_EDITOR_COMMAND, Path("/site/content/my post.md"), 3, 7)
    assert command == ["code", "--goto", "/site/content/my post.md:3:7"]
    assert editor_command("vim +{line} {file}", Path("/a.md"), 2) == ["vim", "+2", "/a.md"]


def test_find_hugo_config(tmp_path):
    assert find_hugo_config(tmp_path) is None
    (tmp_path / "config").mkdir()
    assert find_hugo_config(tmp_path) == tmp_path / "config"
    (tmp_path / "hugo.toml").write_text("title = 'x'\n", encoding="utf-8")
    assert find_hugo_config(tmp_path) == tmp_path / "hugo.toml"
