from pathlib import Path

import yaml

from logwatch.config import Settings, default_root, load_settings
from logwatch.focus import focus_window, sanitize_name


def test_load_settings_overlays_yaml_and_overrides(tmp_path: Path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text(yaml.dump({"port": 4000, "initial_lines": 20, "bogus": 1}), encoding="utf-8")
    s = load_settings(cfg, http_port=4001, host=None)
    assert s.port == 4000
    assert s.initial_lines == 20
    assert s.http_port == 4001
    assert s.host == "127.0.0.1"
    assert s.max_age == 24 * 60 * 60
    assert s.initial_read_bytes == 50 * 1024


def test_load_settings_tolerates_bad_yaml(tmp_path: Path):
    cfg = tmp_path / "config.yaml"
    cfg.write_text("port: [unclosed", encoding="utf-8")
    assert load_settings(cfg) == Settings()


def test_default_root_prefers_first_existing(tmp_path: Path):
    a, b = tmp_path / "a", tmp_path / "b"
    b.mkdir()
    assert default_root([a, b]) == str(b)
    assert default_root([a, tmp_path / "c"]) == str(a)


def test_focus_name_is_sanitized():
    assert sanitize_name('Bob"; rm -rf /') == "Bob rm -rf "
    assert sanitize_name("Ann_the-Pilot 2") == "Ann_the-Pilot 2"
    assert focus_window("$%^") is False
