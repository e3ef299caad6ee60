from __future__ import annotations

import json
from pathlib import Path

from exr_inspector.core.settings_manager import ControllerConfig, SettingsManager


def test_settings_json_roundtrip(tmp_path: Path) -> None:
    manager = SettingsManager("TestOrg", "TestApp", seed_defaults=False, in_memory=True)
    manager.set("alpha", 123)
    manager.set("beta", {"nested": [1, 2, 3]})

    export_path = tmp_path / "settings.json"
    manager.export_json(export_path)
    assert export_path.exists()

    exported = json.loads(export_path.read_text(encoding="utf-8"))
    assert exported == {"alpha": 123, "beta": {"nested": [1, 2, 3]}}

    manager.clear()
    assert manager.get("alpha") is None
    assert manager.get("beta") is None

    manager.import_json(export_path)
    assert manager.get("alpha") == 123
    assert manager.get("beta") == {"nested": [1, 2, 3]}


def test_settings_from_dict_with_clear() -> None:
    manager = SettingsManager("AnotherOrg", "AnotherApp", seed_defaults=False, in_memory=True)
    manager.set("keep", "value")

    manager.from_dict({"fresh": 42}, clear=True)
    assert manager.get("keep") is None
    assert manager.get("fresh") == 42
    assert manager.to_dict() == {"fresh": 42}


def test_typed_accessors_coerce_string_values() -> None:
    manager = SettingsManager("TypedOrg", "TypedApp", in_memory=True)
    manager.set("preview/max_size", "1024")
    manager.set("preview/high_quality", "false")
    manager.set("scopes/scale", "not a number")

    assert manager.get_int("preview/max_size") == 1024
    assert manager.get_bool("preview/high_quality") is False
    assert manager.get_float("scopes/scale") == 1.0


def test_controller_config_defaults() -> None:
    config = ControllerConfig.from_settings(SettingsManager("DefaultOrg", "DefaultApp", in_memory=True))

    assert config.preview_max_size == 2048
    assert config.debounce_ms == 120
    assert config.ready_timeout == 5.0
    assert config.poll_interval == 0.05
    assert config.scope_channel == "rgb"
    assert config.default_transform == "NonTransform"
    assert config == ControllerConfig()


def test_controller_config_overrides() -> None:
    manager = SettingsManager("OverrideOrg", "OverrideApp", in_memory=True)
    manager.from_dict({"preview/debounce_ms": "250", "scopes/channel": "g", "export/max_size": 0})

    config = ControllerConfig.from_settings(manager)

    assert config.debounce_ms == 250
    assert config.scope_channel == "g"
    assert config.export_max_size == 1
