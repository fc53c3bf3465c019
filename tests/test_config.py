"""
Tests for environment-driven settings.
"""
from pathlib import Path

import pytest
from pydantic import ValidationError

from backend.app.config import Settings


def test_defaults():
    s = Settings.from_env({})
    assert s.addons_enabled is True
    assert s.network == "bridge"
    assert s.call_timeout == 30.0
    assert s.identity_header == "X-User-Id"
    assert s.addons_dir.name == "addons"
    assert s.records_path.name == "installed_addons.json"


@pytest.mark.parametrize("raw,expected", [("false", False), ("0", False), ("OFF", False), ("true", True), ("", True)])
def test_enabled_flag(raw, expected):
    assert Settings.from_env({"ADDONS_ENABLED": raw}).addons_enabled is expected


def test_overrides(tmp_path):
    s = Settings.from_env(
        {
            "ADDONS_DIR": str(tmp_path / "catalog"),
            "ADDON_DATA_DIR": str(tmp_path / "data"),
            "ADDON_NETWORK": "addons-net",
            "ADDON_CALL_TIMEOUT": "12.5",
            "ADDON_HEALTH_TIMEOUT": "0",
            "ADDON_DEFAULT_PORT": "9000",
            "ADDON_IDENTITY_HEADER": "X-Forwarded-User",
        }
    )
    assert s.addons_dir == Path(tmp_path / "catalog")
    assert s.records_path == tmp_path / "data" / "installed_addons.json"
    assert s.network == "addons-net"
    assert s.call_timeout == 12.5
    assert s.health_timeout == 0
    assert s.default_port == 9000
    assert s.identity_header == "X-Forwarded-User"


def test_bad_number_is_rejected():
    with pytest.raises(ValidationError):
        Settings.from_env({"ADDON_CALL_TIMEOUT": "soon"})
