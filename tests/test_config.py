import argparse
import json

import pytest

from core.config import (
    fncApplyCliOverrides,
    fncGetAuditSettings,
    fncGetProviderConfig,
    fncInitConfig,
    fncUpdateConfigField,
)
from engine.models import ConfigurationError


def _args(**kw):
    base = dict(debug=None, include_overarching=None, dedupe=None, prefer_specific_service=None,
                top=None, expiry_window=None, import_dir=None)
    base.update(kw)
    return argparse.Namespace(**base)


def test_init_creates_default_config(tmp_path):
    path = tmp_path / "cfg" / "config.json"

    cfg = fncInitConfig(str(path))

    assert path.exists()
    assert cfg["providers"]["m365"]["authority"] == "https://login.microsoftonline.com"
    assert cfg["audit"]["dedupe_mode"] == "None"
    assert cfg["audit"]["service_admin_thresholds"]["Exchange Administrator"] == 3
    assert json.loads(path.read_text())["audit"]["import_dir"] == ""


def test_existing_config_gets_env_overrides_and_missing_blocks(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"providers": {"m365": {"tenant_id": "from-file", "client_id": "app"}}}))
    monkeypatch.setenv("ROLEHOUND_TENANT_ID", "from-env")
    monkeypatch.delenv("ROLEHOUND_CLIENT_ID", raising=False)

    cfg = fncInitConfig(str(path))

    m365 = fncGetProviderConfig(cfg, "m365")
    assert m365["tenant_id"] == "from-env"
    assert m365["client_id"] == "app"
    assert "audit" in cfg
    assert fncGetProviderConfig(cfg, "gcp") == {}


def test_cli_flags_override_only_when_given(tmp_path):
    cfg = fncInitConfig(str(tmp_path / "config.json"))
    cfg["audit"]["include_overarching_roles"] = True

    cfg = fncApplyCliOverrides(cfg, _args(dedupe="Loose", top=3, debug=True))
    settings = fncGetAuditSettings(cfg)

    assert settings["dedupe_mode"] == "Loose"
    assert settings["top_n"] == 3
    assert settings["include_overarching_roles"] is True
    assert cfg["debug"] is True


def test_bad_dedupe_mode_in_config_is_rejected(tmp_path):
    cfg = fncInitConfig(str(tmp_path / "config.json"))
    fncUpdateConfigField(cfg, "audit.dedupe_mode", "Whatever")

    with pytest.raises(ConfigurationError):
        fncGetAuditSettings(cfg)
