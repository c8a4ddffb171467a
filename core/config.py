# ================================================================
# File     : config.py
# Purpose  : Configuration management for RoleHound
# Notes    : Handles initial creation, loading, and saving of config,
#            plus the audit settings block consumed by the engine
# ================================================================

import copy
import pathlib
from core.utils import fncPrintMessage, fncEnsureFolder, fncReadJSON, fncWriteJSON, fncLoadEnv
from engine.audit import DEFAULT_AUDIT_SETTINGS, fncMergeAuditSettings
from engine.compliance import DEFAULT_SETTINGS as COMPLIANCE_DEFAULTS

HOME_DIR = pathlib.Path.home() / ".rolehound"


# ================================================================
# Function: fncDefaultConfig
# Purpose : Return a default configuration dictionary
# Notes   : Called when config file does not exist
# ================================================================
def fncDefaultConfig() -> dict:
    audit = copy.deepcopy(DEFAULT_AUDIT_SETTINGS)
    audit["service_admin_thresholds"] = dict(COMPLIANCE_DEFAULTS["service_admin_thresholds"])
    audit["import_dir"] = ""
    return {
        "version": "1.0",
        "rolehound_home": str(HOME_DIR),
        "last_run_id": None,
        "debug": False,
        "providers": {
            "m365": {
                "tenant_id": "",
                "client_id": "",
                "client_secret": "",
                "certificate_path": "",
                "certificate_thumbprint": "",
                "auth_type": "",
                "authority": "https://login.microsoftonline.com"
            }
        },
        "audit": audit,
    }


# ================================================================
# Function: fncInitConfig
# Purpose : Create or load configuration file
# Notes   : Ensures base folder exists; returns full config dict
# ================================================================
def fncInitConfig(config_path: str = None) -> dict:
    path = pathlib.Path(config_path or HOME_DIR / "config.json")

    fncEnsureFolder(path.parent)

    if not path.exists():
        fncPrintMessage(f"No config found at {path}. Creating default...", "warn")
        cfg = fncDefaultConfig()
        fncWriteJSON(str(path), cfg)
        return cfg
    else:
        return fncLoadConfig(str(path))


# ================================================================
# Function: fncLoadConfig
# Purpose : Load configuration file and apply environment overrides
# Notes   : Uses ENV vars: ROLEHOUND_TENANT_ID, ROLEHOUND_CLIENT_ID, etc.
#           Missing blocks are filled from the defaults
# ================================================================
def fncLoadConfig(config_path: str) -> dict:
    cfg = fncReadJSON(config_path) or {}
    defaults = fncDefaultConfig()
    for key, val in defaults.items():
        cfg.setdefault(key, val)
    cfg.setdefault("providers", {}).setdefault("m365", defaults["providers"]["m365"])
    m365 = cfg["providers"]["m365"]

    # Environment overrides (useful in CI/CD or container)
    env_overrides = {
        "tenant_id": fncLoadEnv("ROLEHOUND_TENANT_ID", m365.get("tenant_id")),
        "client_id": fncLoadEnv("ROLEHOUND_CLIENT_ID", m365.get("client_id")),
        "client_secret": fncLoadEnv("ROLEHOUND_CLIENT_SECRET", m365.get("client_secret")),
        "certificate_path": fncLoadEnv("ROLEHOUND_CERT_PATH", m365.get("certificate_path")),
        "certificate_thumbprint": fncLoadEnv("ROLEHOUND_CERT_THUMBPRINT", m365.get("certificate_thumbprint")),
    }
    m365.update(env_overrides)

    fncPrintMessage(f"Loaded configuration from {config_path}", "debug")
    return cfg


# ================================================================
# Function: fncUpdateConfigField
# Purpose : Update a specific nested key in the config
# Notes   : Example: fncUpdateConfigField(cfg, "audit.dedupe_mode", "Loose")
# ================================================================
def fncUpdateConfigField(cfg: dict, path: str, value) -> dict:
    parts = path.split(".")
    ref = cfg
    for key in parts[:-1]:
        ref = ref.setdefault(key, {})
    ref[parts[-1]] = value
    fncPrintMessage(f"Updated config field: {path} = {value}", "debug")
    return cfg


# ================================================================
# Function: fncGetProviderConfig
# Purpose : Return config block for a specific provider
# Notes   : Only m365 today
# ================================================================
def fncGetProviderConfig(cfg: dict, provider: str) -> dict:
    providers = cfg.get("providers", {})
    if provider not in providers:
        fncPrintMessage(f"Provider not found in config: {provider}", "warn")
        return {}
    return providers[provider]


# flag name on argparse namespace -> audit key
_CLI_AUDIT_FLAGS = {
    "include_overarching": "include_overarching_roles",
    "dedupe": "dedupe_mode",
    "prefer_specific_service": "prefer_specific_service",
    "top": "top_n",
    "expiry_window": "expiry_window_days",
    "import_dir": "import_dir",
}


# ================================================================
# Function: fncApplyCliOverrides
# Purpose : Apply command-line flags to the loaded config
# Notes   : Flags left at None keep the config file value
# ================================================================
def fncApplyCliOverrides(cfg: dict, args) -> dict:
    if getattr(args, "debug", None) is not None:
        cfg["debug"] = bool(args.debug)
    audit = cfg.setdefault("audit", {})
    for flag, key in _CLI_AUDIT_FLAGS.items():
        val = getattr(args, flag, None)
        if val is not None:
            audit[key] = val
    return cfg


# ================================================================
# Function: fncGetAuditSettings
# Purpose : Audit block with defaults filled in and validated
# Notes   : Raises ConfigurationError for a bad dedupe mode / top_n
# ================================================================
def fncGetAuditSettings(cfg: dict) -> dict:
    return fncMergeAuditSettings(cfg.get("audit") or {})


def fncIsDebug(cfg: dict) -> bool:
    return bool(cfg.get("debug", False))
