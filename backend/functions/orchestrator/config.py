"""
Centralized configuration for the orchestrator.
All environment-derived settings are defined here and imported by modules.
"""
from __future__ import annotations

import os
from typing import Set

import yaml


def _load_yaml_defaults() -> dict:
    val = os.getenv("USE_CONFIG_YAML_LOCAL", "0").lower()
    if val not in ("1", "true", "yes", "y", "on"):
        return {}
    cfg_path = os.getenv("CONFIG_YAML_PATH") or os.path.join(
        os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "config.yaml"
    )
    if not os.path.exists(cfg_path):
        return {}
    try:
        with open(cfg_path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError):
        return {}
    d = dict(data.get("default", {}) or {})
    o = dict(data.get("orchestrator", {}) or {})
    merged = {}
    merged.update({str(k).upper(): v for k, v in d.items()})
    merged.update({str(k).upper(): v for k, v in o.items()})
    return merged


_YAML_DEFAULTS = _load_yaml_defaults()


def _getenv(key: str, default: str) -> str:
    v = os.getenv(key)
    if v is not None:
        return v
    if _YAML_DEFAULTS:
        yv = _YAML_DEFAULTS.get(key)
        if yv is not None:
            return str(yv)
    return default


def _env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key)
    if val is None:
        val = str(_YAML_DEFAULTS.get(key)) if _YAML_DEFAULTS.get(key) is not None else None
        if val is None:
            return default
    return str(val).lower() in ("1", "true", "yes", "y", "on")


# ---------------------------------------------------------------------------
# Timeouts and limits
# ---------------------------------------------------------------------------
CLASSIFIER_TIMEOUT_SECONDS: int = int(_getenv("CLASSIFIER_TIMEOUT_SECONDS", "15"))
MAX_ROWS: int = int(_getenv("MAX_ROWS", "50000"))

# ---------------------------------------------------------------------------
# Feature flags
# ---------------------------------------------------------------------------
HEURISTIC_FALLBACK_ENABLED: bool = _env_bool("HEURISTIC_FALLBACK_ENABLED", True)
VERB_RECONCILIATION_ENABLED: bool = _env_bool("VERB_RECONCILIATION_ENABLED", True)
LOG_TOOL_CALLS: bool = _env_bool("LOG_TOOL_CALLS", False)

# ---------------------------------------------------------------------------
# Operation defaults
# ---------------------------------------------------------------------------
DEFAULT_SCOPE: str = _getenv("DEFAULT_SCOPE", "filtered")
DEFAULT_SELECT_COUNT: int = int(_getenv("DEFAULT_SELECT_COUNT", "10"))
DEFAULT_RANDOM_COUNT: int = int(_getenv("DEFAULT_RANDOM_COUNT", "5"))
DEFAULT_RANK_COUNT: int = int(_getenv("DEFAULT_RANK_COUNT", "5"))
DEFAULT_PERCENTILE: float = float(_getenv("DEFAULT_PERCENTILE", "50"))

# CORS
ALLOWED_ORIGINS: Set[str] = {
    o.strip()
    for o in (_getenv(
        "ALLOWED_ORIGINS",
        "http://localhost:5173,http://localhost:4173",
    ) or "").split(",")
    if o and o.strip()
}

# ---------------------------------------------------------------------------
# Gemini / LLM
# ---------------------------------------------------------------------------
GEMINI_API_KEY: str = _getenv("GEMINI_API_KEY", "")
GEMINI_MODEL_NAME: str = _getenv("GEMINI_MODEL_NAME", "gemini-2.5-flash-lite")
GEMINI_MAX_TOKENS: int = int(_getenv("GEMINI_MAX_TOKENS", "1024"))
CLASSIFIER_TEMPERATURE: float = float(_getenv("CLASSIFIER_TEMPERATURE", "0.0"))
CLASSIFIER_MODEL_OVERRIDE: str = _getenv("CLASSIFIER_MODEL_OVERRIDE", "").strip()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def validate_config(logger=None) -> list[str]:
    """Validate key configuration values and optionally log warnings.

    Returns a list of warning messages.
    """
    issues: list[str] = []

    def _warn(msg: str) -> None:
        issues.append(msg)
        if logger is not None and hasattr(logger, "warning"):
            logger.warning(msg)

    for name, val in (
        ("CLASSIFIER_TIMEOUT_SECONDS", CLASSIFIER_TIMEOUT_SECONDS),
        ("MAX_ROWS", MAX_ROWS),
        ("GEMINI_MAX_TOKENS", GEMINI_MAX_TOKENS),
    ):
        if int(val) < 0:
            _warn(f"{name} should be >= 0 (got {val})")

    for name, val in (
        ("DEFAULT_SELECT_COUNT", DEFAULT_SELECT_COUNT),
        ("DEFAULT_RANDOM_COUNT", DEFAULT_RANDOM_COUNT),
        ("DEFAULT_RANK_COUNT", DEFAULT_RANK_COUNT),
    ):
        if int(val) <= 0:
            _warn(f"{name} should be > 0 (got {val})")

    if DEFAULT_PERCENTILE < 0.0 or DEFAULT_PERCENTILE > 100.0:
        _warn(f"DEFAULT_PERCENTILE out of [0,100]: {DEFAULT_PERCENTILE}")

    if DEFAULT_SCOPE not in ("all", "filtered", "selected", "visible", "grouped"):
        _warn(f"DEFAULT_SCOPE unknown: {DEFAULT_SCOPE}")

    if CLASSIFIER_TEMPERATURE < 0.0 or CLASSIFIER_TEMPERATURE > 2.0:
        _warn(f"CLASSIFIER_TEMPERATURE unusual: {CLASSIFIER_TEMPERATURE}")

    if not GEMINI_API_KEY:
        _warn("GEMINI_API_KEY is not set (heuristic fallback will be used where applicable).")

    return issues
