"""Service configuration.

Module-level values are read once from the environment (a local .env is honored).
load_config() layers defaults, an optional config/auth.yml and environment
overrides into an AuthConfig; it rebuilds when a mapped env var changes.
"""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

import yaml

load_dotenv()

# Credential directory
CREDENTIAL_BACKEND = os.getenv("CREDENTIAL_BACKEND", "file")  # file|redis
CREDENTIALS_FILE = os.getenv("CREDENTIALS_FILE", "config/credentials.json")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_CREDENTIAL_PREFIX = os.getenv("REDIS_CREDENTIAL_PREFIX", "snws:cred:")

# Body cache read size
BODY_CHUNK_SIZE = int(os.getenv("SNWS_BODY_CHUNK_SIZE", "8192"))

DEFAULT_COMPRESSIBLE_TYPES = (
    r"^(text/.*"
    r"|application/(json|xml|javascript|x-www-form-urlencoded|[^;]*\+json|[^;]*\+xml)"
    r"|multipart/.*)"
)

_DEFAULT: Dict[str, Any] = {
    "scheme_name": "SNWS2",
    "signing_key_literal": None,  # derived from scheme_name
    "max_clock_skew_ms": 15 * 60 * 1000,
    "max_body_length": 10 * 1024 * 1024,
    "compression_threshold_bytes": 4096,
    "spool_threshold_bytes": 1024 * 1024,
    "compressible_content_type_pattern": DEFAULT_COMPRESSIBLE_TYPES,
    "spool_directory": None,
    "lookback_days": 7,
    "explicit_host": None,
    "advisory": False,
    "public_paths": ["/__health", "/metrics"],
}


@dataclass
class AuthConfig:
    scheme_name: str = _DEFAULT["scheme_name"]
    signing_key_literal: Optional[str] = None
    max_clock_skew_ms: int = _DEFAULT["max_clock_skew_ms"]
    max_body_length: int = _DEFAULT["max_body_length"]
    compression_threshold_bytes: int = _DEFAULT["compression_threshold_bytes"]
    spool_threshold_bytes: int = _DEFAULT["spool_threshold_bytes"]
    compressible_content_type_pattern: str = _DEFAULT["compressible_content_type_pattern"]
    spool_directory: Optional[str] = None
    lookback_days: int = _DEFAULT["lookback_days"]
    explicit_host: Optional[str] = None
    advisory: bool = False
    public_paths: List[str] = field(default_factory=lambda: list(_DEFAULT["public_paths"]))

    def __post_init__(self):
        if not self.signing_key_literal:
            self.signing_key_literal = f"{self.scheme_name.lower()}_request"
        if self.lookback_days < 1:
            raise ValueError("lookback_days must be at least 1")


def _bool(v: str) -> bool:
    return v.strip().lower() in {"1", "true", "yes", "on"}


def _csv(v: str) -> List[str]:
    return [p.strip() for p in v.split(",") if p.strip()]


_ENV_MAP = {
    "scheme_name": ("SNWS_SCHEME", str),
    "signing_key_literal": ("SNWS_SIGNING_KEY_LITERAL", str),
    "max_clock_skew_ms": ("SNWS_MAX_CLOCK_SKEW_MS", int),
    "max_body_length": ("SNWS_MAX_BODY_LENGTH", int),
    "compression_threshold_bytes": ("SNWS_COMPRESSION_THRESHOLD", int),
    "spool_threshold_bytes": ("SNWS_SPOOL_THRESHOLD", int),
    "compressible_content_type_pattern": ("SNWS_COMPRESSIBLE_TYPES", str),
    "spool_directory": ("SNWS_SPOOL_DIR", str),
    "lookback_days": ("SNWS_LOOKBACK_DAYS", int),
    "explicit_host": ("SNWS_EXPLICIT_HOST", str),
    "advisory": ("SNWS_ADVISORY", _bool),
    "public_paths": ("SNWS_PUBLIC_PATHS", _csv),
}

_CONFIG: AuthConfig | None = None
_ENV_SNAPSHOT: Dict[str, str] = {}

_DEF_PATH = os.path.join(os.getcwd(), "config", "auth.yml")


def _env_snapshot() -> Dict[str, str]:
    return {env: os.environ[env] for env, _ in _ENV_MAP.values() if env in os.environ}


def load_config(path: str | None = None) -> AuthConfig:
    global _CONFIG, _ENV_SNAPSHOT
    snap = _env_snapshot()
    if _CONFIG is not None and path is None and snap == _ENV_SNAPSHOT:
        return _CONFIG
    data: Dict[str, Any] = {}
    cfg_path = path or os.getenv("SNWS_CONFIG_FILE", _DEF_PATH)
    # File first
    if os.path.exists(cfg_path):
        with open(cfg_path, "r", encoding="utf-8") as f:
            file_cfg = yaml.safe_load(f) or {}
        if isinstance(file_cfg, dict):
            data.update({k: v for k, v in file_cfg.items() if k in _ENV_MAP})
    # Env overrides
    for k, (env, cast) in _ENV_MAP.items():
        if env in os.environ:
            try:
                data[k] = cast(os.environ[env])
            except ValueError:
                raise ValueError(f"invalid value for {env}: {os.environ[env]!r}") from None
    cfg = AuthConfig(**data)
    if path is None:
        _CONFIG = cfg
        _ENV_SNAPSHOT = snap
    return cfg


def reset_config() -> None:
    """Forget the cached config (tests)."""
    global _CONFIG, _ENV_SNAPSHOT
    _CONFIG = None
    _ENV_SNAPSHOT = {}
