from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass(slots=True)
class Settings:
    """Runtime configuration assembled from an optional YAML file and the environment."""

    api_keys: dict[str, str] = field(default_factory=dict)
    realtime_transport: str = "none"
    ably_api_key: str | None = None
    ably_rest_host: str = "https://rest.ably.io"
    ably_realtime_host: str = "https://realtime.ably.io"
    artifacts_root: Path = Path("artifacts")
    artifacts_public_base: str = "/api/images/serve"
    job_ttl_seconds: float = 3600.0
    job_reap_interval_seconds: float = 60.0
    cors_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    log_level: str = "INFO"


def _parse_api_keys(raw: Any) -> dict[str, str]:
    if isinstance(raw, dict):
        return {str(key): str(owner) for key, owner in raw.items() if key and owner}
    keys: dict[str, str] = {}
    for item in str(raw or "").split(","):
        key, sep, owner = item.strip().partition(":")
        if sep and key and owner:
            keys[key.strip()] = owner.strip()
    return keys


def _parse_origins(raw: Any) -> list[str]:
    if isinstance(raw, list):
        return [str(origin).strip() for origin in raw if str(origin).strip()]
    return [origin.strip() for origin in str(raw or "").split(",") if origin.strip()]


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp)
    return data if isinstance(data, dict) else {}


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build :class:`Settings`; environment variables win over the YAML file."""

    env = os.environ if environ is None else environ
    config_path = env.get("STUDIO_CONFIG")
    values: dict[str, Any] = _load_yaml(Path(config_path)) if config_path else {}

    overrides = {
        "api_keys": env.get("STUDIO_API_KEYS"),
        "realtime_transport": env.get("REALTIME_TRANSPORT"),
        "ably_api_key": env.get("ABLY_API_KEY"),
        "artifacts_root": env.get("ARTIFACTS_ROOT"),
        "artifacts_public_base": env.get("ARTIFACTS_PUBLIC_BASE"),
        "job_ttl_seconds": env.get("JOB_TTL_SECONDS"),
        "job_reap_interval_seconds": env.get("JOB_REAP_INTERVAL_SECONDS"),
        "cors_origins": env.get("API_CORS_ORIGINS"),
        "log_level": env.get("LOG_LEVEL"),
    }
    values.update({key: value for key, value in overrides.items() if value})

    settings = Settings()
    if "api_keys" in values:
        settings.api_keys = _parse_api_keys(values["api_keys"])
    if values.get("ably_api_key"):
        settings.ably_api_key = str(values["ably_api_key"])
    if values.get("ably_rest_host"):
        settings.ably_rest_host = str(values["ably_rest_host"]).rstrip("/")
    if values.get("ably_realtime_host"):
        settings.ably_realtime_host = str(values["ably_realtime_host"]).rstrip("/")

    transport = values.get("realtime_transport")
    if transport:
        settings.realtime_transport = str(transport).strip().lower()
    elif settings.ably_api_key:
        settings.realtime_transport = "ably"

    if values.get("artifacts_root"):
        settings.artifacts_root = Path(str(values["artifacts_root"])).expanduser()
    if values.get("artifacts_public_base"):
        settings.artifacts_public_base = str(values["artifacts_public_base"]).rstrip("/")
    if values.get("job_ttl_seconds") is not None:
        settings.job_ttl_seconds = float(values["job_ttl_seconds"])
    if values.get("job_reap_interval_seconds") is not None:
        settings.job_reap_interval_seconds = float(values["job_reap_interval_seconds"])
    origins = _parse_origins(values.get("cors_origins"))
    if origins:
        settings.cors_origins = origins
    if values.get("log_level"):
        settings.log_level = str(values["log_level"]).upper()
    return settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
