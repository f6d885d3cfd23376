from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class LocalPaths:
    base_dir: Path
    data_dir: Path
    logs_dir: Path


@dataclass(frozen=True)
class WizardConfig:
    deterministic_enabled: bool
    agent_enabled: bool
    agent_provider: str
    agent_timeout_seconds: float
    plan_url_prefix: str
    storage_backend: str
    agent_workers: int = 4


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int


def _default_base_dir() -> Path:
    override = os.getenv("PLANWIZARD_DATA_DIR")
    if override:
        return Path(override).expanduser()
    if sys.platform == "win32":
        root = Path(os.getenv("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return root / "PlanWizard"
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "PlanWizard"
    root = Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share"))
    return root / "planwizard"


def get_local_paths() -> LocalPaths:
    base_dir = _default_base_dir()
    return LocalPaths(
        base_dir=base_dir,
        data_dir=base_dir / "data",
        logs_dir=base_dir / "logs",
    )


def ensure_directories() -> LocalPaths:
    paths = get_local_paths()
    for path in (paths.base_dir, paths.data_dir, paths.logs_dir):
        path.mkdir(parents=True, exist_ok=True)
    return paths


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _parse_int(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def get_wizard_config() -> WizardConfig:
    agent_provider = os.getenv("PLANWIZARD_AGENT_PROVIDER", "stub").strip().lower() or "stub"
    storage_backend = os.getenv("PLANWIZARD_STORAGE", "sqlite").strip().lower()
    if storage_backend not in {"sqlite", "memory"}:
        storage_backend = "sqlite"
    timeout = _parse_float(os.getenv("PLANWIZARD_AGENT_TIMEOUT_SECONDS"), 30.0)
    if timeout <= 0:
        timeout = 30.0
    workers = _parse_int(os.getenv("PLANWIZARD_AGENT_WORKERS"), 4)
    if workers < 1:
        workers = 4
    return WizardConfig(
        deterministic_enabled=_parse_bool(os.getenv("PLANWIZARD_DETERMINISTIC_ENABLED"), True),
        agent_enabled=_parse_bool(os.getenv("PLANWIZARD_AGENT_ENABLED"), False),
        agent_provider=agent_provider,
        agent_timeout_seconds=timeout,
        plan_url_prefix=os.getenv("PLANWIZARD_PLAN_URL_PREFIX", "/plans").rstrip("/") or "/plans",
        storage_backend=storage_backend,
        agent_workers=workers,
    )


def get_server_config() -> ServerConfig:
    return ServerConfig(
        host=os.getenv("PLANWIZARD_HOST", "127.0.0.1"),
        port=_parse_int(os.getenv("PLANWIZARD_PORT"), 8000),
    )


@dataclass(frozen=True)
class LoggingConfig:
    level: int
    to_file: bool


def get_logging_config() -> LoggingConfig:
    level_name = os.getenv("PLANWIZARD_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    return LoggingConfig(level=level, to_file=_parse_bool(os.getenv("PLANWIZARD_LOG_TO_FILE"), False))
