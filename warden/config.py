"""Application configuration loaded from a YAML file, and a watcher on it."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable

import yaml
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .env import parse_duration


@dataclass
class NotaryConfig:
    url: str = "https://signing-dev.repositories.cloud.sap"
    timeout: timedelta = timedelta(seconds=30)
    allowed_registries: str = ""
    predefined_user_allowed_registries: str = ""


@dataclass
class AdmissionConfig:
    system_namespace: str = "default"
    service_name: str = "warden-admission"
    secret_name: str = "warden-admission-cert"
    timeout: timedelta = timedelta(seconds=2)
    port: int = 8443
    strict_mode: bool = False


@dataclass
class OperatorConfig:
    metrics_bind_address: str = ":8080"
    health_probe_bind_address: str = ":8081"
    leader_elect: bool = False
    pod_reconciler_requeue_after: timedelta = timedelta(minutes=60)


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "text"


@dataclass
class Config:
    notary: NotaryConfig = field(default_factory=NotaryConfig)
    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    operator: OperatorConfig = field(default_factory=OperatorConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _to_str(value: Any, where: str) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"{where}: expected a string, got {type(value).__name__}")


def _to_int(value: Any, where: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{where}: expected an integer, got {value!r}")
    return value


def _to_bool(value: Any, where: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"{where}: expected a boolean, got {value!r}")
    return value


def _to_duration(value: Any, where: str) -> timedelta:
    if value is None:
        return timedelta(0)
    if not isinstance(value, str):
        raise ValueError(f"{where}: expected a duration string, got {value!r}")
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise ValueError(f"{where}: {exc}") from exc


_Converter = Callable[[Any, str], Any]

_SECTIONS: dict[str, tuple[str, dict[str, tuple[str, _Converter]]]] = {
    "notary": (
        "notary",
        {
            "URL": ("url", _to_str),
            "timeout": ("timeout", _to_duration),
            "allowedRegistries": ("allowed_registries", _to_str),
            "predefinedUserAllowedRegistries": ("predefined_user_allowed_registries", _to_str),
        },
    ),
    "admission": (
        "admission",
        {
            "systemNamespace": ("system_namespace", _to_str),
            "serviceName": ("service_name", _to_str),
            "secretName": ("secret_name", _to_str),
            "timeout": ("timeout", _to_duration),
            "port": ("port", _to_int),
            "strictMode": ("strict_mode", _to_bool),
        },
    ),
    "operator": (
        "operator",
        {
            "metricsBindAddress": ("metrics_bind_address", _to_str),
            "healthProbeBindAddress": ("health_probe_bind_address", _to_str),
            "leaderElect": ("leader_elect", _to_bool),
            "podReconcilerRequeueAfter": ("pod_reconciler_requeue_after", _to_duration),
        },
    ),
    "logging": (
        "logging",
        {
            "level": ("level", _to_str),
            "format": ("format", _to_str),
        },
    ),
}


def load(path: str | os.PathLike[str]) -> Config:
    """Read the YAML file at ``path`` over the default configuration."""
    text = Path(path).resolve().read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    config = Config()
    if data is None:
        return config
    if not isinstance(data, dict):
        raise ValueError("configuration must be a mapping")
    for key, (attr, spec) in _SECTIONS.items():
        raw = data.get(key)
        if raw is None:
            continue
        if not isinstance(raw, dict):
            raise ValueError(f"{key}: expected a mapping")
        section = getattr(config, attr)
        for field_key, value in raw.items():
            if field_key in spec:
                name, convert = spec[field_key]
                setattr(section, name, convert(value, f"{key}.{field_key}"))
    return config


_IGNORED_EVENTS = frozenset({"opened", "closed", "closed_no_write"})


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, logger: logging.Logger, on_exit: Callable[[int], Any]) -> None:
        super().__init__()
        self._logger = logger
        self._on_exit = on_exit
        self._lock = threading.Lock()
        self._fired = False

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type in _IGNORED_EVENTS:
            return
        with self._lock:
            if self._fired:
                return
            self._fired = True
        self._logger.debug("event name: %s, op: %s", event.src_path, event.event_type)
        self._logger.info("Config changed, restarting")
        self._on_exit(0)


def watch(
    file_path: str | os.PathLike[str],
    logger: logging.Logger,
    on_exit: Callable[[int], Any] = os._exit,
):
    """Watch the directory holding ``file_path`` and call ``on_exit(0)`` on any change.

    Returns the running observer; stop it with ``stop()`` and ``join()``.
    """
    directory = os.path.dirname(os.fspath(file_path)) or "."
    if not os.path.isdir(directory):
        raise OSError(f"while adding filePath to watch: no such directory: {directory}")
    observer = Observer()
    observer.daemon = True
    observer.schedule(_ChangeHandler(logger, on_exit), directory, recursive=False)
    logger.debug("starting watching events")
    try:
        observer.start()
    except OSError as exc:
        raise OSError(f"while adding filePath to watch: {exc}") from exc
    logger.info("config watcher started for: %s", os.fspath(file_path))
    return observer