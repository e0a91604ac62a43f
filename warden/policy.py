"""Validation results and the namespace settings that choose how pods are validated."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from . import labels
from .cluster import Namespace
from .env import parse_bool, parse_duration

DEFAULT_USER_ALLOWED_REGISTRIES = ""
DEFAULT_USER_NOTARY_TIMEOUT = "30s"
DEFAULT_USER_STRICT_MODE = True

_SUPPORTED_LABEL_VALUES = frozenset(
    {
        labels.NAMESPACE_VALIDATION_ENABLED,
        labels.NAMESPACE_VALIDATION_SYSTEM,
        labels.NAMESPACE_VALIDATION_USER,
    }
)
_SYSTEM_LABEL_VALUES = frozenset(
    {labels.NAMESPACE_VALIDATION_ENABLED, labels.NAMESPACE_VALIDATION_SYSTEM}
)


class ValidationStatus(enum.Enum):
    NO_ACTION = "NoAction"
    VALID = "Valid"
    INVALID = "Invalid"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"


@dataclass(frozen=True)
class ValidationResult:
    status: ValidationStatus
    invalid_images: tuple[str, ...] | None = None


@dataclass(frozen=True)
class UserValidationNotaryConfig:
    notary_url: str
    allowed_registries: str
    notary_timeout: timedelta


def get_user_validation_notary_config(ns: Namespace) -> UserValidationNotaryConfig:
    """Read the user validation settings from the namespace annotations."""
    annotations = ns.metadata.annotations
    if labels.NAMESPACE_NOTARY_URL_ANNOTATION not in annotations:
        raise ValueError("notary URL is not set")
    timeout = annotations.get(labels.NAMESPACE_NOTARY_TIMEOUT_ANNOTATION, DEFAULT_USER_NOTARY_TIMEOUT)
    return UserValidationNotaryConfig(
        notary_url=annotations[labels.NAMESPACE_NOTARY_URL_ANNOTATION],
        allowed_registries=annotations.get(
            labels.NAMESPACE_ALLOWED_REGISTRIES_ANNOTATION, DEFAULT_USER_ALLOWED_REGISTRIES
        ),
        notary_timeout=parse_duration(timeout),
    )


def get_user_validation_strict_mode(ns: Namespace) -> bool:
    """Return the namespace's strict mode, defaulting to on."""
    value = ns.metadata.annotations.get(labels.NAMESPACE_STRICT_MODE_ANNOTATION)
    if value is None:
        return DEFAULT_USER_STRICT_MODE
    try:
        return parse_bool(value)
    except ValueError as exc:
        raise ValueError(
            f"failed to parse {labels.NAMESPACE_STRICT_MODE_ANNOTATION} annotation: {exc}"
        ) from exc


def is_supported_validation_label_value(value: str) -> bool:
    return value in _SUPPORTED_LABEL_VALUES


def is_changed_supported_validation_label_value(old: str, new: str) -> bool:
    """Whether the label changed; ``enabled`` and ``system`` count as the same."""
    if old == new:
        return False
    if old in _SYSTEM_LABEL_VALUES and new in _SYSTEM_LABEL_VALUES:
        return False
    return True


def is_validation_enabled_for_ns(ns: Namespace) -> bool:
    return is_supported_validation_label_value(
        ns.metadata.labels.get(labels.NAMESPACE_VALIDATION_LABEL, "")
    )


def is_user_validation_for_ns(ns: Namespace) -> bool:
    return ns.metadata.labels.get(labels.NAMESPACE_VALIDATION_LABEL) == labels.NAMESPACE_VALIDATION_USER


def new_user_validation_svc(ns: Namespace, factory: Callable[[str, str, timedelta], Any]) -> Any:
    """Build a pod validator from the namespace's user validation settings.

    ``factory`` is called with the notary URL, the allowed registries and the timeout.
    """
    cfg = get_user_validation_notary_config(ns)
    return factory(cfg.notary_url, cfg.allowed_registries, cfg.notary_timeout)