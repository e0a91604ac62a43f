"""Registry credentials read from a pod's image pull secrets."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Protocol

from .cluster import NotFoundError, Pod, Secret

_AUTH_FIELDS = {
    "username": "username",
    "password": "password",
    "auth": "auth",
    "email": "email",
    "serveraddress": "server_address",
    "identitytoken": "identity_token",
    "registrytoken": "registry_token",
}

_CONFIG_KEYS = (".dockerconfigjson", "config.json")


class _Reader(Protocol):
    def get(self, kind: type, namespace: str, name: str) -> Any: ...


@dataclass(frozen=True)
class AuthConfig:
    """Credentials for one registry, as found in a docker config file."""

    username: str = ""
    password: str = ""
    auth: str = ""
    email: str = ""
    server_address: str = ""
    identity_token: str = ""
    registry_token: str = ""

    @classmethod
    def _from_json(cls, data: Any) -> "AuthConfig":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("failed to unmarshal dockerconfigjson: auth entry is not an object")
        values: dict[str, str] = {}
        for key, value in data.items():
            name = _AUTH_FIELDS.get(key.lower())
            if name is None or value is None:
                continue
            if not isinstance(value, str):
                raise ValueError(f"failed to unmarshal dockerconfigjson: {key} is not a string")
            values[name] = value
        return cls(**values)


def _docker_config(secret: Secret) -> bytes:
    for key in _CONFIG_KEYS:
        if key in secret.data:
            return secret.data[key]
    raise ValueError("no dockerconfigjson or config.json found in secret")


def _parse_auths(raw: bytes) -> dict[str, Any]:
    try:
        document = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError(f"failed to unmarshal dockerconfigjson: {exc}") from exc
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ValueError("failed to unmarshal dockerconfigjson: not an object")
    auths = document.get("auths")
    if auths is None:
        return {}
    if not isinstance(auths, dict):
        raise ValueError("failed to unmarshal dockerconfigjson: auths is not an object")
    return auths


def _registry_host(auth_repo: str) -> str:
    return auth_repo.split("://")[-1].rstrip("/")


def get_remote_pull_credentials(reader: _Reader, pod: Pod) -> dict[str, AuthConfig]:
    """Collect registry credentials from the pod's image pull secrets.

    A missing secret ends the lookup with what was gathered so far.
    """
    credentials: dict[str, AuthConfig] = {}
    namespace = pod.metadata.namespace
    for secret_name in pod.image_pull_secrets:
        try:
            secret = reader.get(Secret, namespace, secret_name)
        except NotFoundError:
            return credentials
        except Exception as exc:
            raise RuntimeError(f"can't get {namespace}/{secret_name}: {exc}") from exc
        for auth_repo, entry in _parse_auths(_docker_config(secret)).items():
            credentials[_registry_host(auth_repo)] = AuthConfig._from_json(entry)
    return credentials