"""An in-memory model of the cluster objects the controllers work on."""

from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, ClassVar, Mapping, Union


@dataclass
class ObjectMeta:
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    resource_version: str = ""

    def _to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.name:
            data["name"] = self.name
        if self.namespace:
            data["namespace"] = self.namespace
        if self.resource_version:
            data["resourceVersion"] = self.resource_version
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        return data

    @classmethod
    def _from_dict(cls, data: Mapping[str, Any]) -> "ObjectMeta":
        return cls(
            name=data.get("name") or "",
            namespace=data.get("namespace") or "",
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            resource_version=data.get("resourceVersion") or "",
        )


@dataclass
class Container:
    name: str = ""
    image: str = ""


@dataclass
class Pod:
    KIND: ClassVar[str] = "Pod"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    containers: list[Container] = field(default_factory=list)
    init_containers: list[Container] = field(default_factory=list)
    image_pull_secrets: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the pod in its JSON wire form."""

        def container(c: Container) -> dict[str, Any]:
            data: dict[str, Any] = {"name": c.name}
            if c.image:
                data["image"] = c.image
            return data

        spec: dict[str, Any] = {}
        if self.init_containers:
            spec["initContainers"] = [container(c) for c in self.init_containers]
        spec["containers"] = [container(c) for c in self.containers]
        if self.image_pull_secrets:
            spec["imagePullSecrets"] = [{"name": name} for name in self.image_pull_secrets]
        return {"metadata": self.metadata._to_dict(), "spec": spec, "status": {}}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Pod":
        """Build a pod from its JSON wire form."""
        if not isinstance(data, Mapping):
            raise TypeError("pod must be a mapping")
        spec = data.get("spec") or {}

        def containers(items: Any) -> list[Container]:
            return [Container(name=c.get("name") or "", image=c.get("image") or "") for c in items or []]

        return cls(
            metadata=ObjectMeta._from_dict(data.get("metadata") or {}),
            containers=containers(spec.get("containers")),
            init_containers=containers(spec.get("initContainers")),
            image_pull_secrets=[ref.get("name") or "" for ref in spec.get("imagePullSecrets") or []],
        )


@dataclass
class Namespace:
    KIND: ClassVar[str] = "Namespace"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)


@dataclass
class Secret:
    KIND: ClassVar[str] = "Secret"

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    data: dict[str, bytes] = field(default_factory=dict)


Object = Union[Pod, Namespace, Secret]


@dataclass(frozen=True)
class ReconcileResult:
    requeue: bool = False
    requeue_after: timedelta = timedelta(0)


class NotFoundError(LookupError):
    """Raised when an object does not exist in the cluster."""


def _apply_diff(target: dict[str, str], before: Mapping[str, str], after: Mapping[str, str]) -> None:
    for key in before.keys() - after.keys():
        target.pop(key, None)
    for key, value in after.items():
        if before.get(key) != value:
            target[key] = value


class InMemoryClient:
    """A cluster client that keeps objects in memory and hands out copies."""

    def __init__(self, objects: list[Object] | None = None) -> None:
        self._store: dict[tuple[type, str, str], Object] = {}
        self._versions = itertools.count(1)
        for obj in objects or []:
            self.create(obj)

    @staticmethod
    def _key(obj: Object) -> tuple[type, str, str]:
        return type(obj), obj.metadata.namespace, obj.metadata.name

    def get(self, kind: type, namespace: str, name: str) -> Object:
        """Return a copy of the stored object, or raise NotFoundError."""
        try:
            return copy.deepcopy(self._store[(kind, namespace or "", name)])
        except KeyError:
            raise NotFoundError(f'{kind.KIND} "{name}" not found') from None

    def create(self, obj: Object) -> Object:
        """Store a new object; raise ValueError if it already exists."""
        key = self._key(obj)
        if key in self._store:
            raise ValueError(f'{obj.KIND} "{obj.metadata.name}" already exists')
        obj.metadata.resource_version = str(next(self._versions))
        self._store[key] = copy.deepcopy(obj)
        return copy.deepcopy(obj)

    def delete(self, obj: Object) -> None:
        """Remove an object, or raise NotFoundError."""
        try:
            del self._store[self._key(obj)]
        except KeyError:
            raise NotFoundError(f'{obj.KIND} "{obj.metadata.name}" not found') from None

    def list_pods(self, namespace: str) -> list[Pod]:
        """Return copies of the pods in ``namespace``, ordered by name."""
        pods = [
            obj
            for (kind, ns, _), obj in self._store.items()
            if kind is Pod and ns == namespace
        ]
        return [copy.deepcopy(pod) for pod in sorted(pods, key=lambda p: p.metadata.name)]

    def patch(self, obj: Object, original: Object) -> Object:
        """Apply the label and annotation changes from ``original`` to ``obj``."""
        key = self._key(obj)
        current = self._store.get(key)
        if current is None:
            raise NotFoundError(f'{obj.KIND} "{obj.metadata.name}" not found')
        _apply_diff(current.metadata.labels, original.metadata.labels, obj.metadata.labels)
        _apply_diff(current.metadata.annotations, original.metadata.annotations, obj.metadata.annotations)
        current.metadata.resource_version = str(next(self._versions))
        return copy.deepcopy(current)