"""Controller that marks all pods of a namespace pending when its validation settings change."""

from __future__ import annotations

import copy
import logging
import uuid
from typing import Any, Callable, Mapping

from . import labels
from .cluster import InMemoryClient, Namespace, NotFoundError, Pod, ReconcileResult
from .policy import is_changed_supported_validation_label_value, is_supported_validation_label_value

_USER_VALIDATION_ANNOTATIONS = (
    labels.NAMESPACE_NOTARY_URL_ANNOTATION,
    labels.NAMESPACE_ALLOWED_REGISTRIES_ANNOTATION,
    labels.NAMESPACE_NOTARY_TIMEOUT_ANNOTATION,
    labels.NAMESPACE_STRICT_MODE_ANNOTATION,
)

_default_logger = logging.getLogger(__name__)


def label_with_validation_pending(pod: Pod, patch: Callable[[Pod, Pod], Any]) -> Any:
    """Patch ``pod`` with the pending validation label unless it already has it.

    ``patch`` is called with the labelled copy and the original pod; its result is
    returned, or None when no patch was needed.
    """
    if pod.metadata.labels.get(labels.POD_VALIDATION_LABEL) == labels.VALIDATION_STATUS_PENDING:
        return None
    pod_copy = copy.deepcopy(pod)
    pod_copy.metadata.labels[labels.POD_VALIDATION_LABEL] = labels.VALIDATION_STATUS_PENDING
    return patch(pod_copy, pod)


def validation_label_updated(
    old_labels: Mapping[str, str], new_labels: Mapping[str, str], logger: logging.Logger
) -> bool:
    """Whether the namespace validation label changed to a supported value."""
    old_value = old_labels.get(labels.NAMESPACE_VALIDATION_LABEL, "")
    new_value = new_labels.get(labels.NAMESPACE_VALIDATION_LABEL, "")
    if not is_supported_validation_label_value(new_value):
        logger.debug("validation label: %s is removed or unsupported", labels.NAMESPACE_VALIDATION_LABEL)
        return False
    if not is_changed_supported_validation_label_value(old_value, new_value):
        logger.debug("validation label: %s value was not changed", labels.NAMESPACE_VALIDATION_LABEL)
        return False
    logger.debug(
        "validation label: %s was changed and reconciliation is needed", labels.NAMESPACE_VALIDATION_LABEL
    )
    return True


def user_validation_annotations_updated(
    old_annotations: Mapping[str, str],
    new_annotations: Mapping[str, str],
    new_labels: Mapping[str, str],
    logger: logging.Logger,
) -> bool:
    """Whether a user validation annotation changed in a namespace using user validation."""
    if new_labels.get(labels.NAMESPACE_VALIDATION_LABEL) != labels.NAMESPACE_VALIDATION_USER:
        return False
    for key in _USER_VALIDATION_ANNOTATIONS:
        if old_annotations.get(key, "") != new_annotations.get(key, ""):
            logger.debug("validation annotation: %s was changed and reconciliation is needed", key)
            return True
    return False


class NamespaceEventFilter:
    """Decides which namespace events reach the reconciler: only relevant updates."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _default_logger

    def create(self, obj: Namespace) -> bool:
        self._logger.debug("omitting incoming create namespace event")
        return False

    def delete(self, obj: Namespace) -> bool:
        self._logger.debug("omitting incoming delete namespace event")
        return False

    def generic(self, obj: Namespace) -> bool:
        self._logger.debug("omitting incoming generic namespace event")
        return False

    def update(self, old: Namespace, new: Namespace) -> bool:
        old_labels = old.metadata.labels
        new_labels = new.metadata.labels
        old_annotations = old.metadata.annotations
        new_annotations = new.metadata.annotations
        self._logger.debug(
            "incoming update namespace event oldLabels=%s newLabels=%s oldAnnotations=%s newAnnotations=%s",
            old_labels,
            new_labels,
            old_annotations,
            new_annotations,
        )
        needed = validation_label_updated(old_labels, new_labels, self._logger) or (
            user_validation_annotations_updated(old_annotations, new_annotations, new_labels, self._logger)
        )
        if not needed:
            self._logger.debug("omitting update namespace event")
        return needed


class NamespaceReconciler:
    """Labels every pod of a validated namespace as pending validation."""

    def __init__(self, client: InMemoryClient, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.logger = logger or _default_logger

    def reconcile(self, name: str) -> ReconcileResult:
        logger = logging.LoggerAdapter(self.logger, {"req": name, "req_id": str(uuid.uuid4())})
        logger.info("reconciliation started")

        try:
            namespace = self.client.get(Namespace, "", name)
        except NotFoundError:
            logger.error("unable to fetch namespace, requeueing")
            return ReconcileResult(requeue=True)

        if not is_supported_validation_label_value(
            namespace.metadata.labels.get(labels.NAMESPACE_VALIDATION_LABEL, "")
        ):
            logger.debug(
                "validation label: %s not found or not supported value, omitting update namespace event",
                labels.NAMESPACE_VALIDATION_LABEL,
            )
            return ReconcileResult()

        try:
            pods = self.client.list_pods(name)
        except Exception as exc:
            raise RuntimeError(f"while fetching list of pods: {exc}") from exc
        logger.debug("pod fetching succeeded pod-count=%d", len(pods))

        labelled = 0
        for index, pod in enumerate(pods):
            try:
                label_with_validation_pending(pod, self.client.patch)
            except Exception as exc:
                logger.error("pod labeling error for %s/%s: %s", pod.metadata.namespace, pod.metadata.name, exc)
                continue
            labelled += 1
            logger.debug("pod labeling succeeded %d/%d", index, len(pods))

        logger.debug("%d/%d pod[s] labeled", labelled, len(pods))
        result = ReconcileResult(requeue=len(pods) != labelled)
        logger.debug("reconciliation finished result=%s", result)
        return result