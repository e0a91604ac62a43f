"""Controller that validates pod images and labels pods with the outcome."""

from __future__ import annotations

import copy
import dataclasses
import logging
import uuid
from datetime import timedelta
from typing import Any, Callable

from . import labels
from .cluster import InMemoryClient, Namespace, NotFoundError, Pod, ReconcileResult
from .credentials import get_remote_pull_credentials
from .logctx import bind_logger
from .policy import (
    ValidationStatus,
    is_user_validation_for_ns,
    is_validation_enabled_for_ns,
    new_user_validation_svc,
)

_default_logger = logging.getLogger(__name__)

_STATUS_LABELS = {
    ValidationStatus.NO_ACTION: "",
    ValidationStatus.INVALID: labels.VALIDATION_STATUS_FAILED,
    ValidationStatus.VALID: labels.VALIDATION_STATUS_SUCCESS,
    ValidationStatus.SERVICE_UNAVAILABLE: labels.VALIDATION_STATUS_PENDING,
}


def label_for_validation_result(result: ValidationStatus) -> str:
    """Return the pod label value for a validation status, or '' for no action."""
    return _STATUS_LABELS.get(result, labels.VALIDATION_STATUS_PENDING)


def pod_images(pod: Pod) -> list[str]:
    """Return the images of the init containers followed by the containers."""
    return [c.image for c in pod.init_containers] + [c.image for c in pod.containers]


def are_images_changed(old_pod: Pod, new_pod: Pod) -> bool:
    """Whether the two pods use a different collection of images, ignoring order."""
    return sorted(pod_images(old_pod)) != sorted(pod_images(new_pod))


class PodReconciler:
    """Validates a pod's images and records the result in its validation label.

    Validators have ``validate_pod(pod, namespace, credentials)`` returning a
    ``ValidationResult``; the user validation factory is called with the notary URL,
    the allowed registries and the timeout.
    """

    def __init__(
        self,
        client: InMemoryClient,
        system_validator: Any,
        user_validation_svc_factory: Callable[[str, str, timedelta], Any] | None,
        requeue_after: timedelta = timedelta(minutes=60),
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.system_validator = system_validator
        self.user_validation_svc_factory = user_validation_svc_factory
        self.requeue_after = requeue_after
        self.logger = logger or _default_logger

    def reconcile(self, namespace: str, name: str) -> ReconcileResult:
        logger = logging.LoggerAdapter(
            self.logger, {"req": f"{namespace}/{name}", "req_id": str(uuid.uuid4())}
        )
        with bind_logger(logger):
            logger.debug("reconciliation started")
            try:
                pod = self.client.get(Pod, namespace, name)
            except NotFoundError:
                return ReconcileResult()

            status = self._check_pod(pod)

            result = ReconcileResult(requeue_after=self.requeue_after)
            if status is ValidationStatus.VALID:
                logger.info("pod validated successfully")
                result = ReconcileResult()
            elif status is ValidationStatus.INVALID:
                logger.info("pod validation failed")
                result = ReconcileResult()
            try:
                self._label_pod(pod, status)
            except Exception as exc:
                logger.info("pod labeling failed err=%s", exc)
                result = dataclasses.replace(result, requeue=True)
            return result

    def should_handle_create(self, pod: Pod) -> bool:
        return self._is_validation_enabled_for_ns(pod.metadata.namespace)

    def should_handle_update(self, old_pod: Pod, new_pod: Pod) -> bool:
        if old_pod.metadata.resource_version == new_pod.metadata.resource_version:
            return False
        if not self._is_validation_enabled_for_ns(new_pod.metadata.namespace):
            return False
        if are_images_changed(old_pod, new_pod):
            return True
        success = labels.VALIDATION_STATUS_SUCCESS
        return (
            old_pod.metadata.labels.get(labels.POD_VALIDATION_LABEL) != success
            or new_pod.metadata.labels.get(labels.POD_VALIDATION_LABEL) != success
        )

    def _check_pod(self, pod: Pod) -> ValidationStatus:
        ns = self.client.get(Namespace, "", pod.metadata.namespace)
        validator = self.system_validator
        if is_user_validation_for_ns(ns):
            validator = new_user_validation_svc(ns, self.user_validation_svc_factory)
        credentials = get_remote_pull_credentials(self.client, pod)
        return validator.validate_pod(pod, ns, credentials).status

    def _label_pod(self, pod: Pod, status: ValidationStatus) -> None:
        label = label_for_validation_result(status)
        if not label or pod.metadata.labels.get(labels.POD_VALIDATION_LABEL) == label:
            return
        out = copy.deepcopy(pod)
        out.metadata.labels[labels.POD_VALIDATION_LABEL] = label
        try:
            self.client.patch(out, pod)
        except NotFoundError:
            pass

    def _is_validation_enabled_for_ns(self, namespace: str) -> bool:
        try:
            ns = self.client.get(Namespace, "", namespace)
        except Exception:
            return False
        return is_validation_enabled_for_ns(ns)