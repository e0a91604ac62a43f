"""Admission webhooks that mark pods with their image validation outcome and reject failed ones."""

from __future__ import annotations

import contextvars
import copy
import dataclasses
import enum
import json
import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Optional

from . import labels
from .cluster import Namespace, Pod
from .credentials import get_remote_pull_credentials
from .env import format_duration
from .logctx import bind_logger, current_logger, log_end_time
from .policy import (
    ValidationResult,
    ValidationStatus,
    get_user_validation_strict_mode,
    is_user_validation_for_ns,
    is_validation_enabled_for_ns,
    new_user_validation_svc,
)

DEFAULTING_PATH = "/defaulting/pods"
VALIDATION_PATH = "/validation/pods"
POD_TYPE = "Pod"

_STATUS_OK = 200
_STATUS_BAD_REQUEST = 400
_STATUS_FORBIDDEN = 403
_STATUS_INTERNAL_SERVER_ERROR = 500


class Operation(enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


@dataclass(frozen=True)
class AdmissionRequest:
    kind: str = ""
    object: bytes = b""
    operation: Optional[Operation] = None
    uid: str = ""
    namespace: str = ""
    name: str = ""


@dataclass(frozen=True)
class PatchOperation:
    operation: str
    path: str
    value: Any = None


@dataclass(frozen=True)
class AdmissionResponse:
    """The webhook's answer; ``code`` and ``message`` form the optional result status."""

    allowed: bool
    code: Optional[int] = None
    message: Optional[str] = None
    patches: Optional[list[PatchOperation]] = None

    @property
    def has_result(self) -> bool:
        return self.code is not None or self.message is not None


Handler = Callable[[AdmissionRequest], AdmissionResponse]
TimeoutHandler = Callable[[BaseException, AdmissionRequest], AdmissionResponse]


def allowed(message: str) -> AdmissionResponse:
    return AdmissionResponse(allowed=True, code=_STATUS_OK, message=message)


def denied(message: str) -> AdmissionResponse:
    return AdmissionResponse(allowed=False, code=_STATUS_FORBIDDEN, message=message)


def errored(code: int, error: BaseException | str) -> AdmissionResponse:
    return AdmissionResponse(allowed=False, code=code, message=str(error))


def _escape(key: str) -> str:
    return key.replace("~", "~0").replace("/", "~1")


def _diff(before: Any, after: Any, path: str, ops: list[PatchOperation]) -> None:
    if isinstance(before, dict) and isinstance(after, dict):
        for key, value in after.items():
            child = f"{path}/{_escape(key)}"
            if key not in before:
                ops.append(PatchOperation("add", child, copy.deepcopy(value)))
            else:
                _diff(before[key], value, child, ops)
        for key in before:
            if key not in after:
                ops.append(PatchOperation("remove", f"{path}/{_escape(key)}"))
    elif isinstance(before, list) and isinstance(after, list):
        common = min(len(before), len(after))
        for index, (old, new) in enumerate(zip(before[:common], after[:common])):
            _diff(old, new, f"{path}/{index}", ops)
        for index in range(common, len(after)):
            ops.append(PatchOperation("add", f"{path}/{index}", copy.deepcopy(after[index])))
        for index in reversed(range(len(after), len(before))):
            ops.append(PatchOperation("remove", f"{path}/{index}"))
    elif type(before) is not type(after) or before != after:
        ops.append(PatchOperation("replace", path, copy.deepcopy(after)))


def create_patch(original: Any, modified: Any) -> list[PatchOperation]:
    """Return the JSON patch operations that turn ``original`` into ``modified``."""
    ops: list[PatchOperation] = []
    _diff(original, modified, "", ops)
    return ops


def _patch_response(raw: bytes, pod: Pod) -> AdmissionResponse:
    try:
        original = json.loads(raw)
    except ValueError as exc:
        return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)
    return AdmissionResponse(allowed=True, patches=create_patch(original, pod.to_dict()))


def _decode_pod(request: AdmissionRequest) -> Pod:
    if not request.object:
        raise ValueError("there is no content to decode")
    return Pod.from_dict(json.loads(request.object))


def handle_with_logger(base_logger: logging.Logger, handler: Handler) -> Handler:
    """Run ``handler`` with a logger bound that carries the request identity."""

    def wrapped(request: AdmissionRequest) -> AdmissionResponse:
        logger = logging.LoggerAdapter(
            base_logger,
            {"req_id": request.uid, "namespace": request.namespace, "pod_name": request.name},
        )
        with bind_logger(logger):
            return handler(request)

    return wrapped


def handler_with_time_measure(handler: Handler) -> Handler:
    """Log when handling starts and how long it took."""

    def wrapped(request: AdmissionRequest) -> AdmissionResponse:
        current_logger().debug("request handling started")
        start = time.monotonic()
        try:
            return handler(request)
        finally:
            log_end_time("request handling finished", start)

    return wrapped


def handle_with_timeout(timeout: timedelta, handler: Handler, timeout_handler: TimeoutHandler) -> Handler:
    """Answer with ``timeout_handler`` when ``handler`` does not finish within ``timeout``."""

    def wrapped(request: AdmissionRequest) -> AdmissionResponse:
        outcome: dict[str, Any] = {}
        done = threading.Event()
        context = contextvars.copy_context()

        def run() -> None:
            try:
                outcome["response"] = context.run(handler, request)
            except BaseException as exc:  # re-raised in the caller's thread
                outcome["error"] = exc
            finally:
                done.set()

        threading.Thread(target=run, daemon=True).start()
        if not done.wait(max(timeout.total_seconds(), 0.0)):
            return timeout_handler(TimeoutError("context deadline exceeded"), request)
        if "error" in outcome:
            raise outcome["error"]
        return outcome["response"]

    return wrapped


def is_validation_needed_for_operation(operation: Optional[Operation]) -> bool:
    return operation is Operation.CREATE


def _pod_validation_label(pod: Pod) -> str:
    return pod.metadata.labels.get(labels.POD_VALIDATION_LABEL, "")


def _is_validation_enabled_for_pod_label(pod: Pod) -> bool:
    return _pod_validation_label(pod) not in (
        labels.VALIDATION_STATUS_FAILED,
        labels.VALIDATION_STATUS_PENDING,
    )


def _is_validation_needed(pod: Pod, ns: Namespace, operation: Optional[Operation]) -> bool:
    logger = current_logger()
    if not is_validation_enabled_for_ns(ns):
        logger.debug("pod validation skipped because validation for namespace is not enabled")
        return False
    if is_validation_needed_for_operation(operation):
        return True
    if not _is_validation_enabled_for_pod_label(pod):
        logger.debug(
            "pod validation skipped because pod checking is not enabled for the input validation label"
        )
        return False
    return True


def _remove_internal_annotation(annotations: dict[str, str]) -> bool:
    if labels.POD_VALIDATION_REJECT_ANNOTATION in annotations:
        del annotations[labels.POD_VALIDATION_REJECT_ANNOTATION]
        current_logger().debug("Internal Annotation deleted")
        return True
    return False


def _pod_markers(status: ValidationStatus, strict_mode: bool) -> tuple[str, str]:
    if status is ValidationStatus.NO_ACTION:
        return "", ""
    if status is ValidationStatus.INVALID:
        return labels.VALIDATION_STATUS_FAILED, labels.VALIDATION_REJECT
    if status is ValidationStatus.VALID:
        return labels.VALIDATION_STATUS_SUCCESS, ""
    if status is ValidationStatus.SERVICE_UNAVAILABLE:
        return labels.VALIDATION_STATUS_PENDING, labels.VALIDATION_REJECT if strict_mode else ""
    return labels.VALIDATION_STATUS_PENDING, ""


def _mark_pod(result: ValidationResult, pod: Pod, strict_mode: bool) -> Pod:
    label, annotation = _pod_markers(result.status, strict_mode)
    current_logger().info("pod was labeled: `%s` and annotated: `%s`", label, annotation)
    if not label and not annotation:
        return pod
    marked = copy.deepcopy(pod)
    if label:
        marked.metadata.labels[labels.POD_VALIDATION_LABEL] = label
    _remove_internal_annotation(marked.metadata.annotations)
    if annotation:
        marked.metadata.annotations[labels.POD_VALIDATION_REJECT_ANNOTATION] = annotation
        if result.invalid_images is not None:
            marked.metadata.annotations[labels.INVALID_IMAGES_ANNOTATION] = ", ".join(result.invalid_images)
    return marked


class DefaultingWebhook:
    """Validates pod images on admission and patches the outcome into labels and annotations.

    Validators have ``validate_pod(pod, namespace, credentials)``; the user validation
    factory is called with the notary URL, the allowed registries and the timeout.
    """

    def __init__(
        self,
        client: Any,
        reader: Any,
        system_validator: Any,
        user_validation_svc_factory: Optional[Callable[[str, str, timedelta], Any]],
        timeout: timedelta,
        strict_mode: bool,
        logger: logging.Logger,
    ) -> None:
        self.client = client
        self.reader = reader
        self.system_validator = system_validator
        self.user_validation_svc_factory = user_validation_svc_factory
        self.timeout = timeout
        self.strict_mode = strict_mode
        self.base_logger = logger

    def handle(self, request: AdmissionRequest) -> AdmissionResponse:
        return handle_with_logger(
            self.base_logger,
            handler_with_time_measure(handle_with_timeout(self.timeout, self._handle, self.handle_timeout)),
        )(request)

    def _handle(self, request: AdmissionRequest) -> AdmissionResponse:
        if request.kind != POD_TYPE:
            return errored(
                _STATUS_BAD_REQUEST, f"Invalid request kind:{request.kind}, expected:{POD_TYPE}"
            )
        try:
            pod = _decode_pod(request)
        except (ValueError, TypeError) as exc:
            return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)

        logger = current_logger()
        logger.debug(
            "validation started operation=%s label=%s",
            request.operation.value if request.operation else "",
            _pod_validation_label(pod),
        )

        try:
            ns = self.client.get(Namespace, "", pod.metadata.namespace)
        except Exception as exc:
            return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)

        if not _is_validation_needed(pod, ns, request.operation):
            return self._clean_annotation_if_needed(pod, ns, request)

        validator = self.system_validator
        if is_user_validation_for_ns(ns):
            try:
                validator = new_user_validation_svc(ns, self.user_validation_svc_factory)
            except Exception as exc:
                return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)

        try:
            credentials = get_remote_pull_credentials(self.reader, pod)
            result = validator.validate_pod(pod, ns, credentials)
        except Exception as exc:
            return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)

        if result.status is ValidationStatus.NO_ACTION:
            return allowed("validation is not enabled for pod")
        return self._create_response(request, result, pod, ns)

    @staticmethod
    def _clean_annotation_if_needed(pod: Pod, ns: Namespace, request: AdmissionRequest) -> AdmissionResponse:
        if not is_validation_enabled_for_ns(ns):
            return allowed("validation is not needed for pod")
        if _remove_internal_annotation(pod.metadata.annotations):
            return _patch_response(request.object, pod)
        return allowed("validation is not needed for pod")

    def handle_timeout(self, error: BaseException, request: AdmissionRequest) -> AdmissionResponse:
        """Answer a request whose validation ran out of time as if the service were unavailable."""
        try:
            pod = _decode_pod(request)
        except (ValueError, TypeError) as exc:
            return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)

        message = f"request exceeded desired timeout: {format_duration(self.timeout)}, reason: {error}"
        current_logger().info(message)

        try:
            ns = self.client.get(Namespace, "", pod.metadata.namespace)
        except Exception as exc:
            return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)

        response = self._create_response(
            request, ValidationResult(status=ValidationStatus.SERVICE_UNAVAILABLE), pod, ns
        )
        return dataclasses.replace(response, code=None, message=message)

    def _create_response(
        self, request: AdmissionRequest, result: ValidationResult, pod: Pod, ns: Namespace
    ) -> AdmissionResponse:
        strict_mode = self.strict_mode
        if is_user_validation_for_ns(ns):
            try:
                strict_mode = get_user_validation_strict_mode(ns)
            except ValueError as exc:
                return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)
        marked = _mark_pod(result, pod, strict_mode)
        current_logger().info("pod was validated result=%s", result)
        return _patch_response(request.object, marked)


class ValidationWebhook:
    """Denies pods that the defaulting webhook marked for rejection."""

    def __init__(self, logger: logging.Logger) -> None:
        self.base_logger = logger

    def handle(self, request: AdmissionRequest) -> AdmissionResponse:
        return handle_with_logger(self.base_logger, handler_with_time_measure(self._handle))(request)

    def _handle(self, request: AdmissionRequest) -> AdmissionResponse:
        if request.operation is Operation.DELETE:
            return allowed("")
        if request.kind != POD_TYPE:
            return errored(
                _STATUS_BAD_REQUEST, f"Invalid request kind: {request.kind}, expected: {POD_TYPE}"
            )
        try:
            pod = _decode_pod(request)
        except (ValueError, TypeError) as exc:
            return errored(_STATUS_INTERNAL_SERVER_ERROR, exc)

        annotations = pod.metadata.annotations
        if not annotations:
            return allowed("nothing to do")
        if annotations.get(labels.POD_VALIDATION_REJECT_ANNOTATION) != labels.VALIDATION_REJECT:
            return allowed("nothing to do")

        current_logger().info("Pod images validation failed")
        if labels.INVALID_IMAGES_ANNOTATION in annotations:
            return denied(f"Pod images {annotations[labels.INVALID_IMAGES_ANNOTATION]} validation failed")
        return denied("Pod images validation failed")