# warden

`warden` decides whether the container images of a pod may run, and keeps
pods marked with the outcome of that check. It is a library: you supply the
image validator and the cluster client, and `warden` applies the policy.

## What is in the package

- `warden.admission`: the admission webhooks.
  - `DefaultingWebhook` validates a pod's images on admission and answers
    with a JSON patch (a list of `PatchOperation`) that sets the pod
    validation label to `success`, `failed` or `pending` and, where the pod
    must be refused, adds a reject annotation (plus the list of invalid
    images when the validator reports them). If validation does not finish
    within the webhook's timeout, the pod is marked `pending`, and in strict
    mode also given the reject annotation.
  - `ValidationWebhook` denies pods that carry the reject annotation and
    allows everything else; delete requests are always allowed.
  - `allowed`, `denied`, `errored`, `create_patch` and the handler wrappers
    `handle_with_logger`, `handler_with_time_measure` and
    `handle_with_timeout`.
- `warden.pod_controller`: `PodReconciler` re-validates a pod and relabels it;
  `should_handle_create` and `should_handle_update` decide which pod events
  are worth a reconcile. `are_images_changed`, `pod_images` and
  `label_for_validation_result` are available on their own.
- `warden.namespace_controller`: `NamespaceReconciler` labels every pod of a
  validated namespace as `pending`; `NamespaceEventFilter` passes only the
  namespace updates that switch validation on, change its mode, or change
  the user validation annotations of a namespace in user mode.
- `warden.policy`: `ValidationStatus`, `ValidationResult`, and the rules read
  from namespace labels and annotations: whether a namespace is validated,
  whether it uses its own (user) notary settings
  (`get_user_validation_notary_config`, default timeout `30s`), and its
  strict mode (`get_user_validation_strict_mode`, on by default).
- `warden.credentials`: `get_remote_pull_credentials` returns the registry
  credentials (`AuthConfig`) from a pod's image pull secrets, keyed by
  registry host with any scheme and trailing slash removed.
- `warden.cluster`: `Pod`, `Namespace`, `Secret`, `ObjectMeta`, `Container`,
  `ReconcileResult`, `NotFoundError`, and `InMemoryClient`.
- `warden.config`: `load` reads a YAML file over the defaults; `watch`
  reacts to changes next to that file.
- `warden.env`: `get`, `get_bool`, `parse_bool`, `parse_duration`,
  `format_duration`.
- `warden.logctx`: a logger bound to the current context (`bind_logger`,
  `current_logger`) and timing helpers (`log_start_time`, `log_end_time`).
- `warden.labels`: the label and annotation keys and values used on pods and
  namespaces.

## Validators

A validator is any object with
`validate_pod(pod, namespace, credentials)` returning a `ValidationResult`.
For namespaces in user mode a factory is called with the notary URL, the
allowed registries and the timeout taken from the namespace annotations, and
must return such a validator.

## Example

```python
import json
import logging
from datetime import timedelta

from warden import labels
from warden.admission import AdmissionRequest, DefaultingWebhook, Operation
from warden.cluster import Container, InMemoryClient, Namespace, ObjectMeta, Pod
from warden.policy import ValidationResult, ValidationStatus


class AcceptAll:
    def validate_pod(self, pod, namespace, credentials):
        return ValidationResult(ValidationStatus.VALID)


client = InMemoryClient([
    Namespace(metadata=ObjectMeta(
        name="apps",
        labels={labels.NAMESPACE_VALIDATION_LABEL: labels.NAMESPACE_VALIDATION_ENABLED},
    )),
])
pod = Pod(metadata=ObjectMeta(name="web", namespace="apps"),
          containers=[Container(name="web", image="nginx:1.27")])

webhook = DefaultingWebhook(client, client, AcceptAll(), None,
                            timedelta(seconds=2), False, logging.getLogger("warden"))
response = webhook.handle(AdmissionRequest(
    kind="Pod", object=json.dumps(pod.to_dict()).encode(), operation=Operation.CREATE))

assert response.allowed
# response.patches adds the pod validation label with the value "success"
```

## Configuration

```python
from warden.config import load

config = load("./hack/config.yaml")
print(config.admission.timeout, config.notary.url)
```

`load` raises an error when the path is empty, missing or unreadable, and
`ValueError` when a setting has the wrong type. Every setting the file leaves
out keeps its default (for example a 2 second admission timeout, port 8443,
and a 60 minute pod requeue interval).

`watch(file_path, logger, on_exit)` watches the directory of the file and
calls `on_exit(0)` on the first change (by default the process exits). It
returns the running watchdog observer.

Environment flags and durations are parsed the same way throughout:

```python
from warden.env import get_bool, parse_duration

add_owner_ref = get_bool("ADDMISSION_ADD_CERT_OWNER_REF")  # False when unset
timeout = parse_duration("30s")
```

`get_bool` raises `ValueError` on a value that is not a boolean.

## Working against a cluster

The controllers and webhooks talk to a small client interface: `get`,
`create`, `delete`, `list_pods` and `patch`. `InMemoryClient` implements it
entirely in memory; a lookup of a missing object raises `NotFoundError`.

## What the package does not do

- It has no command and no server: nothing listens for admission requests
  over HTTPS or runs the reconcilers in a loop; you call `handle` and
  `reconcile` yourself.
- It has no client for a real cluster API, and it does not create or manage
  webhook certificates.
- It does not check image signatures itself; the validators are supplied by
  the caller.