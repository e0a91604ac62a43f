"""Label and annotation keys and values used to mark pods and namespaces."""

# Annotations passed between the defaulting and the validating webhook.
POD_VALIDATION_REJECT_ANNOTATION = "pods.warden.kyma-project.io/validate-reject"
INVALID_IMAGES_ANNOTATION = "pods.warden.kyma-project.io/invalid-images"
VALIDATION_REJECT = "reject"

# Pod validation label and its values.
POD_VALIDATION_LABEL = "pods.warden.kyma-project.io/validate"
VALIDATION_STATUS_SUCCESS = "success"
VALIDATION_STATUS_FAILED = "failed"
VALIDATION_STATUS_PENDING = "pending"

# Namespace validation label and its supported values.
NAMESPACE_VALIDATION_LABEL = "namespaces.warden.kyma-project.io/validate"
NAMESPACE_VALIDATION_ENABLED = "enabled"
NAMESPACE_VALIDATION_SYSTEM = "system"
NAMESPACE_VALIDATION_USER = "user"

# Namespace annotations configuring user validation.
NAMESPACE_NOTARY_URL_ANNOTATION = "namespaces.warden.kyma-project.io/notary-url"
NAMESPACE_ALLOWED_REGISTRIES_ANNOTATION = "namespaces.warden.kyma-project.io/allowed-registries"
NAMESPACE_NOTARY_TIMEOUT_ANNOTATION = "namespaces.warden.kyma-project.io/notary-timeout"
NAMESPACE_STRICT_MODE_ANNOTATION = "namespaces.warden.kyma-project.io/strict-mode"