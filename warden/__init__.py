"""Image validation policy for pods: admission webhooks, reconcilers and configuration."""

__version__ = "0.1.0"