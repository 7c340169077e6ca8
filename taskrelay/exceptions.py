"""Error taxonomy for the workflow coordinator."""

from __future__ import annotations


class TaskRelayError(RuntimeError):
    """Base class for coordinator failures."""


class WorkflowValidationError(TaskRelayError):
    """The workflow document is malformed and must be corrected by hand."""


class WorkflowNotFoundError(TaskRelayError):
    """No workflow document exists at the configured location."""


class TransitionError(TaskRelayError):
    """A step status change was rejected; the document is left unchanged."""


class StepNotFoundError(TransitionError):
    """The referenced step id does not exist in the workflow."""


class WorkflowClosedError(TransitionError):
    """The workflow is completed and accepts no further mutation."""


class ConcurrentModificationError(TaskRelayError):
    """The stored document changed since it was loaded.

    Always recoverable: reload and replay the whole load-modify-save cycle.
    """


class ConfigurationError(TaskRelayError):
    """The configuration file or environment overrides are invalid."""


class TaskRegistryError(TaskRelayError):
    """The task registry file cannot be read."""
