"""
Provisioner errors.

Recoverable errors are the only ones the retry/skip/abort protocol handles;
everything else propagates to the caller untouched.
"""


class ProvisionerError(Exception):
    """Base exception for all provisioner errors."""
    pass


class ConfigurationError(ProvisionerError):
    """Errors in a provision template or in settings."""
    pass


class PreconditionError(ProvisionerError):
    """The provision is not in a state that allows the requested operation."""
    pass


class RecoverableError(ProvisionerError):
    """Transient failure that an operator may retry, skip or abort."""
    pass


class LoopError(RecoverableError):
    """A step must be run again (still running VMs, failed refresh...)."""
    pass


class RemoteError(RecoverableError):
    """A call against the control plane or a driver failed."""
    pass


class PollTimeoutError(RecoverableError):
    """A wait loop did not observe the expected status in time."""
    pass


class StoreError(ProvisionerError):
    """Errors raised by a document store."""
    pass


class DocumentNotFoundError(StoreError):
    """The document does not exist in the store."""
    pass


class StaleDocumentError(StoreError):
    """The document was written with an outdated version."""
    pass


class DocumentLockedError(StoreError):
    """The document is already locked by another owner."""
    pass


class PipelineError(ProvisionerError):
    """A pipeline step ended without completing."""

    def __init__(self, message: str, label: str | None = None, outcome=None):
        super().__init__(message)
        self.label = label
        self.outcome = outcome


class StepSkipped(PipelineError):
    """The operator skipped a step that the rest of the pipeline needs."""
    pass


class ProvisionAborted(PipelineError):
    """The operator asked for cleanup; the provision was torn down."""
    pass


class DeletionError(ProvisionerError):
    """Deletion stopped before every object was removed."""
    pass
