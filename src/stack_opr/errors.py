"""Operator error taxonomy.

Stack-level errors halt the graph walk and carry the stack name and the
last status observed from the backend. Configuration problems raise
config.ConfigError instead, before any backend call for the node.
PurgeObjectError is recoverable: the purger logs it and moves on.
"""

from typing import Optional


class StackError(Exception):
    """Base exception for stack operation errors."""

    def __init__(self, stack_name: str, message: str, status: Optional[object] = None):
        self.stack_name = stack_name
        self.message = message
        self.status = str(status) if status is not None else None
        detail = f" (last status: {self.status})" if self.status else ''
        super().__init__(f"Stack '{stack_name}': {message}{detail}")


class StackConflictError(StackError):
    """Stack exists in a state that can be neither updated nor created."""


class StackOperationError(StackError):
    """Create/update/delete reached a failed terminal status, or the call was rejected."""


class StackTimeoutError(StackError):
    """Stack did not reach a terminal status within the wait ceiling."""


class WalkInterrupted(StackError):
    """Walk stopped at a node boundary after an interrupt."""


class ConfirmationAborted(Exception):
    """Destroy confirmation was not given."""


class PurgeObjectError(Exception):
    """A single object version could not be deleted."""

    def __init__(self, bucket: str, key: str, version_id: Optional[str], reason: str):
        self.bucket = bucket
        self.key = key
        self.version_id = version_id
        self.reason = reason
        super().__init__(f"s3://{bucket}/{key} (version {version_id}): {reason}")
