"""Stack status model.

CloudFormation reports stack status as a string; the operator maps it to
a tagged enumeration with explicit terminal and stable members so the
create-or-update decision never matches on raw strings.
"""

from enum import Enum


class StackStatus(str, Enum):
    """Backend-reported stack status."""
    CREATE_IN_PROGRESS = 'CREATE_IN_PROGRESS'
    CREATE_FAILED = 'CREATE_FAILED'
    CREATE_COMPLETE = 'CREATE_COMPLETE'
    ROLLBACK_IN_PROGRESS = 'ROLLBACK_IN_PROGRESS'
    ROLLBACK_FAILED = 'ROLLBACK_FAILED'
    ROLLBACK_COMPLETE = 'ROLLBACK_COMPLETE'
    DELETE_IN_PROGRESS = 'DELETE_IN_PROGRESS'
    DELETE_FAILED = 'DELETE_FAILED'
    DELETE_COMPLETE = 'DELETE_COMPLETE'
    UPDATE_IN_PROGRESS = 'UPDATE_IN_PROGRESS'
    UPDATE_COMPLETE_CLEANUP_IN_PROGRESS = 'UPDATE_COMPLETE_CLEANUP_IN_PROGRESS'
    UPDATE_COMPLETE = 'UPDATE_COMPLETE'
    UPDATE_FAILED = 'UPDATE_FAILED'
    UPDATE_ROLLBACK_IN_PROGRESS = 'UPDATE_ROLLBACK_IN_PROGRESS'
    UPDATE_ROLLBACK_FAILED = 'UPDATE_ROLLBACK_FAILED'
    UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS = 'UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS'
    UPDATE_ROLLBACK_COMPLETE = 'UPDATE_ROLLBACK_COMPLETE'
    REVIEW_IN_PROGRESS = 'REVIEW_IN_PROGRESS'
    IMPORT_IN_PROGRESS = 'IMPORT_IN_PROGRESS'
    IMPORT_COMPLETE = 'IMPORT_COMPLETE'
    IMPORT_ROLLBACK_IN_PROGRESS = 'IMPORT_ROLLBACK_IN_PROGRESS'
    IMPORT_ROLLBACK_FAILED = 'IMPORT_ROLLBACK_FAILED'
    IMPORT_ROLLBACK_COMPLETE = 'IMPORT_ROLLBACK_COMPLETE'

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """No further automatic backend transition happens from this status."""
        return not self.value.endswith('_IN_PROGRESS')

    @property
    def is_failed(self) -> bool:
        """Terminal status that means the last operation did not succeed."""
        return self.is_terminal and (self.value.endswith('_FAILED') or 'ROLLBACK' in self.value)

    @property
    def is_stable(self) -> bool:
        """Existing stack that can take an update."""
        return self in _STABLE


_STABLE = frozenset({
    StackStatus.CREATE_COMPLETE,
    StackStatus.UPDATE_COMPLETE,
    StackStatus.UPDATE_ROLLBACK_COMPLETE,
    StackStatus.IMPORT_COMPLETE,
    StackStatus.IMPORT_ROLLBACK_COMPLETE,
})


class Operation(str, Enum):
    """Stack operation issued by the lifecycle manager."""
    CREATE = 'create'
    UPDATE = 'update'
    DELETE = 'delete'

    def __str__(self) -> str:
        return self.value

    @property
    def success_status(self) -> StackStatus:
        """The terminal status that means this operation succeeded."""
        return {
            Operation.CREATE: StackStatus.CREATE_COMPLETE,
            Operation.UPDATE: StackStatus.UPDATE_COMPLETE,
            Operation.DELETE: StackStatus.DELETE_COMPLETE,
        }[self]
