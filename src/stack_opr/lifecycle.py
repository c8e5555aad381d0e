"""Single-stack lifecycle: create-or-update and delete with blocking waits.

The backend owns stack status; the manager only observes it. apply()
decides between create, update and no-op from the current status, and
delete is skipped for stacks that do not exist. Failed terminal statuses
are raised, never retried.
"""

import logging
from typing import Optional

from stack_opr.client import OperationHandle, ProvisioningClient
from stack_opr.errors import StackConflictError, StackOperationError
from stack_opr.state import Stack
from stack_opr.status import Operation, StackStatus

logger = logging.getLogger(__name__)

# Wait ceiling per stack operation (EKS control planes take ~15 minutes)
DEFAULT_TIMEOUT = 3600


class StackLifecycleManager:
    """Drives one stack at a time through the provisioning backend."""

    def __init__(self, client: ProvisioningClient, timeout: float = DEFAULT_TIMEOUT):
        """Initialize the manager.

        Args:
            client: Provisioning backend
            timeout: Seconds to wait for each operation to reach a terminal status
        """
        self.client = client
        self.timeout = timeout

    def apply(self, stack: Stack) -> StackStatus:
        """Create the stack if missing, update it if stable.

        An update with nothing to change is a success and leaves the
        stack's status as it was. On success the stack's outputs are
        fetched once and cached on the record.

        Args:
            stack: Stack record with resolved template and parameters

        Returns:
            Terminal status of the stack

        Raises:
            StackConflictError: Stack exists in a status that cannot be updated
            StackOperationError: Operation ended in a failed status
            StackTimeoutError: Operation did not finish within the timeout
        """
        current = self.client.describe(stack.name)
        stack.status = current

        if current is None or current == StackStatus.DELETE_COMPLETE:
            logger.info(f"[apply] {stack.name}: creating")
            handle = self.client.create(
                stack.name, stack.template, stack.parameters, stack.capabilities)
            stack.outcome = 'created'
        elif current.is_stable:
            logger.info(f"[apply] {stack.name}: updating (current status {current})")
            stack.invalidate_outputs()
            handle = self.client.update(
                stack.name, stack.template, stack.parameters, stack.capabilities)
            if handle is None:
                logger.info(f"[apply] {stack.name}: no updates to perform")
                stack.outcome = 'unchanged'
                stack.outputs = self.client.get_outputs(stack.name)
                return current
            stack.outcome = 'updated'
        elif current.is_failed:
            raise StackConflictError(
                stack.name, "stack is in a failed state, destroy it before applying", current)
        else:
            raise StackConflictError(
                stack.name, "stack is not in a state that can be created or updated", current)

        final = self._wait(stack, handle)
        stack.outputs = self.client.get_outputs(stack.name)
        logger.info(f"[apply] {stack.name}: {final}")
        return final

    def prepare_destroy(self, stack: Stack) -> Optional[StackStatus]:
        """Check that the stack can be deleted, without deleting it.

        Returns:
            Current status, or None if the stack does not exist

        Raises:
            StackConflictError: Stack has a create or update in flight
        """
        current = self.client.describe(stack.name)
        stack.status = current
        if current is None or current == StackStatus.DELETE_COMPLETE:
            return None
        if current != StackStatus.DELETE_IN_PROGRESS and not current.is_terminal:
            raise StackConflictError(
                stack.name, "stack has an operation in progress, cannot delete", current)
        return current

    def destroy(self, stack: Stack) -> StackStatus:
        """Delete the stack and wait for it to disappear.

        A stack that does not exist is already destroyed; delete is not
        called. A delete already in progress is waited on, not reissued.

        Args:
            stack: Stack record

        Returns:
            DELETE_COMPLETE

        Raises:
            StackConflictError: Stack has a create or update in flight
            StackOperationError: Delete ended in DELETE_FAILED
            StackTimeoutError: Delete did not finish within the timeout
        """
        current = self.prepare_destroy(stack)

        if current is None:
            logger.info(f"[destroy] {stack.name}: does not exist, nothing to do")
            stack.outcome = 'absent'
            stack.status = None
            return StackStatus.DELETE_COMPLETE

        if current == StackStatus.DELETE_IN_PROGRESS:
            logger.info(f"[destroy] {stack.name}: delete already in progress, waiting")
            handle = OperationHandle(stack.name, Operation.DELETE)
        else:
            logger.info(f"[destroy] {stack.name}: deleting (current status {current})")
            handle = self.client.delete(stack.name)

        stack.invalidate_outputs()
        final = self._wait(stack, handle)
        stack.outcome = 'destroyed'
        logger.info(f"[destroy] {stack.name}: {final}")
        return final

    def _wait(self, stack: Stack, handle: OperationHandle) -> StackStatus:
        final = self.client.await_terminal(handle, self.timeout)
        stack.status = final
        if final != handle.operation.success_status:
            raise StackOperationError(stack.name, f"{handle.operation} failed", final)
        return final
