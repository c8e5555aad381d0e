"""Provisioning backend access.

ProvisioningClient is the narrow interface the operator needs from the
backend: stack describe/create/update/delete, blocking wait for a
terminal status, stack outputs, and the S3 object-version calls used to
purge buckets before their stack is deleted.

CloudFormationClient implements it over boto3.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, runtime_checkable

import boto3
from botocore.exceptions import ClientError

from common import client_error_code
from stack_opr.errors import (
    PurgeObjectError,
    StackConflictError,
    StackOperationError,
    StackTimeoutError,
)
from stack_opr.status import Operation, StackStatus

logger = logging.getLogger(__name__)

# Message CloudFormation returns from update_stack when the template and
# parameters match what is deployed
NO_UPDATES_MESSAGE = 'No updates are to be performed'

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000


@dataclass(frozen=True)
class OperationHandle:
    """An in-flight stack operation.

    Attributes:
        stack_name: Stack the operation was issued against
        operation: create, update or delete
        stack_id: Backend stack ID (lets delete polling see DELETE_COMPLETE)
    """
    stack_name: str
    operation: Operation
    stack_id: Optional[str] = None


@dataclass(frozen=True)
class ObjectVersion:
    """One entry of a versioned bucket listing.

    Attributes:
        key: Object key
        version_id: Version ID ('null' for objects written before versioning)
        is_delete_marker: True for delete markers, False for payload versions
    """
    key: str
    version_id: str
    is_delete_marker: bool = False


@runtime_checkable
class ProvisioningClient(Protocol):
    """Protocol for the provisioning backend."""

    def describe(self, name: str) -> Optional[StackStatus]:
        """Current status, or None if the stack does not exist."""

    def create(self, name: str, template: str, parameters: dict[str, str],
               capabilities: list[str]) -> OperationHandle:
        """Issue a create."""

    def update(self, name: str, template: str, parameters: dict[str, str],
               capabilities: list[str]) -> Optional[OperationHandle]:
        """Issue an update. None means there were no changes to apply."""

    def delete(self, name: str) -> OperationHandle:
        """Issue a delete."""

    def await_terminal(self, handle: OperationHandle, timeout: float) -> StackStatus:
        """Block until the stack reaches a terminal status."""

    def get_outputs(self, name: str) -> dict[str, str]:
        """All outputs of a stack (empty if it does not exist)."""

    def get_output(self, name: str, key: str) -> Optional[str]:
        """One output value, or None."""

    def bucket_exists(self, bucket: str) -> bool:
        """True if the bucket exists."""

    def list_object_versions(self, bucket: str) -> list[ObjectVersion]:
        """All object versions and delete markers in a bucket."""

    def delete_object_version(self, bucket: str, key: str, version_id: str) -> None:
        """Delete one object version or delete marker."""

    def remove_remaining_objects(self, bucket: str) -> int:
        """Delete whatever the plain object listing still returns."""


def _error_message(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Message', str(e))


def _is_missing_stack(e: ClientError) -> bool:
    return client_error_code(e) == 'ValidationError' and 'does not exist' in _error_message(e)


class CloudFormationClient:
    """ProvisioningClient backed by the CloudFormation and S3 APIs."""

    def __init__(
        self,
        region: str,
        poll_interval: float = 15.0,
        session: Optional[boto3.session.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the client.

        Args:
            region: AWS region
            poll_interval: Seconds between describe calls while waiting
            session: boto3 session (default: new session for region)
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        session = session or boto3.session.Session(region_name=region)
        self.region = region
        self.cfn = session.client('cloudformation', region_name=region)
        self.s3 = session.client('s3', region_name=region)
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock

    # -------------------------------------------------------------------------
    # Stacks
    # -------------------------------------------------------------------------

    def _describe_stack(self, name: str) -> Optional[dict]:
        try:
            resp = self.cfn.describe_stacks(StackName=name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise StackOperationError(name, f"describe failed: {_error_message(e)}")
        stacks = resp.get('Stacks', [])
        return stacks[0] if stacks else None

    def describe(self, name: str) -> Optional[StackStatus]:
        stack = self._describe_stack(name)
        if stack is None:
            return None
        return self._parse_status(name, stack['StackStatus'])

    @staticmethod
    def _parse_status(name: str, value: str) -> StackStatus:
        try:
            return StackStatus(value)
        except ValueError:
            raise StackOperationError(name, f"unknown stack status '{value}'")

    def _template_args(self, name: str, template: str) -> dict:
        if template.startswith(('https://', 'http://')):
            return {'TemplateURL': template}
        path = Path(template)
        try:
            return {'TemplateBody': path.read_text(encoding='utf-8')}
        except OSError as e:
            raise StackOperationError(name, f"cannot read template {path}: {e}")

    @staticmethod
    def _parameter_list(parameters: dict[str, str]) -> list[dict]:
        return [
            {'ParameterKey': key, 'ParameterValue': str(value)}
            for key, value in parameters.items()
        ]

    def create(self, name: str, template: str, parameters: dict[str, str],
               capabilities: list[str]) -> OperationHandle:
        args = {
            'StackName': name,
            'Parameters': self._parameter_list(parameters),
            **self._template_args(name, template),
        }
        if capabilities:
            args['Capabilities'] = list(capabilities)
        try:
            resp = self.cfn.create_stack(**args)
        except ClientError as e:
            if client_error_code(e) == 'AlreadyExistsException':
                raise StackConflictError(name, "stack appeared while creating it")
            raise StackOperationError(name, f"create rejected: {_error_message(e)}")
        return OperationHandle(name, Operation.CREATE, resp.get('StackId'))

    def update(self, name: str, template: str, parameters: dict[str, str],
               capabilities: list[str]) -> Optional[OperationHandle]:
        args = {
            'StackName': name,
            'Parameters': self._parameter_list(parameters),
            **self._template_args(name, template),
        }
        if capabilities:
            args['Capabilities'] = list(capabilities)
        try:
            resp = self.cfn.update_stack(**args)
        except ClientError as e:
            if client_error_code(e) == 'ValidationError' and NO_UPDATES_MESSAGE in _error_message(e):
                return None
            raise StackOperationError(name, f"update rejected: {_error_message(e)}")
        return OperationHandle(name, Operation.UPDATE, resp.get('StackId'))

    def delete(self, name: str) -> OperationHandle:
        stack = self._describe_stack(name)
        stack_id = stack.get('StackId') if stack else None
        try:
            self.cfn.delete_stack(StackName=name)
        except ClientError as e:
            raise StackOperationError(name, f"delete rejected: {_error_message(e)}")
        return OperationHandle(name, Operation.DELETE, stack_id)

    def await_terminal(self, handle: OperationHandle, timeout: float) -> StackStatus:
        """Poll until the stack reaches a terminal status.

        Deleted stacks disappear from describe-by-name, so a delete being
        polled by name treats "does not exist" as DELETE_COMPLETE.

        Raises:
            StackTimeoutError: If no terminal status within timeout seconds
            StackOperationError: If the stack vanishes during create/update
        """
        deadline = self._clock() + timeout
        target = handle.stack_id or handle.stack_name
        last: Optional[StackStatus] = None

        while True:
            stack = self._describe_stack(target)
            if stack is None:
                if handle.operation == Operation.DELETE:
                    return StackStatus.DELETE_COMPLETE
                raise StackOperationError(
                    handle.stack_name, f"stack disappeared during {handle.operation}", last)

            status = self._parse_status(handle.stack_name, stack['StackStatus'])
            if status != last:
                logger.debug(f"[wait] {handle.stack_name}: {status}")
                last = status
            if status.is_terminal:
                return status

            if self._clock() >= deadline:
                raise StackTimeoutError(
                    handle.stack_name,
                    f"{handle.operation} did not finish within {int(timeout)}s",
                    status,
                )
            self._sleep(self.poll_interval)

    def get_outputs(self, name: str) -> dict[str, str]:
        stack = self._describe_stack(name)
        if stack is None:
            return {}
        return {o['OutputKey']: o['OutputValue'] for o in stack.get('Outputs', [])}

    def get_output(self, name: str, key: str) -> Optional[str]:
        return self.get_outputs(name).get(key)

    # -------------------------------------------------------------------------
    # Buckets
    # -------------------------------------------------------------------------

    def bucket_exists(self, bucket: str) -> bool:
        try:
            self.s3.head_bucket(Bucket=bucket)
        except ClientError as e:
            if client_error_code(e) in ('404', 'NoSuchBucket', 'NotFound'):
                return False
            raise
        return True

    def list_object_versions(self, bucket: str) -> list[ObjectVersion]:
        entries: list[ObjectVersion] = []
        paginator = self.s3.get_paginator('list_object_versions')
        for page in paginator.paginate(Bucket=bucket):
            for obj in page.get('Versions', []):
                entries.append(ObjectVersion(obj['Key'], obj['VersionId']))
            for obj in page.get('DeleteMarkers', []):
                entries.append(ObjectVersion(obj['Key'], obj['VersionId'], is_delete_marker=True))
        return entries

    def delete_object_version(self, bucket: str, key: str, version_id: str) -> None:
        try:
            self.s3.delete_object(Bucket=bucket, Key=key, VersionId=version_id)
        except ClientError as e:
            raise PurgeObjectError(bucket, key, version_id, _error_message(e))

    def remove_remaining_objects(self, bucket: str) -> int:
        removed = 0
        batch: list[dict] = []
        paginator = self.s3.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=bucket):
            for obj in page.get('Contents', []):
                batch.append({'Key': obj['Key']})
                if len(batch) >= DELETE_BATCH_SIZE:
                    removed += self._delete_batch(bucket, batch)
                    batch = []
        if batch:
            removed += self._delete_batch(bucket, batch)
        return removed

    def _delete_batch(self, bucket: str, batch: list[dict]) -> int:
        resp = self.s3.delete_objects(Bucket=bucket, Delete={'Objects': batch, 'Quiet': False})
        for err in resp.get('Errors', []):
            logger.warning(f"[purge] Could not delete s3://{bucket}/{err.get('Key')}: "
                           f"{err.get('Message')}")
        return len(resp.get('Deleted', []))
