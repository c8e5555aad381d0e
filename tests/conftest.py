"""Shared pytest fixtures for stack-driver tests."""

import json
import sys
import threading
from pathlib import Path
from typing import Optional

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from stack_opr.client import ObjectVersion, OperationHandle  # noqa: E402
from stack_opr.errors import PurgeObjectError  # noqa: E402
from stack_opr.status import Operation, StackStatus  # noqa: E402


class FakeProvisioningClient:
    """In-memory provisioning backend.

    Operations finish instantly: await_terminal returns the status queued
    for the stack by create/update/delete. Every call is recorded in
    `calls` as (method, name).

    Attributes:
        stacks: name -> {'status', 'template', 'parameters', 'outputs'}
        outputs: name -> outputs the stack gets once created/updated
        fail: name -> terminal status to end the next operation with
        buckets: bucket -> list of ObjectVersion
        leftovers: bucket -> objects only the unversioned listing returns
        bad_keys: object keys whose delete fails
    """

    def __init__(self):
        self.stacks: dict[str, dict] = {}
        self.outputs: dict[str, dict[str, str]] = {}
        self.fail: dict[str, StackStatus] = {}
        self.buckets: dict[str, list[ObjectVersion]] = {}
        self.leftovers: dict[str, int] = {}
        self.bad_keys: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self._pending: dict[str, StackStatus] = {}
        self._lock = threading.Lock()

    # helpers --------------------------------------------------------------

    def seed(self, name: str, status: StackStatus = StackStatus.CREATE_COMPLETE,
             outputs: Optional[dict] = None, parameters: Optional[dict] = None,
             template: str = '') -> None:
        self.stacks[name] = {
            'status': status,
            'template': template,
            'parameters': dict(parameters or {}),
            'outputs': dict(outputs or self.outputs.get(name, {})),
        }

    def called(self, method: str) -> list[str]:
        return [name for m, name in self.calls if m == method]

    @property
    def backend_calls(self) -> list[tuple[str, str]]:
        return list(self.calls)

    # stacks ---------------------------------------------------------------

    def describe(self, name):
        self.calls.append(('describe', name))
        stack = self.stacks.get(name)
        return stack['status'] if stack else None

    def create(self, name, template, parameters, capabilities):
        self.calls.append(('create', name))
        self.stacks[name] = {
            'status': StackStatus.CREATE_IN_PROGRESS,
            'template': template,
            'parameters': dict(parameters),
            'capabilities': list(capabilities),
            'outputs': {},
        }
        self._pending[name] = self.fail.get(name, StackStatus.CREATE_COMPLETE)
        return OperationHandle(name, Operation.CREATE, f'arn:{name}')

    def update(self, name, template, parameters, capabilities):
        self.calls.append(('update', name))
        stack = self.stacks[name]
        if stack['template'] == template and stack['parameters'] == dict(parameters):
            return None
        stack.update(template=template, parameters=dict(parameters),
                     status=StackStatus.UPDATE_IN_PROGRESS)
        self._pending[name] = self.fail.get(name, StackStatus.UPDATE_COMPLETE)
        return OperationHandle(name, Operation.UPDATE, f'arn:{name}')

    def delete(self, name):
        self.calls.append(('delete', name))
        self.stacks[name]['status'] = StackStatus.DELETE_IN_PROGRESS
        self._pending[name] = self.fail.get(name, StackStatus.DELETE_COMPLETE)
        return OperationHandle(name, Operation.DELETE, f'arn:{name}')

    def await_terminal(self, handle, timeout):
        self.calls.append(('await_terminal', handle.stack_name))
        final = self._pending.pop(handle.stack_name)
        if final == StackStatus.DELETE_COMPLETE:
            del self.stacks[handle.stack_name]
            return final
        stack = self.stacks[handle.stack_name]
        stack['status'] = final
        if final in (StackStatus.CREATE_COMPLETE, StackStatus.UPDATE_COMPLETE):
            stack['outputs'] = dict(self.outputs.get(handle.stack_name, {}))
        return final

    def get_outputs(self, name):
        self.calls.append(('get_outputs', name))
        stack = self.stacks.get(name)
        return dict(stack['outputs']) if stack else {}

    def get_output(self, name, key):
        return self.get_outputs(name).get(key)

    # buckets --------------------------------------------------------------

    def bucket_exists(self, bucket):
        self.calls.append(('bucket_exists', bucket))
        return bucket in self.buckets

    def list_object_versions(self, bucket):
        self.calls.append(('list_object_versions', bucket))
        return list(self.buckets.get(bucket, []))

    def delete_object_version(self, bucket, key, version_id):
        if key in self.bad_keys:
            raise PurgeObjectError(bucket, key, version_id, 'AccessDenied')
        with self._lock:
            self.buckets[bucket] = [
                e for e in self.buckets[bucket]
                if not (e.key == key and e.version_id == version_id)
            ]

    def remove_remaining_objects(self, bucket):
        self.calls.append(('remove_remaining_objects', bucket))
        return self.leftovers.pop(bucket, 0)


@pytest.fixture
def fake_client():
    """In-memory provisioning backend."""
    return FakeProvisioningClient()


def diamond_topology_dict(name='diamond'):
    """A <- {B, C} <- D: B and C depend on A, D depends on B and C."""
    return {
        'name': name,
        'stacks': [
            {'name': 'A', 'template': 'a.yaml'},
            {'name': 'B', 'template': 'b.yaml', 'depends_on': ['A']},
            {'name': 'C', 'template': 'c.yaml', 'depends_on': ['A']},
            {'name': 'D', 'template': 'd.yaml', 'depends_on': ['B', 'C']},
        ],
    }


LGTM_TOPOLOGY = """
name: lgtm
settings:
  cluster_name: test-cluster
  poll_interval: 0
stacks:
  - name: eks-cluster-stack
    template: 01-eks-cluster.yaml
    parameter_set: cluster
    capabilities: [CAPABILITY_NAMED_IAM]
  - name: eks-nodegroups-stack
    template: 02-nodegroups.yaml
    parameter_set: nodegroups
    capabilities: [CAPABILITY_NAMED_IAM]
    depends_on: [eks-cluster-stack]
    parameter_refs:
      ClusterName: eks-cluster-stack.ClusterName
  - name: lgtm-s3-stack
    template: 03-s3-buckets.yaml
    parameter_set: s3
    purge_storage: true
    storage: [LokiBucketName, TempoBucketName]
    summary_outputs: [LokiBucketName, TempoBucketName]
  - name: lgtm-irsa-stack
    template: 04-irsa-roles.yaml
    parameter_set: irsa
    capabilities: [CAPABILITY_NAMED_IAM]
    depends_on: [eks-cluster-stack, lgtm-s3-stack]
    parameter_refs:
      LokiBucketName: lgtm-s3-stack.LokiBucketName
    summary_outputs: [LGTMStackIRSARoleArn]
"""

LGTM_OUTPUTS = {
    'eks-cluster-stack': {'ClusterName': 'test-cluster'},
    'eks-nodegroups-stack': {},
    'lgtm-s3-stack': {'LokiBucketName': 'loki-bucket', 'TempoBucketName': 'tempo-bucket'},
    'lgtm-irsa-stack': {'LGTMStackIRSARoleArn': 'arn:aws:iam::123456789012:role/lgtm'},
}


@pytest.fixture
def project_dir(tmp_path):
    """Create a temporary project with the lgtm topology.

    Creates:
    - topologies/lgtm.yaml
    - parameters/{dev,prod}-{cluster,nodegroups,s3,irsa}.json
    - cloudformation/0N-*.yaml (placeholder bodies)
    """
    for d in ['topologies', 'parameters', 'cloudformation']:
        (tmp_path / d).mkdir()

    (tmp_path / 'topologies' / 'lgtm.yaml').write_text(LGTM_TOPOLOGY)

    for env in ['dev', 'prod']:
        for param_set in ['cluster', 'nodegroups', 's3', 'irsa']:
            (tmp_path / 'parameters' / f'{env}-{param_set}.json').write_text(json.dumps([
                {'ParameterKey': 'Environment', 'ParameterValue': env},
            ]))

    for template in ['01-eks-cluster.yaml', '02-nodegroups.yaml',
                     '03-s3-buckets.yaml', '04-irsa-roles.yaml']:
        (tmp_path / 'cloudformation' / template).write_text('Resources: {}\n')

    return tmp_path


@pytest.fixture
def lgtm_client(fake_client):
    """Fake backend preloaded with the lgtm stack outputs."""
    fake_client.outputs.update(LGTM_OUTPUTS)
    return fake_client


def parse_summary(path: Path) -> dict[str, str]:
    """KEY=value lines of a deployment summary, comments skipped."""
    values: dict[str, str] = {}
    for line in path.read_text(encoding='utf-8').splitlines():
        if line and not line.startswith('#') and '=' in line:
            key, value = line.split('=', 1)
            values[key] = value
    return values
