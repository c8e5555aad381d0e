"""Tests for stack_opr.state module."""

import pytest

from conftest import parse_summary
from stack_opr.state import ExecutionState, NodeState, Stack, write_summary
from stack_opr.status import StackStatus
from topology import StackSpec


class TestStack:
    """Tests for the runtime Stack record."""

    def test_from_spec(self):
        spec = StackSpec.from_dict({
            'name': 'roles', 'template': 'roles.yaml',
            'capabilities': ['CAPABILITY_NAMED_IAM'],
        })
        stack = Stack.from_spec(spec, '/tmp/roles.yaml', {'Env': 'dev'})
        assert stack.name == 'roles'
        assert stack.template == '/tmp/roles.yaml'
        assert stack.parameters == {'Env': 'dev'}
        assert stack.capabilities == ['CAPABILITY_NAMED_IAM']
        assert stack.status is None
        assert stack.outputs == {}

    def test_invalidate_outputs(self):
        stack = Stack(name='a', template='a.yaml', outputs={'Key': 'v'})
        stack.invalidate_outputs()
        assert stack.outputs == {}


class TestNodeState:
    """Tests for NodeState dataclass."""

    def test_defaults(self):
        state = NodeState(name='test')
        assert state.status == 'pending'
        assert state.stack_status is None
        assert state.duration is None
        assert not state.succeeded

    def test_complete(self):
        state = NodeState(name='test')
        state.start()
        state.complete(StackStatus.CREATE_COMPLETE, outputs={'VpcId': 'vpc-1'})
        assert state.status == 'completed'
        assert state.stack_status == 'CREATE_COMPLETE'
        assert state.outputs == {'VpcId': 'vpc-1'}
        assert state.duration >= 0
        assert state.succeeded

    def test_complete_unchanged(self):
        state = NodeState(name='test')
        state.start()
        state.complete(StackStatus.UPDATE_COMPLETE, unchanged=True)
        assert state.status == 'unchanged'
        assert state.succeeded

    def test_fail(self):
        state = NodeState(name='test')
        state.start()
        state.fail('create failed', 'ROLLBACK_COMPLETE')
        assert state.status == 'failed'
        assert state.error == 'create failed'
        assert state.stack_status == 'ROLLBACK_COMPLETE'
        assert not state.succeeded

    def test_mark_destroyed(self):
        state = NodeState(name='test')
        state.start()
        state.mark_destroyed()
        assert state.status == 'destroyed'
        assert state.stack_status == 'DELETE_COMPLETE'

    def test_mark_absent(self):
        state = NodeState(name='test')
        state.start()
        state.mark_destroyed(absent=True)
        assert state.status == 'absent'
        assert state.stack_status is None
        assert state.succeeded

    def test_to_dict_minimal(self):
        assert NodeState(name='test').to_dict() == {'name': 'test', 'status': 'pending'}

    def test_to_dict_full(self):
        state = NodeState(name='s3', status='destroyed', stack_status='DELETE_COMPLETE',
                          purged={'loki': 12}, started_at=1000.0, completed_at=1012.5)
        d = state.to_dict()
        assert d['purged'] == {'loki': 12}
        assert d['duration'] == 12.5
        assert 'error' not in d


class TestExecutionState:
    """Tests for ExecutionState."""

    def test_results_skip_pending(self):
        """Only visited nodes are reported, in registration order."""
        state = ExecutionState('lgtm', 'dev', 'apply')
        for name in ('a', 'b', 'c'):
            state.add_node(name)
        state.get_node('a').start()
        state.get_node('a').complete()
        state.get_node('b').start()
        state.get_node('b').fail('boom')

        assert [ns.name for ns in state.results] == ['a', 'b']
        assert not state.success

    def test_success_with_nothing_visited(self):
        state = ExecutionState('lgtm', 'dev', 'apply')
        state.add_node('a')
        assert state.success

    def test_error_fails_walk(self):
        state = ExecutionState('lgtm', 'dev', 'destroy')
        state.error = RuntimeError('aborted')
        assert not state.success
        assert state.to_dict()['error'] == 'aborted'

    def test_get_node_missing(self):
        with pytest.raises(KeyError):
            ExecutionState('lgtm', 'dev', 'apply').get_node('ghost')

    def test_to_context(self):
        """Outputs flattened to stack.OutputKey."""
        state = ExecutionState('lgtm', 'dev', 'apply')
        state.add_node('net').complete(outputs={'VpcId': 'vpc-1'})
        state.add_node('app').complete(outputs={'Url': 'https://x'})
        assert state.to_context() == {'net.VpcId': 'vpc-1', 'app.Url': 'https://x'}

    def test_to_dict(self):
        state = ExecutionState('lgtm', 'staging', 'apply')
        state.start()
        state.add_node('net').complete(StackStatus.CREATE_COMPLETE)
        state.add_node('app')
        state.finish()

        d = state.to_dict()
        assert d['verb'] == 'apply'
        assert d['topology'] == 'lgtm'
        assert d['environment'] == 'staging'
        assert d['success'] is True
        assert [n['name'] for n in d['nodes']] == ['net']
        assert 'duration_seconds' in d


class TestSummary:
    """Tests for write_summary."""

    def test_write_and_read(self, tmp_path):
        path = tmp_path / 'out' / 'deployment-outputs-dev.txt'
        write_summary(path, {'LokiBucketName': 'loki-1'},
                      header={'REGION': 'us-east-1', 'ENVIRONMENT': 'dev'})

        lines = path.read_text().splitlines()
        assert lines[0].startswith('# Deployment outputs, generated ')
        assert lines[1:] == ['REGION=us-east-1', 'ENVIRONMENT=dev', 'LokiBucketName=loki-1']
        assert parse_summary(path) == {
            'REGION': 'us-east-1', 'ENVIRONMENT': 'dev', 'LokiBucketName': 'loki-1'}

    def test_value_with_equals(self, tmp_path):
        path = write_summary(tmp_path / 'summary.txt', {'Url': 'https://x/?a=b'})
        assert parse_summary(path)['Url'] == 'https://x/?a=b'
