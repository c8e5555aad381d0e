#!/usr/bin/env python3
"""Tests for common.py - shared utilities.

Tests verify:
1. run_command execution and error handling
2. client_error_code extraction
3. ActionResult defaults
"""

from unittest.mock import patch

from botocore.exceptions import ClientError

from common import ActionResult, client_error_code, run_command


class TestRunCommand:
    """Test run_command utility."""

    def test_returns_success_tuple(self):
        """Should return (returncode, stdout, stderr) on success."""
        rc, stdout, stderr = run_command(['echo', 'hello'])
        assert rc == 0
        assert 'hello' in stdout
        assert stderr == ''

    def test_returns_failure_tuple(self):
        """Should return non-zero returncode on failure."""
        rc, _, _ = run_command(['false'])
        assert rc != 0

    def test_captures_stderr(self):
        rc, stdout, stderr = run_command(['sh', '-c', 'echo error >&2'])
        assert 'error' in stderr

    def test_respects_cwd(self, tmp_path):
        (tmp_path / 'marker.txt').write_text('found')
        rc, stdout, _ = run_command(['cat', 'marker.txt'], cwd=tmp_path)
        assert rc == 0
        assert 'found' in stdout

    def test_timeout_returns_error(self):
        """Should return -1 and a message on timeout."""
        rc, _, stderr = run_command(['sleep', '5'], timeout=1)
        assert rc == -1
        assert 'timed out' in stderr

    def test_missing_binary(self):
        """A tool that is not installed is reported, not raised."""
        rc, _, stderr = run_command(['stack-driver-no-such-tool'])
        assert rc == -1
        assert stderr

    def test_passes_env_vars(self):
        with patch('common.subprocess.run') as run:
            run.return_value.returncode = 0
            run.return_value.stdout = ''
            run.return_value.stderr = ''
            run_command(['aws', 'sts', 'get-caller-identity'], env={'AWS_PROFILE': 'ops'})
        assert run.call_args.kwargs['env'] == {'AWS_PROFILE': 'ops'}


class TestClientErrorCode:
    """Test client_error_code."""

    def test_code(self):
        e = ClientError({'Error': {'Code': 'ValidationError', 'Message': 'x'}}, 'DescribeStacks')
        assert client_error_code(e) == 'ValidationError'

    def test_missing_code(self):
        assert client_error_code(ClientError({}, 'DescribeStacks')) == 'Unknown'


class TestActionResult:
    """Test ActionResult defaults."""

    def test_defaults(self):
        result = ActionResult(success=True)
        assert result.message == ''
        assert result.duration == 0.0
        assert result.context_updates == {}
        assert result.continue_on_failure is False

    def test_context_updates_not_shared(self):
        a = ActionResult(success=True)
        b = ActionResult(success=True)
        a.context_updates['orphans'] = {}
        assert b.context_updates == {}
