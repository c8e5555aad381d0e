"""Tests for validation module."""

from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError, NoCredentialsError

from config import DriverConfig
from topology import load_topology
from validation import (
    format_errors,
    required_tools,
    validate_aws_credentials,
    validate_parameter_files,
    validate_readiness,
    validate_templates,
    validate_tools,
)


def _config(project_dir, **kwargs):
    return DriverConfig(environment='dev', project_dir=project_dir, **kwargs)


class TestAwsCredentials:
    """Tests for validate_aws_credentials."""

    def test_valid(self):
        sts = MagicMock()
        sts.get_caller_identity.return_value = {'Arn': 'arn:aws:iam::1:user/ops'}
        assert validate_aws_credentials('us-east-1', sts) == []

    def test_no_credentials(self):
        sts = MagicMock()
        sts.get_caller_identity.side_effect = NoCredentialsError()
        errors = validate_aws_credentials('us-east-1', sts)
        assert len(errors) == 1
        assert 'aws configure' in errors[0]

    def test_expired_token(self):
        sts = MagicMock()
        sts.get_caller_identity.side_effect = ClientError(
            {'Error': {'Code': 'ExpiredToken', 'Message': 'expired'}}, 'GetCallerIdentity')
        assert validate_aws_credentials('us-east-1', sts)


class TestTools:
    """Tests for tool checks."""

    def test_missing_tool(self):
        with patch('validation.shutil.which', side_effect=lambda t: None if t == 'kubectl' else '/bin/x'):
            errors = validate_tools(['aws', 'kubectl'])
        assert errors == ['kubectl not found. Please install it first.']

    def test_required_tools(self, tmp_path):
        assert required_tools(_config(tmp_path)) == []
        assert required_tools(_config(tmp_path, update_kubeconfig=True)) == ['aws', 'kubectl']


class TestProjectFiles:
    """Tests for template and parameter file checks."""

    def test_all_present(self, project_dir):
        topology = load_topology(project_dir=project_dir)
        config = _config(project_dir)
        assert validate_templates(topology, config) == []
        assert validate_parameter_files(topology, config) == []

    def test_missing_template(self, project_dir):
        (project_dir / 'cloudformation' / '02-nodegroups.yaml').unlink()
        errors = validate_templates(load_topology(project_dir=project_dir), _config(project_dir))
        assert len(errors) == 1
        assert "'eks-nodegroups-stack'" in errors[0]

    def test_missing_parameter_file(self, project_dir):
        (project_dir / 'parameters' / 'dev-irsa.json').unlink()
        errors = validate_parameter_files(load_topology(project_dir=project_dir),
                                          _config(project_dir))
        assert len(errors) == 1
        assert 'parameters/dev-irsa.json' in errors[0]


class TestReadiness:
    """Tests for validate_readiness."""

    def test_apply_collects_everything(self, project_dir):
        (project_dir / 'parameters' / 'dev-s3.json').unlink()
        sts = MagicMock()
        sts.get_caller_identity.side_effect = NoCredentialsError()
        errors = validate_readiness(load_topology(project_dir=project_dir),
                                    _config(project_dir), sts_client=sts)
        assert len(errors) == 2

    def test_destroy_skips_project_files(self, project_dir):
        (project_dir / 'parameters' / 'dev-s3.json').unlink()
        errors = validate_readiness(load_topology(project_dir=project_dir),
                                    _config(project_dir), verb='destroy',
                                    check_credentials=False)
        assert errors == []


class TestFormatErrors:
    """Tests for format_errors."""

    def test_continuation_lines_indented(self):
        text = format_errors(['first\n  hint', 'second'])
        assert text.splitlines() == ['  ✗ first', '      hint', '  ✗ second']
