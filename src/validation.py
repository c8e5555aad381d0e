"""Pre-flight validation checks for stack walks.

This module provides readiness checks that run before apply/destroy,
catching missing credentials, tools and project files early with
actionable error messages.
"""

import logging
import shutil
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from config import ConfigError, DriverConfig, load_parameters
from topology import Topology

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# AWS Credentials
# -----------------------------------------------------------------------------

def validate_aws_credentials(region: str, sts_client: Optional[Any] = None) -> list[str]:
    """Validate that AWS credentials are configured and accepted.

    Args:
        region: AWS region for the STS call
        sts_client: Injected STS client (tests)

    Returns:
        List of validation error messages (empty if valid)
    """
    sts = sts_client or boto3.client('sts', region_name=region)
    try:
        identity = sts.get_caller_identity()
    except (ClientError, BotoCoreError) as e:
        return [
            f"AWS credentials not configured or not valid: {e}\n"
            f"  Run 'aws configure' or export AWS_PROFILE"
        ]
    logger.debug(f"AWS identity: {identity.get('Arn')}")
    return []


# -----------------------------------------------------------------------------
# Tools
# -----------------------------------------------------------------------------

def validate_tools(tools: list[str]) -> list[str]:
    """Check that command-line tools are on PATH."""
    errors = []
    for tool in tools:
        if shutil.which(tool) is None:
            errors.append(f"{tool} not found. Please install it first.")
    return errors


def required_tools(config: DriverConfig) -> list[str]:
    """Tools the run shells out to."""
    tools = []
    if config.update_kubeconfig:
        tools.extend(['aws', 'kubectl'])
    return tools


# -----------------------------------------------------------------------------
# Project files
# -----------------------------------------------------------------------------

def validate_templates(topology: Topology, config: DriverConfig) -> list[str]:
    """Check that every local template file exists."""
    errors = []
    for spec in topology.stacks:
        ref = config.template_ref(spec.template)
        if ref.startswith(('https://', 'http://')):
            continue
        if not Path(ref).is_file():
            errors.append(f"Template for '{spec.name}' not found: {ref}")
    return errors


def validate_parameter_files(topology: Topology, config: DriverConfig) -> list[str]:
    """Check that every parameter file exists and parses."""
    errors = []
    for spec in topology.stacks:
        if not spec.parameter_set:
            continue
        path = config.parameters_file(spec.parameter_set)
        try:
            load_parameters(path)
        except ConfigError as e:
            errors.append(
                f"{e}\n"
                f"  Expected parameters/{config.environment}-{spec.parameter_set}.json"
            )
    return errors


def validate_readiness(topology: Topology, config: DriverConfig,
                       verb: str = 'apply',
                       check_credentials: bool = True,
                       sts_client: Optional[Any] = None) -> list[str]:
    """Run all readiness checks for a walk.

    Args:
        topology: Topology about to be walked
        config: Resolved driver configuration
        verb: apply or destroy (destroy needs no templates or parameters)
        check_credentials: Include the AWS credentials check
        sts_client: Injected STS client (tests)

    Returns:
        Combined list of all validation errors
    """
    errors = []

    if check_credentials:
        errors.extend(validate_aws_credentials(config.region, sts_client))

    errors.extend(validate_tools(required_tools(config)))
    if verb == 'apply':
        errors.extend(validate_templates(topology, config))
        errors.extend(validate_parameter_files(topology, config))

    return errors


def format_errors(errors: list[str]) -> str:
    """Render errors as a bulleted block (continuation lines indented)."""
    lines = []
    for error in errors:
        for i, line in enumerate(error.split('\n')):
            prefix = "  ✗ " if i == 0 else "    "
            lines.append(f"{prefix}{line}")
    return '\n'.join(lines)
