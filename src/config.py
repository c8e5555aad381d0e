"""Driver configuration management.

Configuration is assembled per run from (highest priority first):
1. CLI flags (--region, --cluster-name)
2. Environment variables (AWS_REGION, CLUSTER_NAME)
3. The topology file's settings: block
4. Built-in defaults

The environment tag (dev/staging/prod) selects the parameter files
(parameters/{env}-{set}.json) and, for destroy, the confirmation tier.

Project files are discovered relative to the project directory:
- topologies/*.yaml: Stack topologies (stacks, dependencies, settings)
- parameters/*.json: Per-environment CloudFormation parameter files
- cloudformation/*.yaml: Stack templates
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigError(Exception):
    """Configuration error."""


# Known environment tags
ENVIRONMENTS = ('dev', 'staging', 'prod')

# Tiers that require a second, typed confirmation before destroy
DEFAULT_PROTECTED_TIERS = ['prod']

DEFAULT_REGION = 'us-east-1'
DEFAULT_CLUSTER_NAME = 'my-eks-cluster'


@dataclass
class DriverConfig:
    """Resolved configuration for one apply/destroy run.

    Attributes:
        environment: Environment tag (dev, staging, prod)
        region: AWS region for every backend call
        cluster_name: EKS cluster name (kubeconfig, add-ons, orphan report)
        project_dir: Root directory holding topologies/, parameters/, cloudformation/
        output_dir: Where the deployment summary is written
        stack_timeout: Wait ceiling in seconds per stack operation
        poll_interval: Seconds between status polls
        purge_workers: Concurrent delete calls per bucket purge
        protected_tiers: Environments that need the second confirmation
        update_kubeconfig: Run 'aws eks update-kubeconfig' after apply
    """
    environment: str
    region: str = DEFAULT_REGION
    cluster_name: str = DEFAULT_CLUSTER_NAME
    project_dir: Path = field(default_factory=lambda: get_project_dir())
    output_dir: Path = field(default_factory=Path.cwd)
    stack_timeout: int = 3600
    poll_interval: float = 15.0
    purge_workers: int = 10
    protected_tiers: list[str] = field(default_factory=lambda: list(DEFAULT_PROTECTED_TIERS))
    update_kubeconfig: bool = False

    def __post_init__(self):
        if isinstance(self.project_dir, str):
            self.project_dir = Path(self.project_dir)
        if isinstance(self.output_dir, str):
            self.output_dir = Path(self.output_dir)
        if self.environment not in ENVIRONMENTS:
            raise ConfigError(
                f"Unknown environment '{self.environment}'. "
                f"Expected one of: {', '.join(ENVIRONMENTS)}"
            )
        if self.stack_timeout <= 0:
            raise ConfigError(f"stack_timeout must be positive, got {self.stack_timeout}")
        if self.purge_workers < 1:
            raise ConfigError(f"purge_workers must be at least 1, got {self.purge_workers}")

    @property
    def is_protected(self) -> bool:
        """True if destroy in this environment needs the tier confirmation."""
        return self.environment in self.protected_tiers

    @property
    def topologies_dir(self) -> Path:
        return self.project_dir / 'topologies'

    @property
    def parameters_dir(self) -> Path:
        return self.project_dir / 'parameters'

    @property
    def templates_dir(self) -> Path:
        return self.project_dir / 'cloudformation'

    @property
    def summary_path(self) -> Path:
        return self.output_dir / f'deployment-outputs-{self.environment}.txt'

    def parameters_file(self, parameter_set: str) -> Path:
        """Path of the parameter file for a set in this environment.

        Args:
            parameter_set: Set suffix from the topology (e.g. 'cluster')

        Returns:
            parameters/{environment}-{parameter_set}.json
        """
        return self.parameters_dir / f'{self.environment}-{parameter_set}.json'

    def template_ref(self, template: str) -> str:
        """Resolve a topology template reference.

        URLs (S3-hosted templates) pass through unchanged; anything else is
        a path relative to cloudformation/.
        """
        if template.startswith(('https://', 'http://')):
            return template
        path = Path(template)
        if path.is_absolute():
            return str(path)
        return str(self.templates_dir / path)


def get_base_dir() -> Path:
    """Get the stack-driver checkout directory."""
    return Path(__file__).parent.parent  # src/ -> stack-driver/


def get_project_dir() -> Path:
    """Discover the project directory.

    Resolution order:
    1. $STACK_DRIVER_HOME environment variable
    2. The stack-driver checkout itself
    """
    if env_path := os.environ.get('STACK_DRIVER_HOME'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"STACK_DRIVER_HOME={env_path} does not exist")
    return get_base_dir()


def load_driver_config(
    environment: str,
    settings: Optional[dict] = None,
    region: Optional[str] = None,
    cluster_name: Optional[str] = None,
    project_dir: Optional[Path] = None,
    output_dir: Optional[Path] = None,
) -> DriverConfig:
    """Build a DriverConfig with merge order: defaults → settings → env vars → flags.

    Args:
        environment: Environment tag
        settings: The topology's settings: block
        region: --region flag value
        cluster_name: --cluster-name flag value
        project_dir: Override for the project directory
        output_dir: Where to write the deployment summary

    Returns:
        DriverConfig instance

    Raises:
        ConfigError: If a setting has the wrong type or the environment is unknown
    """
    settings = settings or {}

    region = region or os.environ.get('AWS_REGION') or settings.get('region', DEFAULT_REGION)
    cluster_name = (cluster_name or os.environ.get('CLUSTER_NAME')
                    or settings.get('cluster_name', DEFAULT_CLUSTER_NAME))

    try:
        return DriverConfig(
            environment=environment,
            region=str(region),
            cluster_name=str(cluster_name),
            project_dir=project_dir or get_project_dir(),
            output_dir=output_dir or Path.cwd(),
            stack_timeout=int(settings.get('stack_timeout', 3600)),
            poll_interval=float(settings.get('poll_interval', 15.0)),
            purge_workers=int(settings.get('purge_workers', 10)),
            protected_tiers=_tier_list(settings.get('protected_tiers', DEFAULT_PROTECTED_TIERS)),
            update_kubeconfig=_flag(settings, 'update_kubeconfig'),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid topology settings: {e}")


def _tier_list(value: Any) -> list[str]:
    """A single tier name is accepted in place of a list."""
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(t, str) for t in value):
        raise ConfigError(
            f"Invalid topology settings: protected_tiers must be a list of names, got {value!r}")
    return list(value)


def _flag(settings: dict, key: str) -> bool:
    value = settings.get(key, False)
    if not isinstance(value, bool):
        raise ConfigError(f"Invalid topology settings: {key} must be true or false, got {value!r}")
    return value


def load_parameters(path: Path) -> dict[str, str]:
    """Load a CloudFormation parameter file.

    Accepts the CLI format (list of ParameterKey/ParameterValue objects) or a
    plain JSON/YAML mapping. Order of keys is preserved.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    if not path.exists():
        raise ConfigError(f"Parameter file not found: {path}")

    try:
        with open(path, encoding='utf-8') as f:
            if path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Invalid parameter file {path}: {e}")

    if data is None:
        return {}

    if isinstance(data, dict):
        return {str(k): _param_value(v) for k, v in data.items()}

    if not isinstance(data, list):
        raise ConfigError(f"Parameter file {path} must be a list or a mapping")

    params: dict[str, str] = {}
    for i, entry in enumerate(data):
        if not isinstance(entry, dict) or 'ParameterKey' not in entry:
            raise ConfigError(f"Parameter file {path}: entry {i} missing ParameterKey")
        params[entry['ParameterKey']] = _param_value(entry.get('ParameterValue', ''))
    return params


def _param_value(value: Any) -> str:
    """CloudFormation parameter values are strings; lists become CSV."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (list, tuple)):
        return ','.join(str(v) for v in value)
    return str(value)


def parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}
