"""Topology loading and validation for stack orchestration.

A topology declares the CloudFormation stacks of a deployment, the
dependency edges between them, and where each stack's parameters come
from (per-environment parameter files, inline values, or outputs of
stacks it depends on).

Example (topologies/lgtm.yaml):

    name: lgtm
    stacks:
      - name: eks-cluster-stack
        template: 01-eks-cluster.yaml
        parameter_set: cluster
        capabilities: [CAPABILITY_NAMED_IAM]
      - name: eks-nodegroups-stack
        template: 02-nodegroups.yaml
        parameter_set: nodegroups
        depends_on: [eks-cluster-stack]
        parameter_refs:
          ClusterName: eks-cluster-stack.ClusterName
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from config import ConfigError, parse_yaml, get_project_dir

logger = logging.getLogger(__name__)

# Topology used when none is named
DEFAULT_TOPOLOGY = 'lgtm'

KNOWN_CAPABILITIES = {
    'CAPABILITY_IAM',
    'CAPABILITY_NAMED_IAM',
    'CAPABILITY_AUTO_EXPAND',
}


@dataclass(frozen=True)
class OutputRef:
    """Reference to an output of another stack, written 'stack.OutputKey'."""
    stack: str
    output: str

    @classmethod
    def parse(cls, value: str) -> 'OutputRef':
        """Parse 'stack-name.OutputKey'.

        Raises:
            ConfigError: If the reference is not of that form
        """
        if not isinstance(value, str) or '.' not in value:
            raise ConfigError(f"Invalid output reference '{value}' (expected 'stack.OutputKey')")
        stack, output = value.rsplit('.', 1)
        if not stack or not output:
            raise ConfigError(f"Invalid output reference '{value}' (expected 'stack.OutputKey')")
        return cls(stack=stack, output=output)

    def __str__(self) -> str:
        return f'{self.stack}.{self.output}'


@dataclass
class StackSpec:
    """Static description of one stack.

    Attributes:
        name: Stack name (unique within the topology)
        template: Template path relative to cloudformation/, or an https URL
        parameter_set: Suffix of parameters/{env}-{set}.json (optional)
        parameters: Inline parameters, override the parameter file
        parameter_refs: Parameter key -> output of an ancestor stack
        capabilities: Acknowledged capabilities (e.g. CAPABILITY_NAMED_IAM)
        depends_on: Stacks that must be complete before this one is applied
        purge_storage: Empty the buckets in `storage` before destroying
        storage: Output keys whose values are bucket names owned by this stack
        summary_outputs: Output keys copied into the deployment summary
        description: Human-readable description
    """
    name: str
    template: str
    parameter_set: Optional[str] = None
    parameters: dict[str, str] = field(default_factory=dict)
    parameter_refs: dict[str, OutputRef] = field(default_factory=dict)
    capabilities: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    purge_storage: bool = False
    storage: list[str] = field(default_factory=list)
    summary_outputs: list[str] = field(default_factory=list)
    description: str = ''

    @classmethod
    def from_dict(cls, data: dict) -> 'StackSpec':
        """Create StackSpec from dictionary."""
        refs = {
            key: OutputRef.parse(value)
            for key, value in (data.get('parameter_refs') or {}).items()
        }
        return cls(
            name=data['name'],
            template=data['template'],
            parameter_set=data.get('parameter_set'),
            parameters={str(k): str(v) for k, v in (data.get('parameters') or {}).items()},
            parameter_refs=refs,
            capabilities=list(data.get('capabilities') or []),
            depends_on=list(data.get('depends_on') or []),
            purge_storage=bool(data.get('purge_storage', False)),
            storage=list(data.get('storage') or []),
            summary_outputs=list(data.get('summary_outputs') or []),
            description=data.get('description', ''),
        )


@dataclass
class AddonSpec:
    """EKS managed add-on installed after apply, removed before destroy.

    Attributes:
        name: Add-on name (e.g. aws-ebs-csi-driver)
        role: Output holding the service-account role ARN
    """
    name: str
    role: Optional[OutputRef] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'AddonSpec':
        role = data.get('role')
        return cls(name=data['name'], role=OutputRef.parse(role) if role else None)


@dataclass
class Topology:
    """A named set of stacks with dependency edges.

    Attributes:
        name: Topology name
        stacks: Stack specs in declaration order
        description: Optional description
        settings: Raw settings block (merged into DriverConfig)
        addons: EKS add-ons managed around the stack walk
        source_path: Path the topology was loaded from (for debugging)
    """
    name: str
    stacks: list[StackSpec]
    description: str = ''
    settings: dict = field(default_factory=dict)
    addons: list[AddonSpec] = field(default_factory=list)
    source_path: Optional[Path] = None

    def get_stack(self, name: str) -> StackSpec:
        """Get a stack spec by name.

        Raises:
            KeyError: If stack name not found
        """
        for spec in self.stacks:
            if spec.name == name:
                return spec
        raise KeyError(name)

    @property
    def stack_names(self) -> list[str]:
        return [s.name for s in self.stacks]

    @classmethod
    def from_dict(cls, data: dict, source_path: Optional[Path] = None) -> 'Topology':
        """Create Topology from dictionary.

        Validates names, dangling dependencies, and output references.
        Cycles are left to StackGraph, which rejects them before any
        backend call.

        Raises:
            ConfigError: If topology is invalid
        """
        if 'name' not in data:
            raise ConfigError("Topology missing required field: name")
        if not data.get('stacks'):
            raise ConfigError("Topology must have at least one stack")

        stacks = []
        for i, stack_data in enumerate(data['stacks']):
            if not isinstance(stack_data, dict):
                raise ConfigError(f"Stack {i} must be a mapping")
            if 'name' not in stack_data:
                raise ConfigError(f"Stack {i} missing required field: name")
            if 'template' not in stack_data:
                raise ConfigError(
                    f"Stack {i} ({stack_data['name']}) missing required field: template")
            stacks.append(StackSpec.from_dict(stack_data))

        _validate_stacks(stacks)

        addons = [AddonSpec.from_dict(a) for a in data.get('addons') or []]
        names = {s.name for s in stacks}
        for addon in addons:
            if addon.role is not None and addon.role.stack not in names:
                raise ConfigError(
                    f"Add-on '{addon.name}' references unknown stack '{addon.role.stack}'")

        return cls(
            name=data['name'],
            description=data.get('description', ''),
            stacks=stacks,
            settings=dict(data.get('settings') or {}),
            addons=addons,
            source_path=source_path,
        )


def _validate_stacks(stacks: list[StackSpec]) -> None:
    """Validate the stack declarations.

    Checks for:
    - Duplicate stack names
    - Dangling and self dependencies
    - Unknown capabilities
    - Parameter refs that do not point at a (transitive) dependency
    - storage keys on a stack without purge_storage

    Raises:
        ConfigError: If validation fails
    """
    seen: set[str] = set()
    for spec in stacks:
        if spec.name in seen:
            raise ConfigError(f"Duplicate stack name: '{spec.name}'")
        seen.add(spec.name)

    deps = {s.name: s.depends_on for s in stacks}

    for spec in stacks:
        for dep in spec.depends_on:
            if dep == spec.name:
                raise ConfigError(f"Stack '{spec.name}' depends on itself")
            if dep not in seen:
                raise ConfigError(f"Stack '{spec.name}' depends on unknown stack '{dep}'")

        unknown = [c for c in spec.capabilities if c not in KNOWN_CAPABILITIES]
        if unknown:
            raise ConfigError(
                f"Stack '{spec.name}' has unknown capabilities: {', '.join(unknown)}")

        if spec.storage and not spec.purge_storage:
            logger.warning(f"Stack '{spec.name}' lists storage outputs but purge_storage is off")

        ancestors = _ancestors(spec.name, deps)
        for key, ref in spec.parameter_refs.items():
            if ref.stack not in seen:
                raise ConfigError(
                    f"Stack '{spec.name}' parameter '{key}' references unknown stack '{ref.stack}'")
            if ref.stack not in ancestors:
                raise ConfigError(
                    f"Stack '{spec.name}' parameter '{key}' references '{ref}', "
                    f"but '{ref.stack}' is not a dependency of '{spec.name}'")


def _ancestors(name: str, deps: dict[str, list[str]]) -> set[str]:
    """All stacks reachable through depends_on edges (tolerates cycles)."""
    found: set[str] = set()
    stack = list(deps.get(name, []))
    while stack:
        current = stack.pop()
        if current in found:
            continue
        found.add(current)
        stack.extend(deps.get(current, []))
    found.discard(name)
    return found


class TopologyLoader:
    """Loads topologies from the topologies/ directory."""

    def __init__(self, project_dir: Optional[Path] = None):
        """Initialize loader.

        Args:
            project_dir: Project directory. If None, uses auto-discovery
                         ($STACK_DRIVER_HOME, then the checkout).
        """
        self.project_dir = Path(project_dir) if project_dir else get_project_dir()
        self.topologies_dir = self.project_dir / 'topologies'

    def list_topologies(self) -> list[str]:
        """List available topology names."""
        if not self.topologies_dir.exists():
            return []
        return sorted([
            f.stem for f in self.topologies_dir.glob('*.yaml')
            if f.is_file()
        ])

    def load(self, name: str) -> Topology:
        """Load topology by name.

        Raises:
            ConfigError: If topology not found or invalid
        """
        path = self.topologies_dir / f'{name}.yaml'
        if not path.exists():
            available = self.list_topologies()
            raise ConfigError(
                f"Topology '{name}' not found at {path}. "
                f"Available: {', '.join(available) if available else 'none'}"
            )

        return self.load_file(path)

    def load_file(self, path: Path) -> Topology:
        """Load topology from specific file path.

        Raises:
            ConfigError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigError(f"Topology file not found: {path}")

        try:
            data = parse_yaml(path)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in topology {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Topology {path} must be a YAML object (dict)")

        return Topology.from_dict(data, source_path=path)


def load_topology(
    name: Optional[str] = None,
    file_path: Optional[str] = None,
    project_dir: Optional[Path] = None,
) -> Topology:
    """Load topology from a file path or by name.

    Priority:
    1. file_path - Specific file path
    2. name - Named topology from topologies/
    3. DEFAULT_TOPOLOGY

    Raises:
        ConfigError: If topology not found or invalid
    """
    loader = TopologyLoader(project_dir)
    if file_path:
        return loader.load_file(Path(file_path))
    return loader.load(name or DEFAULT_TOPOLOGY)
