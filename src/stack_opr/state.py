"""Execution state for stack orchestration.

Stack is the in-memory record of one stack during a run: effective
parameters, last observed status, and the output cache downstream
stacks read their parameter references from.

NodeState/ExecutionState track per-node progress of a graph walk so the
caller can see how far a walk got when it halted. Nothing here is
persisted except the deployment summary written after a successful
apply; the backend is the system of record.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from stack_opr.status import StackStatus
from topology import StackSpec

logger = logging.getLogger(__name__)


@dataclass
class Stack:
    """Runtime record of one stack.

    Attributes:
        name: Stack name
        template: Resolved template path or URL
        parameters: Effective parameters (file, inline, then references)
        capabilities: Acknowledged capabilities
        status: Last status observed from the backend (None = does not exist)
        outputs: Output cache, filled once after a successful apply
        outcome: created, updated, unchanged, destroyed or absent
    """
    name: str
    template: str
    parameters: dict[str, str] = field(default_factory=dict)
    capabilities: list[str] = field(default_factory=list)
    status: Optional[StackStatus] = None
    outputs: dict[str, str] = field(default_factory=dict)
    outcome: Optional[str] = None

    @classmethod
    def from_spec(cls, spec: StackSpec, template: str,
                  parameters: Optional[dict[str, str]] = None) -> 'Stack':
        return cls(
            name=spec.name,
            template=template,
            parameters=dict(parameters or {}),
            capabilities=list(spec.capabilities),
        )

    def invalidate_outputs(self) -> None:
        self.outputs = {}


@dataclass
class NodeState:
    """Per-node walk state.

    Attributes:
        name: Stack name
        status: pending, running, completed, unchanged, failed, destroyed, absent
        stack_status: Last backend status string
        outputs: Stack outputs after apply
        purged: Bucket name -> objects removed before destroy
        started_at: Timestamp when the node started
        completed_at: Timestamp when the node finished
        error: Error message if failed
    """
    name: str
    status: str = 'pending'
    stack_status: Optional[str] = None
    outputs: dict[str, str] = field(default_factory=dict)
    purged: dict[str, int] = field(default_factory=dict)
    started_at: Optional[float] = None
    completed_at: Optional[float] = None
    error: Optional[str] = None

    def start(self) -> None:
        self.status = 'running'
        self.started_at = time.time()

    def complete(self, stack_status: Optional[StackStatus] = None,
                 outputs: Optional[dict] = None, unchanged: bool = False) -> None:
        self.status = 'unchanged' if unchanged else 'completed'
        self.completed_at = time.time()
        if stack_status is not None:
            self.stack_status = str(stack_status)
        if outputs is not None:
            self.outputs = dict(outputs)

    def fail(self, error: str, stack_status: Optional[str] = None) -> None:
        self.status = 'failed'
        self.completed_at = time.time()
        self.error = error
        if stack_status is not None:
            self.stack_status = stack_status

    def mark_destroyed(self, absent: bool = False) -> None:
        self.status = 'absent' if absent else 'destroyed'
        self.stack_status = None if absent else str(StackStatus.DELETE_COMPLETE)
        self.completed_at = time.time()

    @property
    def succeeded(self) -> bool:
        return self.status in ('completed', 'unchanged', 'destroyed', 'absent')

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'name': self.name,
            'status': self.status,
        }
        if self.stack_status is not None:
            d['stack_status'] = self.stack_status
        if self.outputs:
            d['outputs'] = dict(self.outputs)
        if self.purged:
            d['purged'] = dict(self.purged)
        if self.duration is not None:
            d['duration'] = round(self.duration, 2)
        if self.error is not None:
            d['error'] = self.error
        return d


class ExecutionState:
    """Walk-level state: ordered node states plus the halting error.

    Node states are registered in walk order, so `results` reads as the
    sequence of nodes the walk actually visited.
    """

    def __init__(self, topology_name: str, environment: str, verb: str):
        """Initialize execution state.

        Args:
            topology_name: Topology identifier
            environment: Environment tag
            verb: apply or destroy
        """
        self.topology_name = topology_name
        self.environment = environment
        self.verb = verb
        self._nodes: dict[str, NodeState] = {}
        self.error: Optional[Exception] = None
        self.started_at: Optional[float] = None
        self.completed_at: Optional[float] = None

    def add_node(self, name: str) -> NodeState:
        """Register a node for tracking."""
        state = NodeState(name=name)
        self._nodes[name] = state
        return state

    def get_node(self, name: str) -> NodeState:
        """Get node state by name.

        Raises:
            KeyError: If node not registered
        """
        return self._nodes[name]

    @property
    def nodes(self) -> dict[str, NodeState]:
        return dict(self._nodes)

    @property
    def results(self) -> list[NodeState]:
        """Visited nodes in walk order."""
        return [ns for ns in self._nodes.values() if ns.status != 'pending']

    @property
    def success(self) -> bool:
        return self.error is None and all(ns.succeeded for ns in self.results)

    def start(self) -> None:
        self.started_at = time.time()

    def finish(self) -> None:
        self.completed_at = time.time()

    @property
    def duration(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return self.completed_at - self.started_at
        return None

    def to_context(self) -> dict[str, str]:
        """Outputs of every visited node keyed 'stack.OutputKey'."""
        ctx: dict[str, str] = {}
        for name, state in self._nodes.items():
            for key, value in state.outputs.items():
                ctx[f'{name}.{key}'] = value
        return ctx

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            'verb': self.verb,
            'topology': self.topology_name,
            'environment': self.environment,
            'success': self.success,
            'nodes': [ns.to_dict() for ns in self.results],
        }
        if self.duration is not None:
            d['duration_seconds'] = round(self.duration, 2)
        if self.error is not None:
            d['error'] = str(self.error)
        return d


def write_summary(
    path: Path,
    values: dict[str, str],
    header: Optional[dict[str, str]] = None,
) -> Path:
    """Write the deployment summary as plain KEY=value lines.

    Consumed by the workload deployment step (role ARNs, bucket names).

    Args:
        path: Output file
        values: Output key -> value
        header: Run metadata written first (region, cluster, ...)

    Returns:
        Path where the summary was written
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    generated = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')

    lines = [f'# Deployment outputs, generated {generated}']
    for key, value in (header or {}).items():
        lines.append(f'{key}={value}')
    for key, value in values.items():
        lines.append(f'{key}={value}')

    path.write_text('\n'.join(lines) + '\n', encoding='utf-8')
    logger.info(f"Outputs saved to {path}")
    return path
