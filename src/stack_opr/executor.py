"""Graph executor for stack orchestration.

Walks the stack graph in apply order (dependencies first) or destroy
order (exact reverse), driving StackLifecycleManager one node at a time.
Outputs of applied stacks feed the parameter references of their
dependents. On destroy, buckets owned by a stack are purged once its
status allows the delete, and before the delete is issued.

The first failing node halts the walk. Nodes already applied are left
in place; the returned ExecutionState shows how far the walk got.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from config import ConfigError, DriverConfig, load_parameters
from stack_opr.client import ProvisioningClient
from stack_opr.confirm import ConfirmationGate
from stack_opr.errors import ConfirmationAborted, StackError, StackOperationError, WalkInterrupted
from stack_opr.graph import ExecutionNode, StackGraph
from stack_opr.lifecycle import StackLifecycleManager
from stack_opr.purge import BucketPurger
from stack_opr.state import ExecutionState, Stack
from topology import Topology

logger = logging.getLogger(__name__)


@dataclass
class GraphExecutor:
    """Executes apply/destroy over a stack graph.

    Attributes:
        topology: The topology being deployed
        graph: The execution graph built from the topology
        config: Resolved driver configuration
        client: Provisioning backend
        dry_run: If True, preview operations without backend calls
    """
    topology: Topology
    graph: StackGraph
    config: DriverConfig
    client: ProvisioningClient
    dry_run: bool = False
    stacks: dict[str, Stack] = field(default_factory=dict, init=False)
    _manager: StackLifecycleManager = field(default=None, init=False, repr=False)  # type: ignore[assignment]
    _purger: BucketPurger = field(default=None, init=False, repr=False)  # type: ignore[assignment]
    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def __post_init__(self) -> None:
        self._manager = StackLifecycleManager(self.client, timeout=self.config.stack_timeout)
        self._purger = BucketPurger(self.client, max_workers=self.config.purge_workers)

    def stop(self) -> None:
        """Request a halt at the next node boundary.

        An operation already issued to the backend keeps running there;
        only the walk stops.
        """
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # -------------------------------------------------------------------------
    # Apply
    # -------------------------------------------------------------------------

    def apply_all(self) -> ExecutionState:
        """Apply every stack, dependencies first."""
        order = self.graph.apply_order()
        state = ExecutionState(self.topology.name, self.config.environment, 'apply')
        state.start()
        for node in order:
            state.add_node(node.name)

        try:
            static = self._load_static_parameters(order)
        except ConfigError as e:
            logger.error(f"[apply] {e}")
            state.error = e
            state.finish()
            return state

        if self.dry_run:
            self._preview_apply(order, static)
            state.finish()
            return state

        self.stacks = {}
        for node in order:
            if self.stopped:
                state.error = WalkInterrupted(node.name, "interrupted before apply")
                logger.warning(f"[apply] Interrupted, not applying '{node.name}' or later stacks")
                break

            node_state = state.get_node(node.name)
            node_state.start()
            try:
                parameters = self._resolve_parameters(node, static[node.name])
                stack = Stack.from_spec(
                    node.spec, self.config.template_ref(node.spec.template), parameters)
                self.stacks[node.name] = stack
                status = self._guard(node.name, lambda: self._manager.apply(stack))
            except ConfigError as e:
                logger.error(f"[apply] {node.name}: {e}")
                node_state.fail(str(e))
                state.error = e
                break
            except StackError as e:
                logger.error(f"[apply] {e}")
                node_state.fail(str(e), e.status)
                state.error = e
                break

            node_state.complete(status, stack.outputs, unchanged=stack.outcome == 'unchanged')

        state.finish()
        return state

    def _load_static_parameters(self, order: list[ExecutionNode]) -> dict[str, dict[str, str]]:
        """Parameter files plus inline values for every node.

        Runs before the first backend call so a missing file or a bad
        reference fails the whole walk up front.

        Raises:
            ConfigError: If a parameter file is missing or invalid, or a
                reference does not point at a dependency
        """
        static: dict[str, dict[str, str]] = {}
        for node in order:
            spec = node.spec
            params: dict[str, str] = {}
            if spec.parameter_set:
                params.update(load_parameters(self.config.parameters_file(spec.parameter_set)))
            params.update(spec.parameters)

            ancestors = self.graph.ancestors(node.name)
            for key, ref in spec.parameter_refs.items():
                if ref.stack not in ancestors:
                    raise ConfigError(
                        f"Stack '{node.name}' parameter '{key}' references '{ref}', "
                        f"but '{ref.stack}' is not a dependency of '{node.name}'")
            static[node.name] = params
        return static

    def _resolve_parameters(self, node: ExecutionNode, static: dict[str, str]) -> dict[str, str]:
        """Merge ancestor outputs into a node's parameters.

        Raises:
            ConfigError: If a referenced output is missing
        """
        params = dict(static)
        for key, ref in node.spec.parameter_refs.items():
            source = self.stacks.get(ref.stack)
            value = source.outputs.get(ref.output) if source else None
            if value is None:
                raise ConfigError(
                    f"Stack '{node.name}' parameter '{key}': output '{ref.output}' "
                    f"not found on stack '{ref.stack}'")
            logger.debug(f"[apply] {node.name}: {key} <- {ref}")
            params[key] = value
        return params

    def summary_values(self) -> dict[str, str]:
        """Outputs named in summary_outputs, in apply order."""
        values: dict[str, str] = {}
        for node in self.graph.apply_order():
            stack = self.stacks.get(node.name)
            if stack is None:
                continue
            for key in node.spec.summary_outputs:
                if key in stack.outputs:
                    values[key] = stack.outputs[key]
                else:
                    logger.warning(f"Stack '{node.name}' has no output '{key}' for the summary")
        return values

    # -------------------------------------------------------------------------
    # Destroy
    # -------------------------------------------------------------------------

    def destroy_summary(self) -> list[str]:
        """Lines describing what destroy_all will remove."""
        lines = [
            f"Region:  {self.config.region}",
            f"Cluster: {self.config.cluster_name}",
            "Stacks (in deletion order):",
        ]
        for node in self.graph.destroy_order():
            suffix = ' (buckets emptied first)' if node.spec.purge_storage else ''
            lines.append(f"  - {node.name}{suffix}")
        return lines

    def destroy_all(self, gate: Optional[ConfirmationGate] = None,
                    before_walk: Optional[Callable[[], None]] = None) -> ExecutionState:
        """Destroy every stack, dependents first.

        Args:
            gate: Confirmation required before any deletion (None = no prompt)
            before_walk: Called once confirmed, before the first stack is touched
        """
        order = self.graph.destroy_order()
        state = ExecutionState(self.topology.name, self.config.environment, 'destroy')
        state.start()
        for node in order:
            state.add_node(node.name)

        if self.dry_run:
            self._preview_destroy(order)
            state.finish()
            return state

        if gate is not None and not gate.run(self.destroy_summary()):
            state.error = ConfirmationAborted(
                f"Destroy of '{self.config.environment}' was not confirmed")
            state.finish()
            return state

        if before_walk is not None:
            before_walk()

        self.stacks = {}
        for node in order:
            if self.stopped:
                state.error = WalkInterrupted(node.name, "interrupted before destroy")
                logger.warning(f"[destroy] Interrupted, not destroying '{node.name}' or later stacks")
                break

            node_state = state.get_node(node.name)
            node_state.start()
            stack = Stack.from_spec(node.spec, self.config.template_ref(node.spec.template))
            self.stacks[node.name] = stack
            try:
                current = self._guard(node.name, lambda: self._manager.prepare_destroy(stack))
                if node.spec.purge_storage and current is not None:
                    node_state.purged = self._guard(node.name, lambda: self._purge_storage(node))
                self._guard(node.name, lambda: self._manager.destroy(stack))
            except StackError as e:
                logger.error(f"[destroy] {e}")
                node_state.fail(str(e), e.status)
                state.error = e
                break

            node_state.mark_destroyed(absent=stack.outcome == 'absent')

        state.finish()
        return state

    def _purge_storage(self, node: ExecutionNode) -> dict[str, int]:
        """Empty every bucket named by the node's storage outputs."""
        outputs = self.client.get_outputs(node.name)
        purged: dict[str, int] = {}
        for key in node.spec.storage:
            bucket = outputs.get(key)
            if not bucket:
                logger.warning(f"[destroy] {node.name}: no output '{key}', skipping its bucket")
                continue
            logger.info(f"[destroy] {node.name}: emptying bucket {bucket}")
            purged[bucket] = self._purger.purge(bucket)
        return purged

    @staticmethod
    def _guard(stack_name: str, call):
        """Run a backend call, turning raw botocore errors into StackOperationError."""
        try:
            return call()
        except (ClientError, BotoCoreError) as e:
            raise StackOperationError(stack_name, f"backend call failed: {e}")

    # -------------------------------------------------------------------------
    # Dry run
    # -------------------------------------------------------------------------

    def _preview_apply(self, order: list[ExecutionNode],
                       static: dict[str, dict[str, str]]) -> None:
        """Preview apply operations."""
        print("")
        print("=" * 65)
        print(f"  DRY-RUN APPLY: {self.topology.name}")
        print(f"  Environment: {self.config.environment}  Region: {self.config.region}")
        print("=" * 65)
        print("")
        for i, node in enumerate(order, 1):
            spec = node.spec
            deps = f" (after: {', '.join(spec.depends_on)})" if spec.depends_on else " (root)"
            print(f"  [{i}] {spec.name}{deps}")
            print(f"      template={self.config.template_ref(spec.template)}")
            if spec.parameter_set:
                print(f"      parameters={self.config.parameters_file(spec.parameter_set)}")
            if static[node.name]:
                print(f"      static: {', '.join(static[node.name])}")
            for key, ref in spec.parameter_refs.items():
                print(f"      {key} <- {ref}")
            if spec.capabilities:
                print(f"      capabilities={','.join(spec.capabilities)}")
        print("")

    def _preview_destroy(self, order: list[ExecutionNode]) -> None:
        """Preview destroy operations."""
        print("")
        print("=" * 65)
        print(f"  DRY-RUN DESTROY: {self.topology.name}")
        print(f"  Environment: {self.config.environment}  Region: {self.config.region}")
        print("=" * 65)
        print("")
        for i, node in enumerate(order, 1):
            print(f"  [{i}] {node.name}: destroy")
            if node.spec.purge_storage:
                print(f"      empty buckets from outputs: {', '.join(node.spec.storage)}")
        print("")
