"""CLI handlers for stack verb commands (apply, destroy, plan, validate, outputs).

Usage:
    stack-driver stack apply -E <env> [-T <topology>] [--dry-run] [--json-output] [--verbose]
    stack-driver stack destroy -E <env> [-T <topology>] [--dry-run] [--yes]
    stack-driver stack plan -E <env> [-T <topology>]
    stack-driver stack validate [-T <topology>] [-E <env>]
    stack-driver stack outputs -E <env> [-T <topology>] [--write-summary]

Exit codes: 0 success, 1 node failure / aborted / interrupted / pre-flight
failure, 2 configuration error.
"""

import argparse
import json
import logging
import os
import signal
import sys
from contextlib import contextmanager
from typing import Optional

from actions import DeleteAddonAction, EnsureAddonAction, ReportOrphansAction, UpdateKubeconfigAction
from config import ENVIRONMENTS, ConfigError, DriverConfig, load_driver_config
from stack_opr.client import CloudFormationClient, ProvisioningClient
from stack_opr.confirm import PRIMARY_TOKEN, ConfirmationGate, scripted_input
from stack_opr.errors import StackError
from stack_opr.executor import GraphExecutor
from stack_opr.graph import StackGraph
from stack_opr.state import ExecutionState, write_summary
from topology import Topology, load_topology
from validation import format_errors, validate_readiness

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _common_parser(verb: str, env_required: bool = True) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'stack-driver stack {verb}',
        description=f'{verb.capitalize()} CloudFormation stacks from a topology',
    )
    parser.add_argument(
        '--topology', '-T',
        default=os.environ.get('STACK_DRIVER_TOPOLOGY'),
        help='Topology name from topologies/ (default: lgtm, override: STACK_DRIVER_TOPOLOGY)',
    )
    parser.add_argument(
        '--topology-file',
        help='Path to topology file',
    )
    default_env = os.environ.get('ENVIRONMENT')
    parser.add_argument(
        '--env', '-E',
        dest='environment',
        choices=ENVIRONMENTS,
        default=default_env,
        required=env_required and not default_env,
        help='Environment tag, selects parameters/<env>-*.json (override: ENVIRONMENT)',
    )
    parser.add_argument(
        '--region',
        help='AWS region (override: AWS_REGION)',
    )
    parser.add_argument(
        '--cluster-name',
        help='EKS cluster name (override: CLUSTER_NAME)',
    )
    parser.add_argument(
        '--output-dir',
        help='Directory for deployment-outputs-<env>.txt (default: current directory)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _walk_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Preview operations without executing',
    )
    parser.add_argument(
        '--skip-preflight',
        action='store_true',
        help='Skip pre-flight validation checks',
    )


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def _load_topology_and_config(args) -> tuple[Topology, DriverConfig]:
    """Load topology and resolve configuration from parsed args.

    Raises:
        ConfigError: On any topology or configuration problem
    """
    topology = load_topology(name=args.topology, file_path=args.topology_file)
    config = load_driver_config(
        environment=args.environment,
        settings=topology.settings,
        region=args.region,
        cluster_name=args.cluster_name,
        output_dir=args.output_dir,
    )
    return topology, config


def make_client(config: DriverConfig) -> ProvisioningClient:
    """Provisioning backend for a run."""
    return CloudFormationClient(config.region, poll_interval=config.poll_interval)


def _run_preflight(args, topology: Topology, config: DriverConfig, verb: str) -> Optional[int]:
    """Run preflight checks for verb commands.

    Returns:
        None if checks pass, exit code (1) if checks fail.
    """
    if args.skip_preflight or args.dry_run:
        return None

    errors = validate_readiness(topology, config, verb=verb)
    if errors:
        print("\nPre-flight validation failed:", file=sys.stderr)
        print(format_errors(errors), file=sys.stderr)
        print("\nUse --skip-preflight to bypass these checks\n", file=sys.stderr)
        return EXIT_FAILED
    logger.info("Pre-flight validation passed")
    return None


@contextmanager
def _interrupt_handler(executor: GraphExecutor):
    """First Ctrl-C stops the walk at the next stack boundary; a second one aborts."""
    previous = signal.getsignal(signal.SIGINT)

    def _handle(_signum, _frame):
        logger.warning("Interrupt received, stopping after the current stack "
                       "(the backend operation in flight will finish on its own)")
        executor.stop()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _handle)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def exit_code(state: ExecutionState) -> int:
    """Map a walk result to the process exit code."""
    if state.success:
        return EXIT_OK
    if isinstance(state.error, ConfigError):
        return EXIT_CONFIG
    return EXIT_FAILED


def _emit_json(state: ExecutionState, **extra) -> None:
    """Emit structured JSON output."""
    output = state.to_dict()
    output.update({k: v for k, v in extra.items() if v is not None})
    print(json.dumps(output, indent=2))


def _report(state: ExecutionState) -> None:
    """Log how far the walk got."""
    for ns in state.results:
        detail = f" ({ns.stack_status})" if ns.stack_status else ''
        logger.info(f"  {ns.name}: {ns.status}{detail}")
    if state.error is not None:
        logger.error(f"{state.verb.capitalize()} halted: {state.error}")


# -----------------------------------------------------------------------------
# apply / plan
# -----------------------------------------------------------------------------

def _post_apply(executor: GraphExecutor, state: ExecutionState,
                topology: Topology, config: DriverConfig) -> tuple[bool, Optional[str]]:
    """Write the summary, then run kubeconfig and add-on steps.

    Returns:
        (success, summary path)
    """
    header = {
        'REGION': config.region,
        'CLUSTER_NAME': config.cluster_name,
        'ENVIRONMENT': config.environment,
        'STACKS': ','.join(n.name for n in executor.graph.apply_order()),
    }
    path = write_summary(config.summary_path, executor.summary_values(), header)

    if config.update_kubeconfig:
        result = UpdateKubeconfigAction().run(config, {})
        if not result.success:
            logger.warning(f"[kubeconfig] {result.message}")

    context = state.to_context()
    ok = True
    for addon in topology.addons:
        result = EnsureAddonAction(name='addon', addon=addon.name, role=addon.role).run(config, context)
        if result.success:
            logger.info(f"[addon] {result.message}")
        else:
            logger.error(f"[addon] {result.message}")
            ok = False
    return ok, str(path)


def _apply(args, dry_run: bool) -> int:
    try:
        topology, config = _load_topology_and_config(args)
        graph = StackGraph(topology)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    preflight_rc = _run_preflight(args, topology, config, 'apply')
    if preflight_rc is not None:
        return preflight_rc

    logger.info(f"Applying topology '{topology.name}' to {config.environment} "
                f"in {config.region} (cluster {config.cluster_name})")

    executor = GraphExecutor(
        topology=topology,
        graph=graph,
        config=config,
        client=make_client(config),
        dry_run=dry_run,
    )

    with _interrupt_handler(executor):
        state = executor.apply_all()

    rc = exit_code(state)
    summary_path = None
    if rc == EXIT_OK and not dry_run:
        post_ok, summary_path = _post_apply(executor, state, topology, config)
        if not post_ok:
            rc = EXIT_FAILED

    if not dry_run:
        _report(state)

    if args.json_output:
        _emit_json(state, dry_run=dry_run or None, summary=summary_path)
    elif summary_path:
        print("")
        print("Deployment outputs:")
        for key, value in executor.summary_values().items():
            print(f"  {key}={value}")
        print(f"Saved to {summary_path}")

    return rc


def apply_main(argv: list) -> int:
    """Handle 'stack apply' verb."""
    parser = _common_parser('apply')
    _walk_options(parser)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)
    return _apply(args, dry_run=args.dry_run)


def plan_main(argv: list) -> int:
    """Handle 'stack plan' verb (apply preview, no backend calls)."""
    parser = _common_parser('plan')
    args = parser.parse_args(argv)
    args.dry_run = True
    args.skip_preflight = True
    _setup_logging(args.verbose, args.json_output)
    return _apply(args, dry_run=True)


# -----------------------------------------------------------------------------
# destroy
# -----------------------------------------------------------------------------

def _stderr_input(prompt: str) -> str:
    """input() with the prompt on stderr, keeping stdout for JSON."""
    print(prompt, end='', file=sys.stderr, flush=True)
    return input()


def _make_gate(args, config: DriverConfig) -> ConfirmationGate:
    read = _stderr_input if args.json_output else input
    if args.yes:
        # --yes answers the primary prompt only; protected tiers still ask
        read = scripted_input([PRIMARY_TOKEN], fallback=read)

    if args.json_output:
        def output(line: str) -> None:
            print(line, file=sys.stderr)
    else:
        output = print

    return ConfirmationGate(
        environment=config.environment,
        protected=config.is_protected,
        input_fn=read,
        output=output,
    )


def _delete_addons(topology: Topology, config: DriverConfig) -> None:
    for addon in topology.addons:
        result = DeleteAddonAction(name='addon', addon=addon.name).run(config, {})
        if result.success:
            logger.info(f"[addon] {result.message}")
        else:
            logger.warning(f"[addon] {result.message}")


def destroy_main(argv: list) -> int:
    """Handle 'stack destroy' verb."""
    parser = _common_parser('destroy')
    _walk_options(parser)
    parser.add_argument(
        '--yes', '-y',
        action='store_true',
        help="Answer 'yes' to the first confirmation (protected tiers still prompt)",
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        topology, config = _load_topology_and_config(args)
        graph = StackGraph(topology)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    preflight_rc = _run_preflight(args, topology, config, 'destroy')
    if preflight_rc is not None:
        return preflight_rc

    executor = GraphExecutor(
        topology=topology,
        graph=graph,
        config=config,
        client=make_client(config),
        dry_run=args.dry_run,
    )

    gate = None if args.dry_run else _make_gate(args, config)

    def before_walk() -> None:
        logger.info(f"Destroying topology '{topology.name}' in {config.environment} "
                    f"({config.region}, cluster {config.cluster_name})")
        _delete_addons(topology, config)

    with _interrupt_handler(executor):
        state = executor.destroy_all(gate=gate, before_walk=before_walk)

    rc = exit_code(state)
    orphans = None
    if not args.dry_run:
        _report(state)
        if rc == EXIT_OK:
            result = ReportOrphansAction().run(config, {})
            logger.info(f"[orphans] {result.message}")
            orphans = result.context_updates.get('orphans')

    if args.json_output:
        _emit_json(state, dry_run=args.dry_run or None, orphans=orphans)

    return rc


# -----------------------------------------------------------------------------
# validate / outputs
# -----------------------------------------------------------------------------

def validate_main(argv: list) -> int:
    """Handle 'stack validate' verb.

    Validates topology structure and the dependency graph; with -E also
    checks that templates and parameter files exist. No backend calls.
    """
    parser = _common_parser('validate', env_required=False)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        topology = load_topology(name=args.topology, file_path=args.topology_file)
        graph = StackGraph(topology)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    errors: list[str] = []
    if args.environment:
        try:
            config = load_driver_config(args.environment, settings=topology.settings,
                                        region=args.region, cluster_name=args.cluster_name)
        except ConfigError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_CONFIG
        errors = validate_readiness(topology, config, check_credentials=False)

    order = [n.name for n in graph.apply_order()]
    if args.json_output:
        print(json.dumps({
            'topology': topology.name,
            'valid': not errors,
            'apply_order': order,
            'errors': errors,
        }, indent=2))
    elif errors:
        print(f"Topology '{topology.name}' has {len(errors)} validation error(s):", file=sys.stderr)
        print(format_errors(errors), file=sys.stderr)
    else:
        count = len(order)
        print(f"Topology '{topology.name}' is valid ({count} stack{'s' if count != 1 else ''})")
        print(f"  apply order: {' -> '.join(order)}")

    return EXIT_CONFIG if errors else EXIT_OK


def outputs_main(argv: list) -> int:
    """Handle 'stack outputs' verb: print live outputs of every stack."""
    parser = _common_parser('outputs')
    parser.add_argument(
        '--write-summary',
        action='store_true',
        help='Rewrite deployment-outputs-<env>.txt from the live outputs',
    )
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        topology, config = _load_topology_and_config(args)
        graph = StackGraph(topology)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    client = make_client(config)
    outputs: dict[str, dict[str, str]] = {}
    summary: dict[str, str] = {}
    for node in graph.apply_order():
        try:
            stack_outputs = client.get_outputs(node.name)
        except StackError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_FAILED
        outputs[node.name] = stack_outputs
        for key in node.spec.summary_outputs:
            if key in stack_outputs:
                summary[key] = stack_outputs[key]

    if args.write_summary:
        write_summary(config.summary_path, summary, {
            'REGION': config.region,
            'CLUSTER_NAME': config.cluster_name,
            'ENVIRONMENT': config.environment,
            'STACKS': ','.join(outputs),
        })

    if args.json_output:
        print(json.dumps(outputs, indent=2))
        return EXIT_OK

    for name, stack_outputs in outputs.items():
        print(f"{name}:")
        if not stack_outputs:
            print("  (no outputs, stack may not exist)")
        for key, value in stack_outputs.items():
            print(f"  {key} = {value}")
    return EXIT_OK
