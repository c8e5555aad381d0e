#!/usr/bin/env python3
"""CLI entry point for stack-driver.

Supports noun-action subcommands:
- stack-driver stack apply -E prod
- stack-driver stack destroy -E dev --yes

Nouns:
- stack: CloudFormation stack lifecycle (apply/destroy/plan/validate/outputs)
- topology: Topology discovery (list)
"""

import logging
import subprocess
import sys
from pathlib import Path

from config import ConfigError
from topology import TopologyLoader

# Noun commands (noun-action subcommands)
NOUN_COMMANDS = {
    "stack": "Stack lifecycle (apply/destroy/plan/validate/outputs)",
    "topology": "Topology discovery (list)",
}

STACK_ACTIONS = {
    "apply": "Create or update every stack in dependency order",
    "destroy": "Empty buckets and delete every stack in reverse order",
    "plan": "Preview apply order and parameter sources",
    "validate": "Validate topology, graph and project files",
    "outputs": "Print live stack outputs",
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version():
    """Get version from git tags (do not use hardcoded VERSION constant)."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except OSError:
        return 'dev'


def dispatch_stack(argv: list) -> int:
    """Dispatch 'stack' noun to action-specific handler.

    Args:
        argv: Arguments after 'stack' (e.g., ['apply', '-E', 'prod'])

    Returns:
        Exit code
    """
    if not argv or argv[0].startswith('-'):
        print("Usage: stack-driver stack <action> [options]")
        print()
        print("Actions:")
        for action, desc in STACK_ACTIONS.items():
            print(f"  {action:<9} {desc}")
        print()
        print("Run 'stack-driver stack <action> --help' for action-specific options.")
        return 1 if not argv else 0

    action = argv[0]
    rest = argv[1:]

    if action == "apply":
        from stack_opr.cli import apply_main
        rc: int = apply_main(rest)
        return rc
    if action == "destroy":
        from stack_opr.cli import destroy_main
        rc = destroy_main(rest)
        return rc
    if action == "plan":
        from stack_opr.cli import plan_main
        rc = plan_main(rest)
        return rc
    if action == "validate":
        from stack_opr.cli import validate_main
        rc = validate_main(rest)
        return rc
    if action == "outputs":
        from stack_opr.cli import outputs_main
        rc = outputs_main(rest)
        return rc

    print(f"Error: Unknown stack action '{action}'")
    print(f"Available actions: {', '.join(STACK_ACTIONS)}")
    return 1


def dispatch_topology(argv: list) -> int:
    """Dispatch 'topology' noun (only 'list' for now)."""
    if not argv or argv[0] != 'list':
        print("Usage: stack-driver topology list")
        return 1 if not argv else 0

    try:
        names = TopologyLoader().list_topologies()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    if not names:
        print("No topologies found")
        return 0
    for name in names:
        print(name)
    return 0


def dispatch_noun(noun: str, argv: list) -> int:
    """Dispatch to noun-specific CLI handler.

    Args:
        noun: The noun command (e.g., "stack")
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    if noun == "stack":
        return dispatch_stack(argv)
    if noun == "topology":
        return dispatch_topology(argv)

    print(f"Error: Noun '{noun}' not yet implemented")
    return 1


def print_usage():
    """Print top-level usage showing noun commands."""
    print(f"stack-driver {get_version()}")
    print()
    print("Usage: stack-driver <noun> <action> [options]")
    print()
    print("Commands:")
    for noun, desc in NOUN_COMMANDS.items():
        print(f"  {noun:<12} {desc}")
    print()
    print("Run 'stack-driver <noun> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  stack-driver stack apply -E prod")
    print("  stack-driver stack plan -E dev -T lgtm")
    print("  stack-driver stack destroy -E staging --yes")
    print("  stack-driver stack outputs -E prod --write-summary")


def main(argv=None) -> int:
    """CLI entry point, dispatch to noun-action handlers."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        print_usage()
        return 0

    first_arg = argv[0]
    if first_arg in ('--version', '-V'):
        print(f"stack-driver {get_version()}")
        return 0
    if first_arg in ('--help', '-h'):
        print_usage()
        return 0
    if first_arg in NOUN_COMMANDS:
        return dispatch_noun(first_arg, argv[1:])

    print(f"Error: Unknown command '{first_arg}'")
    print_usage()
    return 1


if __name__ == '__main__':
    sys.exit(main())
