"""Typed confirmation before destructive operations.

ConfirmationGate is a small state machine:

    INIT -> AWAITING_PRIMARY -> [AWAITING_SECONDARY] -> CONFIRMED
                     \\                  \\
                      +------------------+--> ABORTED

The primary token is the literal 'yes'. Protected tiers additionally
require the tier name typed out. Any other input, or end of input,
aborts. Input comes from a pluggable callable so tests (and --yes) can
script the answers.
"""

import logging
from enum import Enum
from typing import Callable, Iterable, Optional

logger = logging.getLogger(__name__)

PRIMARY_TOKEN = 'yes'


class GateState(Enum):
    INIT = 'init'
    AWAITING_PRIMARY = 'awaiting_primary'
    AWAITING_SECONDARY = 'awaiting_secondary'
    CONFIRMED = 'confirmed'
    ABORTED = 'aborted'

    @property
    def is_terminal(self) -> bool:
        return self in (GateState.CONFIRMED, GateState.ABORTED)


class ConfirmationGate:
    """Requires one or two exact tokens before a destroy may proceed."""

    def __init__(
        self,
        environment: str,
        protected: bool = False,
        input_fn: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
        secondary_token: Optional[str] = None,
    ):
        """Initialize the gate.

        Args:
            environment: Environment tag shown in the warning
            protected: True if the environment is a protected tier
            input_fn: Returns the next token given a prompt (raises EOFError at end)
            output: Line printer for the warning summary
            secondary_token: Token for the protected step (default: environment name)
        """
        self.environment = environment
        self.protected = protected
        self.input_fn = input_fn
        self.output = output
        self.secondary_token = secondary_token or environment
        self.state = GateState.INIT

    @property
    def confirmed(self) -> bool:
        return self.state == GateState.CONFIRMED

    @property
    def expected(self) -> Optional[str]:
        """Token the gate is waiting for, or None when not awaiting input."""
        if self.state == GateState.AWAITING_PRIMARY:
            return PRIMARY_TOKEN
        if self.state == GateState.AWAITING_SECONDARY:
            return self.secondary_token
        return None

    def reset(self) -> None:
        self.state = GateState.INIT

    def open(self, summary: Iterable[str] = ()) -> GateState:
        """Present the warning summary and start waiting for the primary token."""
        if self.state != GateState.INIT:
            raise RuntimeError(f"Gate already opened (state: {self.state.value})")
        self.output("")
        self.output(f"WARNING: This will destroy infrastructure in '{self.environment}'.")
        for line in summary:
            self.output(f"  {line}")
        self.output("This action cannot be undone.")
        self.state = GateState.AWAITING_PRIMARY
        return self.state

    def submit(self, token: str) -> GateState:
        """Advance on an exact match of the expected token, abort otherwise.

        Raises:
            RuntimeError: If the gate is not waiting for input
        """
        expected = self.expected
        if expected is None:
            raise RuntimeError(f"Gate is not awaiting input (state: {self.state.value})")

        if token.strip() != expected:
            logger.info(f"[confirm] Expected '{expected}', aborting")
            self.state = GateState.ABORTED
        elif self.state == GateState.AWAITING_PRIMARY and self.protected:
            self.state = GateState.AWAITING_SECONDARY
        else:
            self.state = GateState.CONFIRMED
        return self.state

    def _prompt(self) -> str:
        if self.state == GateState.AWAITING_PRIMARY:
            return f"Type '{PRIMARY_TOKEN}' to continue: "
        return (f"'{self.environment}' is a protected environment. "
                f"Type '{self.secondary_token}' to confirm: ")

    def run(self, summary: Iterable[str] = ()) -> bool:
        """Open the gate and read tokens until it is confirmed or aborted.

        Returns:
            True if confirmed
        """
        self.open(summary)
        while not self.state.is_terminal:
            try:
                token = self.input_fn(self._prompt())
            except EOFError:
                logger.info("[confirm] End of input, aborting")
                self.state = GateState.ABORTED
                break
            self.submit(token)

        if self.confirmed:
            logger.info(f"[confirm] Destroy of '{self.environment}' confirmed")
        else:
            self.output("Aborted.")
        return self.confirmed


def scripted_input(tokens: Iterable[str],
                   fallback: Optional[Callable[[str], str]] = None) -> Callable[[str], str]:
    """Input source that answers with tokens first, then defers to fallback.

    Without a fallback, running out of tokens raises EOFError.
    """
    pending = list(tokens)

    def _next(prompt: str) -> str:
        if pending:
            return pending.pop(0)
        if fallback is None:
            raise EOFError(prompt)
        return fallback(prompt)

    return _next
