"""
Retry Module - bounded send-and-confirm loop for signed transactions.

Each attempt sends the same signed bytes with provider-side retries turned
off and waits for confirmation against a per-attempt deadline. A missed
deadline is normal under load and simply leads to the next attempt. An
"already processed" rejection means an earlier attempt landed and counts as
confirmation. Anything else ends the loop and is raised to the caller.

Running out of attempts is not an error: the outcome is unknown, and the
caller gets a SubmissionResult with outcome EXHAUSTED (or, when asked for,
SubmissionOutcomeUnknownError). The transaction may still land until its
blockhash expires.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from solders.signature import Signature

from .cancellation import AbortSignal, abortable
from .config import SubmissionSettings
from .exceptions import (
    InvalidStateTransitionError,
    SubmissionOutcomeUnknownError,
    TransactionAlreadyProcessedError,
    rebuild_may_help,
)
from .rpc import LedgerClient
from .types import CommitmentLevel, SignedTransaction

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 4
DEFAULT_ATTEMPT_TIMEOUT = 15.0


class SubmissionState(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CONFIRMED = "confirmed"
    TIMED_OUT = "timed_out"
    ALREADY_PROCESSED = "already_processed"
    FATAL_ERROR = "fatal_error"
    EXHAUSTED = "exhausted"


TERMINAL_STATES: FrozenSet[SubmissionState] = frozenset({
    SubmissionState.CONFIRMED,
    SubmissionState.FATAL_ERROR,
    SubmissionState.EXHAUSTED,
})

ALLOWED_TRANSITIONS: Dict[SubmissionState, FrozenSet[SubmissionState]] = {
    SubmissionState.PENDING: frozenset({SubmissionState.SENT}),
    SubmissionState.SENT: frozenset({
        SubmissionState.CONFIRMED,
        SubmissionState.TIMED_OUT,
        SubmissionState.ALREADY_PROCESSED,
        SubmissionState.FATAL_ERROR,
    }),
    SubmissionState.TIMED_OUT: frozenset({SubmissionState.SENT, SubmissionState.EXHAUSTED}),
    SubmissionState.ALREADY_PROCESSED: frozenset({SubmissionState.CONFIRMED}),
    SubmissionState.CONFIRMED: frozenset(),
    SubmissionState.FATAL_ERROR: frozenset(),
    SubmissionState.EXHAUSTED: frozenset(),
}


@dataclass
class RetryState:
    """
    Mutable progress of one submission.

    Attributes:
        attempts_remaining: Attempts not yet started
        attempts_made: Attempts started so far
        deadline: Event loop time at which the current attempt times out
        state: Current state of the submission
        history: Every state entered, in order
        error: The error that ended the loop, for FATAL_ERROR
    """
    attempts_remaining: int
    attempts_made: int = 0
    deadline: Optional[float] = None
    state: SubmissionState = SubmissionState.PENDING
    history: List[SubmissionState] = field(default_factory=lambda: [SubmissionState.PENDING])
    error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: SubmissionState) -> None:
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidStateTransitionError(
                f"Cannot move from {self.state.value} to {new_state.value}"
            )
        logger.debug("Submission state %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    def begin_attempt(self, deadline: float) -> None:
        self.transition(SubmissionState.SENT)
        self.attempts_remaining -= 1
        self.attempts_made += 1
        self.deadline = deadline

    def fail(self, error: BaseException) -> None:
        self.error = error
        self.transition(SubmissionState.FATAL_ERROR)


class SubmissionOutcome(str, Enum):
    CONFIRMED = "confirmed"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class SubmissionResult:
    signature: Signature
    outcome: SubmissionOutcome
    attempts: int
    history: tuple = ()

    @property
    def confirmed(self) -> bool:
        return self.outcome == SubmissionOutcome.CONFIRMED


class RetryingSubmitter:
    """
    Sends a SignedTransaction until it is confirmed, fails, or attempts run out.

    `retries` counts send-and-confirm attempts and must be at least 1; a
    submitter that would never send raises ValueError at construction
    instead of returning an empty result.

    Usage:
        submitter = RetryingSubmitter(client, retries=4)
        result = await submitter.submit(signed_tx)
        if not result.confirmed:
            ...  # outcome unknown; rebuild with a fresh blockhash if needed
    """

    def __init__(
        self,
        client: LedgerClient,
        retries: int = DEFAULT_RETRIES,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
        commitment: CommitmentLevel = CommitmentLevel.CONFIRMED,
        raise_on_exhaustion: bool = False,
        on_retry: Optional[Callable[[int, RetryState], None]] = None,
    ):
        if retries < 1:
            raise ValueError("retries must be >= 1")
        if attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be > 0")
        self.client = client
        self.retries = retries
        self.attempt_timeout = attempt_timeout
        self.commitment = CommitmentLevel(commitment)
        self.raise_on_exhaustion = raise_on_exhaustion
        self.on_retry = on_retry

    @classmethod
    def from_settings(cls, client: LedgerClient, settings: SubmissionSettings) -> "RetryingSubmitter":
        return cls(
            client,
            retries=settings.retries,
            attempt_timeout=settings.attempt_timeout,
            commitment=settings.commitment,
            raise_on_exhaustion=settings.raise_on_exhaustion,
        )

    async def _send_and_confirm(
        self,
        transaction: SignedTransaction,
        abort_signal: Optional[AbortSignal],
    ) -> None:
        signature = await self.client.submit(
            transaction,
            commitment=self.commitment,
            abort_signal=abort_signal,
        )
        await self.client.await_confirmation(
            signature,
            transaction.anchor,
            commitment=self.commitment,
            abort_signal=abort_signal,
        )

    async def submit(
        self,
        transaction: SignedTransaction,
        abort_signal: Optional[AbortSignal] = None,
    ) -> SubmissionResult:
        state = RetryState(attempts_remaining=self.retries)
        await self.run(transaction, state, abort_signal)

        result = SubmissionResult(
            signature=transaction.signature,
            outcome=SubmissionOutcome(state.state.value),
            attempts=state.attempts_made,
            history=tuple(state.history),
        )
        if not result.confirmed and self.raise_on_exhaustion:
            raise SubmissionOutcomeUnknownError(
                message=f"Not confirmed after {state.attempts_made} attempts",
                transaction_signature=str(transaction.signature),
                attempts=state.attempts_made,
            )
        return result

    async def run(
        self,
        transaction: SignedTransaction,
        state: RetryState,
        abort_signal: Optional[AbortSignal] = None,
    ) -> RetryState:
        """Drive `state` to a terminal state. Raises on FATAL_ERROR."""
        loop = asyncio.get_running_loop()

        while not state.is_terminal:
            state.begin_attempt(loop.time() + self.attempt_timeout)
            try:
                await abortable(
                    asyncio.wait_for(
                        self._send_and_confirm(transaction, abort_signal),
                        timeout=self.attempt_timeout,
                    ),
                    abort_signal,
                )
            except asyncio.TimeoutError:
                state.transition(SubmissionState.TIMED_OUT)
                if state.attempts_remaining > 0:
                    logger.debug(
                        "Transaction not confirmed after %.1fs, retrying (%d attempts left)",
                        self.attempt_timeout,
                        state.attempts_remaining,
                    )
                    if self.on_retry:
                        self.on_retry(state.attempts_made, state)
                    continue
                state.transition(SubmissionState.EXHAUSTED)
                logger.warning(
                    "Transaction %s not confirmed after %d attempts; outcome unknown",
                    transaction.signature,
                    state.attempts_made,
                )
            except TransactionAlreadyProcessedError:
                # An earlier attempt landed between its deadline and this resend.
                state.transition(SubmissionState.ALREADY_PROCESSED)
                state.transition(SubmissionState.CONFIRMED)
            except Exception as e:
                state.fail(e)
                logger.error(
                    "Transaction %s failed on attempt %d: %s",
                    transaction.signature,
                    state.attempts_made,
                    e,
                )
                if rebuild_may_help(e):
                    logger.info("Rebuilding with a fresh blockhash may succeed")
                raise
            else:
                state.transition(SubmissionState.CONFIRMED)

        return state


async def send_transaction_with_retry(
    client: LedgerClient,
    transaction: SignedTransaction,
    retries: int = DEFAULT_RETRIES,
    commitment: CommitmentLevel = CommitmentLevel.CONFIRMED,
    abort_signal: Optional[AbortSignal] = None,
    attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
) -> SubmissionResult:
    submitter = RetryingSubmitter(
        client,
        retries=retries,
        attempt_timeout=attempt_timeout,
        commitment=commitment,
    )
    return await submitter.submit(transaction, abort_signal=abort_signal)


__all__ = [
    "DEFAULT_RETRIES",
    "DEFAULT_ATTEMPT_TIMEOUT",
    "SubmissionState",
    "TERMINAL_STATES",
    "ALLOWED_TRANSITIONS",
    "RetryState",
    "SubmissionOutcome",
    "SubmissionResult",
    "RetryingSubmitter",
    "send_transaction_with_retry",
]
