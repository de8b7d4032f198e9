"""
Value types shared by the estimators, the assembler and the submission engine.

Everything that crosses a stage boundary is immutable: a stage that needs a
different transaction produces a new DraftTransaction instead of editing one.
"""

import asyncio
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from solders.hash import Hash
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from .exceptions import TransactionBuildError
from .instructions import InstructionKind, InstructionLike, TaggedInstruction, tag_all

DEFAULT_CONFIRMATION_TIMEOUT = 60.0
DEFAULT_ATTEMPT_TIMEOUT = 15.0
DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_TRANSACTION_RETRIES = 4


class CommitmentLevel(str, Enum):
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return _COMMITMENT_RANK[self]

    def is_reached_by(self, observed: Optional["CommitmentLevel"]) -> bool:
        return observed is not None and observed.rank >= self.rank


_COMMITMENT_RANK = {
    CommitmentLevel.PROCESSED: 0,
    CommitmentLevel.CONFIRMED: 1,
    CommitmentLevel.FINALIZED: 2,
}


class SubmissionState(str, Enum):
    """Where a submission ended. SENT means the outcome on the network is unknown."""
    SENT = "sent"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


class AttemptOutcome(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    TRANSIENT_FAILURE = "transient_failure"
    EXPIRED = "expired"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class Checkpoint:
    """A recent blockhash and the last block height at which it is still valid."""
    blockhash: Hash
    last_valid_block_height: int

    def is_expired_at(self, block_height: int) -> bool:
        return block_height > self.last_valid_block_height


@dataclass(frozen=True)
class DraftTransaction:
    fee_payer: Pubkey
    lifetime: Checkpoint
    instructions: Tuple[TaggedInstruction, ...] = ()

    def __post_init__(self):
        if self.fee_payer is None:
            raise TransactionBuildError("Draft transaction requires a fee payer")
        if self.lifetime is None:
            raise TransactionBuildError("Draft transaction requires a lifetime checkpoint")
        object.__setattr__(self, "instructions", tag_all(self.instructions))

    @property
    def instruction_count(self) -> int:
        return len(self.instructions)

    def with_appended(self, instructions: Iterable[InstructionLike]) -> "DraftTransaction":
        return replace(self, instructions=self.instructions + tag_all(instructions))

    def has_instruction_kind(self, kind: InstructionKind) -> bool:
        return any(ix.kind == kind for ix in self.instructions)

    def writable_accounts(self) -> List[Pubkey]:
        """Writable account keys referenced by the instructions, deduplicated."""
        seen = {}
        for ix in self.instructions:
            for key in ix.writable_accounts():
                seen.setdefault(key, None)
        return list(seen)

    def compile(self) -> MessageV0:
        try:
            return MessageV0.try_compile(
                payer=self.fee_payer,
                instructions=[ix.instruction for ix in self.instructions],
                address_lookup_table_accounts=[],
                recent_blockhash=self.lifetime.blockhash,
            )
        except Exception as e:
            raise TransactionBuildError(f"Failed to compile transaction message: {e}") from e

    def to_unsigned_transaction(self) -> VersionedTransaction:
        """Placeholder-signed transaction for simulation with signature verification off."""
        message = self.compile()
        signatures = [Signature.default()] * message.header.num_required_signatures
        return VersionedTransaction.populate(message, signatures)


@dataclass(frozen=True)
class SignedTransaction:
    draft: DraftTransaction
    transaction: VersionedTransaction

    @property
    def signature(self) -> Signature:
        return self.transaction.signatures[0]

    @property
    def raw(self) -> bytes:
        return bytes(self.transaction)

    @property
    def lifetime(self) -> Checkpoint:
        return self.draft.lifetime


@dataclass
class SubmitOptions:
    commitment: CommitmentLevel = CommitmentLevel.CONFIRMED
    skip_preflight: bool = False
    max_client_side_retries: int = 0
    timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    attempt_timeout: Optional[float] = DEFAULT_ATTEMPT_TIMEOUT
    abort_signal: Optional[asyncio.Event] = None

    def __post_init__(self):
        self.commitment = CommitmentLevel(self.commitment)
        if self.max_client_side_retries < 0:
            raise ValueError("max_client_side_retries must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        if self.attempt_timeout is not None and self.attempt_timeout <= 0:
            raise ValueError("attempt_timeout must be > 0")


@dataclass
class SubmissionAttempt:
    signature: Signature
    attempt: int
    commitment: CommitmentLevel
    skip_preflight: bool
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    error: Optional[str] = None

    def finish(self, outcome: AttemptOutcome, error: Optional[BaseException] = None) -> None:
        self.outcome = outcome
        self.finished_at = time.time()
        if error is not None:
            self.error = str(error)

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at


@dataclass
class SubmissionReport:
    signature: Signature
    state: SubmissionState
    attempts: List[SubmissionAttempt] = field(default_factory=list)


@dataclass
class SimulationOutcome:
    units_consumed: Optional[int]
    err: Optional[object] = None
    logs: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.err is None


__all__ = [
    "DEFAULT_CONFIRMATION_TIMEOUT",
    "DEFAULT_ATTEMPT_TIMEOUT",
    "DEFAULT_POLL_INTERVAL",
    "DEFAULT_TRANSACTION_RETRIES",
    "CommitmentLevel",
    "SubmissionState",
    "AttemptOutcome",
    "Checkpoint",
    "DraftTransaction",
    "SignedTransaction",
    "SubmitOptions",
    "SubmissionAttempt",
    "SubmissionReport",
    "SimulationOutcome",
]
