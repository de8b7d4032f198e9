"""
Collaborator protocols consumed by the pipeline.

RpcGateway implements the network-facing ones on top of AsyncClient and
KeypairSigner implements Signer; tests substitute in-memory fakes.
"""

from typing import List, Protocol, Sequence, runtime_checkable

from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature

from .models import Checkpoint, CommitmentLevel, DraftTransaction, SignedTransaction, SimulationOutcome


@runtime_checkable
class CheckpointSource(Protocol):
    async def get_latest_checkpoint(
        self, commitment: CommitmentLevel = CommitmentLevel.CONFIRMED
    ) -> Checkpoint: ...


@runtime_checkable
class SimulationService(Protocol):
    async def simulate(self, draft: DraftTransaction) -> SimulationOutcome: ...


@runtime_checkable
class FeeSampleService(Protocol):
    async def get_recent_prioritization_fees(self, accounts: Sequence[Pubkey]) -> List[int]: ...

    async def get_priority_fee_estimate(self, accounts: Sequence[Pubkey]) -> float: ...


@runtime_checkable
class SendConfirmService(Protocol):
    async def send_and_confirm(
        self,
        signed: SignedTransaction,
        commitment: CommitmentLevel,
        skip_preflight: bool,
    ) -> None:
        """Resolve once ``signed`` reaches ``commitment``; raise a typed error otherwise."""
        ...


@runtime_checkable
class Signer(Protocol):
    @property
    def fee_payer(self) -> Pubkey: ...

    async def sign_message(self, message: MessageV0) -> List[Signature]:
        """Signatures for every required signer, in the message's signer order."""
        ...


__all__ = [
    "CheckpointSource",
    "SimulationService",
    "FeeSampleService",
    "SendConfirmService",
    "Signer",
]
