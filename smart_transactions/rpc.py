"""
RPC-backed collaborators.

RpcGateway wraps a solana-py AsyncClient and provides the checkpoint source,
simulation service, fee sample service and send/confirm service the pipeline
consumes. ``getPriorityFeeEstimate`` is a provider extension that AsyncClient
does not expose, so it is sent as raw JSON-RPC over aiohttp.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import aiohttp
import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature

from .exceptions import (
    FeeEstimationFailure,
    LifetimeExpired,
    SimulationRejected,
    TransactionError,
    TransportTransient,
    parse_transaction_error,
)
from .instructions import (
    MAX_COMPUTE_UNIT_LIMIT,
    InstructionKind,
    set_compute_unit_limit_instruction,
)
from .models import (
    DEFAULT_POLL_INTERVAL,
    Checkpoint,
    CommitmentLevel,
    DraftTransaction,
    SignedTransaction,
    SimulationOutcome,
)

logger = logging.getLogger(__name__)

TRANSPORT_ERRORS = (
    SolanaRpcException,
    httpx.HTTPError,
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
)

TRANSIENT_RPC_MARKERS = (
    "rate limit",
    "too many requests",
    "timeout",
    "timed out",
    "connection",
    "node is behind",
    "node is unhealthy",
    "429",
    "502",
    "503",
    "504",
)


@dataclass
class SignatureStatus:
    level: Optional[CommitmentLevel]
    err: Optional[Any] = None
    slot: Optional[int] = None


def to_commitment(level: CommitmentLevel) -> Commitment:
    return Commitment(CommitmentLevel(level).value)


def error_payload(err: Any) -> Any:
    """Turn a solders TransactionError into the JSON shape parse_transaction_error reads."""
    if err is None or isinstance(err, (dict, str)):
        return err

    index = getattr(err, "index", None)
    inner = getattr(err, "err", None)
    if index is not None and inner is not None:
        code = getattr(inner, "code", None)
        if code is not None:
            return {"InstructionError": [index, {"Custom": code}]}
        return {"InstructionError": [index, str(inner)]}

    return str(err)


def _parse_confirmation_level(raw: Any) -> Optional[CommitmentLevel]:
    if raw is None:
        return None
    status_str = str(raw).lower()
    if "finalized" in status_str:
        return CommitmentLevel.FINALIZED
    if "confirmed" in status_str:
        return CommitmentLevel.CONFIRMED
    if "processed" in status_str:
        return CommitmentLevel.PROCESSED
    return None


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


class RpcGateway:

    def __init__(
        self,
        client: AsyncClient,
        rpc_url: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        rpc_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.client = client
        self.rpc_url = rpc_url
        self.poll_interval = poll_interval
        self.rpc_timeout = rpc_timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_url(
        cls,
        rpc_url: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        rpc_timeout: float = 30.0,
    ) -> "RpcGateway":
        return cls(
            AsyncClient(rpc_url, timeout=rpc_timeout),
            rpc_url,
            poll_interval=poll_interval,
            rpc_timeout=rpc_timeout,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"Content-Type": "application/json"})
            self._owns_session = True
        return self._session

    async def close(self):
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        await self.client.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------

    async def get_latest_checkpoint(
        self, commitment: CommitmentLevel = CommitmentLevel.CONFIRMED
    ) -> Checkpoint:
        try:
            response = await self.client.get_latest_blockhash(commitment=to_commitment(commitment))
        except TRANSPORT_ERRORS as e:
            raise TransportTransient(f"Failed to get recent blockhash: {e}", rpc_endpoint=self.rpc_url) from e

        if not response.value:
            raise TransportTransient("Failed to get recent blockhash", rpc_endpoint=self.rpc_url)

        checkpoint = Checkpoint(
            blockhash=response.value.blockhash,
            last_valid_block_height=response.value.last_valid_block_height,
        )
        logger.debug(
            "Fetched blockhash %s (valid until block height %d)",
            checkpoint.blockhash,
            checkpoint.last_valid_block_height,
        )
        return checkpoint

    async def get_block_height(self, commitment: CommitmentLevel = CommitmentLevel.CONFIRMED) -> int:
        response = await self.client.get_block_height(to_commitment(commitment))
        return response.value

    # -------------------------------------------------------------------------
    # Simulation
    # -------------------------------------------------------------------------

    async def simulate(self, draft: DraftTransaction) -> SimulationOutcome:
        # raise the limit for the simulated copy so metering is not capped by the default budget
        if not draft.has_instruction_kind(InstructionKind.SET_COMPUTE_UNIT_LIMIT):
            draft = draft.with_appended([set_compute_unit_limit_instruction(MAX_COMPUTE_UNIT_LIMIT)])

        response = await self.client.simulate_transaction(
            draft.to_unsigned_transaction(),
            sig_verify=False,
            commitment=to_commitment(CommitmentLevel.CONFIRMED),
        )

        result = response.value
        if result is None:
            return SimulationOutcome(units_consumed=None, err="Empty simulation response")

        return SimulationOutcome(
            units_consumed=result.units_consumed,
            err=error_payload(result.err),
            logs=list(result.logs or []),
        )

    # -------------------------------------------------------------------------
    # Fee samples
    # -------------------------------------------------------------------------

    async def get_recent_prioritization_fees(self, accounts: Sequence[Pubkey]) -> List[int]:
        response = await self.client.get_recent_prioritization_fees(list(accounts))
        return [entry.prioritization_fee for entry in (response.value or [])]

    async def get_priority_fee_estimate(self, accounts: Sequence[Pubkey]) -> float:
        session = await self._get_session()

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getPriorityFeeEstimate",
            "params": [{
                "accountKeys": [str(account) for account in accounts],
                "options": {"recommended": True},
            }],
        }

        async with session.post(
            self.rpc_url,
            json=payload,
            timeout=aiohttp.ClientTimeout(total=self.rpc_timeout),
        ) as response:
            if response.status != 200:
                raise FeeEstimationFailure(
                    f"getPriorityFeeEstimate returned HTTP {response.status}",
                    account_count=len(accounts),
                )
            data = await response.json()

        if "error" in data:
            raise FeeEstimationFailure(
                f"getPriorityFeeEstimate failed: {data['error']}",
                account_count=len(accounts),
            )

        result = data.get("result") or {}
        if "priorityFeeEstimate" not in result:
            raise FeeEstimationFailure(
                "getPriorityFeeEstimate response has no priorityFeeEstimate",
                account_count=len(accounts),
            )

        return result["priorityFeeEstimate"]

    # -------------------------------------------------------------------------
    # Send & confirm
    # -------------------------------------------------------------------------

    async def send_and_confirm(
        self,
        signed: SignedTransaction,
        commitment: CommitmentLevel,
        skip_preflight: bool,
    ) -> None:
        await self.send(signed, commitment, skip_preflight)
        await self.confirm(signed, commitment)

    async def send(
        self,
        signed: SignedTransaction,
        commitment: CommitmentLevel,
        skip_preflight: bool,
    ) -> Signature:
        # server-side retries stay off; resubmission is client-owned
        opts = TxOpts(
            skip_preflight=skip_preflight,
            preflight_commitment=to_commitment(commitment),
            max_retries=0,
        )

        try:
            response = await self.client.send_raw_transaction(signed.raw, opts=opts)
        except RPCException as e:
            await self._raise_for_rpc_error(e, signed)
            return signed.signature
        except TRANSPORT_ERRORS as e:
            raise TransportTransient(
                f"Network error sending transaction: {e}",
                rpc_endpoint=self.rpc_url,
            ) from e

        logger.info("Transaction sent: %s", signed.signature)
        return response.value

    async def _raise_for_rpc_error(self, error: RPCException, signed: SignedTransaction) -> None:
        """Map an RPC error from sendTransaction; returns only for 'already processed'."""
        detail = error.args[0] if error.args else error
        message = _field(detail, "message") or str(error)
        lowered = str(message).lower()

        if "already processed" in lowered or "alreadyprocessed" in lowered:
            logger.info("Transaction %s was already processed", signed.signature)
            return

        if "blockhash not found" in lowered:
            try:
                await self._raise_if_expired(signed, CommitmentLevel.CONFIRMED)
            except TRANSPORT_ERRORS as e:
                raise TransportTransient(
                    f"Blockhash not found and block height unavailable: {e}",
                    rpc_endpoint=self.rpc_url,
                ) from e
            raise TransportTransient(
                "Blockhash not found by node, it may be lagging",
                rpc_endpoint=self.rpc_url,
            ) from error

        if any(marker in lowered for marker in TRANSIENT_RPC_MARKERS):
            raise TransportTransient(str(message), rpc_endpoint=self.rpc_url) from error

        data = _field(detail, "data")
        sim_err = _field(data, "err") if data is not None else None
        if sim_err is not None:
            logs = list(_field(data, "logs") or [])
            parsed, index, code, _ = parse_transaction_error({"err": error_payload(sim_err), "logs": logs})
            raise SimulationRejected(
                f"Preflight check failed: {parsed}",
                instruction_index=index,
                program_error_code=code,
                program_error=str(sim_err),
                logs=logs,
                may_have_reached_network=False,
            ) from error

        raise TransactionError(
            f"RPC rejected transaction: {message}",
            context={"rpc_endpoint": self.rpc_url},
        ) from error

    async def get_signature_status(self, signature: Signature) -> Optional[SignatureStatus]:
        response = await self.client.get_signature_statuses([signature])

        if not response.value or response.value[0] is None:
            return None

        status = response.value[0]
        return SignatureStatus(
            level=_parse_confirmation_level(status.confirmation_status),
            err=error_payload(status.err),
            slot=status.slot,
        )

    async def _raise_if_expired(self, signed: SignedTransaction, commitment: CommitmentLevel) -> None:
        block_height = await self.get_block_height(commitment)
        if signed.lifetime.is_expired_at(block_height):
            raise LifetimeExpired(
                f"Blockhash expired: block height {block_height} passed "
                f"{signed.lifetime.last_valid_block_height}",
                last_valid_block_height=signed.lifetime.last_valid_block_height,
                current_block_height=block_height,
                transaction_signature=str(signed.signature),
            )

    async def confirm(self, signed: SignedTransaction, commitment: CommitmentLevel) -> None:
        """Poll until ``commitment`` is reached, the transaction fails, or the blockhash expires."""
        signature = signed.signature

        while True:
            try:
                status = await self.get_signature_status(signature)
                if status is None:
                    await self._raise_if_expired(signed, commitment)
            except TRANSPORT_ERRORS as e:
                raise TransportTransient(
                    f"Network error checking transaction status: {e}",
                    rpc_endpoint=self.rpc_url,
                ) from e

            if status is not None:
                if status.err is not None:
                    message, index, code, _ = parse_transaction_error({"err": status.err})
                    raise SimulationRejected(
                        f"Transaction failed: {message}",
                        instruction_index=index,
                        program_error_code=code,
                        program_error=str(status.err),
                        may_have_reached_network=True,
                    )
                if commitment.is_reached_by(status.level):
                    logger.info("Transaction %s: %s", status.level.value, signature)
                    return

            await asyncio.sleep(self.poll_interval)


__all__ = [
    "TRANSPORT_ERRORS",
    "SignatureStatus",
    "RpcGateway",
    "to_commitment",
    "error_payload",
]
