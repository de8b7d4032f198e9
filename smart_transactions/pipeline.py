"""
Fee-aware transaction submission.

    pipeline = SmartTransactionPipeline.from_config(PipelineConfig.for_cluster("devnet"))
    signature = await pipeline.send_transaction_from_instructions(signer, [instruction])

The instructions are assembled against a fresh blockhash. When the cluster
needs priority fees, the fee and compute unit estimates run concurrently on
that draft and the two budget instructions are appended before the
transaction is signed once and handed to the submission engine.
"""

import asyncio
import logging
from typing import Optional, Sequence

from solders.pubkey import Pubkey
from solders.signature import Signature

from .assembler import append_budget_instructions, assemble
from .compute import ComputeUnitEstimator
from .concurrency import gather_first_error, run_abortable
from .config import PipelineConfig
from .fees import PriorityFeeEstimator
from .instructions import InstructionLike
from .interfaces import (
    CheckpointSource,
    FeeSampleService,
    SendConfirmService,
    Signer,
    SimulationService,
)
from .models import CommitmentLevel, DraftTransaction, SubmissionReport, SubmitOptions
from .rpc import RpcGateway
from .submission import SubmissionEngine

logger = logging.getLogger(__name__)


class SmartTransactionPipeline:

    def __init__(
        self,
        config: PipelineConfig,
        checkpoints: CheckpointSource,
        fee_service: FeeSampleService,
        simulator: SimulationService,
        sender: SendConfirmService,
        engine: Optional[SubmissionEngine] = None,
    ):
        self.config = config
        self.checkpoints = checkpoints
        self.fee_estimator = PriorityFeeEstimator(fee_service, config.supports_priority_fee_estimate)
        self.compute_estimator = ComputeUnitEstimator(simulator)
        self.engine = engine or SubmissionEngine(
            sender,
            retry_base_delay=config.retry_base_delay,
            retry_max_delay=config.retry_max_delay,
        )
        self._gateway: Optional[RpcGateway] = None

    @classmethod
    def from_gateway(cls, config: PipelineConfig, gateway: RpcGateway) -> "SmartTransactionPipeline":
        return cls(config, gateway, gateway, gateway, gateway)

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "SmartTransactionPipeline":
        """Build a pipeline that owns its RPC gateway; close it when done."""
        gateway = RpcGateway.from_url(
            config.endpoint_url,
            poll_interval=config.poll_interval,
            rpc_timeout=config.rpc_timeout,
        )
        pipeline = cls.from_gateway(config, gateway)
        pipeline._gateway = gateway
        return pipeline

    async def close(self):
        if self._gateway is not None:
            await self._gateway.close()
            self._gateway = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    def submit_options(
        self,
        commitment: Optional[CommitmentLevel] = None,
        skip_preflight: Optional[bool] = None,
        max_client_side_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> SubmitOptions:
        """SubmitOptions with unset values taken from the pipeline config."""
        if max_client_side_retries is None:
            max_client_side_retries = self.config.client_side_retries

        return SubmitOptions(
            commitment=commitment if commitment is not None else self.config.commitment,
            skip_preflight=skip_preflight if skip_preflight is not None else self.config.skip_preflight,
            max_client_side_retries=max_client_side_retries,
            timeout=timeout if timeout is not None else self.config.confirmation_timeout,
            attempt_timeout=self.config.attempt_timeout,
            abort_signal=abort_signal,
        )

    # -------------------------------------------------------------------------
    # Estimation
    # -------------------------------------------------------------------------

    async def estimate_priority_fee(
        self,
        draft: DraftTransaction,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> int:
        return await self.fee_estimator.estimate(draft, abort_signal)

    async def estimate_compute_units(
        self,
        draft: DraftTransaction,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> int:
        return await self.compute_estimator.estimate(draft, abort_signal)

    # -------------------------------------------------------------------------
    # Assembly
    # -------------------------------------------------------------------------

    async def prepare(
        self,
        payer: Pubkey,
        instructions: Sequence[InstructionLike],
        abort_signal: Optional[asyncio.Event] = None,
    ) -> DraftTransaction:
        """Assemble ``instructions`` and, if the cluster needs it, attach priced budget instructions."""
        checkpoint = await run_abortable(
            self.checkpoints.get_latest_checkpoint(self.config.commitment),
            abort_signal,
            "latest blockhash",
        )
        draft = assemble(payer, checkpoint, instructions)

        if not self.config.needs_priority_fees:
            return draft

        fee, units = await gather_first_error(
            self.estimate_priority_fee(draft, abort_signal),
            self.estimate_compute_units(draft, abort_signal),
        )
        logger.info("Priority fee %d micro-lamports/CU, compute unit limit %d", fee, units)

        return append_budget_instructions(draft, fee, units)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    async def submit(
        self,
        draft: DraftTransaction,
        signer: Signer,
        options: Optional[SubmitOptions] = None,
    ) -> Signature:
        return await self.engine.submit(draft, signer, options or self.submit_options())

    async def send_transaction_from_instructions_with_report(
        self,
        signer: Signer,
        instructions: Sequence[InstructionLike],
        commitment: Optional[CommitmentLevel] = None,
        skip_preflight: Optional[bool] = None,
        max_client_side_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> SubmissionReport:
        options = self.submit_options(
            commitment=commitment,
            skip_preflight=skip_preflight,
            max_client_side_retries=max_client_side_retries,
            timeout=timeout,
            abort_signal=abort_signal,
        )

        draft = await self.prepare(signer.fee_payer, instructions, options.abort_signal)
        return await self.engine.submit_with_report(draft, signer, options)

    async def send_transaction_from_instructions(
        self,
        signer: Signer,
        instructions: Sequence[InstructionLike],
        commitment: Optional[CommitmentLevel] = None,
        skip_preflight: Optional[bool] = None,
        max_client_side_retries: Optional[int] = None,
        timeout: Optional[float] = None,
        abort_signal: Optional[asyncio.Event] = None,
    ) -> Signature:
        report = await self.send_transaction_from_instructions_with_report(
            signer,
            instructions,
            commitment=commitment,
            skip_preflight=skip_preflight,
            max_client_side_retries=max_client_side_retries,
            timeout=timeout,
            abort_signal=abort_signal,
        )
        return report.signature


__all__ = ["SmartTransactionPipeline"]
