"""
End-to-end tests for the submission pipeline with in-memory collaborators.
"""

import asyncio
import struct

import pytest

from conftest import hang_forever, make_instruction
from smart_transactions.config import PipelineConfig
from smart_transactions.exceptions import (
    Cancelled,
    FeeEstimationFailure,
    SimulationRejected,
    TransportTransient,
)
from smart_transactions.instructions import COMPUTE_BUDGET_PROGRAM_ID, InstructionKind
from smart_transactions.models import CommitmentLevel, SimulationOutcome
from smart_transactions.pipeline import SmartTransactionPipeline


def build_pipeline(config, checkpoint_source, fee_service, simulator, sender):
    return SmartTransactionPipeline(config, checkpoint_source, fee_service, simulator, sender)


def sent_transaction(sender):
    return sender.send_and_confirm.await_args.args[0]


# =============================================================================
# Without priority fees
# =============================================================================

class TestWithoutPriorityFees:

    @pytest.mark.asyncio
    async def test_single_instruction_is_sent_unchanged(
        self, local_config, checkpoint_source, fee_service, simulator, sender, signer, instruction
    ):
        pipeline = build_pipeline(local_config, checkpoint_source, fee_service, simulator, sender)

        signature = await pipeline.send_transaction_from_instructions(signer, [instruction])

        signed = sent_transaction(sender)
        assert signature == signed.signature
        assert len(signed.transaction.message.instructions) == 1
        assert signed.draft.instructions[0].instruction == instruction
        fee_service.get_recent_prioritization_fees.assert_not_awaited()
        fee_service.get_priority_fee_estimate.assert_not_awaited()
        simulator.simulate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blockhash_comes_from_checkpoint_source(
        self, local_config, checkpoint_source, fee_service, simulator, sender, signer, instruction, checkpoint
    ):
        pipeline = build_pipeline(local_config, checkpoint_source, fee_service, simulator, sender)

        await pipeline.send_transaction_from_instructions(signer, [instruction])

        checkpoint_source.get_latest_checkpoint.assert_awaited_once_with(CommitmentLevel.CONFIRMED)
        assert sent_transaction(sender).transaction.message.recent_blockhash == checkpoint.blockhash


# =============================================================================
# With priority fees
# =============================================================================

class TestWithPriorityFees:

    @pytest.mark.asyncio
    async def test_budget_instructions_follow_the_original_instructions(
        self, fee_config, checkpoint_source, fee_service, simulator, sender, signer, payer
    ):
        first = make_instruction(payer, b"\x0a")
        second = make_instruction(payer, b"\x0b")
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)

        await pipeline.send_transaction_from_instructions(signer, [first, second])

        signed = sent_transaction(sender)
        message = signed.transaction.message
        programs = [message.account_keys[ix.program_id_index] for ix in message.instructions]
        assert len(programs) == 4
        assert programs[0] == first.program_id
        assert programs[1] == second.program_id
        assert programs[2:] == [COMPUTE_BUDGET_PROGRAM_ID, COMPUTE_BUDGET_PROGRAM_ID]

        # median of [5, 1, 9, 3] and 1000 CU + 10%
        assert bytes(message.instructions[2].data) == bytes([0x03]) + struct.pack("<Q", 5)
        assert bytes(message.instructions[3].data) == bytes([0x02]) + struct.pack("<I", 1100)

    @pytest.mark.asyncio
    async def test_estimators_see_the_same_draft(
        self, fee_config, checkpoint_source, fee_service, simulator, sender, signer, instruction
    ):
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)

        await pipeline.send_transaction_from_instructions(signer, [instruction])

        simulated = simulator.simulate.await_args.args[0]
        fee_accounts = fee_service.get_recent_prioritization_fees.await_args.args[0]
        assert simulated.instructions[0].instruction == instruction
        assert fee_accounts == [meta.pubkey for meta in instruction.accounts if meta.is_writable]

    @pytest.mark.asyncio
    async def test_native_estimate_when_provider_supports_it(
        self, checkpoint_source, fee_service, simulator, sender, signer, instruction
    ):
        config = PipelineConfig.for_cluster("helius-mainnet", api_key="test-key")
        pipeline = build_pipeline(config, checkpoint_source, fee_service, simulator, sender)

        await pipeline.send_transaction_from_instructions(signer, [instruction])

        fee_service.get_priority_fee_estimate.assert_awaited_once()
        fee_service.get_recent_prioritization_fees.assert_not_awaited()
        message = sent_transaction(sender).transaction.message
        assert bytes(message.instructions[1].data) == bytes([0x03]) + struct.pack("<Q", 2_500)

    @pytest.mark.asyncio
    async def test_estimation_failure_aborts_before_signing(
        self, fee_config, checkpoint_source, fee_service, simulator, sender, signer, instruction
    ):
        fee_service.get_recent_prioritization_fees.side_effect = RuntimeError("rpc down")
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)

        with pytest.raises(FeeEstimationFailure):
            await pipeline.send_transaction_from_instructions(signer, [instruction])

        assert signer.sign_calls == 0
        sender.send_and_confirm.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_simulation_aborts_before_signing(
        self, fee_config, checkpoint_source, fee_service, simulator, sender, signer, instruction
    ):
        simulator.simulate.return_value = SimulationOutcome(
            units_consumed=0,
            err={"InstructionError": [0, {"Custom": 1}]},
        )
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)

        with pytest.raises(SimulationRejected):
            await pipeline.send_transaction_from_instructions(signer, [instruction])

        assert signer.sign_calls == 0
        sender.send_and_confirm.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_direct_estimator_entry_points(
        self, fee_config, checkpoint_source, fee_service, simulator, sender, draft
    ):
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)

        assert await pipeline.estimate_priority_fee(draft) == 5
        assert await pipeline.estimate_compute_units(draft) == 1100
        sender.send_and_confirm.assert_not_awaited()


# =============================================================================
# Cancellation
# =============================================================================

class TestCancellation:

    @pytest.mark.asyncio
    async def test_abort_during_simulation_never_sends(
        self, fee_config, checkpoint_source, fee_service, simulator, sender, signer, instruction
    ):
        simulator.simulate.side_effect = hang_forever
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)
        abort = asyncio.Event()
        asyncio.get_running_loop().call_later(0.01, abort.set)

        with pytest.raises(Cancelled):
            await pipeline.send_transaction_from_instructions(
                signer, [instruction], abort_signal=abort
            )

        assert signer.sign_calls == 0
        sender.send_and_confirm.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_abort_before_start(
        self, fee_config, checkpoint_source, fee_service, simulator, sender, signer, instruction
    ):
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)
        abort = asyncio.Event()
        abort.set()

        with pytest.raises(Cancelled):
            await pipeline.send_transaction_from_instructions(
                signer, [instruction], abort_signal=abort
            )

        sender.send_and_confirm.assert_not_awaited()


# =============================================================================
# Options
# =============================================================================

class TestSubmitOptionDefaults:

    def test_retries_default_to_cluster_setting(
        self, fee_config, local_config, checkpoint_source, fee_service, simulator, sender
    ):
        with_retries = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)
        without_retries = build_pipeline(local_config, checkpoint_source, fee_service, simulator, sender)

        assert with_retries.submit_options().max_client_side_retries == 4
        assert without_retries.submit_options().max_client_side_retries == 0

    def test_explicit_values_win(self, fee_config, checkpoint_source, fee_service, simulator, sender):
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)

        options = pipeline.submit_options(
            commitment=CommitmentLevel.FINALIZED,
            skip_preflight=True,
            max_client_side_retries=0,
            timeout=5.0,
        )

        assert options.commitment == CommitmentLevel.FINALIZED
        assert options.skip_preflight is True
        assert options.max_client_side_retries == 0
        assert options.timeout == 5.0
        assert options.attempt_timeout == fee_config.attempt_timeout

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried_with_cluster_default(
        self, fee_config, checkpoint_source, fee_service, simulator, sender, signer, instruction
    ):
        sender.send_and_confirm.side_effect = [TransportTransient("reset"), None]
        pipeline = build_pipeline(fee_config, checkpoint_source, fee_service, simulator, sender)

        report = await pipeline.send_transaction_from_instructions_with_report(signer, [instruction])

        assert len(report.attempts) == 2
        assert signer.sign_calls == 1
