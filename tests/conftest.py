"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
from typing import List
from unittest.mock import AsyncMock

import pytest
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature

from smart_transactions.assembler import assemble
from smart_transactions.config import PipelineConfig
from smart_transactions.models import Checkpoint, DraftTransaction, SimulationOutcome
from smart_transactions.signer import KeypairSigner


# ============================================================================
# Test Helpers
# ============================================================================

class CountingSigner(KeypairSigner):
    """KeypairSigner that records how often it was asked to sign."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.sign_calls = 0

    async def sign_message(self, message: MessageV0) -> List[Signature]:
        self.sign_calls += 1
        return await super().sign_message(message)


def make_instruction(payer: Pubkey, data: bytes = b"\x01") -> Instruction:
    """A generic instruction with the payer and one other writable account."""
    return Instruction(
        program_id=Pubkey.new_unique(),
        accounts=[
            AccountMeta(payer, True, True),
            AccountMeta(Pubkey.new_unique(), False, True),
            AccountMeta(Pubkey.new_unique(), False, False),
        ],
        data=data,
    )


async def hang_forever(*args, **kwargs):
    await asyncio.sleep(3600)


# ============================================================================
# Key Fixtures
# ============================================================================

@pytest.fixture
def payer_keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def payer(payer_keypair) -> Pubkey:
    return payer_keypair.pubkey()


@pytest.fixture
def signer(payer_keypair) -> CountingSigner:
    return CountingSigner(payer_keypair)


# ============================================================================
# Transaction Fixtures
# ============================================================================

@pytest.fixture
def checkpoint() -> Checkpoint:
    return Checkpoint(blockhash=Hash.new_unique(), last_valid_block_height=1_000)


@pytest.fixture
def instruction(payer) -> Instruction:
    return make_instruction(payer)


@pytest.fixture
def draft(payer, checkpoint, instruction) -> DraftTransaction:
    return assemble(payer, checkpoint, [instruction])


# ============================================================================
# Collaborator Fixtures
# ============================================================================

@pytest.fixture
def checkpoint_source(checkpoint) -> AsyncMock:
    source = AsyncMock()
    source.get_latest_checkpoint.return_value = checkpoint
    return source


@pytest.fixture
def fee_service() -> AsyncMock:
    service = AsyncMock()
    service.get_recent_prioritization_fees.return_value = [5, 1, 9, 3]
    service.get_priority_fee_estimate.return_value = 2_500
    return service


@pytest.fixture
def simulator() -> AsyncMock:
    service = AsyncMock()
    service.simulate.return_value = SimulationOutcome(units_consumed=1_000)
    return service


@pytest.fixture
def sender() -> AsyncMock:
    service = AsyncMock()
    service.send_and_confirm.return_value = None
    return service


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def fee_config() -> PipelineConfig:
    """A cluster that needs priority fees, with fast retries."""
    return PipelineConfig.for_cluster("devnet", retry_base_delay=0.0, retry_max_delay=0.0)


@pytest.fixture
def local_config() -> PipelineConfig:
    """A cluster without priority fees or client-side retries."""
    return PipelineConfig.for_cluster("localnet", retry_base_delay=0.0, retry_max_delay=0.0)
