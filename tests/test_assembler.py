"""
Tests for transaction assembly and compute budget instructions.
"""

import struct

import pytest
from solders.pubkey import Pubkey

from conftest import make_instruction
from smart_transactions.assembler import append_budget_instructions, assemble
from smart_transactions.exceptions import TransactionBuildError
from smart_transactions.instructions import (
    COMPUTE_BUDGET_PROGRAM_ID,
    InstructionKind,
    TaggedInstruction,
    request_heap_frame_instruction,
    set_compute_unit_limit_instruction,
    set_compute_unit_price_instruction,
)
from smart_transactions.models import DraftTransaction


# =============================================================================
# Budget instruction encoding
# =============================================================================

class TestBudgetInstructions:

    def test_compute_unit_limit_encoding(self):
        ix = set_compute_unit_limit_instruction(200_000)

        assert ix.kind == InstructionKind.SET_COMPUTE_UNIT_LIMIT
        assert ix.program_id == COMPUTE_BUDGET_PROGRAM_ID
        assert ix.accounts == []
        assert ix.data == bytes([0x02]) + struct.pack("<I", 200_000)

    def test_compute_unit_price_encoding(self):
        ix = set_compute_unit_price_instruction(10_000)

        assert ix.kind == InstructionKind.SET_COMPUTE_UNIT_PRICE
        assert ix.data == bytes([0x03]) + struct.pack("<Q", 10_000)

    def test_heap_frame_encoding(self):
        ix = request_heap_frame_instruction(256 * 1024)

        assert ix.kind == InstructionKind.REQUEST_HEAP_FRAME
        assert ix.data == bytes([0x01]) + struct.pack("<I", 256 * 1024)
        assert ix.is_budget_instruction

    def test_out_of_range_values(self):
        with pytest.raises(ValueError):
            set_compute_unit_limit_instruction(-1)
        with pytest.raises(ValueError):
            set_compute_unit_limit_instruction(2**32)
        with pytest.raises(TypeError):
            set_compute_unit_price_instruction(1.5)

    def test_plain_instruction_is_generic(self):
        # classification comes from the tag, never from program id or payload
        plain = TaggedInstruction(
            set_compute_unit_price_instruction(1).instruction,
        )
        assert plain.kind == InstructionKind.GENERIC
        assert not plain.is_budget_instruction


# =============================================================================
# Assemble
# =============================================================================

class TestAssemble:

    def test_assemble_sets_payer_lifetime_and_instructions(self, payer, checkpoint, instruction):
        draft = assemble(payer, checkpoint, [instruction])

        assert draft.fee_payer == payer
        assert draft.lifetime == checkpoint
        assert draft.instruction_count == 1
        assert draft.instructions[0].instruction == instruction
        assert draft.instructions[0].kind == InstructionKind.GENERIC

    def test_caller_list_is_not_mutated(self, payer, checkpoint, instruction):
        instructions = [instruction]
        draft = assemble(payer, checkpoint, instructions)
        append_budget_instructions(draft, 1, 1)

        assert instructions == [instruction]

    def test_missing_payer(self, checkpoint, instruction):
        with pytest.raises(TransactionBuildError):
            assemble(None, checkpoint, [instruction])

    def test_missing_lifetime(self, payer, instruction):
        with pytest.raises(TransactionBuildError):
            assemble(payer, None, [instruction])

    def test_no_instructions(self, payer, checkpoint):
        with pytest.raises(TransactionBuildError):
            assemble(payer, checkpoint, [])

    def test_unsupported_instruction_type(self, payer, checkpoint):
        with pytest.raises(TransactionBuildError):
            assemble(payer, checkpoint, ["not an instruction"])

    def test_draft_rejects_missing_payer(self, checkpoint):
        with pytest.raises(TransactionBuildError):
            DraftTransaction(fee_payer=None, lifetime=checkpoint)


# =============================================================================
# Append budget instructions
# =============================================================================

class TestAppendBudgetInstructions:

    def test_budget_instructions_go_to_the_tail(self, payer, checkpoint):
        first = make_instruction(payer, b"\x0a")
        second = make_instruction(payer, b"\x0b")
        draft = assemble(payer, checkpoint, [first, second])

        priced = append_budget_instructions(draft, 5, 1100)

        assert [ix.kind for ix in priced.instructions] == [
            InstructionKind.GENERIC,
            InstructionKind.GENERIC,
            InstructionKind.SET_COMPUTE_UNIT_PRICE,
            InstructionKind.SET_COMPUTE_UNIT_LIMIT,
        ]
        assert priced.instructions[0].instruction == first
        assert priced.instructions[1].instruction == second
        assert priced.instructions[2].data == bytes([0x03]) + struct.pack("<Q", 5)
        assert priced.instructions[3].data == bytes([0x02]) + struct.pack("<I", 1100)

    def test_original_draft_is_unchanged(self, draft):
        priced = append_budget_instructions(draft, 5, 1100)

        assert draft.instruction_count == 1
        assert priced.instruction_count == 3
        assert priced.fee_payer == draft.fee_payer
        assert priced.lifetime == draft.lifetime

    def test_zero_fee_is_allowed(self, draft):
        priced = append_budget_instructions(draft, 0, 1100)

        assert priced.instructions[1].data == bytes([0x03]) + struct.pack("<Q", 0)

    def test_out_of_range_values(self, draft):
        with pytest.raises(TransactionBuildError):
            append_budget_instructions(draft, -1, 1100)
        with pytest.raises(TransactionBuildError):
            append_budget_instructions(draft, 5, 2**32)


# =============================================================================
# Draft helpers
# =============================================================================

class TestDraftTransaction:

    def test_writable_accounts_are_deduplicated(self, payer, checkpoint):
        shared = Pubkey.new_unique()
        draft = assemble(payer, checkpoint, [make_instruction(payer), make_instruction(payer)])
        extra = draft.with_appended([make_instruction(shared)])

        accounts = extra.writable_accounts()

        assert accounts.count(payer) == 1
        assert shared in accounts
        assert len(accounts) == len(set(accounts))

    def test_compile_keeps_instruction_order(self, draft):
        priced = append_budget_instructions(draft, 5, 1100)
        message = priced.compile()

        programs = [message.account_keys[ix.program_id_index] for ix in message.instructions]
        assert programs[0] == draft.instructions[0].program_id
        assert programs[1:] == [COMPUTE_BUDGET_PROGRAM_ID, COMPUTE_BUDGET_PROGRAM_ID]
        assert message.recent_blockhash == draft.lifetime.blockhash
        assert message.account_keys[0] == draft.fee_payer
