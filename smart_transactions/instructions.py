import struct
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Tuple, Union

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")

MAX_COMPUTE_UNIT_LIMIT = 1_400_000
MAX_U32 = 2**32 - 1
MAX_U64 = 2**64 - 1


class InstructionKind(str, Enum):
    GENERIC = "generic"
    REQUEST_HEAP_FRAME = "request_heap_frame"
    SET_COMPUTE_UNIT_LIMIT = "set_compute_unit_limit"
    SET_COMPUTE_UNIT_PRICE = "set_compute_unit_price"


BUDGET_KINDS = frozenset({
    InstructionKind.REQUEST_HEAP_FRAME,
    InstructionKind.SET_COMPUTE_UNIT_LIMIT,
    InstructionKind.SET_COMPUTE_UNIT_PRICE,
})


@dataclass(frozen=True)
class TaggedInstruction:
    """
    A ledger instruction together with an explicit kind.

    Classification never looks at the program id or payload bytes; only the
    constructors in this module produce budget kinds.
    """
    instruction: Instruction
    kind: InstructionKind = InstructionKind.GENERIC

    @property
    def program_id(self) -> Pubkey:
        return self.instruction.program_id

    @property
    def accounts(self) -> List[AccountMeta]:
        return list(self.instruction.accounts)

    @property
    def data(self) -> bytes:
        return bytes(self.instruction.data)

    @property
    def is_budget_instruction(self) -> bool:
        return self.kind in BUDGET_KINDS

    def writable_accounts(self) -> List[Pubkey]:
        return [meta.pubkey for meta in self.instruction.accounts if meta.is_writable]


InstructionLike = Union[Instruction, TaggedInstruction]


def tag(instruction: InstructionLike) -> TaggedInstruction:
    """Wrap a plain instruction as GENERIC; tagged instructions pass through."""
    if isinstance(instruction, TaggedInstruction):
        return instruction
    if isinstance(instruction, Instruction):
        return TaggedInstruction(instruction)
    raise TypeError(f"Expected Instruction or TaggedInstruction, got {type(instruction).__name__}")


def tag_all(instructions: Iterable[InstructionLike]) -> Tuple[TaggedInstruction, ...]:
    return tuple(tag(ix) for ix in instructions)


def _budget_instruction(kind: InstructionKind, data: bytes) -> TaggedInstruction:
    return TaggedInstruction(
        Instruction(
            program_id=COMPUTE_BUDGET_PROGRAM_ID,
            accounts=[],
            data=data,
        ),
        kind,
    )


def _check_range(name: str, value: int, upper: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if not 0 <= value <= upper:
        raise ValueError(f"{name} out of range: {value}")


def request_heap_frame_instruction(bytes_size: int) -> TaggedInstruction:
    _check_range("bytes_size", bytes_size, MAX_U32)
    return _budget_instruction(
        InstructionKind.REQUEST_HEAP_FRAME,
        bytes([0x01]) + struct.pack("<I", bytes_size),
    )


def set_compute_unit_limit_instruction(units: int) -> TaggedInstruction:
    _check_range("units", units, MAX_U32)
    return _budget_instruction(
        InstructionKind.SET_COMPUTE_UNIT_LIMIT,
        bytes([0x02]) + struct.pack("<I", units),
    )


def set_compute_unit_price_instruction(micro_lamports: int) -> TaggedInstruction:
    _check_range("micro_lamports", micro_lamports, MAX_U64)
    return _budget_instruction(
        InstructionKind.SET_COMPUTE_UNIT_PRICE,
        bytes([0x03]) + struct.pack("<Q", micro_lamports),
    )


__all__ = [
    "COMPUTE_BUDGET_PROGRAM_ID",
    "MAX_COMPUTE_UNIT_LIMIT",
    "MAX_U32",
    "MAX_U64",
    "InstructionKind",
    "BUDGET_KINDS",
    "TaggedInstruction",
    "InstructionLike",
    "tag",
    "tag_all",
    "request_heap_frame_instruction",
    "set_compute_unit_limit_instruction",
    "set_compute_unit_price_instruction",
]
