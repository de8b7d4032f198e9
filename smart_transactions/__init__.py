"""
Solana Smart Transactions

Fee-aware transaction assembly, submission and confirmation for Solana.
"""

__version__ = "1.0.0"

from .assembler import append_budget_instructions, assemble
from .compute import ComputeUnitEstimator, apply_compute_unit_margin, estimate_compute_units
from .config import PipelineConfig, Settings, get_settings
from .exceptions import (
    Cancelled,
    ComputeUnitEstimationFailure,
    ConfigurationError,
    ConfirmationTimeoutError,
    EstimationFailure,
    FeeEstimationFailure,
    LifetimeExpired,
    SimulationRejected,
    SmartTransactionError,
    SubmissionFailed,
    TransactionBuildError,
    TransactionError,
    TransactionSignError,
    TransportTransient,
)
from .fees import PriorityFeeEstimator, estimate_priority_fee, median_fee
from .instructions import InstructionKind, TaggedInstruction
from .logger import setup_logging
from .models import Checkpoint, CommitmentLevel, DraftTransaction, SignedTransaction, SubmitOptions
from .pipeline import SmartTransactionPipeline
from .rpc import RpcGateway
from .signer import KeypairSigner
from .submission import SubmissionEngine, sign_draft

__all__ = [
    "append_budget_instructions",
    "assemble",
    "ComputeUnitEstimator",
    "apply_compute_unit_margin",
    "estimate_compute_units",
    "PipelineConfig",
    "Settings",
    "get_settings",
    "Cancelled",
    "ComputeUnitEstimationFailure",
    "ConfigurationError",
    "ConfirmationTimeoutError",
    "EstimationFailure",
    "FeeEstimationFailure",
    "LifetimeExpired",
    "SimulationRejected",
    "SmartTransactionError",
    "SubmissionFailed",
    "TransactionBuildError",
    "TransactionError",
    "TransactionSignError",
    "TransportTransient",
    "PriorityFeeEstimator",
    "estimate_priority_fee",
    "median_fee",
    "InstructionKind",
    "TaggedInstruction",
    "setup_logging",
    "Checkpoint",
    "CommitmentLevel",
    "DraftTransaction",
    "SignedTransaction",
    "SubmitOptions",
    "SmartTransactionPipeline",
    "RpcGateway",
    "KeypairSigner",
    "SubmissionEngine",
    "sign_draft",
]
