"""Crash-safe thin pool metadata recovery."""

from pxtools.recovery.errors import (
    MetadataWriteError,
    RecoveryError,
    RecoveryInterrupted,
    TableParseError,
    TransactionMismatchError,
)
from pxtools.recovery.orchestrator import RecoveryOrchestrator
from pxtools.recovery.session import RecoverySession

__all__ = [
    "MetadataWriteError",
    "RecoveryError",
    "RecoveryInterrupted",
    "RecoveryOrchestrator",
    "RecoverySession",
    "TableParseError",
    "TransactionMismatchError",
]
