"""Recovery error types."""


class RecoveryError(Exception):
    """A step failed; the run stops and the state file is kept."""

    pass


class MetadataWriteError(RecoveryError):
    """The hazardous write of repaired metadata to the device failed."""

    pass


class TransactionMismatchError(RecoveryError):
    """The operator declined to reconcile mismatched transaction ids."""

    pass


class TableParseError(RecoveryError):
    """A device-mapper table could not be parsed."""

    pass


class RecoveryInterrupted(Exception):
    """The process received SIGINT or SIGTERM."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")
