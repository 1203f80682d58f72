"""Error kinds raised across monitoring, analysis and probe execution."""


class FairnessError(Exception):
    """Base class for crypto fairness errors."""


class DataUnavailable(FairnessError):
    """The chain reader cannot serve the requested block or range."""

    def __init__(self, message: str, chain: str = "", block_number=None):
        super().__init__(message)
        self.chain = chain
        self.block_number = block_number


class InvalidRequest(FairnessError):
    """A probe request is malformed or references unsupported values."""


class DetectionFailure(FairnessError):
    """Pattern detection failed for a single transaction."""

    def __init__(self, message: str, transaction_hash: str = ""):
        super().__init__(message)
        self.transaction_hash = transaction_hash


class PublishFailure(FairnessError):
    """The evidence sink could not store a bundle."""


class SubmissionFailure(FairnessError):
    """A test transaction could not be signed or sent."""
