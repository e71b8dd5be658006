from typing import Optional


class IngestError(Exception):
    """Base class for all ingestion errors"""

    retryable = True


class TransientNodeError(IngestError):
    """Node timed out, dropped the connection or doesn't have the data yet"""


class MalformedResponseError(IngestError):
    """Node returned a block, receipt or log with an unexpected shape"""

    def __init__(
        self,
        message: str,
        block_number: Optional[int] = None,
        transaction_hash: Optional[str] = None,
    ):
        context = []
        if block_number is not None:
            context.append(f"block={block_number}")
        if transaction_hash is not None:
            context.append(f"tx={transaction_hash}")
        if context:
            message = f"{message} ({', '.join(context)})"

        super().__init__(message)
        self.block_number = block_number
        self.transaction_hash = transaction_hash


class SinkWriteError(IngestError):
    """Writer failed to persist records"""


class ConfigurationError(IngestError):
    """Invalid configuration, fatal at startup"""

    retryable = False


class BatchError(IngestError):
    """A batch was abandoned, nothing was checkpointed"""

    def __init__(self, block_range, cause: BaseException):
        super().__init__(
            f"batch {block_range[0]}-{block_range[1]} failed: {type(cause).__name__}: {cause}"
        )
        self.block_range = block_range
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return getattr(self.cause, "retryable", True)
