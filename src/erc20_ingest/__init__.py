from . import config, errors
from .classifier import LogClassifier
from .data import BlockRange, Category, TransferRecord
from .event_signature import TRANSFER, EventSignature
from .pipeline import run_pipeline
from .registry import ContractInfo, ContractRegistry
from .scheduler import BatchScheduler, next_range

__all__ = [
    "BatchScheduler",
    "BlockRange",
    "Category",
    "ContractInfo",
    "ContractRegistry",
    "EventSignature",
    "LogClassifier",
    "TRANSFER",
    "TransferRecord",
    "config",
    "errors",
    "next_range",
    "run_pipeline",
]
