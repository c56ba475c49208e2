from .models import (
    Empty,
    ItemError,
    Operation,
    OperationRequest,
    OperationResult,
    RawBytes,
    StoreCall,
    StructuredValue,
)
from .transcoders import Transcoder, TranscoderName, make_transcoder
from .dispatcher import OperationDispatcher, OperationStrategy, resolve
from .executor import BatchExecutor, BulkExecutor, SingleCallExecutor, make_executor
from .mapper import ResultMapper

__all__ = [
    "Operation",
    "OperationRequest",
    "OperationResult",
    "StoreCall",
    "RawBytes",
    "StructuredValue",
    "Empty",
    "ItemError",
    "Transcoder",
    "TranscoderName",
    "make_transcoder",
    "OperationDispatcher",
    "OperationStrategy",
    "resolve",
    "BatchExecutor",
    "BulkExecutor",
    "SingleCallExecutor",
    "make_executor",
    "ResultMapper",
]
