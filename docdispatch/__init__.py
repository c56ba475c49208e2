from .ops import Operation, OperationDispatcher, ResultMapper
from .config import ProcessorConfig, StoreConfig
from .message import Message
from .processor import DocumentProcessor

__all__ = [
    "DocumentProcessor",
    "Message",
    "Operation",
    "OperationDispatcher",
    "ProcessorConfig",
    "ResultMapper",
    "StoreConfig",
]
