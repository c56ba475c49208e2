from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence

from .config import ProcessorConfig, StoreConfig
from .errors import ErrorKind
from .expressions import EvaluationError, KeyResolver, ValueBuilder
from .message import Message
from .ops.dispatcher import OperationDispatcher
from .ops.executor import make_executor
from .ops.mapper import ResultMapper
from .ops.models import ItemError, OperationRequest, OperationResult
from .ops.transcoders import make_transcoder
from .store import connect
from .store.base import Collection, StoreConnection

logger = logging.getLogger(__name__)


class DocumentProcessor:
    """
    Applies one configured document-store operation to stream messages.

    For every batch:
    1) resolve key (and value, for writes) per message
    2) build one store call per message
    3) submit all calls in a single bulk call
    4) write results back onto the messages, in arrival order

    Messages whose key or value cannot be evaluated get an INVALID_REQUEST
    error and are not sent to the store. Store-side item failures are
    attached to their message; siblings are unaffected. If the bulk call
    fails as a whole, BatchError is raised and no message is modified.

    Usage:
        processor = DocumentProcessor.connect(
            ProcessorConfig(operation="upsert", value="${! content() }", key='${! json("id") }'),
            StoreConfig(url="redis://localhost:6379/0", bucket="orders"),
        )
        try:
            processor.process_batch(messages)
        finally:
            processor.close()
    """

    def __init__(
        self,
        config: ProcessorConfig,
        collection: Collection,
        connection: Optional[StoreConnection] = None,
    ) -> None:
        """
        Args:
            config: Processor configuration
            collection: Shared collection handle; not owned
            connection: Connection to close on close(), if this processor owns one

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config = config
        self.collection = collection
        self._connection = connection

        self.key = KeyResolver(config.key)
        self.value = ValueBuilder(config.value) if config.value is not None else None
        self.dispatcher = OperationDispatcher(config.operation, value_configured=self.value is not None)
        self.transcoder = make_transcoder(config.transcoder)
        self.executor = make_executor(self.dispatcher, collection, self.transcoder, config.bulk)
        self.mapper = ResultMapper()

    @classmethod
    def connect(cls, config: ProcessorConfig, store_config: StoreConfig) -> "DocumentProcessor":
        """
        Validate the configuration, open the store and build a processor
        owning the connection.

        Raises:
            ConfigurationError: Before any connection attempt
            StoreConnectionError: If the store is not reachable
        """
        cls.validate(config)
        connection = connect(store_config)
        try:
            return cls(config, connection.collection(config.collection), connection)
        except Exception:
            connection.close()
            raise

    @staticmethod
    def validate(config: ProcessorConfig) -> None:
        """
        Check templates, operation and transcoder without touching a store.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        KeyResolver(config.key)
        if config.value is not None:
            ValueBuilder(config.value)
        OperationDispatcher(config.operation, value_configured=config.value is not None)
        make_transcoder(config.transcoder)

    def process(self, message: Message, cancel: Optional[threading.Event] = None) -> list[Message]:
        """A single message is a batch of one."""
        return self.process_batch([message], cancel)

    def process_batch(
        self,
        messages: Sequence[Message],
        cancel: Optional[threading.Event] = None,
    ) -> list[Message]:
        """
        Process messages in place and return them in the same order.

        Raises:
            BatchError: If the bulk call failed as a whole or was cancelled
        """
        results: list[Optional[OperationResult]] = [None] * len(messages)
        requests: list[OperationRequest] = []
        positions: list[int] = []

        for index, message in enumerate(messages):
            try:
                request = self._build_request(message)
            except EvaluationError as exc:
                results[index] = ItemError(ErrorKind.INVALID_REQUEST, exc.key, str(exc))
                continue
            requests.append(request)
            positions.append(index)

        if requests:
            executed = self.executor.execute(requests, self.collection, cancel)
            for index, result in zip(positions, executed):
                results[index] = result

        logger.debug(
            "Processed %d message(s) with %s on %s.%s",
            len(messages),
            self.dispatcher.operation.value,
            self.collection.bucket,
            self.collection.name,
        )
        self.mapper.apply(messages, results)  # type: ignore[arg-type]
        return list(messages)

    def _build_request(self, message: Message) -> OperationRequest:
        key = self.key.resolve(message)
        if self.value is None or not self.dispatcher.strategy.needs_payload:
            return OperationRequest(key)

        try:
            payload = self.transcoder.encode(self.value.build(message))
        except EvaluationError as exc:
            raise EvaluationError(str(exc), key=key) from exc
        except ValueError as exc:
            raise EvaluationError(
                f"value does not fit the {self.transcoder.name.value} transcoder: {exc}",
                key=key,
            ) from exc
        if not payload:
            raise EvaluationError(
                f"value for {self.dispatcher.operation.value} evaluated to an empty payload", key=key
            )
        return OperationRequest(key, payload)

    def close(self) -> None:
        """Ask the connection layer to close the store, if this processor owns it."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "DocumentProcessor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
        return None
