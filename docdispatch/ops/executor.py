from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from ..errors import BatchError, ErrorKind, PerItemOperationError
from ..store.base import CallOutcome, Collection
from .dispatcher import OperationDispatcher
from .metrics import observe_batch, observe_item
from .models import Empty, ItemError, OperationRequest, OperationResult, StoreCall
from .transcoders import RawTranscoder, Transcoder

logger = logging.getLogger(__name__)


class BatchExecutor(ABC):
    """
    Submits an ordered batch of requests to a collection and reassembles the
    results by index.

    Contract:
    - len(results) == len(batch), results[i] belongs to batch[i]
    - item-scoped failures land in their own slot as ItemError; siblings are unaffected
    - a failure of the call as a whole raises BatchError and yields no results
    - cancellation (cancel.set()) before or during the call is a whole-call failure

    Subclasses only decide how the calls reach the store.
    """

    def __init__(
        self,
        dispatcher: OperationDispatcher,
        transcoder: Optional[Transcoder] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.transcoder = transcoder or RawTranscoder()

    def execute(
        self,
        batch: Sequence[OperationRequest],
        collection: Collection,
        cancel: Optional[threading.Event] = None,
    ) -> list[OperationResult]:
        """
        Execute the batch as one call.

        Raises:
            BatchError: If the call could not be issued, failed wholesale, or
                was cancelled.
        """
        self.check_collection(collection)
        calls = [self.dispatcher.build(request) for request in batch]
        if not calls:
            return []

        operation = self.dispatcher.operation.value
        start_time = time.monotonic()
        status = "success"
        try:
            _ensure_not_cancelled(cancel, "before submission")
            outcomes = self._submit(calls, collection, cancel)
            if len(outcomes) != len(calls):
                raise BatchError(
                    f"store returned {len(outcomes)} result(s) for {len(calls)} call(s)"
                )
            _ensure_not_cancelled(cancel, "during the bulk call")
        except BatchError as exc:
            status = "error"
            logger.warning("Bulk %s of %d item(s) failed: %s", operation, len(calls), exc)
            raise
        except Exception as exc:
            status = "error"
            logger.warning("Bulk %s of %d item(s) failed: %s", operation, len(calls), exc)
            raise BatchError(f"bulk {operation} of {len(calls)} item(s) failed: {exc}") from exc
        finally:
            try:
                observe_batch(operation, status, len(calls), time.monotonic() - start_time)
            except Exception:
                logger.debug("Failed to record batch metrics", exc_info=True)

        return [self._to_result(call, outcome) for call, outcome in zip(calls, outcomes)]

    def check_collection(self, collection: Collection) -> None:
        """Hook for executors with extra requirements on the collection."""

    @abstractmethod
    def _submit(
        self,
        calls: Sequence[StoreCall],
        collection: Collection,
        cancel: Optional[threading.Event],
    ) -> list[CallOutcome]:
        ...

    def _to_result(self, call: StoreCall, outcome: CallOutcome) -> OperationResult:
        if isinstance(outcome, PerItemOperationError):
            result: OperationResult = ItemError.from_exception(outcome)
            logger.debug("Item %s failed for key %r: %s", call.operation.value, call.key, outcome)
        elif outcome is None:
            result = Empty()
        else:
            try:
                result = self.transcoder.decode(outcome)
            except ValueError as exc:
                result = ItemError(
                    ErrorKind.UNKNOWN,
                    call.key,
                    f"cannot decode document with {self.transcoder.name.value} transcoder: {exc}",
                )

        try:
            outcome_label = result.kind.value if isinstance(result, ItemError) else "success"
            observe_item(call.operation.value, outcome_label)
        except Exception:
            logger.debug("Failed to record item metrics", exc_info=True)
        return result


class SingleCallExecutor(BatchExecutor):
    """
    Issues one independent store call per request, in order, and waits for
    all of them. Works with any collection.
    """

    def _submit(
        self,
        calls: Sequence[StoreCall],
        collection: Collection,
        cancel: Optional[threading.Event],
    ) -> list[CallOutcome]:
        outcomes: list[CallOutcome] = []
        for call in calls:
            _ensure_not_cancelled(cancel, "during submission")
            try:
                outcomes.append(collection.execute(call))
            except PerItemOperationError as exc:
                outcomes.append(exc)
        return outcomes


class BulkExecutor(BatchExecutor):
    """
    Sends every request in one true bulk call (Collection.bulk).
    """

    def check_collection(self, collection: Collection) -> None:
        if not collection.supports_bulk:
            raise TypeError(f"{type(collection).__name__} does not support bulk calls")

    def _submit(
        self,
        calls: Sequence[StoreCall],
        collection: Collection,
        cancel: Optional[threading.Event],
    ) -> list[CallOutcome]:
        return list(collection.bulk(calls))


def make_executor(
    dispatcher: OperationDispatcher,
    collection: Collection,
    transcoder: Optional[Transcoder] = None,
    prefer_bulk: bool = True,
) -> BatchExecutor:
    """Pick the bulk executor when the collection supports it."""
    if prefer_bulk and collection.supports_bulk:
        return BulkExecutor(dispatcher, transcoder)
    return SingleCallExecutor(dispatcher, transcoder)


def _ensure_not_cancelled(cancel: Optional[threading.Event], stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise BatchError(f"batch cancelled {stage}")
