from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from docdispatch import DocumentProcessor, Message, ProcessorConfig, StoreConfig
from docdispatch.errors import (
    BatchError,
    ConfigErrorReason,
    ConfigurationError,
    ErrorKind,
    PerItemOperationError,
    StoreConnectionError,
)
from docdispatch.ops.executor import BulkExecutor, SingleCallExecutor
from docdispatch.store import SqlCollection
from tests._memory import MemoryCollection


def _processor(collection, **config) -> DocumentProcessor:
    return DocumentProcessor(ProcessorConfig(**config), collection)


class TestScenarios:
    """End-to-end dispatch scenarios over the SQL store."""

    def test_upsert_stores_value_and_passes_body_through(self, sql_collection: SqlCollection) -> None:
        """Test that upsert writes the payload and leaves the message body as it was."""
        processor = _processor(sql_collection, operation="upsert", value="${content}", key='${! meta("id") }')
        message = Message(b'{"a":1}', {"id": "doc1"})

        out = processor.process(message)

        assert out == [message]
        assert message.body == b'{"a":1}'
        assert message.error is None
        assert sql_collection.get("doc1") == b'{"a":1}'

    def test_get_replaces_body_with_document(self, sql_collection: SqlCollection) -> None:
        """Test that get sets the body to the stored raw bytes."""
        sql_collection.upsert("doc1", b"hello")
        message = Message(b"doc1")

        _processor(sql_collection).process(message)

        assert message.body == b"hello"
        assert message.error is None

    def test_batch_with_missing_key(self, sql_collection: SqlCollection) -> None:
        """Test that one missing key fails only its own message, order preserved."""
        sql_collection.upsert("k1", b"value1")
        sql_collection.upsert("k3", b"value3")
        messages = [Message(b"k1"), Message(b"k2"), Message(b"k3")]

        out = _processor(sql_collection).process_batch(messages)

        assert out == messages
        assert [m.body for m in out] == [b"value1", b"k2", b"value3"]
        assert out[0].error is None and out[2].error is None
        assert isinstance(out[1].error, PerItemOperationError)
        assert out[1].error.kind == ErrorKind.NOT_FOUND

    def test_insert_without_value_fails_at_construction(self, sql_collection: SqlCollection) -> None:
        """Test that insert with no value expression never gets to process messages."""
        with pytest.raises(ConfigurationError) as exc_info:
            _processor(sql_collection, operation="insert")
        assert exc_info.value.reason == ConfigErrorReason.VALUE_REQUIRED

    def test_transport_failure_mutates_nothing(self, memory_collection: MemoryCollection) -> None:
        """Test that a failed bulk call raises BatchError and leaves all messages untouched."""
        memory_collection.documents.update({f"k{i}": b"stored" for i in range(5)})
        memory_collection.transport_error = ConnectionError("network unreachable")
        messages = [Message(f"k{i}".encode()) for i in range(5)]

        with pytest.raises(BatchError):
            _processor(memory_collection).process_batch(messages)

        assert [m.body for m in messages] == [f"k{i}".encode() for i in range(5)]
        assert all(m.error is None for m in messages)


class TestProperties:
    """General dispatch properties."""

    def test_upsert_then_get_round_trip(self, sql_collection: SqlCollection) -> None:
        """Test that a payload written by upsert is what get returns."""
        payload = b"\x00binary\xffpayload"
        writer = _processor(sql_collection, operation="upsert", value="${! content() }", key="doc")
        reader = _processor(sql_collection, key="doc")

        writer.process(Message(payload))
        message = Message(b"anything")
        reader.process(message)

        assert message.body == payload

    @pytest.mark.parametrize(
        "payload",
        [b'"quoted"', b'{"a": 1}', b'{"a":1}', b"[1,2]", b"plain text", b"\x00\xff"],
    )
    def test_legacy_upsert_then_get_round_trip(self, payload: bytes, sql_collection: SqlCollection) -> None:
        """Test that legacy reads give back exactly what legacy wrote."""
        writer = _processor(
            sql_collection, operation="upsert", value="${! content() }", key="doc", transcoder="legacy"
        )
        reader = _processor(sql_collection, key="doc", transcoder="legacy")

        writer.process(Message(payload))
        message = Message(b"anything")
        reader.process(message)

        assert message.error is None
        assert message.body == payload

    def test_remove_then_get_is_not_found(self, sql_collection: SqlCollection) -> None:
        """Test that get after remove is an item error, not a batch failure."""
        sql_collection.upsert("doc1", b"x")
        remove_message = Message(b"doc1")
        _processor(sql_collection, operation="remove").process(remove_message)
        assert remove_message.body == b"doc1"
        assert remove_message.error is None

        get_message = Message(b"doc1")
        _processor(sql_collection).process(get_message)
        assert get_message.error.kind == ErrorKind.NOT_FOUND

    @pytest.mark.parametrize("operation", ["insert", "replace", "upsert", "remove"])
    def test_successful_mutations_pass_body_through(self, operation: str, memory_collection: MemoryCollection) -> None:
        """Test that successful mutations never empty the message body."""
        if operation in ("replace", "remove"):
            memory_collection.documents["doc"] = b"old"
        processor = _processor(memory_collection, operation=operation, value="${! content() }", key="doc")
        message = Message(b'{"keep":"me"}')

        processor.process(message)

        assert message.error is None
        assert message.body == b'{"keep":"me"}'

    def test_unknown_operation_fails_at_construction(self, memory_collection: MemoryCollection) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            _processor(memory_collection, operation="exist")
        assert exc_info.value.reason == ConfigErrorReason.INVALID_OPERATION


class TestRequestBuilding:
    """Tests for per-message key/value evaluation failures."""

    def test_bad_value_fails_only_that_message(self, memory_collection: MemoryCollection) -> None:
        """Test that a value that does not fit the transcoder fails its message only."""
        processor = _processor(
            memory_collection,
            operation="upsert",
            value="${! content() }",
            key='${! meta("id") }',
            transcoder="json",
        )
        messages = [
            Message(b'{"ok":1}', {"id": "a"}),
            Message(b"not json", {"id": "b"}),
            Message(b'{"ok":3}', {"id": "c"}),
        ]

        processor.process_batch(messages)

        assert messages[0].error is None and messages[2].error is None
        assert messages[1].error.kind == ErrorKind.INVALID_REQUEST
        assert messages[1].error.key == "b"
        assert messages[1].body == b"not json"
        assert memory_collection.documents == {"a": b'{"ok":1}', "c": b'{"ok":3}'}
        assert [call.key for call in memory_collection.bulk_calls[0]] == ["a", "c"]

    def test_unresolvable_key_fails_only_that_message(self, memory_collection: MemoryCollection) -> None:
        """Test that a key template that cannot be evaluated fails its message only."""
        memory_collection.documents["doc"] = b"stored"
        processor = _processor(memory_collection, key='${! json("id") }')
        messages = [Message(b"plain text"), Message(b'{"id":"doc"}')]

        processor.process_batch(messages)

        assert messages[0].error.kind == ErrorKind.INVALID_REQUEST
        assert messages[0].body == b"plain text"
        assert messages[1].body == b"stored"

    def test_all_messages_invalid_skips_store(self, memory_collection: MemoryCollection) -> None:
        """Test that no store call is made when no message yields a request."""
        processor = _processor(memory_collection, key='${! json("id") }')
        message = Message(b"plain")

        processor.process(message)

        assert message.error.kind == ErrorKind.INVALID_REQUEST
        assert memory_collection.bulk_calls == []

    def test_empty_payload_fails_only_that_message(self, memory_collection: MemoryCollection) -> None:
        """Test that a write whose value evaluates to nothing is rejected per message."""
        processor = _processor(
            memory_collection,
            operation="insert",
            value='${! meta("value") }',
            key='${! meta("id") }',
        )
        messages = [
            Message(b"first", {"id": "a"}),
            Message(b"second", {"id": "b", "value": "stored"}),
        ]

        processor.process_batch(messages)

        assert messages[0].error.kind == ErrorKind.INVALID_REQUEST
        assert messages[0].error.key == "a"
        assert messages[0].body == b"first"
        assert messages[1].error is None
        assert memory_collection.documents == {"b": b"stored"}

    def test_value_is_not_evaluated_for_reads(self, memory_collection: MemoryCollection) -> None:
        """Test that get ignores a configured value expression."""
        memory_collection.documents["doc"] = b"stored"
        value = MagicMock(return_value=b"unused")
        processor = _processor(memory_collection, key="doc", value=value)

        message = Message(b"x")
        processor.process(message)

        value.assert_not_called()
        assert message.body == b"stored"


class TestProcessorWiring:
    """Tests for executor selection, transcoders, cancellation and lifecycle."""

    def test_executor_selection(self, memory_collection: MemoryCollection, sql_collection: SqlCollection) -> None:
        """Test that bulk is used when the collection supports it and bulk is enabled."""
        assert isinstance(_processor(memory_collection).executor, BulkExecutor)
        assert isinstance(_processor(memory_collection, bulk=False).executor, SingleCallExecutor)
        assert isinstance(_processor(sql_collection).executor, SingleCallExecutor)

    def test_json_transcoder_reencodes_documents(self, memory_collection: MemoryCollection) -> None:
        """Test that structured reads are written back as compact JSON."""
        memory_collection.documents["doc"] = b'{ "a" : [1, 2] }'
        message = Message(b"doc")

        _processor(memory_collection, transcoder="json").process(message)

        assert message.body == b'{"a":[1,2]}'

    def test_cancelled_batch_mutates_nothing(self, memory_collection: MemoryCollection) -> None:
        """Test that a cancelled context fails the batch before any store call."""
        cancel = threading.Event()
        cancel.set()
        messages = [Message(b"a"), Message(b"b")]
        processor = _processor(memory_collection, operation="upsert", value="${! content() }")

        with pytest.raises(BatchError):
            processor.process_batch(messages, cancel)

        assert memory_collection.documents == {}
        assert all(m.error is None for m in messages)

    def test_concurrent_batches_share_collection(self, memory_collection: MemoryCollection) -> None:
        """Test that several workers can use one processor and handle at once."""
        processor = _processor(memory_collection, operation="upsert", value="${! content() }")
        errors: list[Exception] = []

        def worker(index: int) -> None:
            try:
                for n in range(20):
                    batch = [Message(f"w{index}-{n}-{i}".encode()) for i in range(5)]
                    processor.process_batch(batch)
            except Exception as exc:  # pragma: no cover
                errors.append(exc)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(memory_collection.documents) == 4 * 20 * 5

    def test_close_delegates_to_connection(self, memory_collection: MemoryCollection) -> None:
        """Test that close() asks the owning connection to close, once."""
        connection = MagicMock()
        processor = DocumentProcessor(ProcessorConfig(), memory_collection, connection)

        with processor:
            pass
        processor.close()

        connection.close.assert_called_once_with()

    def test_close_without_connection_is_noop(self, memory_collection: MemoryCollection) -> None:
        _processor(memory_collection).close()


class TestConnect:
    """Tests for DocumentProcessor.connect()."""

    def test_connect_sql_end_to_end(self, tmp_path) -> None:
        """Test connecting from configuration and processing against SQLite."""
        store = StoreConfig(url=f"sqlite:///{tmp_path / 'docs.db'}", bucket="orders", timeout="5s")
        writer = DocumentProcessor.connect(
            ProcessorConfig(operation="insert", value="${! content() }", key='${! json("id") }', collection="o"),
            store,
        )
        reader = DocumentProcessor.connect(
            ProcessorConfig(key='${! json("id") }', collection="o", transcoder="json"), store
        )
        try:
            first = Message(b'{"id":"o1","total":5}')
            duplicate = Message(b'{"id":"o1","total":6}')
            writer.process_batch([first, duplicate])
            assert first.error is None
            assert duplicate.error.kind == ErrorKind.ALREADY_EXISTS

            query = Message(b'{"id":"o1"}')
            reader.process(query)
            assert query.body == b'{"id":"o1","total":5}'
        finally:
            writer.close()
            reader.close()

    def test_configuration_checked_before_connecting(self, monkeypatch) -> None:
        """Test that configuration errors are raised without touching the store."""
        connect = MagicMock()
        monkeypatch.setattr("docdispatch.processor.connect", connect)

        with pytest.raises(ConfigurationError):
            DocumentProcessor.connect(
                ProcessorConfig(operation="replace"),
                StoreConfig(url="redis://127.0.0.1:1/0", bucket="b"),
            )
        with pytest.raises(ConfigurationError) as exc_info:
            DocumentProcessor.connect(
                ProcessorConfig(key="${! nope() }"),
                StoreConfig(url="redis://127.0.0.1:1/0", bucket="b"),
            )
        assert exc_info.value.reason == ConfigErrorReason.INVALID_EXPRESSION
        connect.assert_not_called()

    def test_unreachable_store(self, tmp_path) -> None:
        """Test that an unreachable store fails construction with StoreConnectionError."""
        store = StoreConfig(url=f"sqlite:///{tmp_path / 'missing' / 'docs.db'}", bucket="orders")
        with pytest.raises(StoreConnectionError):
            DocumentProcessor.connect(ProcessorConfig(), store)
