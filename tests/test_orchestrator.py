"""
Tests for the flows, the history view and the audit trail.
"""

import json

import pytest

from arbitra.audit import AuditLogger
from arbitra.config import StoreSettings
from arbitra.models.audit import AuditEvent, AuditEventType
from arbitra.models.message import Message, MessageHeader
from arbitra.orchestrator import ReceiveFlow, create_app_components
from arbitra.queries import TransactionHistory
from arbitra.services.channel import (
    PeerConnectionError,
    build_message,
    build_transaction,
    encode_message,
    verify_message,
)
from arbitra.services.storage import AuditStorageInterface, RecordStoreAuditStorage
from arbitra.__main__ import build_parser


HOST = "127.0.0.1"


def _event_types(events):
    return [e["event_type"] for e in events]


class TestTransactionFlow:
    """Create -> store -> send."""

    def test_create_transaction_appends_to_history(self, store_settings, channel_settings, run):
        ctx = create_app_components(store_settings, channel_settings)

        async def scenario():
            message = await ctx.transaction_flow.create_transaction("me", "you", 12)
            stored = await ctx.store.read_list("recenttx")
            audit = await ctx.store.read_list("auditlog")
            return message, stored, audit

        message, stored, audit = run(scenario())
        assert stored == [message.body]
        assert message.header.from_ == "10.0.0.1"
        assert _event_types(audit) == ["transaction_created", "transaction_stored"]

    def test_submit_reaches_peer_and_peer_persists(self, tmp_path, channel_settings, run):
        sender_ctx = create_app_components(
            StoreSettings(app_data_root=tmp_path / "alice"), channel_settings,
        )
        peer_ctx = create_app_components(
            StoreSettings(app_data_root=tmp_path / "bob"), channel_settings,
        )

        async def scenario():
            async with peer_ctx:
                await peer_ctx.start_servers(oracle=False)
                _, port = peer_ctx.message_server.address
                message, replies = await sender_ctx.transaction_flow.submit(
                    "alice", "bob", 7.5, HOST, port,
                )
            local = await sender_ctx.store.read_list("recenttx")
            received = await peer_ctx.store.read_list("receivedtx")
            peer_audit = await peer_ctx.store.read_list("auditlog")
            return message, replies, local, received, peer_audit

        message, replies, local, received, peer_audit = run(scenario())
        assert replies == []
        assert local == [message.body]
        assert received == [message.body]
        assert "transaction_received" in _event_types(peer_audit)

    def test_unreachable_peer_keeps_local_record(self, store_settings, channel_settings, run):
        ctx = create_app_components(store_settings, channel_settings)

        async def scenario():
            await ctx.oracle_server.start()
            _, port = ctx.oracle_server.address
            await ctx.oracle_server.stop()
            with pytest.raises(PeerConnectionError):
                await ctx.transaction_flow.submit("me", "you", 1, HOST, port)
            return await ctx.store.read_list("recenttx"), await ctx.store.read_list("auditlog")

        local, audit = run(scenario())
        assert len(local) == 1
        assert _event_types(audit)[-1] == "message_send_failed"


class TestReceiveFlow:
    """Only verified transactions are persisted."""

    def _flow(self, store, store_settings):
        audit = AuditLogger(RecordStoreAuditStorage(store, store_settings))
        return ReceiveFlow(store, audit_logger=audit, store_settings=store_settings)

    def test_verified_transaction_persisted(self, store, store_settings, run):
        flow = self._flow(store, store_settings)
        message = build_transaction("carol", "me", 3, origin="10.0.0.3", time=5)

        async def scenario():
            record = await flow.handle(verify_message(encode_message(message)))
            return record, await store.read_list("receivedtx")

        record, received = run(scenario())
        assert record.sender == "carol"
        assert received == [message.body]

    def test_tampered_transaction_dropped(self, store, store_settings, run):
        flow = self._flow(store, store_settings)
        forged = Message(
            header=MessageHeader(type="transaction", hash="f" * 64, from_="10.0.0.66"),
            body={"sender": "mallory", "receiver": "me", "amount": 1, "time": 1},
        )

        async def scenario():
            record = await flow.handle(verify_message(encode_message(forged)))
            return record, await store.read_list("receivedtx"), await store.read_list("auditlog")

        record, received, audit = run(scenario())
        assert record is None
        assert received == []
        assert _event_types(audit) == ["integrity_failed"]

    def test_unparseable_message_audited(self, store, store_settings, run):
        flow = self._flow(store, store_settings)

        async def scenario():
            await flow.handle(verify_message(b"{{{"))
            return await store.read_list("auditlog")

        assert _event_types(run(scenario())) == ["message_parse_failed"]

    def test_unknown_type_audited_not_persisted(self, store, store_settings, run):
        flow = self._flow(store, store_settings)
        message = build_message("gossip", {"hi": 1}, origin="10.0.0.4")

        async def scenario():
            record = await flow.handle(verify_message(encode_message(message)))
            return record, await store.read_list("receivedtx"), await store.read_list("auditlog")

        record, received, audit = run(scenario())
        assert record is None
        assert received == []
        assert _event_types(audit) == ["unknown_message_type", "message_verified"]

    def test_verified_but_invalid_transaction_dropped(self, store, store_settings, run):
        flow = self._flow(store, store_settings)
        message = build_message("transaction", {"sender": "x", "amount": -4}, origin="10.0.0.5")

        async def scenario():
            record = await flow.handle(verify_message(encode_message(message)))
            return record, await store.read_list("receivedtx")

        record, received = run(scenario())
        assert record is None
        assert received == []


    def test_long_origin_does_not_block_persistence(self, store, store_settings, run):
        flow = self._flow(store, store_settings)
        message = build_transaction("me", "you", 12, origin="peer-" + "x" * 600, time=1)

        async def scenario():
            record = await flow.handle(verify_message(encode_message(message)))
            return record, await store.read_list("receivedtx"), await store.read_list("auditlog")

        record, received, audit = run(scenario())
        assert record is not None
        assert received == [message.body]
        assert _event_types(audit) == ["message_verified", "transaction_received"]
        assert audit[0]["details"]["from"] == message.header.from_

    def test_long_unknown_type_and_forged_hash(self, store, store_settings, run):
        flow = self._flow(store, store_settings)
        forged = Message(
            header=MessageHeader(type="t" * 700, hash="0" * 64, from_="o" * 700),
            body={"a": 1},
        )

        async def scenario():
            record = await flow.handle(verify_message(encode_message(forged)))
            return record, await store.read_list("auditlog")

        record, audit = run(scenario())
        assert record is None
        assert _event_types(audit) == ["unknown_message_type", "integrity_failed"]


class TestTransactionHistory:
    """Read side of recenttx."""

    def test_lists_in_stored_order_and_recent_first(self, store, store_settings, run):
        history = TransactionHistory(store, settings=store_settings)

        async def scenario():
            await store.append("recenttx", {"sender": "me", "receiver": "a", "amount": 1, "time": 10})
            await store.append("recenttx", {"sender": "me", "receiver": "b", "amount": 2, "time": 30})
            await store.append("recenttx", {"sender": "c", "receiver": "me", "amount": 4, "time": 20})
            return (
                await history.list_transactions(),
                await history.recent(2),
                await history.total_sent("me"),
                await history.with_counterparty("b"),
            )

        ordered, recent, total, with_b = run(scenario())
        assert [r.time for r in ordered] == [10, 30, 20]
        assert [r.time for r in recent] == [30, 20]
        assert total == 3
        assert [r.receiver for r in with_b] == ["b"]

    def test_legacy_records_and_bad_rows(self, store, store_settings, run):
        history = TransactionHistory(store, settings=store_settings)
        rows = [
            {"sender": "me", "reciever": "also me", "amount": 12, "time": 1},
            {"time": 2, "to": "bob", "amount": 5, "sender": "me"},
            {"garbage": True},
        ]

        async def scenario():
            await store.store_all("recenttx", rows)
            return await history.list_transactions()

        records = run(scenario())
        assert [r.receiver for r in records] == ["also me", "bob"]

    def test_missing_or_corrupt_history_is_empty(self, store, store_settings, run):
        history = TransactionHistory(store, settings=store_settings)
        assert run(history.list_transactions()) == []

        store.data_dir.mkdir(parents=True, exist_ok=True)
        store.path_for("recenttx").write_text("[{broken", encoding="utf-8")
        assert run(history.list_transactions()) == []


class _FailingAuditStorage(AuditStorageInterface):
    async def append_event(self, event):
        raise OSError("disk full")

    async def get_events_by_correlation_id(self, correlation_id):
        return []

    async def get_recent_events(self, limit=100):
        return []


class TestAuditTrail:
    """Audit events go to the log and to the audit document."""

    def test_storage_failure_does_not_raise(self, run):
        logger = AuditLogger(_FailingAuditStorage())
        assert run(logger.log_error("test", "something")) is None

    def test_log_reports_storage_failure(self, run):
        from arbitra.models.audit import AuditEventBuilder

        logger = AuditLogger(_FailingAuditStorage())
        assert run(logger.log(AuditEventBuilder.message_parse_failed("x"))) is False

    def test_invalid_event_is_dropped_not_raised(self, store, store_settings, run):
        from arbitra.models.audit import AuditEventBuilder

        logger = AuditLogger(RecordStoreAuditStorage(store, store_settings))
        logged = run(logger._log_built(
            AuditEventBuilder.transaction_stored,
            digest="ab",
            document="recenttx",
            correlation_id="not-a-uuid",
        ))
        assert logged is False
        assert run(store.read_list("auditlog")) == []

    def test_events_by_correlation_id(self, store, store_settings, run):
        storage = RecordStoreAuditStorage(store, store_settings)
        ctx = create_app_components(store_settings)

        async def scenario():
            await ctx.transaction_flow.create_transaction("me", "you", 1)
            await ctx.transaction_flow.create_transaction("me", "you", 2)
            recent = await storage.get_recent_events(limit=10)
            chain = await storage.get_events_by_correlation_id(recent[0].correlation_id)
            return recent, chain

        recent, chain = run(scenario())
        assert len(recent) == 4
        assert all(isinstance(e, AuditEvent) for e in recent)
        assert [e.event_type for e in chain] == [
            AuditEventType.TRANSACTION_CREATED,
            AuditEventType.TRANSACTION_STORED,
        ]

    def test_audit_document_is_json_list(self, store, store_settings, run):
        logger = AuditLogger(RecordStoreAuditStorage(store, store_settings))
        run(logger.log_message_parse_failed("bad bytes"))
        raw = run(store.get_all("auditlog"))
        assert json.loads(raw)[0]["event_type"] == "message_parse_failed"


class TestCommandLine:
    """Argument parsing for the entry point."""

    def test_send_arguments(self):
        args = build_parser().parse_args(
            ["send", "12", "--sender", "me", "--receiver", "you", "--to", HOST]
        )
        assert args.command == "send"
        assert args.amount == 12
        assert isinstance(args.amount, int)
        assert args.port is None

    def test_fractional_amount(self):
        args = build_parser().parse_args(
            ["send", "7.5", "--sender", "me", "--receiver", "you", "--to", HOST]
        )
        assert args.amount == 7.5

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
