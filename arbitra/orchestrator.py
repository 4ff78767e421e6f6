"""
Main Orchestrator for Arbitra

This module ties the record store and the integrity channel together and
defines the end-to-end flows:
1. Send (record -> store locally -> transmit)
2. Receive (frame -> verify -> persist verified transactions)

DESIGN DECISION: The store and the channel never import each other or
this module. Only the flows know about both, and only AppContext holds
process-wide objects. Whoever owns the entry point owns the AppContext.
"""

from typing import Optional, Union
from uuid import UUID

import structlog
from pydantic import ValidationError

from arbitra.audit import AuditLogger, create_correlation_id
from arbitra.config import ChannelSettings, StoreSettings, get_settings
from arbitra.models.message import (
    Message,
    MessageType,
    VerificationOutcome,
    VerificationResult,
)
from arbitra.models.transaction import TransactionRecord
from arbitra.queries import TransactionHistory
from arbitra.services.channel import (
    HashOracleServer,
    MessageServer,
    PeerClient,
    PeerConnectionError,
    build_transaction,
)
from arbitra.services.storage import (
    JsonFileRecordStore,
    RecordStoreAuditStorage,
    RecordStoreInterface,
    StorageIOError,
)


logger = structlog.get_logger(__name__)


class TransactionFlow:
    """
    Orchestrates an outgoing transfer.

    Flow:
    1. Build → TransactionRecord wrapped in a digest-carrying message
    2. Store → append the body to the recent-transactions document
    3. Send → transmit to the peer, collect any acknowledgements

    The record is stored before it is sent, so a transfer that never
    reaches the peer is still in local history.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        client: Optional[PeerClient] = None,
        audit_logger: Optional[AuditLogger] = None,
        store_settings: Optional[StoreSettings] = None,
        channel_settings: Optional[ChannelSettings] = None,
    ):
        self._store = store
        self._store_settings = store_settings or get_settings().store
        self._channel_settings = channel_settings or get_settings().channel
        self._client = client or PeerClient(self._channel_settings)
        self._audit_logger = audit_logger

    async def create_transaction(
        self,
        sender: str,
        receiver: str,
        amount: Union[int, float],
        correlation_id: Optional[UUID] = None,
    ) -> Message:
        """
        Build a transaction message and append its body to local history.

        Raises:
            ValidationError: If the record is invalid (e.g. amount <= 0)
            StorageIOError: If the history document cannot be written
        """
        correlation_id = correlation_id or create_correlation_id()
        message = build_transaction(
            sender,
            receiver,
            amount,
            origin=self._channel_settings.origin_address,
        )
        digest = message.header.hash

        if self._audit_logger:
            await self._audit_logger.log_transaction_created(
                digest=digest,
                sender=sender,
                receiver=receiver,
                amount=amount,
                correlation_id=correlation_id,
            )

        document = self._store_settings.recent_tx_document
        try:
            await self._store.append(document, message.body)
        except StorageIOError as e:
            if self._audit_logger:
                await self._audit_logger.log_storage_error(
                    document=document,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_transaction_stored(
                digest=digest,
                document=document,
                correlation_id=correlation_id,
            )
        return message

    async def send(
        self,
        message: Message,
        host: str,
        port: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Message]:
        """
        Transmit a message to a peer.

        Returns:
            Reply messages (ack/nack) if the peer acknowledges
        """
        port = self._channel_settings.message_port if port is None else port
        peer = f"{host}:{port}"
        try:
            replies = await self._client.send_message(message, host, port)
        except PeerConnectionError as e:
            if self._audit_logger:
                await self._audit_logger.log_message_send_failed(
                    digest=message.header.hash,
                    peer=peer,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_message_sent(
                digest=message.header.hash,
                message_type=message.header.type,
                peer=peer,
                reply_count=len(replies),
                correlation_id=correlation_id,
            )
        return replies

    async def submit(
        self,
        sender: str,
        receiver: str,
        amount: Union[int, float],
        host: str,
        port: Optional[int] = None,
    ) -> tuple[Message, list[Message]]:
        """Create, store and send a transaction in one go."""
        correlation_id = create_correlation_id()
        message = await self.create_transaction(sender, receiver, amount, correlation_id)
        replies = await self.send(message, host, port, correlation_id)
        return message, replies


class ReceiveFlow:
    """
    Handles verification results coming off the message endpoint.

    Only VERIFIED transaction messages are persisted. Everything else is
    audited and dropped.
    """

    def __init__(
        self,
        store: RecordStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        store_settings: Optional[StoreSettings] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._document = (store_settings or get_settings().store).received_tx_document

    @property
    def document(self) -> str:
        return self._document

    async def handle(self, result: VerificationResult) -> Optional[TransactionRecord]:
        """
        Act on one verification result.

        Returns:
            The persisted record, or None if nothing was stored
        """
        if result.outcome == VerificationOutcome.INVALID_MESSAGE:
            if self._audit_logger:
                await self._audit_logger.log_message_parse_failed(result.error or "invalid message")
            return None

        message = result.message
        origin = message.header.from_

        if not result.known_type and self._audit_logger:
            await self._audit_logger.log_unknown_message_type(
                digest=result.expected_hash,
                message_type=result.message_type,
            )

        if result.outcome == VerificationOutcome.INTEGRITY_FAILED:
            if self._audit_logger:
                await self._audit_logger.log_integrity_failed(
                    expected_hash=result.expected_hash,
                    computed_hash=result.computed_hash,
                    origin=origin,
                )
            return None

        if self._audit_logger:
            await self._audit_logger.log_message_verified(
                digest=result.computed_hash,
                message_type=result.message_type,
                origin=origin,
            )

        if result.message_type != MessageType.TRANSACTION.value:
            return None

        try:
            record = TransactionRecord.model_validate(message.body)
        except ValidationError as e:
            logger.warning("received_transaction_invalid", origin=origin, errors=e.error_count())
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="invalid_transaction",
                    error_message=str(e),
                    details={"hash": result.computed_hash, "from": origin},
                )
            return None

        # Stored as received so the digest stays reproducible
        await self._store.append(self._document, message.body)

        if self._audit_logger:
            await self._audit_logger.log_transaction_received(
                digest=result.computed_hash,
                document=self._document,
                sender=record.sender,
                amount=record.amount,
            )
        return record

    async def __call__(self, result: VerificationResult) -> None:
        await self.handle(result)


class AppContext:
    """
    Everything a running client owns.

    Built by create_app_components() and held by the entry point. Nothing
    in arbitra.services reaches back into it.
    """

    def __init__(
        self,
        store_settings: StoreSettings,
        channel_settings: ChannelSettings,
        store: JsonFileRecordStore,
        audit_logger: AuditLogger,
        client: PeerClient,
        transaction_flow: TransactionFlow,
        receive_flow: ReceiveFlow,
        history: TransactionHistory,
        oracle_server: HashOracleServer,
        message_server: MessageServer,
    ):
        self.store_settings = store_settings
        self.channel_settings = channel_settings
        self.store = store
        self.audit_logger = audit_logger
        self.client = client
        self.transaction_flow = transaction_flow
        self.receive_flow = receive_flow
        self.history = history
        self.oracle_server = oracle_server
        self.message_server = message_server

    async def start_servers(
        self,
        oracle: bool = True,
        messages: bool = True,
        host: Optional[str] = None,
    ) -> None:
        if oracle:
            await self.oracle_server.start(host=host)
        if messages:
            await self.message_server.start(host=host)

    async def stop(self) -> None:
        await self.message_server.stop()
        await self.oracle_server.stop()

    async def __aenter__(self) -> "AppContext":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


def create_app_components(
    store_settings: Optional[StoreSettings] = None,
    channel_settings: Optional[ChannelSettings] = None,
    persist_audit: bool = True,
) -> AppContext:
    """
    Factory function to create all application components.

    Args:
        store_settings: Store configuration (defaults to environment)
        channel_settings: Channel configuration (defaults to environment)
        persist_audit: Whether audit events are also appended to the
                    audit document. Set to False for local-only logging.
    """
    store_settings = store_settings or get_settings().store
    channel_settings = channel_settings or get_settings().channel

    store = JsonFileRecordStore(store_settings)
    if persist_audit:
        audit_logger = AuditLogger(RecordStoreAuditStorage(store, store_settings))
    else:
        audit_logger = AuditLogger()  # Local-only logging

    client = PeerClient(channel_settings)
    transaction_flow = TransactionFlow(
        store,
        client=client,
        audit_logger=audit_logger,
        store_settings=store_settings,
        channel_settings=channel_settings,
    )
    receive_flow = ReceiveFlow(
        store,
        audit_logger=audit_logger,
        store_settings=store_settings,
    )

    return AppContext(
        store_settings=store_settings,
        channel_settings=channel_settings,
        store=store,
        audit_logger=audit_logger,
        client=client,
        transaction_flow=transaction_flow,
        receive_flow=receive_flow,
        history=TransactionHistory(store, settings=store_settings),
        oracle_server=HashOracleServer(channel_settings),
        message_server=MessageServer(receive_flow, channel_settings),
    )
