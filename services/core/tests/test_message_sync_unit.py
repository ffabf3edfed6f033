"""Unit tests for the message sync orchestrator.

Tests cover:
- Importing chats and messages from every connection
- Idempotent re-runs
- Pagination until the cursor is exhausted
- Rate-limit retry and per-item failures
- Sync status bookkeeping
"""

import pytest

from factories import (
    FakeGateway,
    chat_record,
    create_message,
    create_user_platform,
    message_record,
    slack_connection,
)
from parley_core.domain.models import (
    Chat,
    Message,
    MessageStatus,
    MessageType,
    SyncState,
    SyncStatus,
)
from parley_core.domain.services.inbound import InboundMessage, InboundMessageService
from parley_core.domain.services.message_sync import MessageSyncService, NoConnectionsError
from parley_core.domain.services.sync_status import (
    InvalidSyncTransitionError,
    SyncNotFoundError,
    SyncStatusService,
)
from parley_core.providers.base import GatewayAuthError, RateLimitedError, UpstreamError


def start_sync(db_session, customer_id: str = "cust-1") -> str:
    sync = SyncStatusService(db_session).start(customer_id)
    db_session.commit()
    return sync.sync_id


def get_sync(db_session, sync_id: str) -> SyncStatus:
    db_session.expire_all()
    return db_session.query(SyncStatus).filter(SyncStatus.sync_id == sync_id).one()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(
        connections=[slack_connection()],
        chats={"conn-1": [chat_record("C1", "general"), chat_record("C2", "random")]},
        messages={
            ("conn-1", "C1"): [
                message_record("M1", "hello", owner_id="U1", ts="1753303953.000000"),
                message_record("M2", "hi <@U2>", owner_id="U2", ts="1753303960.000000"),
            ],
            ("conn-1", "C2"): [
                message_record("M3", "random thought", owner_id="U2"),
            ],
        },
        mappings={"conn-1": {"U2": "Grace"}},
    )


@pytest.fixture
def service(db_session, gateway, test_settings) -> MessageSyncService:
    return MessageSyncService(db=db_session, gateway=gateway, settings=test_settings)


class TestRun:
    """Tests for MessageSyncService.run."""

    @pytest.mark.asyncio
    async def test_imports_chats_and_messages(self, db_session, service):
        sync_id = start_sync(db_session)

        result = await service.run("cust-1", sync_id)

        assert result.total_chats == 2
        assert result.total_messages == 3
        assert result.errors == []
        assert db_session.query(Chat).count() == 2
        assert db_session.query(Message).count() == 3

        sync = get_sync(db_session, sync_id)
        assert sync.status == SyncState.COMPLETED
        assert sync.is_syncing is False
        assert sync.total_chats == 2
        assert sync.total_messages == 3

    @pytest.mark.asyncio
    async def test_imported_messages_are_sent_with_local_id(self, db_session, service):
        await service.run("cust-1", start_sync(db_session))

        message = db_session.query(Message).filter(Message.external_message_id == "M1").one()
        assert message.status == MessageStatus.SENT
        assert message.local_id == "M1"
        assert message.chat_external_id == "C1"
        assert message.timestamp == "2025-07-23T20:52:33.000Z"

    @pytest.mark.asyncio
    async def test_message_type_follows_platform_identity(self, db_session, service):
        create_user_platform(db_session, external_user_id="U1")
        db_session.commit()

        await service.run("cust-1", start_sync(db_session))

        own = db_session.query(Message).filter(Message.external_message_id == "M1").one()
        other = db_session.query(Message).filter(Message.external_message_id == "M2").one()
        assert own.message_type == MessageType.USER
        assert other.message_type == MessageType.THIRD_PARTY

    @pytest.mark.asyncio
    async def test_all_third_party_without_identity(self, db_session, service):
        await service.run("cust-1", start_sync(db_session))

        types = {m.message_type for m in db_session.query(Message).all()}
        assert types == {MessageType.THIRD_PARTY}

    @pytest.mark.asyncio
    async def test_mentions_are_replaced(self, db_session, service):
        await service.run("cust-1", start_sync(db_session))

        message = db_session.query(Message).filter(Message.external_message_id == "M2").one()
        assert message.content == "hi @Grace"

    @pytest.mark.asyncio
    async def test_chat_last_message_is_newest_import(self, db_session, service):
        await service.run("cust-1", start_sync(db_session))

        chat = db_session.query(Chat).filter(Chat.external_id == "C1").one()
        assert chat.name == "general"
        assert chat.last_message == "hi @Grace"
        assert chat.last_message_time == "2025-07-23T20:52:40.000Z"
        assert chat.import_new is False


class TestIdempotence:
    """Re-running a sync with identical upstream data."""

    @pytest.mark.asyncio
    async def test_second_run_adds_nothing(self, db_session, service):
        await service.run("cust-1", start_sync(db_session))
        second = await service.run("cust-1", start_sync(db_session))

        assert second.total_messages == 0
        assert second.total_chats == 2
        assert db_session.query(Chat).count() == 2
        assert db_session.query(Message).count() == 3

    @pytest.mark.asyncio
    async def test_messages_without_ids_are_imported_once(self, db_session, test_settings):
        gateway = FakeGateway(
            connections=[slack_connection()],
            chats={"conn-1": [chat_record("C1")]},
            messages={
                ("conn-1", "C1"): [
                    message_record(None, "no id", ts="1753303953"),
                    message_record(None, "no id", ts="1753303953"),
                ]
            },
        )
        service = MessageSyncService(db_session, gateway, settings=test_settings)

        await service.run("cust-1", start_sync(db_session))
        await service.run("cust-1", start_sync(db_session))

        messages = db_session.query(Message).all()
        assert len(messages) == 1
        assert messages[0].external_message_id.startswith("gen-")

    @pytest.mark.asyncio
    async def test_new_upstream_messages_are_added(self, db_session, gateway, service):
        await service.run("cust-1", start_sync(db_session))
        gateway.messages[("conn-1", "C2")].append(message_record("M4", "later"))

        second = await service.run("cust-1", start_sync(db_session))

        assert second.total_messages == 1
        assert db_session.query(Message).count() == 4

    @pytest.mark.asyncio
    async def test_webhook_delivered_message_is_not_imported_again(
        self, db_session, test_settings, service
    ):
        await InboundMessageService(db_session, settings=test_settings).receive(
            InboundMessage(
                customer_id="cust-1",
                external_message_id="rec-abc",
                message_id="M1",
                chat_id="C1",
                content="hello",
                owner_id="U1",
                platform_name="slack",
                integration_id="conn-1",
            )
        )
        db_session.commit()

        result = await service.run("cust-1", start_sync(db_session))

        assert result.errors == []
        assert result.total_chats == 2
        assert result.total_messages == 2
        stored = sorted(m.local_id for m in db_session.query(Message).all())
        assert stored == ["M1", "M2", "M3"]

    @pytest.mark.asyncio
    async def test_sent_outbound_message_is_not_imported_again(self, db_session, service):
        create_message(db_session, "msg-1", external_message_id="M1")
        db_session.commit()

        result = await service.run("cust-1", start_sync(db_session))

        assert result.total_messages == 2
        assert db_session.query(Message).count() == 3


class TestPagination:
    """Pages are followed until the cursor is exhausted."""

    @pytest.mark.asyncio
    async def test_follows_all_pages(self, db_session, test_settings):
        gateway = FakeGateway(
            connections=[slack_connection()],
            chats={"conn-1": [chat_record(f"C{i}") for i in range(5)]},
            messages={
                ("conn-1", "C0"): [message_record(f"M{i}", f"m{i}") for i in range(5)],
            },
            page_size=2,
        )
        service = MessageSyncService(db_session, gateway, settings=test_settings)

        result = await service.run("cust-1", start_sync(db_session))

        assert result.total_chats == 5
        assert result.total_messages == 5
        assert gateway.count("list_conversations") == 3

    @pytest.mark.asyncio
    async def test_page_limit_bounds_the_walk(self, db_session, test_settings):
        settings = test_settings.model_copy(update={"sync_max_pages": 2})
        gateway = FakeGateway(
            connections=[slack_connection()],
            chats={"conn-1": [chat_record(f"C{i}") for i in range(10)]},
            page_size=2,
        )
        service = MessageSyncService(db_session, gateway, settings=settings)

        result = await service.run("cust-1", start_sync(db_session))

        assert result.total_chats == 4
        assert gateway.count("list_conversations") == 2


class TestFailures:
    """Rate limits and per-item failures."""

    @pytest.mark.asyncio
    async def test_rate_limited_call_is_retried_once(self, db_session, gateway, service):
        gateway.fail("list_conversations", RateLimitedError("slow down", 429))

        result = await service.run("cust-1", start_sync(db_session))

        assert result.total_chats == 2
        assert gateway.count("list_conversations") == 2
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_rate_limited_mention_lookup_is_retried(self, db_session, gateway, service):
        gateway.fail("fetch_user_mappings", RateLimitedError("slow down", 429))

        await service.run("cust-1", start_sync(db_session))

        message = db_session.query(Message).filter(Message.external_message_id == "M2").one()
        assert message.content == "hi @Grace"
        assert gateway.count("fetch_user_mappings") == 2

    @pytest.mark.asyncio
    async def test_second_rate_limit_skips_the_connection(self, db_session, test_settings):
        gateway = FakeGateway(
            connections=[slack_connection("conn-1"), slack_connection("conn-2")],
            chats={"conn-1": [chat_record("C1")], "conn-2": [chat_record("C2")]},
        )
        gateway.fail(
            "list_conversations",
            RateLimitedError("slow down", 429),
            RateLimitedError("slow down", 429),
        )
        service = MessageSyncService(db_session, gateway, settings=test_settings)
        sync_id = start_sync(db_session)

        result = await service.run("cust-1", sync_id)

        assert result.total_chats == 1
        assert result.connections[0].failed is True
        assert result.connections[1].chats == 1
        assert len(result.errors) == 1
        assert get_sync(db_session, sync_id).status == SyncState.COMPLETED

    @pytest.mark.asyncio
    async def test_message_page_failure_keeps_the_chat(self, db_session, gateway, service):
        gateway.fail("list_messages", UpstreamError("broker down", 502))

        result = await service.run("cust-1", start_sync(db_session))

        assert result.total_chats == 2
        assert result.total_messages == 1
        assert any("C1" in error for error in result.errors)
        assert db_session.query(Chat).count() == 2

    @pytest.mark.asyncio
    async def test_chats_without_id_are_skipped(self, db_session, test_settings):
        gateway = FakeGateway(
            connections=[slack_connection()],
            chats={"conn-1": [{"fields": {"name": "ghost"}}, chat_record("C1")]},
        )
        service = MessageSyncService(db_session, gateway, settings=test_settings)

        result = await service.run("cust-1", start_sync(db_session))

        assert result.total_chats == 1
        assert len(result.errors) == 1

    @pytest.mark.asyncio
    async def test_no_connections_fails_the_sync(self, db_session, test_settings):
        service = MessageSyncService(db_session, FakeGateway(), settings=test_settings)
        sync_id = start_sync(db_session)

        with pytest.raises(NoConnectionsError):
            await service.run("cust-1", sync_id)

        sync = get_sync(db_session, sync_id)
        assert sync.status == SyncState.FAILED
        assert sync.error == "No connections found"

    @pytest.mark.asyncio
    async def test_auth_failure_fails_the_sync(self, db_session, gateway, service):
        gateway.fail("list_connections", GatewayAuthError("bad token", 401))
        sync_id = start_sync(db_session)

        with pytest.raises(GatewayAuthError):
            await service.run("cust-1", sync_id)

        sync = get_sync(db_session, sync_id)
        assert sync.status == SyncState.FAILED
        assert "bad token" in sync.error

    @pytest.mark.asyncio
    async def test_unknown_sync_id(self, service):
        with pytest.raises(SyncNotFoundError):
            await service.run("cust-1", "sync-missing")

    @pytest.mark.asyncio
    async def test_finished_sync_cannot_run_again(self, db_session, service):
        sync_id = start_sync(db_session)
        await service.run("cust-1", sync_id)

        with pytest.raises(InvalidSyncTransitionError):
            await service.run("cust-1", sync_id)
