"""Unit tests for the inbound message receiver."""

import pytest

from factories import (
    FakeGateway,
    chat_record,
    create_chat,
    create_message,
    create_user_platform,
    slack_connection,
)
from parley_core.domain.models import Chat, Message, MessageStatus, MessageType
from parley_core.domain.services.inbound import (
    ImportDisabledError,
    InboundMessage,
    InboundMessageService,
)
from parley_core.providers.base import RateLimitedError, UpstreamError


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(
        connections=[slack_connection()],
        chats={"conn-1": [chat_record("C9", "design-review")]},
    )


@pytest.fixture
def service(db_session, gateway) -> InboundMessageService:
    return InboundMessageService(db=db_session, gateway_factory=lambda customer_id: gateway)


def inbound(**overrides) -> InboundMessage:
    fields = dict(
        customer_id="cust-1",
        external_message_id="ext-1",
        chat_id="C1",
        content="ping",
        owner_id="U2",
        owner_name="Grace",
        timestamp="1753303953.454369",
        platform_name="slack",
        integration_id="conn-1",
    )
    fields.update(overrides)
    return InboundMessage(**fields)


class TestReceive:
    """Tests for receive()."""

    @pytest.mark.asyncio
    async def test_stores_message_in_known_chat(self, db_session, service):
        create_chat(db_session, external_id="C1")

        result = await service.receive(inbound(message_id="M1"))

        assert result.duplicate is False
        assert result.chat_created is False
        assert result.local_id == "M1"

        message = db_session.query(Message).one()
        assert message.status == MessageStatus.SENT
        assert message.message_type == MessageType.THIRD_PARTY
        assert message.sender == "U2"
        assert message.owner_name == "Grace"
        assert message.timestamp == "2025-07-23T20:52:33.454Z"

        chat = db_session.query(Chat).one()
        assert chat.last_message == "ping"
        assert chat.last_message_time == "2025-07-23T20:52:33.454Z"

    @pytest.mark.asyncio
    async def test_generates_local_id(self, service):
        result = await service.receive(inbound())
        assert result.local_id.startswith("msg-")

    @pytest.mark.asyncio
    async def test_new_chat_takes_the_remote_name(self, db_session, service):
        result = await service.receive(inbound(chat_id="C9"))

        assert result.chat_created is True
        chat = db_session.query(Chat).one()
        assert chat.name == "design-review"
        assert chat.participants == ["U2"]
        assert chat.import_new is True

    @pytest.mark.asyncio
    async def test_new_chat_name_falls_back(self, db_session, service):
        await service.receive(inbound(chat_id="C404"))

        assert db_session.query(Chat).one().name == "Chat C404"

    @pytest.mark.asyncio
    async def test_name_lookup_failure_falls_back(self, db_session, service, gateway):
        gateway.fail("list_conversations", UpstreamError("broker down", 502))

        await service.receive(inbound(chat_id="C9"))

        assert db_session.query(Chat).one().name == "Chat C9"

    @pytest.mark.asyncio
    async def test_rate_limited_name_lookup_is_retried(self, db_session, service, gateway):
        gateway.fail("list_conversations", RateLimitedError("slow down", 429))

        await service.receive(inbound(chat_id="C9"))

        assert db_session.query(Chat).one().name == "design-review"
        assert gateway.count("list_conversations") == 2

    @pytest.mark.asyncio
    async def test_unknown_integration_skips_lookup(self, db_session, service, gateway):
        await service.receive(inbound(integration_id=None, platform_name=None))

        chat = db_session.query(Chat).one()
        assert chat.connection_id == "unknown"
        assert chat.platform_name == "Unknown"
        assert gateway.count("list_conversations") == 0

    @pytest.mark.asyncio
    async def test_import_disabled_writes_nothing(self, db_session, service):
        create_user_platform(db_session, import_new=False)

        with pytest.raises(ImportDisabledError):
            await service.receive(inbound())

        assert db_session.query(Chat).count() == 0
        assert db_session.query(Message).count() == 0

    @pytest.mark.asyncio
    async def test_import_disabled_still_accepts_known_chats(self, db_session, service):
        create_user_platform(db_session, import_new=False)
        create_chat(db_session, external_id="C1")

        result = await service.receive(inbound())

        assert result.duplicate is False
        assert db_session.query(Message).count() == 1

    @pytest.mark.asyncio
    async def test_duplicate_external_id(self, db_session, service):
        create_message(db_session, "M1", external_message_id="ext-1")

        result = await service.receive(inbound())

        assert result.duplicate is True
        assert result.local_id is None
        assert db_session.query(Message).count() == 1

    @pytest.mark.asyncio
    async def test_redelivery_is_a_noop(self, db_session, service):
        await service.receive(inbound(message_id="M1"))
        second = await service.receive(inbound(message_id="M1"))

        assert second.duplicate is True
        assert db_session.query(Message).count() == 1

    @pytest.mark.asyncio
    async def test_bad_timestamp_uses_now(self, db_session, service):
        await service.receive(inbound(timestamp="not a time"))

        message = db_session.query(Message).one()
        assert message.timestamp.endswith("Z")
        assert message.timestamp != "not a time"

    @pytest.mark.asyncio
    async def test_epoch_millis_timestamp(self, db_session, service):
        await service.receive(inbound(timestamp="1753303953454"))

        assert db_session.query(Message).one().timestamp == "2025-07-23T20:52:33.454Z"


class TestImportPreference:
    """Tests for is_import_enabled()."""

    def test_defaults_to_enabled(self, db_session, service):
        assert service.is_import_enabled("cust-1", "conn-1") is True

    def test_reads_platform_preference(self, db_session, service):
        create_user_platform(db_session, import_new=False)
        assert service.is_import_enabled("cust-1", "conn-1") is False
