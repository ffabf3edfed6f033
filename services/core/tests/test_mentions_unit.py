"""Unit tests for mention replacement."""

import re

import pytest

from factories import FakeGateway
from parley_core.domain.services.mentions import (
    MENTION_PATTERNS,
    MentionPattern,
    MentionResolver,
    get_mention_pattern,
    register_mention_pattern,
)
from parley_core.providers.base import Connection, RateLimitedError, UpstreamError


def connection(platform: str, connection_id: str = "conn-1") -> Connection:
    return Connection(id=connection_id, name=platform, platform=platform)


class TestMentionPatterns:
    """Tests for the pattern registry."""

    def test_lookup_is_case_insensitive(self):
        assert get_mention_pattern("Slack") is MENTION_PATTERNS["slack"]

    def test_unknown_platform(self):
        assert get_mention_pattern("carrier-pigeon") is None
        assert get_mention_pattern(None) is None

    def test_register_custom_pattern(self):
        pattern = MentionPattern(re.compile(r"\{(\w+)\}"), lambda m: m.group(1), lambda n: n)
        register_mention_pattern("Custom", pattern)
        try:
            assert get_mention_pattern("custom") is pattern
        finally:
            MENTION_PATTERNS.pop("custom")


class TestMentionResolver:
    """Tests for MentionResolver.replace."""

    @pytest.mark.asyncio
    async def test_replaces_slack_mentions(self):
        gateway = FakeGateway(mappings={"conn-1": {"U123": "John Doe"}})
        resolver = MentionResolver(gateway)

        result = await resolver.replace("hi <@U123>", connection("slack"))

        assert result == "hi @John Doe"

    @pytest.mark.asyncio
    async def test_unknown_ids_are_left_untouched(self):
        gateway = FakeGateway(mappings={"conn-1": {"U123": "John Doe"}})
        resolver = MentionResolver(gateway)

        result = await resolver.replace("<@U123> and <@U999>", connection("slack"))

        assert result == "@John Doe and <@U999>"

    @pytest.mark.asyncio
    async def test_teams_mentions(self):
        gateway = FakeGateway(mappings={"conn-1": {"29:abc": "Ada"}})
        resolver = MentionResolver(gateway)

        result = await resolver.replace(
            'ping <at id="29:abc">Ada L</at>', connection("microsoft-teams")
        )

        assert result == "ping @Ada"

    @pytest.mark.asyncio
    async def test_discord_nickname_mentions(self):
        gateway = FakeGateway(mappings={"conn-1": {"42": "bob"}})
        resolver = MentionResolver(gateway)

        result = await resolver.replace("<@!42> <@42>", connection("discord"))

        assert result == "@bob @bob"

    @pytest.mark.asyncio
    async def test_mappings_are_cached_per_connection(self):
        gateway = FakeGateway(mappings={"conn-1": {"U1": "A"}, "conn-2": {"U1": "B"}})
        resolver = MentionResolver(gateway)

        await resolver.replace("<@U1>", connection("slack"))
        await resolver.replace("<@U1>", connection("slack"))
        second = await resolver.replace("<@U1>", connection("slack", "conn-2"))

        assert second == "@B"
        assert gateway.count("fetch_user_mappings") == 2

    @pytest.mark.asyncio
    async def test_lookup_failure_leaves_content_and_is_not_retried(self):
        gateway = FakeGateway(mappings={"conn-1": {"U1": "A"}})
        gateway.fail("fetch_user_mappings", UpstreamError("boom", 500))
        resolver = MentionResolver(gateway)

        first = await resolver.replace("<@U1>", connection("slack"))
        second = await resolver.replace("<@U1>", connection("slack"))

        assert first == "<@U1>"
        assert second == "<@U1>"
        assert gateway.count("fetch_user_mappings") == 1

    @pytest.mark.asyncio
    async def test_rate_limited_lookup_is_retried_once(self):
        gateway = FakeGateway(mappings={"conn-1": {"U1": "A"}})
        gateway.fail("fetch_user_mappings", RateLimitedError("slow down", 429))
        resolver = MentionResolver(gateway)

        assert await resolver.replace("<@U1>", connection("slack")) == "@A"
        assert gateway.count("fetch_user_mappings") == 2

    @pytest.mark.asyncio
    async def test_second_rate_limit_leaves_content(self):
        gateway = FakeGateway(mappings={"conn-1": {"U1": "A"}})
        gateway.fail(
            "fetch_user_mappings",
            RateLimitedError("slow down", 429),
            RateLimitedError("slow down", 429),
        )
        resolver = MentionResolver(gateway)

        assert await resolver.replace("<@U1>", connection("slack")) == "<@U1>"
        assert gateway.count("fetch_user_mappings") == 2

    @pytest.mark.asyncio
    async def test_content_without_mentions_skips_lookup(self):
        gateway = FakeGateway()
        resolver = MentionResolver(gateway)

        assert await resolver.replace("plain text", connection("slack")) == "plain text"
        assert gateway.count("fetch_user_mappings") == 0

    @pytest.mark.asyncio
    async def test_platform_without_pattern(self):
        gateway = FakeGateway()
        resolver = MentionResolver(gateway)

        assert await resolver.replace("<@U1>", connection("email")) == "<@U1>"
