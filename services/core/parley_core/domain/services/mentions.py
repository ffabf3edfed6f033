"""Platform mention replacement.

Platforms encode user mentions as opaque tokens (``<@U123>`` on Slack,
``<at id="...">Name</at>`` on Teams). ``MentionResolver`` rewrites them to
``@Display Name`` using the connection's user mappings.

Usage:
    resolver = MentionResolver(gateway, lookup_delay=1.0)
    content = await resolver.replace(content, connection)
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from parley_core.infrastructure.retry import RetryConfig, call_with_retry, rate_limit_retry
from parley_core.providers.base import Connection, ConnectorGateway, GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MentionPattern:
    """How one platform encodes a user mention."""

    regex: re.Pattern
    extract_user_id: Callable[[re.Match], str]
    format_replacement: Callable[[str], str]


def _first_group(match: re.Match) -> str:
    return match.group(1)


def _at_name(user_name: str) -> str:
    return f"@{user_name}"


SLACK_MENTION = MentionPattern(re.compile(r"<@([A-Z0-9]+)>"), _first_group, _at_name)
TEAMS_MENTION = MentionPattern(
    re.compile(r'<at id="([^"]+)">([^<]+)</at>'), _first_group, _at_name
)
WHATSAPP_MENTION = MentionPattern(re.compile(r"@(\d+)"), _first_group, _at_name)
DISCORD_MENTION = MentionPattern(re.compile(r"<@!?(\d+)>"), _first_group, _at_name)


MENTION_PATTERNS: dict[str, MentionPattern] = {
    "slack": SLACK_MENTION,
    "microsoft-teams": TEAMS_MENTION,
    "whatsapp": WHATSAPP_MENTION,
    "discord": DISCORD_MENTION,
}


def register_mention_pattern(platform: str, pattern: MentionPattern) -> None:
    """Register (or replace) the mention pattern for a platform."""
    MENTION_PATTERNS[platform.lower()] = pattern


def get_mention_pattern(platform: Optional[str]) -> Optional[MentionPattern]:
    """The mention pattern registered for a platform, if any."""
    if not platform:
        return None
    return MENTION_PATTERNS.get(platform.lower())


class MentionResolver:
    """Replace mention tokens with display names.

    Holds a per-instance cache of user mappings keyed by
    ``(connection id, platform)``; create one resolver per sync run.
    A failed lookup is cached as an empty mapping for the resolver's
    lifetime and leaves content untouched. A rate-limited lookup is retried
    once before it counts as failed.
    """

    def __init__(
        self,
        gateway: ConnectorGateway,
        lookup_delay: float = 0.0,
        retry_config: Optional[RetryConfig] = None,
    ):
        """Initialize the resolver.

        Args:
            gateway: Connector gateway used for user mapping lookups.
            lookup_delay: Pause before each broker lookup, in seconds.
            retry_config: Retry policy for lookups; one immediate retry on
                rate limiting when omitted.
        """
        self.gateway = gateway
        self.lookup_delay = lookup_delay
        self.retry_config = retry_config or rate_limit_retry(0.0)
        self._cache: dict[tuple[str, str], dict[str, str]] = {}

    async def _get_mappings(self, connection: Connection) -> dict[str, str]:
        """User mappings of a connection, fetched once per resolver."""
        key = (connection.id, connection.platform.lower())
        if key in self._cache:
            return self._cache[key]

        if self.lookup_delay:
            await asyncio.sleep(self.lookup_delay)
        try:
            mappings = await call_with_retry(
                self.gateway.fetch_user_mappings, connection, config=self.retry_config
            )
        except GatewayError as e:
            logger.warning(
                f"User mapping lookup failed for connection {connection.id}: {e}"
            )
            mappings = {}

        self._cache[key] = mappings
        return mappings

    async def replace(self, content: str, connection: Connection) -> str:
        """Return ``content`` with resolvable mentions rewritten."""
        pattern = get_mention_pattern(connection.platform)
        if pattern is None or not content or not pattern.regex.search(content):
            return content

        mappings = await self._get_mappings(connection)
        if not mappings:
            return content

        def substitute(match: re.Match) -> str:
            user_name = mappings.get(pattern.extract_user_id(match))
            if not user_name:
                return match.group(0)
            return pattern.format_replacement(user_name)

        return pattern.regex.sub(substitute, content)
