"""
Bot Package

Per-user session orchestration: rate limiting, event routing, session
registry, recovery and the Telegram transport.
"""

from expense_bot.bot.commands import CommandHandlers, parse_command
from expense_bot.bot.rate_limiter import RateLimiter
from expense_bot.bot.recovery import RecoveryManager
from expense_bot.bot.registry import (
    BotSessionRegistry,
    RegistryError,
    SessionInactiveError,
    SessionNotFoundError,
)
from expense_bot.bot.router import CommandRouter
from expense_bot.bot.transport import (
    MessagingTransport,
    TelegramTransport,
    TransportConfig,
    TransportError,
    telegram_transport_factory,
)

__all__ = [
    # Routing
    "CommandHandlers",
    "CommandRouter",
    "RateLimiter",
    "parse_command",
    # Sessions
    "BotSessionRegistry",
    "RecoveryManager",
    "RegistryError",
    "SessionInactiveError",
    "SessionNotFoundError",
    # Transport
    "MessagingTransport",
    "TelegramTransport",
    "TransportConfig",
    "TransportError",
    "telegram_transport_factory",
]
