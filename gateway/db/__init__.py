"""Database module exports."""

from gateway.db.models import (
    Base,
    Bot,
    Company,
    License,
    TokenUsage,
    User,
    UserBotAccess,
    UserBotPreference,
    UserPreference,
    UserThread,
)
from gateway.db.repository import SqlGatewayStore, get_gateway_store
from gateway.db.session import (
    check_db_health,
    close_db,
    get_engine,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    # Models
    "Base",
    "Bot",
    "Company",
    "License",
    "TokenUsage",
    "User",
    "UserBotAccess",
    "UserBotPreference",
    "UserPreference",
    "UserThread",
    # Repository
    "SqlGatewayStore",
    "get_gateway_store",
    # Session management
    "get_engine",
    "get_session_factory",
    "session_scope",
    "init_db",
    "close_db",
    "check_db_health",
]
