from squad_session.auth import AuthClient, TokenRefresher
from squad_session.endpoints import ApiPaths
from squad_session.events import EventEmitter
from squad_session.history import HistoryTruncator, truncate_history
from squad_session.models import ConversationTurn, Credentials, OutboundRequest, Personality, RequestSettings, Role
from squad_session.rate_limiter import FixedWindowRateLimiter
from squad_session.request_builder import IntegrationMode, RequestBuilder
from squad_session.results import (
    DecodeFailure,
    InvalidRequest,
    RateLimited,
    ServerError,
    SessionResult,
    Success,
    TransportFailure,
    Unauthenticated,
)
from squad_session.session_client import SendState, SessionClient
from squad_session.token_validator import TokenValidator, is_expired

__all__ = [
    "ApiPaths",
    "AuthClient",
    "ConversationTurn",
    "Credentials",
    "DecodeFailure",
    "EventEmitter",
    "FixedWindowRateLimiter",
    "HistoryTruncator",
    "IntegrationMode",
    "InvalidRequest",
    "OutboundRequest",
    "Personality",
    "RateLimited",
    "RequestBuilder",
    "RequestSettings",
    "Role",
    "SendState",
    "ServerError",
    "SessionClient",
    "SessionResult",
    "Success",
    "TokenRefresher",
    "TokenValidator",
    "TransportFailure",
    "Unauthenticated",
    "is_expired",
    "truncate_history",
]
