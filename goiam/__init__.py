"""goiam - client-side session manager for GoIAM identity servers.

Runs the OAuth2 authorization-code login with PKCE, holds the access
token, caches the user profile with a staleness policy and answers
resource-based authorization checks.
"""

from .config import GoIamSettings, clear_settings, get_settings
from .exceptions import (
    ApiError,
    AuthFlowError,
    AuthFlowTimeout,
    EntropyUnavailable,
    GoIamException,
    HttpError,
    InvalidGrantError,
    TransportError,
)
from .flow import LoginFlow
from .guard import AuthGuard, GuardOutcome, evaluate, requires_resources
from .models import Envelope, Resource, ResourceGrant, UserProfile
from .pkce import PKCEChallenge
from .service import IamService
from .session import Navigator, SessionManager
from .store import (
    FileStore,
    KeyringStore,
    MemoryStore,
    PersistentStore,
    RedisStore,
    StorageKey,
    create_store,
    get_store,
    reset_store,
)
from .transport import Transport
from .types import ProfileVariant, Session, SessionState


__version__ = "0.1.0"

__all__ = [
    "ApiError",
    "AuthFlowError",
    "AuthFlowTimeout",
    "AuthGuard",
    "EntropyUnavailable",
    "Envelope",
    "FileStore",
    "GoIamException",
    "GoIamSettings",
    "GuardOutcome",
    "HttpError",
    "IamService",
    "InvalidGrantError",
    "KeyringStore",
    "LoginFlow",
    "MemoryStore",
    "Navigator",
    "PKCEChallenge",
    "PersistentStore",
    "ProfileVariant",
    "RedisStore",
    "Resource",
    "ResourceGrant",
    "Session",
    "SessionManager",
    "SessionState",
    "StorageKey",
    "Transport",
    "TransportError",
    "UserProfile",
    "__version__",
    "clear_settings",
    "create_store",
    "evaluate",
    "get_settings",
    "get_store",
    "requires_resources",
    "reset_store",
]
