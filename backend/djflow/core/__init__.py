# Core modules - Database, Config, Exceptions
from .database import get_supabase_client
from .config import settings
from .exceptions import (
    DJFlowException,
    ValidationError,
    ConfigurationError,
    RoutingError,
    ResourceNotFoundError,
    PermissionDeniedError,
    InvalidTransitionError,
    PersistenceError,
)

__all__ = [
    "get_supabase_client",
    "settings",
    "DJFlowException",
    "ValidationError",
    "ConfigurationError",
    "RoutingError",
    "ResourceNotFoundError",
    "PermissionDeniedError",
    "InvalidTransitionError",
    "PersistenceError",
]
