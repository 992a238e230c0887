"""Coach feed - realtime chat message synchronization for trainers and trainees."""

from importlib import metadata

__version__ = "0.1.0"
__license__ = "MIT"

try:
    __version__ = metadata.version("coach-feed")
except metadata.PackageNotFoundError:
    # Package is not installed
    pass

from .config import Settings, MatrixConfig, DatabaseConfig, StorageConfig, FeedConfig, LogConfig
from .errors import (
    ActivationCancelled,
    AuthorizationError,
    FeedError,
    GatewayError,
    StorageError,
    SubscriptionError,
    ValidationError,
)
from .logger import setup_logging, get_logger
from .models import Attachment, AuthorSnapshot, ConversationSummary, Message, Result, Role, Scope, ScopeKind
from .store import MessageStore
from .summary import build_conversation_summaries, count_unread, load_conversations, load_unread_count
from .synchronizer import Synchronizer, SyncState
from .app import FeedApp

__all__ = [
    "Settings",
    "MatrixConfig",
    "DatabaseConfig",
    "StorageConfig",
    "FeedConfig",
    "LogConfig",
    "setup_logging",
    "get_logger",
    "FeedError",
    "ValidationError",
    "GatewayError",
    "StorageError",
    "AuthorizationError",
    "SubscriptionError",
    "ActivationCancelled",
    "Attachment",
    "AuthorSnapshot",
    "ConversationSummary",
    "Message",
    "Result",
    "Role",
    "Scope",
    "ScopeKind",
    "MessageStore",
    "Synchronizer",
    "SyncState",
    "build_conversation_summaries",
    "count_unread",
    "load_conversations",
    "load_unread_count",
    "FeedApp",
]
