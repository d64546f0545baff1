"""Backend package for swipe matching and realtime chat fanout."""

from .cache import CacheInvalidator, InMemoryCache, RedisCache, create_cache
from .config import BackendSettings, load_settings
from .fanout import DeliveryReport, FanoutDispatcher
from .ledger import InterestLedger
from .matching import MatchDetector
from .presence import InMemoryPresence, RedisPresence, create_presence
from .registry import ConnectionRegistry, WebSocketChannel
from .security import issue_session_token, resolve_party_id
from .store import InMemorySwipeStore, PostgresSwipeStore, SwipeStore, create_store

__all__ = [
    "BackendSettings",
    "CacheInvalidator",
    "ConnectionRegistry",
    "create_cache",
    "create_presence",
    "create_store",
    "DeliveryReport",
    "FanoutDispatcher",
    "InMemoryCache",
    "InMemoryPresence",
    "InMemorySwipeStore",
    "InterestLedger",
    "issue_session_token",
    "load_settings",
    "MatchDetector",
    "PostgresSwipeStore",
    "RedisCache",
    "RedisPresence",
    "resolve_party_id",
    "SwipeStore",
    "WebSocketChannel",
]
