"""
Dependency wiring for the FastAPI app.

Library code takes its clients as constructor arguments; this module only
builds the process-wide defaults from settings.
"""

from __future__ import annotations

from quizstore.config import get_settings
from quizstore.db import DbClient, InMemoryDbClient, SqlDbClient
from quizstore.media import MediaStore
from quizstore.realtime import (
    ChangeFeed,
    ChangeTransport,
    InMemoryChangeTransport,
    PollingChangeTransport,
    RedisChangeTransport,
    fetch_table,
)
from quizstore.storage import InMemoryStorageClient, S3StorageClient, StorageClient

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_change_transport: ChangeTransport | None = None
_change_feed: ChangeFeed | None = None
_media_store: MediaStore | None = None


def get_change_transport() -> ChangeTransport:
    global _change_transport
    if _change_transport:
        return _change_transport

    settings = get_settings()
    if settings.realtime_transport == "redis" and settings.redis_url:
        _change_transport = RedisChangeTransport(
            url=settings.redis_url,
            channel_prefix=settings.redis_channel_prefix,
        )
    elif settings.realtime_transport == "polling":
        _change_transport = PollingChangeTransport(
            probe=lambda table: fetch_table(get_db_client(), table),
            interval=settings.realtime_poll_interval,
        )
    else:
        _change_transport = InMemoryChangeTransport()
    return _change_transport


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    notifier = get_change_transport()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient(notifier=notifier)
    else:
        _db_client = SqlDbClient(settings.database_url, notifier=notifier)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.storage_endpoint:
        _storage_client = InMemoryStorageClient(bucket=settings.storage_bucket)
    else:
        _storage_client = S3StorageClient(
            bucket=settings.storage_bucket,
            endpoint=settings.storage_endpoint,
            region=settings.storage_region or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
            public_base_url=settings.storage_public_base_url,
        )
    return _storage_client


def get_media_store() -> MediaStore:
    global _media_store
    if _media_store:
        return _media_store
    settings = get_settings()
    _media_store = MediaStore(get_storage_client(), locale=settings.message_locale)
    return _media_store


def get_change_feed() -> ChangeFeed:
    global _change_feed
    if _change_feed:
        return _change_feed
    _change_feed = ChangeFeed(get_db_client(), get_change_transport())
    return _change_feed


def reset_clients() -> None:
    """Drop all cached clients so the next call rebuilds them (tests)."""
    global _db_client, _storage_client, _change_transport, _change_feed, _media_store
    if _change_feed:
        _change_feed.close()
    _db_client = None
    _storage_client = None
    _change_transport = None
    _change_feed = None
    _media_store = None
