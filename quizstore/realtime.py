"""
Change feed for the quiz tables.

Writers publish a change event per table; subscribers get the full, freshly
read collection every time an event arrives. The transport carrying the events
is pluggable: in-process, Redis pub/sub, or polling.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

import redis

from quizstore.records import (
    QUESTIONS_TABLE,
    QUIZ_MODE_TABLE,
    RESPONSES_TABLE,
    TABLES,
    USERS_TABLE,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str


ChangeHandler = Callable[[ChangeEvent], None]
StopListening = Callable[[], None]


class ChangeTransport(Protocol):
    """Carries change events from writers to listeners, scoped per table."""

    def publish(self, table: str, event: str) -> None:
        ...

    def listen(self, table: str, handler: ChangeHandler) -> StopListening:
        ...


class InMemoryChangeTransport:
    """Delivers events synchronously to listeners in the same process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: Dict[str, Dict[str, ChangeHandler]] = {}

    def publish(self, table: str, event: str) -> None:
        with self._lock:
            handlers = list(self._listeners.get(table, {}).values())
        for handler in handlers:
            handler(ChangeEvent(table=table, event=event))

    def listen(self, table: str, handler: ChangeHandler) -> StopListening:
        token = uuid.uuid4().hex
        with self._lock:
            self._listeners.setdefault(table, {})[token] = handler

        def stop() -> None:
            with self._lock:
                self._listeners.get(table, {}).pop(token, None)

        return stop

    def listener_count(self, table: str) -> int:
        with self._lock:
            return len(self._listeners.get(table, {}))


@dataclass
class RedisChangeTransport:
    """Redis pub/sub transport, one channel per table."""

    url: str
    channel_prefix: str = "quiz:changes"
    sleep_time: float = 0.05

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def channel(self, table: str) -> str:
        return f"{self.channel_prefix}:{table}"

    def publish(self, table: str, event: str) -> None:
        payload = json.dumps({"table": table, "event": event})
        self.client.publish(self.channel(table), payload)

    def listen(self, table: str, handler: ChangeHandler) -> StopListening:
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)

        def on_message(message: dict) -> None:
            try:
                payload = json.loads(message["data"])
            except (TypeError, ValueError):
                payload = {}
            handler(ChangeEvent(table=table, event=payload.get("event", "update")))

        pubsub.subscribe(**{self.channel(table): on_message})
        worker = pubsub.run_in_thread(sleep_time=self.sleep_time, daemon=True)

        def stop() -> None:
            worker.stop()
            pubsub.close()

        return stop


_UNSET = object()


class PollingChangeTransport:
    """
    Discovers changes by re-running ``probe(table)`` every ``interval``
    seconds and firing when its result differs from the previous one.
    Publishing is a no-op; the probe sees the writes directly.
    """

    def __init__(self, probe: Callable[[str], Any], interval: float = 2.0):
        self.probe = probe
        self.interval = interval

    def publish(self, table: str, event: str) -> None:
        return None

    def _probe(self, table: str):
        try:
            return self.probe(table)
        except Exception:
            logger.exception("Polling probe for %s failed", table)
            return _UNSET

    def listen(self, table: str, handler: ChangeHandler) -> StopListening:
        stopped = threading.Event()

        def run() -> None:
            last = self._probe(table)
            while not stopped.wait(self.interval):
                current = self._probe(table)
                if current is _UNSET or current == last:
                    continue
                last = current
                handler(ChangeEvent(table=table, event="update"))

        thread = threading.Thread(target=run, name=f"poll-{table}", daemon=True)
        thread.start()
        return stopped.set


def fetch_table(db, table: str):
    """Reads the full current state of ``table`` from the record store."""
    if table == QUESTIONS_TABLE:
        return db.list_questions()
    if table == QUIZ_MODE_TABLE:
        return db.get_quiz_mode()
    if table == USERS_TABLE:
        return db.list_users()
    if table == RESPONSES_TABLE:
        return db.list_all_responses()
    raise ValueError(f"Unknown table: {table}")


class Subscription:
    """
    Handle for one table's change stream.

    Every event triggers a fresh read of the whole collection on the feed's
    worker pool, which is then passed to each registered handler. Reads run
    independently, so with bursts of events the last read to finish wins.
    """

    def __init__(
        self,
        table: str,
        fetch: Callable[[], Any],
        transport: ChangeTransport,
        executor: ThreadPoolExecutor,
    ):
        self.table = table
        self._fetch = fetch
        self._transport = transport
        self._executor = executor
        self._handlers: List[Callable[[Any], None]] = []
        self._lock = threading.Lock()
        self._stop: Optional[StopListening] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on_change(self, handler: Callable[[Any], None]) -> "Subscription":
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Subscription to {self.table} is closed")
            self._handlers.append(handler)
            if self._stop is None:
                self._stop = self._transport.listen(self.table, self._on_event)
        return self

    def _on_event(self, event: ChangeEvent) -> None:
        if self._closed:
            return
        try:
            self._executor.submit(self.refresh)
        except RuntimeError:
            # Feed shut down between the check and the submit.
            logger.debug("Dropping %s event on %s after shutdown", event.event, self.table)

    def refresh(self) -> None:
        """Reads the collection now and delivers it to the handlers."""
        try:
            snapshot = self._fetch()
        except Exception:
            logger.exception("Failed to refetch %s after change", self.table)
            return
        with self._lock:
            if self._closed:
                return
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(snapshot)
            except Exception:
                logger.exception("Change handler for %s raised", self.table)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            stop, self._stop = self._stop, None
        if stop is not None:
            stop()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeFeed:
    """Creates table subscriptions that re-read from ``db`` on every change."""

    def __init__(self, db, transport: ChangeTransport, max_workers: int = 4):
        self.db = db
        self.transport = transport
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="change-feed"
        )
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscription(self, table: str) -> Subscription:
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")
        sub = Subscription(
            table=table,
            fetch=lambda: fetch_table(self.db, table),
            transport=self.transport,
            executor=self._executor,
        )
        with self._lock:
            self._subscriptions = [s for s in self._subscriptions if not s.closed]
            self._subscriptions.append(sub)
        return sub

    def subscribe(self, table: str, callback: Callable[[Any], None]) -> Subscription:
        return self.subscription(table).on_change(callback)

    def subscribe_questions(self, callback) -> Subscription:
        return self.subscribe(QUESTIONS_TABLE, callback)

    def subscribe_quiz_mode(self, callback) -> Subscription:
        return self.subscribe(QUIZ_MODE_TABLE, callback)

    def subscribe_users(self, callback) -> Subscription:
        return self.subscribe(USERS_TABLE, callback)

    def subscribe_responses(self, callback) -> Subscription:
        return self.subscribe(RESPONSES_TABLE, callback)

    def close(self, wait: bool = False) -> None:
        """Closes every subscription and stops the worker pool."""
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
        for sub in subscriptions:
            sub.close()
        self._executor.shutdown(wait=wait)
