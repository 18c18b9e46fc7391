"""Local SQLite cache: TTL entries, fingerprinted event sets and API usage."""

import hashlib
import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple, TypeVar

from stock_events.core.logger import logger
from stock_events.models.datatypes import StockEvent, events_from_json, events_to_json

T = TypeVar("T")


def _identity(value: Any) -> Any:
    return value


class SQLiteCache:
    """A SQLite-backed store with two invalidation policies.

    * ``get_or_fetch`` / ``get_cached``: namespaced entries that expire after a
      TTL (price series, news windows, profiles).
    * ``get_events_cache`` / ``set_events_cache``: one computed event set per
      symbol, valid only while its input fingerprint matches.

    Every write is a whole-row ``INSERT OR REPLACE``; concurrent writers can
    redo work but never leave a half-written row.

    Values are stored as JSON text. Callers choose the value type through the
    ``dump`` / ``load`` codecs (e.g. ``bars_to_json`` / ``bars_from_json``).
    """

    def __init__(self, db_path: str = "output/.cache.db", clock: Callable[[], float] = time.time) -> None:
        """
        Initialize the SQLite cache.

        Args:
            db_path (str): Path to the SQLite database file.
            clock (Callable): Returns the current UNIX time; injectable for tests.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.clock = clock
        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and always closes."""
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Create the cache tables if they don't exist."""
        with self._get_connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS cache_entries (
                    namespace TEXT NOT NULL,
                    cache_key TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    fetched_at REAL NOT NULL,
                    ttl_seconds INTEGER NOT NULL,
                    PRIMARY KEY (namespace, cache_key)
                );

                CREATE TABLE IF NOT EXISTS events_cache (
                    symbol TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    computed_at REAL NOT NULL,
                    fingerprint TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS api_usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provider TEXT NOT NULL,
                    endpoint TEXT NOT NULL,
                    called_at REAL NOT NULL,
                    symbol TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_api_usage_provider_time
                    ON api_usage(provider, called_at);
                """
            )

    # ── TTL entries ───────────────────────────────────────────────────────────

    def _read_entry(self, namespace: str, key: str) -> Optional[Tuple[Any, float, int]]:
        """Return ``(payload, fetched_at, ttl_seconds)`` or None on miss/error."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT payload, fetched_at, ttl_seconds FROM cache_entries "
                    "WHERE namespace = ? AND cache_key = ?",
                    (namespace, key),
                ).fetchone()
            if row:
                return json.loads(row[0]), float(row[1]), int(row[2])
        except sqlite3.Error as e:
            logger.error(f"SQLite error retrieving {namespace}/{key}: {e}")
        except json.JSONDecodeError as e:
            logger.error(f"JSON decode error for cached {namespace}/{key}: {e}")
        return None

    def _decode(self, namespace: str, key: str, payload: Any, load: Callable[[Any], T]) -> Optional[T]:
        try:
            return load(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Cached {namespace}/{key} has an unexpected shape, ignoring it: {e}")
            return None

    def set(
        self,
        namespace: str,
        key: str,
        value: T,
        ttl_seconds: int,
        dump: Callable[[T], Any] = _identity,
    ) -> None:
        """
        Store ``value`` under ``(namespace, key)``, replacing any previous row.

        Args:
            namespace (str): Logical table, e.g. ``"price"`` or ``"news"``.
            key (str): The cache key.
            value: The value to store.
            ttl_seconds (int): Freshness window measured from now.
            dump (Callable): Converts ``value`` into JSON-compatible data.
        """
        try:
            value_str = json.dumps(dump(value))
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO cache_entries (namespace, cache_key, payload, fetched_at, ttl_seconds)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (namespace, key, value_str, self.clock(), int(ttl_seconds)),
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Error saving to cache for {namespace}/{key}: {e}")

    def get_or_fetch(
        self,
        namespace: str,
        key: str,
        ttl_seconds: int,
        producer: Callable[[], T],
        dump: Callable[[T], Any] = _identity,
        load: Callable[[Any], T] = _identity,
    ) -> T:
        """
        Return the cached value while fresh, otherwise call ``producer`` and store its result.

        Exceptions raised by ``producer`` propagate and leave the stored row untouched,
        so a stale copy stays available to :meth:`get_cached`.
        """
        entry = self._read_entry(namespace, key)
        if entry is not None:
            payload, fetched_at, ttl = entry
            if self.clock() - fetched_at < ttl:
                value = self._decode(namespace, key, payload, load)
                if value is not None:
                    logger.debug(f"Cache hit for {namespace}/{key}")
                    return value
            else:
                logger.debug(f"Cache expired for {namespace}/{key}")
        else:
            logger.debug(f"Cache miss for {namespace}/{key}")

        value = producer()
        self.set(namespace, key, value, ttl_seconds, dump)
        return value

    def get_cached(self, namespace: str, key: str, load: Callable[[Any], T] = _identity) -> Optional[T]:
        """Return whatever is stored under ``(namespace, key)``, ignoring its TTL."""
        entry = self._read_entry(namespace, key)
        if entry is None:
            return None
        return self._decode(namespace, key, entry[0], load)

    # ── fingerprinted event sets ──────────────────────────────────────────────

    def _read_events_row(self, symbol: str) -> Optional[Tuple[str, str]]:
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT payload, fingerprint FROM events_cache WHERE symbol = ?",
                    (symbol,),
                ).fetchone()
            return (row[0], row[1]) if row else None
        except sqlite3.Error as e:
            logger.error(f"SQLite error retrieving events for {symbol}: {e}")
            return None

    def _load_events(self, symbol: str, payload: str) -> Optional[List[StockEvent]]:
        try:
            return events_from_json(json.loads(payload))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Cached events for {symbol} are unreadable, ignoring them: {e}")
            return None

    def get_events_cache(self, symbol: str, fingerprint: str) -> Optional[List[StockEvent]]:
        """Return the cached events for ``symbol`` only if they were computed from ``fingerprint``."""
        row = self._read_events_row(symbol)
        if row is None:
            logger.info(f"Events cache miss for {symbol}")
            return None
        payload, stored_fingerprint = row
        if stored_fingerprint != fingerprint:
            logger.info(f"Events cache for {symbol} is outdated (fingerprint changed)")
            return None
        logger.info(f"Events cache hit for {symbol}")
        return self._load_events(symbol, payload)

    def get_latest_events(self, symbol: str) -> Optional[List[StockEvent]]:
        """Return the last event set stored for ``symbol`` whatever its fingerprint."""
        row = self._read_events_row(symbol)
        if row is None:
            return None
        return self._load_events(symbol, row[0])

    def set_events_cache(self, symbol: str, events: List[StockEvent], fingerprint: str) -> None:
        """Replace the cached event set for ``symbol``."""
        try:
            payload = json.dumps(events_to_json(events))
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO events_cache (symbol, payload, computed_at, fingerprint)
                    VALUES (?, ?, ?, ?)
                    """,
                    (symbol, payload, self.clock(), fingerprint),
                )
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"Error saving events for {symbol}: {e}")

    # ── API usage ─────────────────────────────────────────────────────────────

    def record_api_usage(self, provider: str, endpoint: str, symbol: Optional[str] = None) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    "INSERT INTO api_usage (provider, endpoint, called_at, symbol) VALUES (?, ?, ?, ?)",
                    (provider, endpoint, self.clock(), symbol),
                )
        except sqlite3.Error as e:
            logger.error(f"Error recording API usage for {provider}/{endpoint}: {e}")

    def count_api_usage(self, provider: str, since: float) -> int:
        """Number of calls recorded for ``provider`` at or after UNIX time ``since``."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) FROM api_usage WHERE provider = ? AND called_at >= ?",
                    (provider, since),
                ).fetchone()
            return int(row[0])
        except sqlite3.Error as e:
            logger.error(f"Error counting API usage for {provider}: {e}")
            return 0

    @staticmethod
    def hash_data(data: Any) -> str:
        """md5 over the canonical JSON form of ``data`` (keys sorted)."""
        encoded = json.dumps(data, sort_keys=True, default=str).encode("utf-8")
        return hashlib.md5(encoded).hexdigest()
