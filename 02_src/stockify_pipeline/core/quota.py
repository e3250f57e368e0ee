"""Quota ledger: per-model call ceilings over lazily-reset time windows."""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Tuple

from ..schemas.config import ModelCatalog
from .errors import UnknownModelError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaWindow:
    """Usage of one model within the current window.

    Attributes:
        window_start: Window start (epoch seconds)
        window_s: Window length in seconds
        consumed: Calls consumed in this window
        ceiling: Calls allowed per window
    """
    window_start: float
    window_s: float
    consumed: int
    ceiling: int

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_s

    @property
    def remaining(self) -> int:
        return max(0, self.ceiling - self.consumed)

    def rolled(self, now: float, ceiling: int, window_s: float) -> "QuotaWindow":
        """Return the window as seen at `now`: reset if expired, limits refreshed."""
        if now >= self.window_start + self.window_s:
            return QuotaWindow(window_start=now, window_s=window_s, consumed=0, ceiling=ceiling)
        return replace(self, ceiling=ceiling, window_s=window_s)


@dataclass(frozen=True)
class QuotaDecision:
    """Result of QuotaLedger.try_consume().

    Attributes:
        allowed: True if the units were consumed
        remaining: Units left in the window after this decision
        reset_at: When the current window resets (epoch seconds)
    """
    allowed: bool
    remaining: int
    reset_at: float


class QuotaStore(Protocol):
    """Protocol for quota ledger backing stores.

    Implementations must make consume() atomic per model key.
    """

    def consume(
        self, model: str, amount: int, ceiling: int, window_s: float, now: float
    ) -> Tuple[QuotaWindow, bool]:
        """Consume `amount` units if the ceiling allows it.

        Args:
            model: Model identifier
            amount: Units to consume
            ceiling: Calls allowed per window
            window_s: Window length in seconds
            now: Current time (epoch seconds)

        Returns:
            Tuple of (window after the decision, allowed)
        """
        ...

    def peek(self, model: str, ceiling: int, window_s: float, now: float) -> QuotaWindow:
        """Return the window as seen at `now` without consuming."""
        ...


class MemoryQuotaStore:
    """In-process quota store guarded by one lock per model."""

    def __init__(self) -> None:
        self._windows: Dict[str, QuotaWindow] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        logger.info("Initialized MemoryQuotaStore backend")

    def _lock_for(self, model: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(model)
            if lock is None:
                lock = self._locks[model] = threading.Lock()
            return lock

    def _current(self, model: str, ceiling: int, window_s: float, now: float) -> QuotaWindow:
        window = self._windows.get(model)
        if window is None:
            return QuotaWindow(window_start=now, window_s=window_s, consumed=0, ceiling=ceiling)
        return window.rolled(now, ceiling, window_s)

    def consume(
        self, model: str, amount: int, ceiling: int, window_s: float, now: float
    ) -> Tuple[QuotaWindow, bool]:
        with self._lock_for(model):
            window = self._current(model, ceiling, window_s, now)
            allowed = window.consumed + amount <= window.ceiling
            if allowed:
                window = replace(window, consumed=window.consumed + amount)
            self._windows[model] = window
            return window, allowed

    def peek(self, model: str, ceiling: int, window_s: float, now: float) -> QuotaWindow:
        with self._lock_for(model):
            return self._current(model, ceiling, window_s, now)


class SQLiteQuotaStore:
    """SQLite-backed quota store that survives restarts.

    consume() runs inside BEGIN IMMEDIATE, so only one writer at a time
    evaluates the ceiling. This holds across threads and across processes
    sharing the same database file.
    """

    def __init__(self, state_dir: Path) -> None:
        """Initialize store, creating the database if needed.

        Args:
            state_dir: Directory holding quota.db
        """
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.db_path = self.state_dir / "quota.db"
        self._local = threading.local()
        self._init_db(self._conn())
        logger.info(f"Initialized SQLiteQuotaStore backend at {self.db_path}")

    def _conn(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.db_path, timeout=30, isolation_level=None)
            conn.row_factory = sqlite3.Row
            self._local.conn = conn
        return conn

    @staticmethod
    def _init_db(conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            PRAGMA journal_mode=WAL;
            CREATE TABLE IF NOT EXISTS quota_windows(
              model TEXT PRIMARY KEY,
              window_start REAL NOT NULL,
              window_s REAL NOT NULL,
              consumed INTEGER NOT NULL,
              ceiling INTEGER NOT NULL
            );
            """
        )

    @staticmethod
    def _window_from_row(
        row: Optional[sqlite3.Row], ceiling: int, window_s: float, now: float
    ) -> QuotaWindow:
        if row is None:
            return QuotaWindow(window_start=now, window_s=window_s, consumed=0, ceiling=ceiling)
        stored = QuotaWindow(
            window_start=row["window_start"],
            window_s=row["window_s"],
            consumed=row["consumed"],
            ceiling=row["ceiling"],
        )
        return stored.rolled(now, ceiling, window_s)

    def consume(
        self, model: str, amount: int, ceiling: int, window_s: float, now: float
    ) -> Tuple[QuotaWindow, bool]:
        conn = self._conn()
        conn.execute("BEGIN IMMEDIATE")
        try:
            row = conn.execute(
                "SELECT * FROM quota_windows WHERE model=?", (model,)
            ).fetchone()
            window = self._window_from_row(row, ceiling, window_s, now)
            allowed = window.consumed + amount <= window.ceiling
            if allowed:
                window = replace(window, consumed=window.consumed + amount)
            conn.execute(
                """INSERT INTO quota_windows(model,window_start,window_s,consumed,ceiling)
                   VALUES(?,?,?,?,?)
                   ON CONFLICT(model) DO UPDATE SET
                     window_start=excluded.window_start,
                     window_s=excluded.window_s,
                     consumed=excluded.consumed,
                     ceiling=excluded.ceiling
                """,
                (model, window.window_start, window.window_s, window.consumed, window.ceiling),
            )
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        return window, allowed

    def peek(self, model: str, ceiling: int, window_s: float, now: float) -> QuotaWindow:
        row = self._conn().execute(
            "SELECT * FROM quota_windows WHERE model=?", (model,)
        ).fetchone()
        return self._window_from_row(row, ceiling, window_s, now)


class QuotaLedger:
    """Tracks remaining calls per model per window.

    Windows reset lazily on access when now >= window_start + window_s;
    there is no background timer.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        store: Optional[QuotaStore] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize quota ledger.

        Args:
            catalog: Model catalog supplying ceilings and window lengths
            store: Backing store (MemoryQuotaStore if not provided)
            clock: Wall-clock source (epoch seconds)
        """
        self.catalog = catalog
        self.store = store if store is not None else MemoryQuotaStore()
        self.clock = clock

    def _limits(self, model: str) -> Tuple[int, float]:
        if model not in self.catalog:
            raise UnknownModelError(f"Model not in catalog: {model}")
        config = self.catalog.get(model)
        return config.daily_limit, config.window_s

    def try_consume(self, model: str, amount: int = 1) -> QuotaDecision:
        """Atomically consume quota for a model.

        Args:
            model: Model identifier
            amount: Units to consume

        Returns:
            QuotaDecision; when denied, reset_at tells when the window resets
        """
        if amount < 1:
            raise ValueError(f"amount must be >= 1, got {amount}")

        ceiling, window_s = self._limits(model)
        now = self.clock()
        window, allowed = self.store.consume(model, amount, ceiling, window_s, now)

        if allowed:
            logger.debug(
                f"Quota consumed: model={model} used={window.consumed}/{window.ceiling}"
            )
        else:
            logger.warning(
                f"Quota denied: model={model} used={window.consumed}/{window.ceiling}, "
                f"resets in {window.reset_at - now:.0f}s"
            )

        return QuotaDecision(
            allowed=allowed,
            remaining=window.remaining,
            reset_at=max(window.reset_at, now),
        )

    def remaining(self, model: str) -> int:
        """Get calls left for a model in the current window."""
        ceiling, window_s = self._limits(model)
        return self.store.peek(model, ceiling, window_s, self.clock()).remaining

    def status(self, model: str) -> Dict[str, float]:
        """Get quota status for display.

        Returns:
            {"used": int, "ceiling": int, "remaining": int, "reset_at": float}
        """
        ceiling, window_s = self._limits(model)
        window = self.store.peek(model, ceiling, window_s, self.clock())
        return {
            "used": window.consumed,
            "ceiling": window.ceiling,
            "remaining": window.remaining,
            "reset_at": window.reset_at,
        }
