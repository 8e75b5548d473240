"""
Learned Pattern Store - Which selectors actually worked, per site and field

Stores one counter row per (domain, field_name, selector):
1. success/failure counts, only ever incremented
2. the engine type seen when the row was created
3. last use timestamp for recency ordering

Uses SQLite for persistence, JSON for export. Every write is a single
upsert inside an IMMEDIATE transaction, so concurrent writers to the same
key are serialized by SQLite itself. Storage errors are raised as
PatternStoreError; learning state is never silently skipped.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from .config import config
from .exceptions import PatternStoreError

logger = logging.getLogger(__name__)

BEST_SELECTORS_LIMIT = 5
UNIVERSAL_PATTERNS_LIMIT = 10


@dataclass
class LearnedPattern:
    """Historical evidence that a selector works for a (domain, field) pair."""

    domain: str
    engine_type: str
    field_name: str
    selector: str
    success_count: int = 0
    fail_count: int = 0
    last_used: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "LearnedPattern":
        return cls(
            domain=row["domain"],
            engine_type=row["engine_type"],
            field_name=row["field_name"],
            selector=row["selector"],
            success_count=row["success_count"],
            fail_count=row["fail_count"],
            last_used=row["last_used"] or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now().isoformat()


class PatternStore:
    """
    Durable upsert-counter table of selector outcomes.

    Features:
    - Record success/failure per (domain, field, selector)
    - Best selectors for a domain and field
    - Selectors that work across domains (Laplace-smoothed)
    - Additive export/import for backup and sharing
    """

    def __init__(self, db_path: Union[str, Path, None] = None, timeout: Optional[float] = None):
        self.db_path = Path(db_path) if db_path is not None else Path(config.patterns_db)
        self.timeout = config.db_timeout if timeout is None else timeout
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PatternStoreError(f"Cannot create pattern store directory {self.db_path.parent}: {e}") from e
        self._init_db()

    @contextmanager
    def _connect(self, write: bool = False) -> Iterator[sqlite3.Connection]:
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            if write:
                conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                if write:
                    conn.execute("ROLLBACK")
                raise
            else:
                if write:
                    conn.execute("COMMIT")
        except sqlite3.Error as e:
            logger.error(f"Pattern store failure ({self.db_path}): {e}")
            raise PatternStoreError(str(e)) from e
        finally:
            if conn is not None:
                conn.close()

    def _init_db(self):
        """Initialize SQLite database."""
        with self._connect(write=True) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS learned_patterns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    domain TEXT NOT NULL,
                    engine_type TEXT NOT NULL,
                    field_name TEXT NOT NULL,
                    selector TEXT NOT NULL,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    fail_count INTEGER NOT NULL DEFAULT 0,
                    last_used TEXT,
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(domain, field_name, selector)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_patterns_domain
                ON learned_patterns(domain, field_name)
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_patterns_success
                ON learned_patterns(success_count DESC)
            """)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

    def _increment(self, column: str, domain: str, engine_type: str, field_name: str, selector: str):
        # column comes from the two call sites below, never from input
        with self._connect(write=True) as conn:
            conn.execute(f"""
                INSERT INTO learned_patterns
                (domain, engine_type, field_name, selector, {column}, last_used)
                VALUES (?, ?, ?, ?, 1, ?)
                ON CONFLICT(domain, field_name, selector) DO UPDATE SET
                    {column} = {column} + 1,
                    last_used = excluded.last_used
            """, (domain, engine_type, field_name, selector, _now()))

    def record_success(self, domain: str, engine_type: str, field_name: str, selector: str):
        """Record a successful selector usage."""
        self._increment("success_count", domain, engine_type, field_name, selector)
        logger.debug(f"Pattern success: {domain} {field_name} {selector}")

    def record_failure(self, domain: str, engine_type: str, field_name: str, selector: str):
        """Record a failed selector attempt."""
        self._increment("fail_count", domain, engine_type, field_name, selector)
        logger.debug(f"Pattern failure: {domain} {field_name} {selector}")

    def get_pattern(self, domain: str, field_name: str, selector: str) -> Optional[LearnedPattern]:
        with self._connect() as conn:
            row = conn.execute("""
                SELECT * FROM learned_patterns
                WHERE domain = ? AND field_name = ? AND selector = ?
            """, (domain, field_name, selector)).fetchone()
            return LearnedPattern.from_row(row) if row else None

    def get_best_selectors(self, domain: str, field_name: str) -> List[str]:
        """Selectors that succeed more than they fail, best margin first."""
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT selector FROM learned_patterns
                WHERE domain = ? AND field_name = ?
                  AND success_count > fail_count
                ORDER BY (success_count - fail_count) DESC, last_used DESC
                LIMIT ?
            """, (domain, field_name, BEST_SELECTORS_LIMIT))
            return [row["selector"] for row in cursor.fetchall()]

    def get_universal_patterns(self, field_name: str, min_success_rate: float = 0.7) -> List[str]:
        """
        Selectors that work across domains.

        Success rate is smoothed as success / (success + fail + 1) so a single
        lucky hit never reads as 100%.
        """
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT
                    selector,
                    SUM(success_count) AS total_success,
                    SUM(fail_count) AS total_fail
                FROM learned_patterns
                WHERE field_name = ?
                GROUP BY selector
                HAVING CAST(SUM(success_count) AS FLOAT) /
                       (SUM(success_count) + SUM(fail_count) + 1) >= ?
                ORDER BY total_success DESC, selector ASC
                LIMIT ?
            """, (field_name, min_success_rate, UNIVERSAL_PATTERNS_LIMIT))
            return [row["selector"] for row in cursor.fetchall()]

    def get_domain_patterns(self, domain: str) -> List[LearnedPattern]:
        """All patterns for a domain."""
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT * FROM learned_patterns
                WHERE domain = ?
                ORDER BY field_name, success_count DESC
            """, (domain,))
            return [LearnedPattern.from_row(row) for row in cursor.fetchall()]

    def export_patterns(self) -> List[LearnedPattern]:
        """Full table dump for backup/sharing."""
        with self._connect() as conn:
            cursor = conn.execute("""
                SELECT * FROM learned_patterns
                ORDER BY domain, field_name, selector
            """)
            return [LearnedPattern.from_row(row) for row in cursor.fetchall()]

    def import_patterns(self, patterns: Iterable[Union[LearnedPattern, Dict[str, Any]]]) -> int:
        """
        Merge a dump into the table.

        Counts are added to existing rows rather than overwriting them; rows
        missing a key column are skipped. Returns the number merged.
        """
        imported = 0
        with self._connect(write=True) as conn:
            for pattern in patterns:
                data = pattern.to_dict() if isinstance(pattern, LearnedPattern) else dict(pattern)
                try:
                    row = (
                        str(data["domain"]),
                        str(data.get("engine_type") or "unknown"),
                        str(data["field_name"]),
                        str(data["selector"]),
                        max(int(data.get("success_count") or 0), 0),
                        max(int(data.get("fail_count") or 0), 0),
                        data.get("last_used") or _now(),
                    )
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping invalid pattern {data!r}: {e}")
                    continue
                conn.execute("""
                    INSERT INTO learned_patterns
                    (domain, engine_type, field_name, selector, success_count, fail_count, last_used)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(domain, field_name, selector) DO UPDATE SET
                        success_count = success_count + excluded.success_count,
                        fail_count = fail_count + excluded.fail_count,
                        last_used = MAX(COALESCE(last_used, ''), excluded.last_used)
                """, row)
                imported += 1
        logger.info(f"Imported {imported} learned patterns")
        return imported

    def export_json(self, path: Union[str, Path]) -> Path:
        """Write the full table to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = [p.to_dict() for p in self.export_patterns()]
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        return path

    def import_json(self, path: Union[str, Path]) -> int:
        """Merge a JSON dump written by ``export_json``."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"Expected a list of patterns in {path}")
        return self.import_patterns(data)

    def get_statistics(self) -> Dict[str, Any]:
        """Overall store statistics."""
        with self._connect() as conn:
            stats: Dict[str, Any] = {}
            stats["total_patterns"] = conn.execute("SELECT COUNT(*) FROM learned_patterns").fetchone()[0]
            stats["unique_domains"] = conn.execute(
                "SELECT COUNT(DISTINCT domain) FROM learned_patterns"
            ).fetchone()[0]
            row = conn.execute("""
                SELECT SUM(success_count), SUM(fail_count) FROM learned_patterns
            """).fetchone()
            successes, failures = row[0] or 0, row[1] or 0
            stats["total_successes"] = successes
            stats["total_failures"] = failures
            stats["overall_success_rate"] = successes / max(successes + failures, 1)
            stats["fields"] = [
                dict(r) for r in conn.execute("""
                    SELECT field_name, COUNT(*) AS patterns, SUM(success_count) AS successes
                    FROM learned_patterns
                    GROUP BY field_name
                    ORDER BY successes DESC
                """).fetchall()
            ]
            return stats
