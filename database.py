"""Database operations for the Compass scan pipeline.

This module provides SQLite-based storage for watch targets, scan runs,
ingested raw items, synthesized digests, and scan schedules.

Database Schema:
    watch_targets: entities under watch, owned by a user
    scan_runs: one row per orchestrator invocation
    source_status: one row per (scan run, source)
    raw_items: ingested candidate items, UNIQUE(source, external_id)
    digest_runs: synthesized reports, UNIQUE(fingerprint)
    digest_items: entries of a digest run
    schedules: global-per-user rows (watch_target_id NULL) and per-target rows

Concurrency:
    Ingest relies on INSERT OR IGNORE against the (source, external_id)
    unique key, so concurrent scans can never store the same item twice.
    Schedule markers are claimed with a compare-and-swap UPDATE; only the
    caller whose update changed the row goes on to trigger a scan.

Features:
    - WAL mode for concurrent read/write access
    - Automatic schema migration for new columns
    - Batch operations with deferred commits
    - Context manager support for auto-cleanup
"""

import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from models import (
    CandidateItem,
    DigestDraft,
    DigestItem,
    DigestRun,
    Feedback,
    FeedbackExample,
    FeedbackSet,
    Period,
    RawItem,
    RunStatus,
    ScanMode,
    ScanRun,
    Schedule,
    SourceState,
    SourceStatus,
    SourceRef,
    WatchTarget,
    new_id,
)

logger = logging.getLogger(__name__)


def _now() -> int:
    return int(time.time())


def _to_epoch(value: datetime | None) -> int | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def _from_epoch(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class Database:
    """SQLite store for the scan pipeline.

    Example:
        >>> with Database("compass.db") as db:
        ...     target = db.add_target(WatchTarget(name="semaglutide"))
        ...     run = db.create_scan_run(Period.DAILY, ScanMode.LATEST, [target.id], ["pubmed"])
        ...     inserted = db.insert_raw_items(run.id, "pubmed", items)
    """

    SCHEMA = """
    CREATE TABLE IF NOT EXISTS watch_targets (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        display_name TEXT NOT NULL DEFAULT '',
        aliases TEXT NOT NULL DEFAULT '[]',       -- JSON list
        type TEXT NOT NULL DEFAULT 'drug',
        therapeutic_area TEXT NOT NULL DEFAULT 'other',
        indication TEXT NOT NULL DEFAULT '',
        company TEXT NOT NULL DEFAULT '',
        notes TEXT NOT NULL DEFAULT '',           -- free-text monitoring goal
        active INTEGER NOT NULL DEFAULT 1,
        created_at INTEGER NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_targets_user ON watch_targets(user_id, active);

    CREATE TABLE IF NOT EXISTS scan_runs (
        id TEXT PRIMARY KEY,
        period TEXT NOT NULL,                     -- daily | weekly
        mode TEXT NOT NULL DEFAULT 'latest',
        status TEXT NOT NULL,                     -- pending | running | completed | failed
        target_ids TEXT NOT NULL DEFAULT '[]',    -- JSON list
        sources_total INTEGER NOT NULL DEFAULT 0,
        sources_completed INTEGER NOT NULL DEFAULT 0,
        items_found INTEGER NOT NULL DEFAULT 0,
        new_found INTEGER NOT NULL DEFAULT 0,
        error TEXT,
        created_at INTEGER NOT NULL,
        completed_at INTEGER
    );
    CREATE INDEX IF NOT EXISTS idx_scan_runs_created ON scan_runs(created_at);

    CREATE TABLE IF NOT EXISTS source_status (
        scan_run_id TEXT NOT NULL,
        source TEXT NOT NULL,
        status TEXT NOT NULL,                     -- pending | running | completed | failed | skipped
        items_found INTEGER NOT NULL DEFAULT 0,
        error TEXT,
        updated_at INTEGER NOT NULL,
        PRIMARY KEY (scan_run_id, source)
    );

    -- (source, external_id) is the sole dedup guard across scans
    CREATE TABLE IF NOT EXISTS raw_items (
        id TEXT PRIMARY KEY,
        scan_run_id TEXT NOT NULL,
        target_id TEXT NOT NULL,
        source TEXT NOT NULL,
        external_id TEXT NOT NULL,
        title TEXT NOT NULL,
        url TEXT NOT NULL DEFAULT '',
        abstract TEXT NOT NULL DEFAULT '',
        full_text TEXT NOT NULL DEFAULT '',
        published_at INTEGER,                     -- Unix epoch
        metadata TEXT NOT NULL DEFAULT '{}',      -- JSON object
        is_new INTEGER NOT NULL DEFAULT 1,
        feedback TEXT,                            -- good | bad
        created_at INTEGER NOT NULL,
        UNIQUE (source, external_id)
    );
    CREATE INDEX IF NOT EXISTS idx_raw_items_run ON raw_items(scan_run_id, is_new);
    CREATE INDEX IF NOT EXISTS idx_raw_items_target ON raw_items(target_id);

    CREATE TABLE IF NOT EXISTS digest_runs (
        id TEXT PRIMARY KEY,
        scan_run_id TEXT,
        period TEXT NOT NULL,
        executive_summary TEXT NOT NULL,
        total_signals INTEGER NOT NULL DEFAULT 0,
        critical_count INTEGER NOT NULL DEFAULT 0,
        high_count INTEGER NOT NULL DEFAULT 0,
        medium_count INTEGER NOT NULL DEFAULT 0,
        low_count INTEGER NOT NULL DEFAULT 0,
        fingerprint TEXT UNIQUE,                  -- NULL for empty digests
        strategy TEXT NOT NULL DEFAULT 'deterministic',  -- deterministic | generative
        generated_at INTEGER NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_digest_runs_generated ON digest_runs(generated_at);

    CREATE TABLE IF NOT EXISTS digest_items (
        id TEXT PRIMARY KEY,
        digest_run_id TEXT NOT NULL,
        position INTEGER NOT NULL,
        target_id TEXT NOT NULL,
        raw_item_ids TEXT NOT NULL,               -- JSON list
        category TEXT NOT NULL,
        significance TEXT NOT NULL,
        headline TEXT NOT NULL,
        synthesis TEXT NOT NULL,
        strategic_implication TEXT,
        sources TEXT NOT NULL DEFAULT '[]',       -- JSON list of source refs
        feedback TEXT                             -- good | bad
    );
    CREATE INDEX IF NOT EXISTS idx_digest_items_run ON digest_items(digest_run_id, position);

    CREATE TABLE IF NOT EXISTS schedules (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        watch_target_id TEXT,                     -- NULL = global row for the user
        timezone TEXT NOT NULL DEFAULT 'UTC',
        daily_enabled INTEGER NOT NULL DEFAULT 0,
        daily_hour INTEGER NOT NULL DEFAULT 9,
        daily_minute INTEGER NOT NULL DEFAULT 0,
        weekly_enabled INTEGER NOT NULL DEFAULT 0,
        weekly_day_of_week INTEGER NOT NULL DEFAULT 1,
        weekly_hour INTEGER NOT NULL DEFAULT 9,
        weekly_minute INTEGER NOT NULL DEFAULT 0,
        weekdays_only INTEGER NOT NULL DEFAULT 0,
        last_daily_run_date TEXT,
        last_weekly_run_date TEXT,
        updated_at INTEGER NOT NULL
    );
    CREATE UNIQUE INDEX IF NOT EXISTS idx_schedules_user
        ON schedules(user_id) WHERE watch_target_id IS NULL;
    CREATE UNIQUE INDEX IF NOT EXISTS idx_schedules_target
        ON schedules(watch_target_id) WHERE watch_target_id IS NOT NULL;
    """

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str):
        """Initialize database connection.

        Creates the database file if it doesn't exist and sets up the
        schema. The connection may be used from the API server's worker
        thread, so same-thread checking is disabled.

        Args:
            path: Path to SQLite database file
        """
        self.path = Path(path)
        self.conn = sqlite3.connect(str(self.path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

        # WAL mode allows concurrent readers during writes
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()
        logger.debug("Database initialized | path=%s", self.path)

    def _init_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()

    # === Watch targets ===

    def add_target(self, target: WatchTarget, commit: bool = True) -> WatchTarget:
        """Insert or replace a watch target."""
        created = target.created_at or _now()
        self.conn.execute(
            """
            INSERT OR REPLACE INTO watch_targets
            (id, user_id, name, display_name, aliases, type, therapeutic_area,
             indication, company, notes, active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                target.id,
                target.user_id,
                target.name,
                target.display_name,
                json.dumps(target.aliases),
                target.type.value,
                target.therapeutic_area,
                target.indication,
                target.company,
                target.notes,
                int(target.active),
                created,
            ),
        )
        if commit:
            self.conn.commit()
        logger.debug("Target saved | id=%s name=%s", target.id, target.name)
        return target.model_copy(update={"created_at": created})

    def get_target(self, target_id: str) -> WatchTarget | None:
        row = self.conn.execute(
            "SELECT * FROM watch_targets WHERE id = ?", (target_id,)
        ).fetchone()
        return self._row_to_target(row) if row else None

    def get_targets(self, target_ids: Iterable[str]) -> list[WatchTarget]:
        """Fetch targets by id, preserving the requested order.

        Unknown ids are dropped.
        """
        ids = list(dict.fromkeys(target_ids))
        if not ids:
            return []
        placeholders = ",".join("?" * len(ids))
        cursor = self.conn.execute(
            f"SELECT * FROM watch_targets WHERE id IN ({placeholders})", ids
        )
        by_id = {row["id"]: self._row_to_target(row) for row in cursor.fetchall()}
        return [by_id[i] for i in ids if i in by_id]

    def list_targets(
        self,
        user_id: str | None = None,
        active_only: bool = False,
    ) -> list[WatchTarget]:
        """List targets, optionally restricted to one user and/or active ones."""
        clauses, params = [], []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if active_only:
            clauses.append("active = 1")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        cursor = self.conn.execute(
            f"SELECT * FROM watch_targets {where} ORDER BY created_at, rowid", params
        )
        return [self._row_to_target(row) for row in cursor.fetchall()]

    @staticmethod
    def _row_to_target(row: sqlite3.Row) -> WatchTarget:
        return WatchTarget(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            display_name=row["display_name"],
            aliases=json.loads(row["aliases"]),
            type=row["type"],
            therapeutic_area=row["therapeutic_area"],
            indication=row["indication"],
            company=row["company"],
            notes=row["notes"],
            active=bool(row["active"]),
            created_at=row["created_at"],
        )

    # === Scan runs ===

    def create_scan_run(
        self,
        period: Period,
        mode: ScanMode,
        target_ids: list[str],
        sources: list[str],
        run_id: str | None = None,
    ) -> ScanRun:
        """Create a pending scan run with one pending status row per source."""
        run = ScanRun(
            id=run_id or new_id(),
            period=period,
            mode=mode,
            target_ids=target_ids,
            sources_total=len(sources),
            created_at=_now(),
        )
        self.conn.execute(
            """
            INSERT INTO scan_runs
            (id, period, mode, status, target_ids, sources_total, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.id,
                run.period.value,
                run.mode.value,
                run.status.value,
                json.dumps(run.target_ids),
                run.sources_total,
                run.created_at,
            ),
        )
        self._insert_source_statuses(run.id, sources)
        self.conn.commit()
        logger.debug("Scan run created | id=%s sources=%d", run.id, len(sources))
        return run

    def ensure_source_statuses(self, scan_run_id: str, sources: list[str]) -> None:
        """Create missing status rows for a pre-created run."""
        self._insert_source_statuses(scan_run_id, sources)
        self.conn.execute(
            "UPDATE scan_runs SET sources_total = ? WHERE id = ?",
            (len(sources), scan_run_id),
        )
        self.conn.commit()

    def _insert_source_statuses(self, scan_run_id: str, sources: list[str]) -> None:
        now = _now()
        self.conn.executemany(
            """
            INSERT OR IGNORE INTO source_status
            (scan_run_id, source, status, items_found, updated_at)
            VALUES (?, ?, ?, 0, ?)
            """,
            [(scan_run_id, s, SourceState.PENDING.value, now) for s in sources],
        )

    def get_scan_run(self, scan_run_id: str) -> ScanRun | None:
        row = self.conn.execute(
            "SELECT * FROM scan_runs WHERE id = ?", (scan_run_id,)
        ).fetchone()
        if not row:
            return None
        return ScanRun(
            id=row["id"],
            period=row["period"],
            mode=row["mode"],
            status=row["status"],
            target_ids=json.loads(row["target_ids"]),
            sources_total=row["sources_total"],
            sources_completed=row["sources_completed"],
            items_found=row["items_found"],
            new_found=row["new_found"],
            error=row["error"],
            created_at=row["created_at"],
            completed_at=row["completed_at"],
        )

    _SCAN_RUN_FIELDS = frozenset({
        "status", "mode", "target_ids", "sources_total", "sources_completed",
        "items_found", "new_found", "error", "completed_at",
    })

    def update_scan_run(self, scan_run_id: str, commit: bool = True, **fields: Any) -> None:
        """Patch a scan run.

        Terminal statuses stamp completed_at automatically.

        Raises:
            ValueError: If an unknown field is passed
        """
        unknown = set(fields) - self._SCAN_RUN_FIELDS
        if unknown:
            raise ValueError(f"Unknown scan run fields: {sorted(unknown)}")
        status = fields.get("status")
        if status in (RunStatus.COMPLETED, RunStatus.FAILED) and "completed_at" not in fields:
            fields["completed_at"] = _now()

        values = []
        for key, value in fields.items():
            if key == "target_ids":
                value = json.dumps(value)
            elif isinstance(value, (RunStatus, ScanMode)):
                value = value.value
            values.append(value)
        assignments = ", ".join(f"{key} = ?" for key in fields)
        self.conn.execute(
            f"UPDATE scan_runs SET {assignments} WHERE id = ?", (*values, scan_run_id)
        )
        if commit:
            self.conn.commit()
        logger.debug("Scan run updated | id=%s fields=%s", scan_run_id, ",".join(fields))

    def set_source_status(
        self,
        scan_run_id: str,
        source: str,
        status: SourceState,
        items_found: int | None = None,
        error: str | None = None,
        commit: bool = True,
    ) -> None:
        """Record the state of one source within a run."""
        self.conn.execute(
            """
            INSERT INTO source_status (scan_run_id, source, status, items_found, error, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (scan_run_id, source) DO UPDATE SET
                status = excluded.status,
                items_found = COALESCE(?, source_status.items_found),
                error = excluded.error,
                updated_at = excluded.updated_at
            """,
            (
                scan_run_id,
                source,
                status.value,
                items_found or 0,
                error,
                _now(),
                items_found,
            ),
        )
        if commit:
            self.conn.commit()

    def source_statuses(self, scan_run_id: str) -> list[SourceStatus]:
        cursor = self.conn.execute(
            "SELECT * FROM source_status WHERE scan_run_id = ? ORDER BY source",
            (scan_run_id,),
        )
        return [
            SourceStatus(
                scan_run_id=row["scan_run_id"],
                source=row["source"],
                status=row["status"],
                items_found=row["items_found"],
                error=row["error"],
                updated_at=row["updated_at"],
            )
            for row in cursor.fetchall()
        ]

    # === Raw items ===

    def existing_external_ids(self, sources: Iterable[str] | None = None) -> dict[str, set[str]]:
        """Already-ingested external ids grouped by source."""
        params: list[str] = []
        query = "SELECT source, external_id FROM raw_items"
        if sources is not None:
            params = list(sources)
            if not params:
                return {}
            query += f" WHERE source IN ({','.join('?' * len(params))})"
        grouped: dict[str, set[str]] = {}
        for row in self.conn.execute(query, params):
            grouped.setdefault(row["source"], set()).add(row["external_id"])
        return grouped

    def insert_raw_items(
        self,
        scan_run_id: str,
        source: str,
        items: Iterable[CandidateItem],
    ) -> list[str]:
        """Persist previously unseen items.

        An item whose (source, external_id) already exists is skipped
        silently: no update, no count.

        Returns:
            Ids of the rows actually inserted
        """
        inserted = []
        now = _now()
        for item in items:
            raw_id = new_id()
            cursor = self.conn.execute(
                """
                INSERT OR IGNORE INTO raw_items
                (id, scan_run_id, target_id, source, external_id, title, url,
                 abstract, full_text, published_at, metadata, is_new, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
                """,
                (
                    raw_id,
                    scan_run_id,
                    item.target_id,
                    source,
                    item.external_id,
                    item.title,
                    item.url,
                    item.abstract,
                    item.full_text,
                    _to_epoch(item.published_at),
                    json.dumps(item.metadata, default=str),
                    now,
                ),
            )
            if cursor.rowcount == 1:
                inserted.append(raw_id)
        self.conn.commit()
        logger.debug("Raw items ingested | source=%s new=%d", source, len(inserted))
        return inserted

    def raw_items_for_run(self, scan_run_id: str, new_only: bool = True) -> list[RawItem]:
        """Items ingested by a run, in insertion order."""
        query = "SELECT * FROM raw_items WHERE scan_run_id = ?"
        if new_only:
            query += " AND is_new = 1"
        cursor = self.conn.execute(query + " ORDER BY created_at, rowid", (scan_run_id,))
        return [self._row_to_raw_item(row) for row in cursor.fetchall()]

    def get_raw_item(self, raw_item_id: str) -> RawItem | None:
        row = self.conn.execute("SELECT * FROM raw_items WHERE id = ?", (raw_item_id,)).fetchone()
        return self._row_to_raw_item(row) if row else None

    def set_raw_item_feedback(self, raw_item_id: str, feedback: Feedback | None) -> bool:
        cursor = self.conn.execute(
            "UPDATE raw_items SET feedback = ? WHERE id = ?",
            (feedback.value if feedback else None, raw_item_id),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_raw_item(row: sqlite3.Row) -> RawItem:
        return RawItem(
            id=row["id"],
            scan_run_id=row["scan_run_id"],
            target_id=row["target_id"],
            source=row["source"],
            external_id=row["external_id"],
            title=row["title"],
            url=row["url"],
            abstract=row["abstract"],
            full_text=row["full_text"],
            published_at=_from_epoch(row["published_at"]),
            metadata=json.loads(row["metadata"]),
            is_new=bool(row["is_new"]),
            feedback=row["feedback"],
            created_at=row["created_at"],
        )

    # === Digests ===

    def digest_run_by_fingerprint(self, fingerprint: str) -> DigestRun | None:
        row = self.conn.execute(
            "SELECT * FROM digest_runs WHERE fingerprint = ?", (fingerprint,)
        ).fetchone()
        return self._row_to_digest_run(row) if row else None

    def save_digest(
        self,
        draft: DigestDraft,
        period: Period,
        fingerprint: str | None,
        scan_run_id: str | None = None,
    ) -> DigestRun | None:
        """Persist a digest run and its items as one transaction.

        Returns:
            The stored run, or None if another run already holds the fingerprint
        """
        run = DigestRun(
            id=new_id(),
            scan_run_id=scan_run_id,
            period=period,
            executive_summary=draft.executive_summary,
            total_signals=len(draft.raw_item_ids),
            critical_count=draft.critical_count,
            high_count=draft.high_count,
            medium_count=draft.medium_count,
            low_count=draft.low_count,
            fingerprint=fingerprint,
            strategy=draft.strategy,
            generated_at=_now(),
        )
        try:
            with self.conn:
                self.conn.execute(
                    """
                    INSERT INTO digest_runs
                    (id, scan_run_id, period, executive_summary, total_signals,
                     critical_count, high_count, medium_count, low_count,
                     fingerprint, strategy, generated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run.id,
                        run.scan_run_id,
                        run.period.value,
                        run.executive_summary,
                        run.total_signals,
                        run.critical_count,
                        run.high_count,
                        run.medium_count,
                        run.low_count,
                        run.fingerprint,
                        run.strategy,
                        run.generated_at,
                    ),
                )
                self.conn.executemany(
                    """
                    INSERT INTO digest_items
                    (id, digest_run_id, position, target_id, raw_item_ids, category,
                     significance, headline, synthesis, strategic_implication, sources)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            new_id(),
                            run.id,
                            position,
                            item.target_id,
                            json.dumps(item.raw_item_ids),
                            item.category.value,
                            item.significance.value,
                            item.headline,
                            item.synthesis,
                            item.strategic_implication,
                            json.dumps([s.model_dump() for s in item.sources]),
                        )
                        for position, item in enumerate(draft.items)
                    ],
                )
        except sqlite3.IntegrityError:
            if fingerprint and self.digest_run_by_fingerprint(fingerprint):
                logger.info("Digest suppressed by concurrent writer | fingerprint=%s", fingerprint[:12])
                return None
            raise
        logger.debug("Digest saved | id=%s items=%d", run.id, len(draft.items))
        return run

    def get_digest_run(self, digest_run_id: str) -> DigestRun | None:
        row = self.conn.execute(
            "SELECT * FROM digest_runs WHERE id = ?", (digest_run_id,)
        ).fetchone()
        return self._row_to_digest_run(row) if row else None

    def recent_digest_runs(self, limit: int = 10) -> list[DigestRun]:
        cursor = self.conn.execute(
            "SELECT * FROM digest_runs ORDER BY generated_at DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_digest_run(row) for row in cursor.fetchall()]

    def digest_items(self, digest_run_id: str) -> list[DigestItem]:
        cursor = self.conn.execute(
            "SELECT * FROM digest_items WHERE digest_run_id = ? ORDER BY position",
            (digest_run_id,),
        )
        return [
            DigestItem(
                id=row["id"],
                digest_run_id=row["digest_run_id"],
                target_id=row["target_id"],
                raw_item_ids=json.loads(row["raw_item_ids"]),
                category=row["category"],
                significance=row["significance"],
                headline=row["headline"],
                synthesis=row["synthesis"],
                strategic_implication=row["strategic_implication"],
                sources=[SourceRef(**s) for s in json.loads(row["sources"])],
                feedback=row["feedback"],
            )
            for row in cursor.fetchall()
        ]

    def set_digest_item_feedback(self, digest_item_id: str, feedback: Feedback | None) -> bool:
        cursor = self.conn.execute(
            "UPDATE digest_items SET feedback = ? WHERE id = ?",
            (feedback.value if feedback else None, digest_item_id),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_digest_run(row: sqlite3.Row) -> DigestRun:
        return DigestRun(
            id=row["id"],
            scan_run_id=row["scan_run_id"],
            period=row["period"],
            executive_summary=row["executive_summary"],
            total_signals=row["total_signals"],
            critical_count=row["critical_count"],
            high_count=row["high_count"],
            medium_count=row["medium_count"],
            low_count=row["low_count"],
            fingerprint=row["fingerprint"],
            strategy=row["strategy"],
            generated_at=row["generated_at"],
        )

    # === Feedback ===

    def feedback_examples(
        self,
        target_ids: Iterable[str] | None = None,
        limit: int = 25,
        snippet_chars: int = 200,
        include_raw_items: bool = True,
    ) -> FeedbackSet:
        """Recently rated items, newest first, split by rating.

        Args:
            target_ids: Restrict to these targets (None = all)
            limit: Maximum examples per rating
            snippet_chars: Snippet truncation length
            include_raw_items: Also draw on rated raw items, not only digest items
        """
        ids = list(target_ids) if target_ids is not None else None
        target_filter, params = "", []
        if ids is not None:
            if not ids:
                return FeedbackSet()
            target_filter = f"AND t.target_id IN ({','.join('?' * len(ids))})"
            params = ids

        raw_union = ""
        if include_raw_items:
            raw_union = """
                UNION ALL
                SELECT ri.feedback, ri.title, ri.abstract, ri.target_id, ri.created_at
                FROM raw_items ri WHERE ri.feedback IS NOT NULL
            """
        query = f"""
            SELECT t.feedback AS feedback, t.headline AS headline, t.snippet AS snippet,
                   COALESCE(w.display_name, '') AS display_name, COALESCE(w.name, '') AS name,
                   t.rated_at AS rated_at
            FROM (
                SELECT di.feedback, di.headline, di.synthesis AS snippet, di.target_id,
                       dr.generated_at AS rated_at
                FROM digest_items di JOIN digest_runs dr ON dr.id = di.digest_run_id
                WHERE di.feedback IS NOT NULL
                {raw_union}
            ) AS t
            LEFT JOIN watch_targets w ON w.id = t.target_id
            WHERE 1 = 1 {target_filter}
            ORDER BY t.rated_at DESC
        """
        feedback = FeedbackSet()
        for row in self.conn.execute(query, params):
            bucket = feedback.good if row["feedback"] == Feedback.GOOD.value else feedback.bad
            if len(bucket) >= limit:
                continue
            bucket.append(FeedbackExample(
                target_name=row["display_name"] or row["name"],
                headline=row["headline"],
                snippet=(row["snippet"] or "")[:snippet_chars],
            ))
        return feedback

    # === Schedules ===

    def upsert_schedule(self, schedule: Schedule) -> Schedule:
        """Create or update the schedule for a user or a target.

        Last-run markers of an existing row are preserved.
        """
        if schedule.watch_target_id is None:
            row = self.conn.execute(
                "SELECT id FROM schedules WHERE user_id = ? AND watch_target_id IS NULL",
                (schedule.user_id,),
            ).fetchone()
        else:
            row = self.conn.execute(
                "SELECT id FROM schedules WHERE watch_target_id = ?",
                (schedule.watch_target_id,),
            ).fetchone()

        values = (
            schedule.timezone,
            int(schedule.daily_enabled),
            schedule.daily_hour,
            schedule.daily_minute,
            int(schedule.weekly_enabled),
            schedule.weekly_day_of_week,
            schedule.weekly_hour,
            schedule.weekly_minute,
            int(schedule.weekdays_only),
            _now(),
        )
        if row:
            self.conn.execute(
                """
                UPDATE schedules SET timezone = ?, daily_enabled = ?, daily_hour = ?,
                    daily_minute = ?, weekly_enabled = ?, weekly_day_of_week = ?,
                    weekly_hour = ?, weekly_minute = ?, weekdays_only = ?, updated_at = ?
                WHERE id = ?
                """,
                (*values, row["id"]),
            )
            schedule_id = row["id"]
        else:
            self.conn.execute(
                """
                INSERT INTO schedules
                (timezone, daily_enabled, daily_hour, daily_minute, weekly_enabled,
                 weekly_day_of_week, weekly_hour, weekly_minute, weekdays_only, updated_at,
                 id, user_id, watch_target_id, last_daily_run_date, last_weekly_run_date)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    *values,
                    schedule.id,
                    schedule.user_id,
                    schedule.watch_target_id,
                    schedule.last_daily_run_date,
                    schedule.last_weekly_run_date,
                ),
            )
            schedule_id = schedule.id
        self.conn.commit()
        logger.debug("Schedule saved | id=%s target=%s", schedule_id, schedule.watch_target_id)
        return self.get_schedule(schedule_id)

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        row = self.conn.execute("SELECT * FROM schedules WHERE id = ?", (schedule_id,)).fetchone()
        return self._row_to_schedule(row) if row else None

    def list_schedules(self) -> list[Schedule]:
        cursor = self.conn.execute("SELECT * FROM schedules ORDER BY rowid")
        return [self._row_to_schedule(row) for row in cursor.fetchall()]

    def delete_schedule(self, schedule_id: str) -> bool:
        cursor = self.conn.execute("DELETE FROM schedules WHERE id = ?", (schedule_id,))
        self.conn.commit()
        return cursor.rowcount == 1

    def claim_daily_run(self, schedule_id: str, date_key: str) -> bool:
        """Set last_daily_run_date unless it already equals date_key.

        Returns:
            True if this caller moved the marker and should trigger
        """
        return self._claim_marker("last_daily_run_date", schedule_id, date_key)

    def claim_weekly_run(self, schedule_id: str, week_key: str) -> bool:
        """Set last_weekly_run_date unless it already equals week_key."""
        return self._claim_marker("last_weekly_run_date", schedule_id, week_key)

    def _claim_marker(self, column: str, schedule_id: str, key: str) -> bool:
        cursor = self.conn.execute(
            f"UPDATE schedules SET {column} = ? WHERE id = ? AND {column} IS NOT ?",
            (key, schedule_id, key),
        )
        self.conn.commit()
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_schedule(row: sqlite3.Row) -> Schedule:
        return Schedule.model_construct(
            id=row["id"],
            user_id=row["user_id"],
            watch_target_id=row["watch_target_id"],
            timezone=row["timezone"],
            daily_enabled=bool(row["daily_enabled"]),
            daily_hour=row["daily_hour"],
            daily_minute=row["daily_minute"],
            weekly_enabled=bool(row["weekly_enabled"]),
            weekly_day_of_week=row["weekly_day_of_week"],
            weekly_hour=row["weekly_hour"],
            weekly_minute=row["weekly_minute"],
            weekdays_only=bool(row["weekdays_only"]),
            last_daily_run_date=row["last_daily_run_date"],
            last_weekly_run_date=row["last_weekly_run_date"],
            updated_at=row["updated_at"],
        )

    # === Maintenance ===

    def commit(self) -> None:
        """Commit pending changes."""
        self.conn.commit()

    def stats(self) -> dict[str, int]:
        """Row counts per table."""
        counts = {}
        for table in ("watch_targets", "scan_runs", "raw_items", "digest_runs", "schedules"):
            row = self.conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()
            counts[table] = row["n"] or 0
        return counts

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
