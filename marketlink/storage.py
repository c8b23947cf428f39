from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from marketlink.models import EligibleMarket, Link, LinkStatus

ORDER_COLUMNS = {
    "close_time": "close_time IS NULL, close_time ASC, market_id ASC",
    "market_id": "market_id ASC",
    "updated_ts": "updated_ts DESC, market_id ASC",
}

# Upsert outcomes
CREATED = "created"
UPDATED = "updated"
KEPT_CONFIRMED = "kept_confirmed"
KEPT_REJECTED = "kept_rejected"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def derive_topic(algo_version: str) -> str:
    return (algo_version or "").split("@")[0] or "unknown"


def init_db(path: str) -> None:
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS markets (
                venue TEXT NOT NULL,
                market_id TEXT NOT NULL,
                title TEXT NOT NULL,
                category TEXT,
                close_time TEXT,
                status TEXT,
                metadata_json TEXT,
                updated_ts TEXT,
                PRIMARY KEY (venue, market_id)
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS market_links (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                left_venue TEXT NOT NULL,
                left_market_id TEXT NOT NULL,
                right_venue TEXT NOT NULL,
                right_market_id TEXT NOT NULL,
                score REAL NOT NULL,
                reason TEXT,
                status TEXT NOT NULL,
                algo_version TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (left_venue, left_market_id, right_venue, right_market_id)
            )
            """
        )
        _ensure_column(cur, "market_links", "topic", "TEXT")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_market_links_status ON market_links (status)")
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_market_links_left "
            "ON market_links (left_venue, left_market_id)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_market_links_right "
            "ON market_links (right_venue, right_market_id)"
        )
        conn.commit()
    finally:
        conn.close()


def _ensure_column(cur: sqlite3.Cursor, table: str, column: str, col_type: str) -> None:
    try:
        cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
    except sqlite3.OperationalError:
        return


def _connect(path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def _row_to_market(row: sqlite3.Row) -> EligibleMarket:
    close_time = datetime.fromisoformat(row["close_time"]) if row["close_time"] else None
    return EligibleMarket(
        market_id=row["market_id"],
        venue=row["venue"],
        title=row["title"],
        category=row["category"] or "",
        close_time=close_time,
        metadata=json.loads(row["metadata_json"]) if row["metadata_json"] else {},
    )


def _row_to_link(row: sqlite3.Row) -> Link:
    return Link(
        id=row["id"],
        left_venue=row["left_venue"],
        left_market_id=row["left_market_id"],
        right_venue=row["right_venue"],
        right_market_id=row["right_market_id"],
        score=row["score"],
        reason=row["reason"] or "",
        status=row["status"],
        algo_version=row["algo_version"] or "",
        topic=row["topic"] or derive_topic(row["algo_version"] or ""),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def upsert_markets(path: str, markets: Iterable[EligibleMarket], status: str = "open") -> int:
    now = _iso(_utc_now())
    conn = sqlite3.connect(path)
    try:
        count = 0
        with conn:
            for market in markets:
                conn.execute(
                    """
                    INSERT INTO markets (
                        venue, market_id, title, category, close_time, status, metadata_json,
                        updated_ts
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(venue, market_id) DO UPDATE SET
                        title=excluded.title,
                        category=excluded.category,
                        close_time=excluded.close_time,
                        status=excluded.status,
                        metadata_json=excluded.metadata_json,
                        updated_ts=excluded.updated_ts
                    """,
                    (
                        market.venue,
                        market.market_id,
                        market.title,
                        market.category,
                        _iso(market.close_time),
                        status,
                        json.dumps(market.metadata, sort_keys=True),
                        now,
                    ),
                )
                count += 1
        return count
    finally:
        conn.close()


def upsert_market(path: str, market: EligibleMarket, status: str = "open") -> None:
    upsert_markets(path, [market], status=status)


def get_market(path: str, venue: str, market_id: str) -> Optional[EligibleMarket]:
    conn = _connect(path)
    try:
        row = conn.execute(
            "SELECT * FROM markets WHERE venue = ? AND market_id = ?", (venue, market_id)
        ).fetchone()
    finally:
        conn.close()
    return _row_to_market(row) if row else None


def list_eligible_markets(
    path: str,
    venue: str,
    lookback_hours: Optional[int] = None,
    limit: Optional[int] = None,
    title_keywords: Optional[Sequence[str]] = None,
    order_by: str = "close_time",
    now: Optional[datetime] = None,
) -> List[EligibleMarket]:
    """Open markets for a venue that close after ``now - lookback_hours``."""
    if order_by not in ORDER_COLUMNS:
        raise ValueError(f"Unsupported order_by: {order_by}")
    query = "SELECT * FROM markets WHERE venue = ? AND (status IS NULL OR status IN ('open', 'active'))"
    params: List[Any] = [venue]
    if lookback_hours is not None:
        cutoff = (now or _utc_now()) - timedelta(hours=lookback_hours)
        query += " AND (close_time IS NULL OR close_time >= ?)"
        params.append(_iso(cutoff))
    keywords = [k.strip().lower() for k in (title_keywords or []) if k.strip()]
    if keywords:
        query += " AND (" + " OR ".join("lower(title) LIKE ?" for _ in keywords) + ")"
        params.extend(f"%{k}%" for k in keywords)
    query += f" ORDER BY {ORDER_COLUMNS[order_by]}"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)

    conn = _connect(path)
    try:
        rows = conn.execute(query, params).fetchall()
    finally:
        conn.close()
    return [_row_to_market(row) for row in rows]


def _find_link(
    conn: sqlite3.Connection,
    left_venue: str,
    left_market_id: str,
    right_venue: str,
    right_market_id: str,
) -> Optional[sqlite3.Row]:
    return conn.execute(
        """
        SELECT * FROM market_links
        WHERE left_venue = ? AND left_market_id = ? AND right_venue = ? AND right_market_id = ?
        """,
        (left_venue, left_market_id, right_venue, right_market_id),
    ).fetchone()


def _upsert_link(
    conn: sqlite3.Connection,
    left_venue: str,
    left_market_id: str,
    right_venue: str,
    right_market_id: str,
    score: float,
    reason: str,
    algo_version: str,
    topic: Optional[str],
    reopen_rejected: bool,
    now: str,
) -> Tuple[Link, str]:
    key = (left_venue, left_market_id, right_venue, right_market_id)
    existing = _find_link(conn, *key)
    if existing is not None:
        if existing["status"] == LinkStatus.CONFIRMED:
            return _row_to_link(existing), KEPT_CONFIRMED
        if existing["status"] == LinkStatus.REJECTED and not reopen_rejected:
            return _row_to_link(existing), KEPT_REJECTED

    conn.execute(
        """
        INSERT INTO market_links (
            left_venue, left_market_id, right_venue, right_market_id, score, reason, status,
            algo_version, topic, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(left_venue, left_market_id, right_venue, right_market_id) DO UPDATE SET
            score=excluded.score,
            reason=excluded.reason,
            algo_version=excluded.algo_version,
            topic=excluded.topic,
            status=excluded.status,
            updated_at=excluded.updated_at
        WHERE market_links.status = 'suggested'
            OR (market_links.status = 'rejected' AND ?)
        """,
        (
            *key,
            float(score),
            reason,
            LinkStatus.SUGGESTED,
            algo_version,
            topic or derive_topic(algo_version),
            now,
            now,
            1 if reopen_rejected else 0,
        ),
    )
    row = _find_link(conn, *key)
    return _row_to_link(row), CREATED if existing is None else UPDATED


def upsert_suggestion(
    path: str,
    left_venue: str,
    left_market_id: str,
    right_venue: str,
    right_market_id: str,
    score: float,
    reason: str,
    algo_version: str,
    topic: Optional[str] = None,
    reopen_rejected: bool = True,
) -> Tuple[Link, bool]:
    conn = _connect(path)
    try:
        with conn:
            link, outcome = _upsert_link(
                conn,
                left_venue,
                left_market_id,
                right_venue,
                right_market_id,
                score,
                reason,
                algo_version,
                topic,
                reopen_rejected,
                _iso(_utc_now()),
            )
    finally:
        conn.close()
    return link, outcome == CREATED


def upsert_suggestions(
    path: str,
    rows: Sequence[Dict[str, Any]],
    reopen_rejected: bool = True,
) -> List[Tuple[Link, str]]:
    """Write one left market's suggestions as a single transaction."""
    now = _iso(_utc_now())
    conn = _connect(path)
    try:
        with conn:
            return [
                _upsert_link(
                    conn,
                    row["left_venue"],
                    row["left_market_id"],
                    row["right_venue"],
                    row["right_market_id"],
                    row["score"],
                    row["reason"],
                    row["algo_version"],
                    row.get("topic"),
                    reopen_rejected,
                    now,
                )
                for row in rows
            ]
    finally:
        conn.close()


def get_link(path: str, link_id: int) -> Optional[Link]:
    conn = _connect(path)
    try:
        row = conn.execute("SELECT * FROM market_links WHERE id = ?", (link_id,)).fetchone()
    finally:
        conn.close()
    return _row_to_link(row) if row else None


def get_link_by_pair(
    path: str, left_venue: str, left_market_id: str, right_venue: str, right_market_id: str
) -> Optional[Link]:
    conn = _connect(path)
    try:
        row = _find_link(conn, left_venue, left_market_id, right_venue, right_market_id)
    finally:
        conn.close()
    return _row_to_link(row) if row else None


def _set_status(
    path: str, link_id: int, status: str, reason_suffix: Optional[str] = None
) -> Optional[Link]:
    conn = _connect(path)
    try:
        with conn:
            if reason_suffix:
                conn.execute(
                    """
                    UPDATE market_links
                    SET status = ?, updated_at = ?,
                        reason = CASE WHEN reason IS NULL OR reason = '' THEN ?
                                      ELSE reason || ' | ' || ? END
                    WHERE id = ?
                    """,
                    (status, _iso(_utc_now()), reason_suffix, reason_suffix, link_id),
                )
            else:
                conn.execute(
                    "UPDATE market_links SET status = ?, updated_at = ? WHERE id = ?",
                    (status, _iso(_utc_now()), link_id),
                )
            row = conn.execute("SELECT * FROM market_links WHERE id = ?", (link_id,)).fetchone()
    finally:
        conn.close()
    return _row_to_link(row) if row else None


def confirm(path: str, link_id: int, reason_suffix: Optional[str] = None) -> Optional[Link]:
    return _set_status(path, link_id, LinkStatus.CONFIRMED, reason_suffix)


def reject(path: str, link_id: int, reason_suffix: Optional[str] = None) -> Optional[Link]:
    return _set_status(path, link_id, LinkStatus.REJECTED, reason_suffix)


def confirm_by_pair(
    path: str, left_venue: str, left_market_id: str, right_venue: str, right_market_id: str
) -> Optional[Link]:
    link = get_link_by_pair(path, left_venue, left_market_id, right_venue, right_market_id)
    if link is None:
        return None
    return confirm(path, link.id)


def has_confirmed_link(path: str, venue: str, market_id: str) -> bool:
    conn = sqlite3.connect(path)
    try:
        row = conn.execute(
            """
            SELECT 1 FROM market_links
            WHERE status = 'confirmed'
              AND ((left_venue = ? AND left_market_id = ?)
                   OR (right_venue = ? AND right_market_id = ?))
            LIMIT 1
            """,
            (venue, market_id, venue, market_id),
        ).fetchone()
    finally:
        conn.close()
    return row is not None


def confirmed_market_ids(path: str, venue: str) -> Set[str]:
    conn = sqlite3.connect(path)
    try:
        rows = conn.execute(
            """
            SELECT left_market_id FROM market_links
            WHERE status = 'confirmed' AND left_venue = ?
            UNION
            SELECT right_market_id FROM market_links
            WHERE status = 'confirmed' AND right_venue = ?
            """,
            (venue, venue),
        ).fetchall()
    finally:
        conn.close()
    return {row[0] for row in rows}


def get_stats(path: str) -> Dict[str, Any]:
    conn = sqlite3.connect(path)
    try:
        total = conn.execute("SELECT COUNT(*) FROM market_links").fetchone()[0]
        by_status = dict(
            conn.execute("SELECT status, COUNT(*) FROM market_links GROUP BY status").fetchall()
        )
        by_algo = dict(
            conn.execute(
                "SELECT COALESCE(algo_version, ''), COUNT(*) FROM market_links "
                "GROUP BY algo_version"
            ).fetchall()
        )
        by_topic = dict(
            conn.execute(
                "SELECT COALESCE(topic, ''), COUNT(*) FROM market_links GROUP BY topic"
            ).fetchall()
        )
    finally:
        conn.close()
    for status in LinkStatus.ALL:
        by_status.setdefault(status, 0)
    return {
        "total": total,
        "by_status": by_status,
        "by_algo_version": by_algo,
        "by_topic": by_topic,
    }


def list_suggestions(
    path: str,
    min_score: Optional[float] = None,
    status: Optional[str] = None,
    topic: Optional[str] = None,
    algo_version: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[Link]:
    query = "SELECT * FROM market_links WHERE 1 = 1"
    params: List[Any] = []
    if min_score is not None:
        query += " AND score >= ?"
        params.append(min_score)
    if status:
        query += " AND status = ?"
        params.append(status)
    if topic:
        query += " AND topic = ?"
        params.append(topic)
    if algo_version:
        query += " AND algo_version = ?"
        params.append(algo_version)
    query += " ORDER BY score DESC, id ASC LIMIT ? OFFSET ?"
    params.extend([limit if limit is not None else -1, offset])

    conn = _connect(path)
    try:
        rows = conn.execute(query, params).fetchall()
    finally:
        conn.close()
    return [_row_to_link(row) for row in rows]


def cleanup_suggestions(
    path: str,
    older_than_days: int,
    status: Optional[str] = None,
    algo_version: Optional[str] = None,
    topic: Optional[str] = None,
    dry_run: bool = True,
    now: Optional[datetime] = None,
) -> int:
    """Delete stale links; confirmed links are only touched when asked for explicitly."""
    cutoff = _iso((now or _utc_now()) - timedelta(days=older_than_days))
    where = "updated_at < ?"
    params: List[Any] = [cutoff]
    if status:
        where += " AND status = ?"
        params.append(status)
    else:
        where += " AND status IN ('suggested', 'rejected')"
    if algo_version:
        where += " AND algo_version = ?"
        params.append(algo_version)
    if topic:
        where += " AND topic = ?"
        params.append(topic)

    conn = sqlite3.connect(path)
    try:
        count = conn.execute(f"SELECT COUNT(*) FROM market_links WHERE {where}", params).fetchone()[0]
        if not dry_run and count:
            with conn:
                conn.execute(f"DELETE FROM market_links WHERE {where}", params)
    finally:
        conn.close()
    return count
