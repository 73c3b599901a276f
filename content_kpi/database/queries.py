"""Content KPI Engine — Database Query Operations.

All async database read/write operations. Every function:
  - Uses parameterized queries (? placeholders, never f-strings for SQL)
  - Handles connection via the Database instance
  - Commits after writes
  - Returns clean dictionaries (converts Row objects)
  - Logs operations at DEBUG level
"""

from __future__ import annotations

import json
from typing import Any, Optional

from content_kpi.database.db import Database
from content_kpi.database.models import PageRecord, ProjectRecord
from content_kpi.scoring.aggregator import CompositeScore, DimensionScore
from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

PAGE_PENDING = "pending"
PAGE_PROCESSED = "processed"
PAGE_UNANALYZED = "unanalyzed"


def _row_to_dict(row: Any) -> dict[str, Any]:
    """Convert an aiosqlite Row to a plain dictionary."""
    return dict(row)


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


# ═══════════════════════════════════════════════════════════
# Project Operations
# ═══════════════════════════════════════════════════════════


async def upsert_project(db: Database, project: ProjectRecord) -> None:
    """Insert a project or update its brand fields."""
    conn = await db.get_connection()
    d = project.to_db_dict()
    await conn.execute(
        """
        INSERT INTO projects (project_id, brand_name, key_attributes, competitors, keywords)
        VALUES (:project_id, :brand_name, :key_attributes, :competitors, :keywords)
        ON CONFLICT(project_id) DO UPDATE SET
            brand_name = excluded.brand_name,
            key_attributes = excluded.key_attributes,
            competitors = excluded.competitors,
            keywords = excluded.keywords
        """,
        d,
    )
    await conn.commit()
    logger.debug("Upserted project: %s", project.project_id)


async def get_project(db: Database, project_id: str) -> Optional[ProjectRecord]:
    """Fetch one project, or None."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT * FROM projects WHERE project_id = ?", (project_id,)
    )
    row = await cursor.fetchone()
    return ProjectRecord.from_db_row(_row_to_dict(row)) if row else None


async def list_project_ids(db: Database) -> list[str]:
    """All project ids in creation order."""
    conn = await db.get_connection()
    cursor = await conn.execute("SELECT project_id FROM projects ORDER BY id")
    rows = await cursor.fetchall()
    return [row["project_id"] for row in rows]


# ═══════════════════════════════════════════════════════════
# Page Operations
# ═══════════════════════════════════════════════════════════


async def upsert_page(db: Database, project_id: str, page: PageRecord) -> None:
    """Insert or refresh a fetched page; its status returns to pending."""
    conn = await db.get_connection()
    d = page.to_db_dict()
    d["project_id"] = project_id
    await conn.execute(
        """
        INSERT INTO pages (
            project_id, url, content, status_code, fetched_at, metadata, category
        ) VALUES (
            :project_id, :url, :content, :status_code, :fetched_at, :metadata, :category
        )
        ON CONFLICT(project_id, url) DO UPDATE SET
            content = excluded.content,
            status_code = excluded.status_code,
            fetched_at = excluded.fetched_at,
            metadata = excluded.metadata,
            category = excluded.category,
            analysis_status = 'pending',
            unanalyzed_reason = ''
        """,
        d,
    )
    await conn.commit()
    logger.debug("Upserted page: %s %s", project_id, page.url)


async def list_pages(
    db: Database, project_id: str, status: Optional[str] = None
) -> list[PageRecord]:
    """Pages of a project in insertion order, optionally filtered by status."""
    conn = await db.get_connection()
    if status is None:
        cursor = await conn.execute(
            "SELECT * FROM pages WHERE project_id = ? ORDER BY id", (project_id,)
        )
    else:
        cursor = await conn.execute(
            "SELECT * FROM pages WHERE project_id = ? AND analysis_status = ? ORDER BY id",
            (project_id, status),
        )
    rows = await cursor.fetchall()
    logger.debug("list_pages(%s, %s) → %d rows", project_id, status, len(rows))
    return [PageRecord.from_db_row(_row_to_dict(r)) for r in rows]


async def set_page_status(
    db: Database, project_id: str, url: str, status: str, reason: str = ""
) -> None:
    """Set a page's analysis status (and reason when unanalyzed).

    Raises:
        LookupError: If the project has no stored page with this URL.
    """
    conn = await db.get_connection()
    cursor = await conn.execute(
        """
        UPDATE pages
        SET analysis_status = ?, unanalyzed_reason = ?,
            processed_at = datetime('now', 'localtime')
        WHERE project_id = ? AND url = ?
        """,
        (status, reason[:500], project_id, url),
    )
    await conn.commit()
    if cursor.rowcount == 0:
        raise LookupError(f"No stored page {url} in project {project_id}")
    logger.debug("Page %s %s → %s", project_id, url, status)


async def get_page_status(db: Database, project_id: str, url: str) -> Optional[dict[str, Any]]:
    """{'analysis_status', 'unanalyzed_reason', 'processed_at'} or None."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        """
        SELECT analysis_status, unanalyzed_reason, processed_at
        FROM pages WHERE project_id = ? AND url = ?
        """,
        (project_id, url),
    )
    row = await cursor.fetchone()
    return _row_to_dict(row) if row else None


# ═══════════════════════════════════════════════════════════
# Domain Operations
# ═══════════════════════════════════════════════════════════


async def set_domain_status(
    db: Database,
    project_id: str,
    root: str,
    status: str,
    page_count: int,
    reason: str = "",
) -> None:
    """Record the analysis status of a domain unit, creating its row if needed."""
    conn = await db.get_connection()
    await conn.execute(
        """
        INSERT INTO domains (
            project_id, root, analysis_status, unanalyzed_reason, page_count, processed_at
        ) VALUES (?, ?, ?, ?, ?, datetime('now', 'localtime'))
        ON CONFLICT(project_id, root) DO UPDATE SET
            analysis_status = excluded.analysis_status,
            unanalyzed_reason = excluded.unanalyzed_reason,
            page_count = excluded.page_count,
            processed_at = excluded.processed_at
        """,
        (project_id, root, status, reason[:500], page_count),
    )
    await conn.commit()
    logger.debug("Domain %s %s → %s (%d pages)", project_id, root, status, page_count)


async def get_domain_status(db: Database, project_id: str, root: str) -> Optional[dict[str, Any]]:
    """{'analysis_status', 'unanalyzed_reason', 'page_count', 'processed_at'} or None."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        """
        SELECT analysis_status, unanalyzed_reason, page_count, processed_at
        FROM domains WHERE project_id = ? AND root = ?
        """,
        (project_id, root),
    )
    row = await cursor.fetchone()
    return _row_to_dict(row) if row else None


async def list_domains(db: Database, project_id: str) -> list[dict[str, Any]]:
    """Domain rows of a project in first-analysis order."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT * FROM domains WHERE project_id = ? ORDER BY id", (project_id,)
    )
    return [_row_to_dict(r) for r in await cursor.fetchall()]


# ═══════════════════════════════════════════════════════════
# Score Operations
# ═══════════════════════════════════════════════════════════


async def upsert_dimension_score(
    db: Database, project_id: str, url: str, score: DimensionScore
) -> None:
    """Store the latest score of one dimension for a page."""
    conn = await db.get_connection()
    data = score.to_dict()
    await conn.execute(
        """
        INSERT INTO dimension_scores (
            project_id, url, dimension, final_score, explanation,
            issues, sub_scores, details
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(project_id, url, dimension) DO UPDATE SET
            final_score = excluded.final_score,
            explanation = excluded.explanation,
            issues = excluded.issues,
            sub_scores = excluded.sub_scores,
            details = excluded.details,
            scored_at = datetime('now', 'localtime')
        """,
        (
            project_id, url, score.dimension, score.final_score, score.explanation,
            _dumps(data["issues"]), _dumps(data["sub_scores"]), _dumps(data["details"]),
        ),
    )
    await conn.commit()
    logger.debug("Stored %s=%d for %s", score.dimension, score.final_score, url)


async def upsert_composite_score(
    db: Database, project_id: str, url: str, score: CompositeScore
) -> None:
    """Store the latest composite score for a page."""
    conn = await db.get_connection()
    data = score.to_dict()
    await conn.execute(
        """
        INSERT INTO composite_scores (
            project_id, url, global_score, dimensions, weights, skipped_rules, computed_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(project_id, url) DO UPDATE SET
            global_score = excluded.global_score,
            dimensions = excluded.dimensions,
            weights = excluded.weights,
            skipped_rules = excluded.skipped_rules,
            computed_at = excluded.computed_at
        """,
        (
            project_id, url, score.global_score, _dumps(data["dimensions"]),
            _dumps(data["weights"]), _dumps(data["skipped_rules"]), score.computed_at,
        ),
    )
    await conn.commit()
    logger.debug("Stored composite=%d for %s", score.global_score, url)


async def get_dimension_scores(db: Database, project_id: str, url: str) -> list[dict[str, Any]]:
    """Stored dimension scores of a page, JSON columns decoded."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT * FROM dimension_scores WHERE project_id = ? AND url = ? ORDER BY dimension",
        (project_id, url),
    )
    rows = [_row_to_dict(r) for r in await cursor.fetchall()]
    for row in rows:
        for key in ("issues", "sub_scores", "details"):
            row[key] = json.loads(row[key] or "null")
    return rows


async def get_composite_score(db: Database, project_id: str, url: str) -> Optional[dict[str, Any]]:
    """Stored composite score of a page, JSON columns decoded, or None."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT * FROM composite_scores WHERE project_id = ? AND url = ?",
        (project_id, url),
    )
    row = await cursor.fetchone()
    if row is None:
        return None
    result = _row_to_dict(row)
    for key in ("dimensions", "weights", "skipped_rules"):
        result[key] = json.loads(result[key] or "null")
    return result


async def get_project_summary(db: Database, project_id: str) -> dict[str, Any]:
    """Page and domain counts by status and the average page composite score."""
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT analysis_status, COUNT(*) AS n FROM pages WHERE project_id = ? GROUP BY analysis_status",
        (project_id,),
    )
    counts = {row["analysis_status"]: row["n"] for row in await cursor.fetchall()}
    cursor = await conn.execute(
        "SELECT analysis_status, COUNT(*) AS n FROM domains WHERE project_id = ? GROUP BY analysis_status",
        (project_id,),
    )
    domain_counts = {row["analysis_status"]: row["n"] for row in await cursor.fetchall()}
    cursor = await conn.execute(
        """
        SELECT AVG(c.global_score) AS avg_score
        FROM composite_scores c
        JOIN pages p ON p.project_id = c.project_id AND p.url = c.url
        WHERE c.project_id = ?
        """,
        (project_id,),
    )
    row = await cursor.fetchone()
    avg = row["avg_score"] if row else None
    return {
        "pages": counts,
        "domains": domain_counts,
        "avg_global_score": round(avg, 1) if avg is not None else None,
    }
