"""Content KPI Engine — SQLite Connection Manager.

Provides async SQLite database connection management using aiosqlite.
Handles database initialization, schema creation, indexes, and
connection lifecycle.
"""

from __future__ import annotations

import aiosqlite
from pathlib import Path

from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

# ── Schema Definitions ────────────────────────────────────
SCHEMA_SQL = """
-- ═══ Projects Table ═══
-- Monitored brands. List columns hold JSON arrays.
CREATE TABLE IF NOT EXISTS projects (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id      TEXT    UNIQUE NOT NULL,
    brand_name      TEXT    NOT NULL,
    key_attributes  TEXT    DEFAULT '[]',
    competitors     TEXT    DEFAULT '[]',
    keywords        TEXT    DEFAULT '[]',
    created_at      DATETIME DEFAULT (datetime('now', 'localtime'))
);

-- ═══ Pages Table ═══
-- Already-fetched pages and their analysis status.
CREATE TABLE IF NOT EXISTS pages (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id         TEXT    NOT NULL,
    url                TEXT    NOT NULL,
    content            TEXT    DEFAULT '',
    status_code        INTEGER DEFAULT 200,
    fetched_at         TEXT,
    metadata           TEXT    DEFAULT '{}',
    category           TEXT    DEFAULT '',
    analysis_status    TEXT    DEFAULT 'pending',
    unanalyzed_reason  TEXT    DEFAULT '',
    processed_at       DATETIME,
    UNIQUE (project_id, url),
    FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
);

-- ═══ Domains Table ═══
-- Analysis status of domain-scope units, keyed by domain root.
CREATE TABLE IF NOT EXISTS domains (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id         TEXT    NOT NULL,
    root               TEXT    NOT NULL,
    analysis_status    TEXT    DEFAULT 'pending',
    unanalyzed_reason  TEXT    DEFAULT '',
    page_count         INTEGER DEFAULT 0,
    processed_at       DATETIME,
    UNIQUE (project_id, root),
    FOREIGN KEY (project_id) REFERENCES projects(project_id) ON DELETE CASCADE
);

-- ═══ Dimension Scores Table ═══
-- Latest score of each dimension for each page.
CREATE TABLE IF NOT EXISTS dimension_scores (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id   TEXT    NOT NULL,
    url          TEXT    NOT NULL,
    dimension    TEXT    NOT NULL,
    final_score  INTEGER DEFAULT 0,
    explanation  TEXT    DEFAULT '',
    issues       TEXT    DEFAULT '[]',
    sub_scores   TEXT    DEFAULT '[]',
    details      TEXT    DEFAULT '{}',
    scored_at    DATETIME DEFAULT (datetime('now', 'localtime')),
    UNIQUE (project_id, url, dimension)
);

-- ═══ Composite Scores Table ═══
-- Latest overall score for each page.
CREATE TABLE IF NOT EXISTS composite_scores (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id     TEXT    NOT NULL,
    url            TEXT    NOT NULL,
    global_score   INTEGER DEFAULT 0,
    dimensions     TEXT    DEFAULT '{}',
    weights        TEXT    DEFAULT '{}',
    skipped_rules  TEXT    DEFAULT '[]',
    computed_at    TEXT,
    UNIQUE (project_id, url)
);

-- ═══ Performance Indexes ═══
CREATE INDEX IF NOT EXISTS idx_pages_project          ON pages(project_id);
CREATE INDEX IF NOT EXISTS idx_pages_status           ON pages(analysis_status);
CREATE INDEX IF NOT EXISTS idx_domains_project        ON domains(project_id);
CREATE INDEX IF NOT EXISTS idx_dimension_scores_page  ON dimension_scores(project_id, url);
CREATE INDEX IF NOT EXISTS idx_composite_project      ON composite_scores(project_id);
CREATE INDEX IF NOT EXISTS idx_composite_score        ON composite_scores(global_score DESC);
"""


class Database:
    """Async SQLite database connection manager.

    Manages the database lifecycle including initialization, schema creation,
    and a persistent connection with WAL mode and foreign keys enabled.

    Attributes:
        db_path: Resolved absolute path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the database manager.

        Args:
            db_path: Relative or absolute path to the SQLite database file.
                     Parent directories will be created if they don't exist.
        """
        self.db_path = Path(db_path).resolve()
        self._connection: aiosqlite.Connection | None = None
        logger.debug("Database manager initialized with path: %s", self.db_path)

    async def initialize(self) -> None:
        """Open the connection, set pragmas and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Connecting to database: %s", self.db_path)
        self._connection = await aiosqlite.connect(str(self.db_path))

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA foreign_keys=ON")
        self._connection.row_factory = aiosqlite.Row

        await self._connection.executescript(SCHEMA_SQL)
        await self._connection.commit()

        logger.info("Database initialized — all tables ready")

    async def get_connection(self) -> aiosqlite.Connection:
        """Get the active database connection, initializing if necessary."""
        if self._connection is None:
            await self.initialize()
        return self._connection

    async def close(self) -> None:
        """Close the connection. Safe to call when already closed."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
