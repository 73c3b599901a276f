"""Content KPI Engine — SQLite Page Source & Score Store.

The persistence collaborator the pipeline talks to. Thin object wrapper
over the query functions so the orchestrator can be given any store with
the same methods (tests use an in-memory one).
"""

from __future__ import annotations

from typing import Optional, Sequence, Union

from content_kpi.database import queries
from content_kpi.database.db import Database
from content_kpi.database.models import PageRecord
from content_kpi.extraction.signals import BrandContext
from content_kpi.scoring.aggregator import CompositeScore, DimensionScore


class SQLiteScoreStore:
    """Page source and score sink backed by Database.

    Attributes:
        db: The open Database.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def list_projects(self) -> list[str]:
        """All project ids."""
        return await queries.list_project_ids(self.db)

    async def list_pages(self, project_id: str) -> list[PageRecord]:
        """Every stored page of a project."""
        return await queries.list_pages(self.db, project_id)

    async def get_brand(self, project_id: str) -> Optional[BrandContext]:
        """The project's brand, or None for an unknown project."""
        project = await queries.get_project(self.db, project_id)
        return project.to_brand() if project else None

    async def upsert(
        self, project_id: str, url: str, score: Union[DimensionScore, CompositeScore]
    ) -> None:
        """Store a dimension score or a composite score.

        Raises:
            TypeError: For any other score type.
        """
        if isinstance(score, DimensionScore):
            await queries.upsert_dimension_score(self.db, project_id, url, score)
        elif isinstance(score, CompositeScore):
            await queries.upsert_composite_score(self.db, project_id, url, score)
        else:
            raise TypeError(f"Cannot store score of type {type(score).__name__}")

    async def mark_processed(self, project_id: str, url: str) -> None:
        """Mark a stored page processed.

        Raises:
            LookupError: If the page is not stored.
        """
        await queries.set_page_status(self.db, project_id, url, queries.PAGE_PROCESSED)

    async def mark_unanalyzed(self, project_id: str, url: str, reason: str) -> None:
        await queries.set_page_status(
            self.db, project_id, url, queries.PAGE_UNANALYZED, reason
        )

    async def mark_domain_processed(
        self, project_id: str, root: str, member_urls: Sequence[str]
    ) -> None:
        """Record a scored domain unit under its root."""
        await queries.set_domain_status(
            self.db, project_id, root, queries.PAGE_PROCESSED, len(member_urls)
        )

    async def mark_domain_unanalyzed(
        self, project_id: str, root: str, member_urls: Sequence[str], reason: str
    ) -> None:
        await queries.set_domain_status(
            self.db, project_id, root, queries.PAGE_UNANALYZED, len(member_urls), reason
        )
