"""Content KPI Engine — Data Models.

Dataclasses for the stored entities: monitored projects (brands) and
already-fetched pages.

Each dataclass includes:
  - to_db_dict(): converts to a dict suitable for SQLite insertion
  - from_db_row(row): classmethod to reconstruct from a DB row dict
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from content_kpi.extraction.signals import BrandContext


def _json_list(value: Any) -> list[str]:
    """Decode a JSON array column (tolerates NULL and bad JSON)."""
    if not value:
        return []
    try:
        decoded = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return []
    return [str(v) for v in decoded] if isinstance(decoded, list) else []


@dataclass
class ProjectRecord:
    """A monitored brand.

    Attributes:
        project_id: Unique project identifier.
        brand_name: Brand display name.
        key_attributes: Attributes the brand wants associated with it.
        competitors: Competitor brand names.
        keywords: Keywords pages should cover.
    """

    project_id: str
    brand_name: str
    key_attributes: list[str] = field(default_factory=list)
    competitors: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)

    def to_brand(self) -> BrandContext:
        """BrandContext used by the extractor and rules."""
        return BrandContext(
            brand_name=self.brand_name,
            key_attributes=tuple(self.key_attributes),
            competitors=tuple(self.competitors),
            keywords=tuple(self.keywords),
        )

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "project_id": self.project_id,
            "brand_name": self.brand_name,
            "key_attributes": json.dumps(self.key_attributes, ensure_ascii=False),
            "competitors": json.dumps(self.competitors, ensure_ascii=False),
            "keywords": json.dumps(self.keywords, ensure_ascii=False),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> ProjectRecord:
        return cls(
            project_id=row["project_id"],
            brand_name=row["brand_name"],
            key_attributes=_json_list(row.get("key_attributes")),
            competitors=_json_list(row.get("competitors")),
            keywords=_json_list(row.get("keywords")),
        )


@dataclass
class PageRecord:
    """An already-fetched page supplied to the pipeline.

    Attributes:
        url: Page URL; also the unit id within a project.
        content: Raw HTML.
        status_code: HTTP status of the fetch.
        fetched_at: When the page was fetched.
        metadata: Fetch metadata (publishedTime, modifiedTime, ...).
        category: Page category (blog, product, ...).
    """

    url: str
    content: str = ""
    status_code: int = 200
    fetched_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    category: str = ""

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for SQLite insertion."""
        return {
            "url": self.url,
            "content": self.content,
            "status_code": self.status_code,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "metadata": json.dumps(self.metadata, ensure_ascii=False, default=str),
            "category": self.category,
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> PageRecord:
        """Reconstruct from a pages row."""
        fetched_at = None
        if row.get("fetched_at"):
            try:
                fetched_at = datetime.fromisoformat(row["fetched_at"])
            except ValueError:
                fetched_at = None
        try:
            metadata = json.loads(row.get("metadata") or "{}")
        except json.JSONDecodeError:
            metadata = {}
        return cls(
            url=row["url"],
            content=row.get("content") or "",
            status_code=int(row.get("status_code") or 200),
            fetched_at=fetched_at,
            metadata=metadata if isinstance(metadata, dict) else {},
            category=row.get("category") or "",
        )
