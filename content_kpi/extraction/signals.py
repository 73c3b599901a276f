"""Content KPI Engine — Page Signal Extractor.

Turns already-fetched HTML into the PageSignals that scoring rules read.
Pure and synchronous: no network, no state between calls.

Parsing uses selectolax (HTMLParser). The heuristics here are a
reference implementation; rules only depend on the PageSignals fields.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from selectolax.parser import HTMLParser, Node

from content_kpi.utils.logger import get_logger

logger = get_logger(__name__)

# ── Constants ────────────────────────────────────────────
DEFAULT_CLEAN_LENGTH = 8000
_BOILERPLATE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "iframe", "svg"]
_ISO_DATE = re.compile(r"\b(20\d{2}-\d{2}-\d{2})(?:[T ][0-9:.]+(?:Z|[+-]\d{2}:\d{2})?)?\b")
_UPDATE_MARKERS = ("updated", "last modified", "revised", "mis à jour")
_WORD = re.compile(r"\w+", re.UNICODE)
_DATE_META_NAMES = {
    "article:published_time": "published",
    "datepublished": "published",
    "date": "published",
    "article:modified_time": "modified",
    "og:updated_time": "modified",
    "datemodified": "modified",
}


@dataclass(frozen=True)
class BrandContext:
    """The monitored brand a page is scored against.

    Attributes:
        brand_name: Display name of the brand.
        key_attributes: Attributes the brand wants associated with it.
        competitors: Competitor brand names.
        keywords: Keywords pages are expected to cover.
    """

    brand_name: str
    key_attributes: tuple[str, ...] = ()
    competitors: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()


@dataclass
class PageSignals:
    """Structural and textual signals of one page.

    Attributes:
        title: <title> text.
        h1: Text of every <h1>.
        headings: (level, text) for h2-h6 in document order.
        word_count: Words in the cleaned body text.
        paragraph_count: Non-trivial <p> elements.
        list_count: <ul>/<ol> elements.
        table_count: <table> elements.
        internal_links: Hrefs pointing at the page's host.
        external_links: Hrefs pointing elsewhere.
        image_count: <img> elements.
        images_missing_alt: <img> elements without alt text.
        schema_types: JSON-LD @type values.
        publish_date: ISO date string if found.
        modified_date: ISO date string if found.
        date_source: Where the date was found ('metadata', 'json-ld', ...).
        update_indicators: Phrases such as 'updated' found in the text.
        brand_mentions: Case-insensitive count of the brand name.
        keyword_hits: Brand keywords found in the text.
    """

    title: str = ""
    h1: list[str] = field(default_factory=list)
    headings: list[tuple[int, str]] = field(default_factory=list)
    word_count: int = 0
    paragraph_count: int = 0
    list_count: int = 0
    table_count: int = 0
    internal_links: list[str] = field(default_factory=list)
    external_links: list[str] = field(default_factory=list)
    image_count: int = 0
    images_missing_alt: int = 0
    schema_types: list[str] = field(default_factory=list)
    publish_date: Optional[str] = None
    modified_date: Optional[str] = None
    date_source: str = "none"
    update_indicators: list[str] = field(default_factory=list)
    brand_mentions: int = 0
    keyword_hits: list[str] = field(default_factory=list)

    @property
    def external_domains(self) -> list[str]:
        """Distinct hosts of external links, in first-seen order."""
        seen: dict[str, None] = {}
        for href in self.external_links:
            host = urlparse(href).netloc.lower()
            if host:
                seen.setdefault(host, None)
        return list(seen)


def _text(node: Optional[Node]) -> str:
    """Safely extract stripped text from a selectolax node."""
    if node is None:
        return ""
    return node.text(strip=True)


def _attr(node: Optional[Node], name: str) -> str:
    """Safely extract an attribute from a selectolax node."""
    if node is None:
        return ""
    val = node.attributes.get(name)
    return val if val else ""


def _json_ld_blocks(tree: HTMLParser) -> list[dict[str, Any]]:
    """Parse every JSON-LD script, skipping malformed ones."""
    blocks: list[dict[str, Any]] = []
    for script in tree.css('script[type="application/ld+json"]'):
        raw = script.text(strip=False)
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed JSON-LD block (%d chars)", len(raw))
            continue
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            items = data.get("@graph", [data])
        else:
            items = []
        blocks.extend(item for item in items if isinstance(item, dict))
    return blocks


class SignalExtractor:
    """Extracts PageSignals and clean text from raw HTML."""

    def extract(
        self,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
        brand: Optional[BrandContext] = None,
    ) -> PageSignals:
        """Extract signals from a page.

        Args:
            content: Raw HTML.
            metadata: Fetch metadata; 'url', 'publishedTime' and
                'modifiedTime' are used when present.
            brand: Brand to count mentions and keywords for.

        Returns:
            A populated PageSignals.
        """
        metadata = metadata or {}
        tree = HTMLParser(content or "")
        json_ld = _json_ld_blocks(tree)

        signals = PageSignals(
            title=_text(tree.css_first("title")),
            h1=[t for t in (_text(n) for n in tree.css("h1")) if t],
            headings=[
                (int(n.tag[1]), _text(n))
                for n in tree.css("h2, h3, h4, h5, h6")
                if _text(n)
            ],
            paragraph_count=sum(1 for p in tree.css("p") if len(_text(p)) >= 20),
            list_count=len(tree.css("ul, ol")),
            table_count=len(tree.css("table")),
            image_count=len(tree.css("img")),
            images_missing_alt=sum(1 for img in tree.css("img") if not _attr(img, "alt").strip()),
            schema_types=[str(b.get("@type")) for b in json_ld if b.get("@type")],
        )

        self._extract_links(tree, metadata.get("url", ""), signals)
        self._extract_dates(tree, metadata, json_ld, signals)

        text = self.get_clean_content(content, max_length=None)
        signals.word_count = len(_WORD.findall(text))
        lowered = text.lower()
        signals.update_indicators = [m for m in _UPDATE_MARKERS if m in lowered]

        if brand is not None:
            name = brand.brand_name.lower().strip()
            signals.brand_mentions = lowered.count(name) if name else 0
            signals.keyword_hits = [k for k in brand.keywords if k.lower() in lowered]

        return signals

    def get_clean_content(
        self, content: str, max_length: Optional[int] = DEFAULT_CLEAN_LENGTH
    ) -> str:
        """Return the page's visible text without boilerplate.

        Args:
            content: Raw HTML.
            max_length: Truncate to this many characters (None = no limit).

        Returns:
            Whitespace-normalized text.
        """
        tree = HTMLParser(content or "")
        tree.strip_tags(_BOILERPLATE_TAGS)
        root = tree.css_first("main") or tree.css_first("article") or tree.body
        text = root.text(separator=" ", strip=True) if root is not None else ""
        text = re.sub(r"\s+", " ", text).strip()
        if max_length is not None and len(text) > max_length:
            text = text[:max_length]
        return text

    @staticmethod
    def _extract_links(tree: HTMLParser, url: str, signals: PageSignals) -> None:
        """Split anchors into internal and external links."""
        host = urlparse(url).netloc.lower()
        for anchor in tree.css("a[href]"):
            href = _attr(anchor, "href").strip()
            if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
                continue
            link_host = urlparse(href).netloc.lower()
            if link_host and link_host != host:
                signals.external_links.append(href)
            else:
                signals.internal_links.append(href)

    @staticmethod
    def _extract_dates(
        tree: HTMLParser,
        metadata: dict[str, Any],
        json_ld: list[dict[str, Any]],
        signals: PageSignals,
    ) -> None:
        """Find publish/modified dates, most reliable source first."""
        # 1. Fetch metadata
        if metadata.get("publishedTime") or metadata.get("modifiedTime"):
            signals.publish_date = metadata.get("publishedTime")
            signals.modified_date = metadata.get("modifiedTime")
            signals.date_source = "metadata"
            return

        # 2. JSON-LD
        for block in json_ld:
            if block.get("datePublished") or block.get("dateModified"):
                signals.publish_date = block.get("datePublished")
                signals.modified_date = block.get("dateModified")
                signals.date_source = "json-ld"
                return

        # 3. Meta tags
        found: dict[str, str] = {}
        for meta in tree.css("meta"):
            key = (_attr(meta, "property") or _attr(meta, "name")).lower()
            kind = _DATE_META_NAMES.get(key)
            if kind and _attr(meta, "content"):
                found.setdefault(kind, _attr(meta, "content"))
        if found:
            signals.publish_date = found.get("published")
            signals.modified_date = found.get("modified")
            signals.date_source = "meta tag"
            return

        # 4. <time datetime=...>
        time_node = tree.css_first("time[datetime]")
        if time_node is not None:
            signals.publish_date = _attr(time_node, "datetime")
            signals.date_source = "time element"
            return

        # 5. Any ISO date in the text
        body = tree.body
        match = _ISO_DATE.search(body.text(separator=" ") if body is not None else "")
        if match:
            signals.publish_date = match.group(1)
            signals.date_source = "content"
