"""Content KPI Engine — Extraction Package.

Signal extraction from already-fetched page content.
"""

from content_kpi.extraction.signals import BrandContext, PageSignals, SignalExtractor

__all__ = [
    "BrandContext",
    "PageSignals",
    "SignalExtractor",
]
