"""Extraction strategies and the priority selector.

- ``base``        — ``ExtractionStrategy`` interface and ``ExtractionResult``
- ``http``        — ``HttpStrategy``, pinned-fetch plumbing for HTTP strategies
- ``youtube``     — YouTube videos via oEmbed (priority 5)
- ``feed``        — RSS and Atom feeds via feedparser (priority 5)
- ``document``    — PDF documents saved as a link card (priority 5)
- ``lightweight`` — static HTML fetch + trafilatura (priority 10)
- ``headless``    — Playwright Chromium render (priority 20)
- ``selector``    — ``StrategySelector`` with sequential fallback
"""

from __future__ import annotations

from read_later.scraper.strategies.base import ExtractionResult, ExtractionStrategy
from read_later.scraper.strategies.selector import SelectedExtraction, StrategySelector

__all__ = [
    "ExtractionResult",
    "ExtractionStrategy",
    "SelectedExtraction",
    "StrategySelector",
]
