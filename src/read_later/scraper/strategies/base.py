"""Extraction strategy interface.

A strategy turns a validated URL into an :class:`ExtractionResult`.  The
:class:`~read_later.scraper.strategies.selector.StrategySelector` tries the
strategies that can handle a URL in ascending :attr:`ExtractionStrategy.priority`
order until one succeeds.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from read_later.scraper.content_extractor import ExtractedArticle
from read_later.scraper.url_safety import SafeUrl


@dataclass
class ExtractionResult:
    """An extracted article.

    Attributes:
        content: Article body as HTML.  Must be non-empty for the result to
            count as a success.
        text_content: Plain-text article body.
        title: Article title.
        byline: Author line.
        excerpt: Short description.
        site_name: Publisher name.
        favicon: Absolute favicon URL.
        image_url: Absolute lead image URL.
        reading_time: Reading time in minutes, filled in by the worker when
            the strategy does not set it.
        final_url: URL the content was served from after redirects.
    """

    content: str
    text_content: Optional[str] = None
    title: Optional[str] = None
    byline: Optional[str] = None
    excerpt: Optional[str] = None
    site_name: Optional[str] = None
    favicon: Optional[str] = None
    image_url: Optional[str] = None
    reading_time: Optional[int] = None
    final_url: Optional[str] = None

    @classmethod
    def from_extracted(
        cls,
        article: ExtractedArticle,
        final_url: Optional[str] = None,
    ) -> ExtractionResult:
        return cls(
            content=article.content or "",
            text_content=article.text_content,
            title=article.title,
            byline=article.byline,
            excerpt=article.excerpt,
            site_name=article.site_name,
            favicon=article.favicon,
            image_url=article.image_url,
            final_url=final_url,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.content and self.content.strip())


class ExtractionStrategy(ABC):
    """A way of extracting an article from a URL.

    Subclasses set :attr:`name` and :attr:`priority` (lower runs first) and
    implement :meth:`extract`.
    """

    name: str = ""
    priority: int = 100

    def can_handle(self, url: str) -> bool:  # noqa: ARG002
        """Return ``True`` if this strategy applies to ``url``."""
        return True

    @abstractmethod
    async def extract(self, target: SafeUrl) -> ExtractionResult:
        """Extract the article at ``target``.

        Raises:
            ExtractionError: When no article could be produced.
        """

    async def aclose(self) -> None:
        """Release resources held by the strategy."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name} priority={self.priority}>"
