"""Priority-ordered strategy selection with fallback."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Optional

from read_later.core.exceptions import (
    AggregateExtractionError,
    ExtractionError,
    ExtractionErrorKind,
    JobCancelledError,
)
from read_later.scraper.strategies.base import ExtractionResult, ExtractionStrategy
from read_later.scraper.url_safety import SafeUrl

logger = logging.getLogger(__name__)


@dataclass
class SelectedExtraction:
    """A successful extraction and how it was obtained.

    Attributes:
        result: The extracted article.
        strategy: Name of the strategy that produced it.
        failures: ``(strategy_name, error)`` for every strategy tried before.
    """

    result: ExtractionResult
    strategy: str
    failures: list[tuple[str, ExtractionError]] = field(default_factory=list)


class StrategySelector:
    """Try extraction strategies in ascending priority order until one succeeds.

    Strategies with equal priority keep their registration order.

    Args:
        strategies: The registered strategies.
    """

    def __init__(self, strategies: Iterable[ExtractionStrategy]) -> None:
        self._strategies: list[ExtractionStrategy] = list(strategies)
        names = [s.name for s in self._strategies]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate strategy names: {names}")

    @property
    def strategies(self) -> list[ExtractionStrategy]:
        return list(self._strategies)

    def candidates(self, url: str) -> list[ExtractionStrategy]:
        """Return the strategies that can handle ``url``, lowest priority first."""
        return sorted(
            (s for s in self._strategies if s.can_handle(url)),
            key=lambda s: s.priority,
        )

    def get_strategy_by_name(self, name: str) -> Optional[ExtractionStrategy]:
        for strategy in self._strategies:
            if strategy.name == name:
                return strategy
        return None

    async def extract(
        self,
        target: SafeUrl,
        should_continue: Optional[Callable[[], bool]] = None,
    ) -> SelectedExtraction:
        """Extract ``target`` with the first strategy that succeeds.

        A result with empty ``content`` counts as a failure.  Exceptions other
        than :class:`ExtractionError` are recorded as transient ``UNEXPECTED``
        failures.

        Args:
            target: Validated URL.
            should_continue: Checked before each attempt; returning ``False``
                aborts the selection.

        Raises:
            JobCancelledError: When ``should_continue`` returns ``False``.
            AggregateExtractionError: When every candidate failed, or none
                can handle the URL.
        """
        failures: list[tuple[str, ExtractionError]] = []

        for strategy in self.candidates(target.url):
            if should_continue is not None and not should_continue():
                raise JobCancelledError(f"cancelled before {strategy.name}")

            outcome = await self._attempt(strategy, target)
            if isinstance(outcome, ExtractionResult):
                if failures:
                    logger.info(
                        "scraper: %s succeeded for %s after %d failed strategies",
                        strategy.name,
                        target.url,
                        len(failures),
                    )
                return SelectedExtraction(result=outcome, strategy=strategy.name, failures=failures)

            logger.info(
                "scraper: %s failed for %s: %s (%s)",
                strategy.name,
                target.url,
                outcome.kind.value,
                outcome,
            )
            failures.append((strategy.name, outcome))

        raise AggregateExtractionError(failures)

    async def extract_with(self, name: str, target: SafeUrl) -> SelectedExtraction:
        """Extract ``target`` with one named strategy, without fallback.

        Raises:
            KeyError: If no strategy has that name.
            AggregateExtractionError: If the strategy fails.
        """
        strategy = self.get_strategy_by_name(name)
        if strategy is None:
            raise KeyError(name)
        outcome = await self._attempt(strategy, target)
        if isinstance(outcome, ExtractionResult):
            return SelectedExtraction(result=outcome, strategy=strategy.name)
        raise AggregateExtractionError([(strategy.name, outcome)])

    async def _attempt(
        self,
        strategy: ExtractionStrategy,
        target: SafeUrl,
    ) -> ExtractionResult | ExtractionError:
        try:
            result = await strategy.extract(target)
        except ExtractionError as exc:
            exc.strategy = exc.strategy or strategy.name
            return exc
        except JobCancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("scraper: %s raised unexpectedly for %s", strategy.name, target.url)
            return ExtractionError(
                f"{type(exc).__name__}: {exc}",
                ExtractionErrorKind.UNEXPECTED,
                strategy=strategy.name,
            )

        if result is None or result.is_empty:
            return ExtractionError(
                "strategy returned empty content",
                ExtractionErrorKind.EMPTY_CONTENT,
                strategy=strategy.name,
            )
        return result

    async def aclose(self) -> None:
        for strategy in self._strategies:
            await strategy.aclose()
