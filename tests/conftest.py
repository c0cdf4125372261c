"""Shared pytest fixtures for Read Later tests.

Fixture summary
---------------
engine            — In-memory SQLite engine with the ``articles`` table created.
session_factory   — ``sessionmaker`` bound to ``engine``.
repository        — ``ArticleRepository`` over ``session_factory``.
job_queue         — ``InMemoryJobQueue``.
resolver          — Deterministic fake DNS resolver (``resolver.hosts`` is editable).
validator         — ``UrlSafetyValidator`` using ``resolver``.
make_strategy     — Factory for scripted ``ExtractionStrategy`` doubles.
article_html      — Realistic article page with a known word count.

No test needs PostgreSQL, Redis, a browser or network access.
"""

from __future__ import annotations

import os
import socket
import uuid
from collections.abc import Callable, Iterator
from typing import Any, Optional, Union

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# ---------------------------------------------------------------------------
# Test environment bootstrap
# ---------------------------------------------------------------------------
# Set required env vars before any application modules are imported so that
# Settings() does not raise a ValidationError during collection.

_TEST_ENV_DEFAULTS: dict[str, str] = {
    "DATABASE_URL": "sqlite+pysqlite:///:memory:",
    "REDIS_URL": "redis://localhost:6379/0",
    "CELERY_BROKER_URL": "memory://",
    "CELERY_RESULT_BACKEND": "cache+memory://",
}

for _key, _default in _TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _default)

# ---------------------------------------------------------------------------
# Application imports (after env bootstrap)
# ---------------------------------------------------------------------------

from read_later.config.settings import get_settings  # noqa: E402
from read_later.core.exceptions import ExtractionError  # noqa: E402
from read_later.core.models.base import Base  # noqa: E402
from read_later.scraper.queue import InMemoryJobQueue  # noqa: E402
from read_later.scraper.repository import ArticleRepository  # noqa: E402
from read_later.scraper.strategies.base import ExtractionResult, ExtractionStrategy  # noqa: E402
from read_later.scraper.url_safety import SafeUrl, UrlSafetyValidator  # noqa: E402

# Clear the lru_cache so Settings() re-reads from the patched environment.
get_settings.cache_clear()

PUBLIC_IPV4 = "93.184.216.34"
PUBLIC_IPV6 = "2606:2800:220:1:248:1893:25c8:1946"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Iterator[Engine]:
    eng = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def repository(session_factory: sessionmaker[Session]) -> ArticleRepository:
    return ArticleRepository(session_factory)


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue()


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


class FakeResolver:
    """getaddrinfo-shaped resolver backed by a host -> addresses dict."""

    def __init__(self, hosts: dict[str, list[str]]) -> None:
        self.hosts = hosts
        self.calls: list[str] = []

    def __call__(self, host: str, port: int) -> list[tuple[Any, ...]]:
        self.calls.append(host)
        if host not in self.hosts:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        infos = []
        for address in self.hosts[host]:
            if ":" in address:
                infos.append((socket.AF_INET6, socket.SOCK_STREAM, 6, "", (address, port, 0, 0)))
            else:
                infos.append((socket.AF_INET, socket.SOCK_STREAM, 6, "", (address, port)))
        return infos


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver(
        {
            "example.com": [PUBLIC_IPV4],
            "www.example.com": [PUBLIC_IPV4],
            "news.example.org": [PUBLIC_IPV4, PUBLIC_IPV6],
            "cdn.example.net": ["151.101.1.69"],
            "internal.example.com": ["10.0.0.5"],
            "rebind.example.com": [PUBLIC_IPV4, "127.0.0.1"],
            "mapped.example.com": ["::ffff:192.168.1.10"],
            "metadata-alias.example.com": ["169.254.169.254"],
        }
    )


@pytest.fixture
def validator(resolver: FakeResolver) -> UrlSafetyValidator:
    return UrlSafetyValidator(resolver=resolver)


# ---------------------------------------------------------------------------
# Strategy doubles
# ---------------------------------------------------------------------------

Outcome = Union[ExtractionResult, Exception, Callable[[SafeUrl], Any]]


class ScriptedStrategy(ExtractionStrategy):
    """Strategy returning (or raising) scripted outcomes in order.

    The last outcome repeats once the script is exhausted.  A callable outcome
    is invoked with the target and its return value (or exception) is used.
    """

    def __init__(
        self,
        name: str,
        priority: int,
        outcomes: list[Outcome],
        handles: bool = True,
    ) -> None:
        self.name = name
        self.priority = priority
        self._outcomes = list(outcomes)
        self._handles = handles
        self.calls: list[str] = []

    def can_handle(self, url: str) -> bool:
        return self._handles

    async def extract(self, target: SafeUrl) -> ExtractionResult:
        self.calls.append(target.url)
        outcome = self._outcomes.pop(0) if len(self._outcomes) > 1 else self._outcomes[0]
        if callable(outcome) and not isinstance(outcome, (ExtractionResult, Exception)):
            outcome = outcome(target)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def make_strategy() -> Callable[..., ScriptedStrategy]:
    def _make(
        name: str,
        priority: int,
        *outcomes: Outcome,
        handles: bool = True,
    ) -> ScriptedStrategy:
        return ScriptedStrategy(name, priority, list(outcomes), handles=handles)

    return _make


def make_result(
    words: int = 900,
    title: Optional[str] = "A Long Read",
    content: Optional[str] = None,
) -> ExtractionResult:
    text = " ".join(f"word{i}" for i in range(words))
    return ExtractionResult(
        content=content if content is not None else f"<p>{text}</p>",
        text_content=text,
        title=title,
        byline="Jane Reporter",
        excerpt="An excerpt.",
        site_name="Example News",
        favicon="https://example.com/favicon.ico",
        image_url="https://example.com/lead.jpg",
    )


@pytest.fixture
def result_factory() -> Callable[..., ExtractionResult]:
    return make_result


@pytest.fixture
def transient_error() -> ExtractionError:
    from read_later.core.exceptions import ExtractionErrorKind  # noqa: PLC0415

    return ExtractionError("upstream timed out", ExtractionErrorKind.TIMEOUT)


# ---------------------------------------------------------------------------
# HTML fixtures
# ---------------------------------------------------------------------------

_PARAGRAPH = (
    "The city council met on Tuesday evening to debate the proposed changes to "
    "the public transport network, which would add three new bus routes and "
    "extend service hours on weekends for residents of the outer districts."
)


@pytest.fixture
def article_html() -> str:
    paragraphs = "\n".join(f"<p>{_PARAGRAPH} Paragraph {i}.</p>" for i in range(12))
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Council Approves Transit Plan | Example News</title>
  <meta name="description" content="The council approved three new bus routes.">
  <meta name="author" content="Jane Reporter">
  <meta property="og:site_name" content="Example News">
  <meta property="og:title" content="Council Approves Transit Plan">
  <meta property="og:image" content="/images/lead.jpg">
  <link rel="icon" href="/static/favicon.png">
</head>
<body>
  <nav><a href="/">Home</a> <a href="/politics">Politics</a></nav>
  <article>
    <h1>Council Approves Transit Plan</h1>
    {paragraphs}
  </article>
  <footer>Copyright Example News</footer>
</body>
</html>"""
