"""Constants and tuning parameters for the article ingestion service."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Content size guards
# ---------------------------------------------------------------------------

#: Maximum extracted text size (bytes).  PostgreSQL's tsvector limit is ~1 MB;
#: keeping below 900 KB leaves headroom for encoding overhead.
MAX_CONTENT_BYTES: int = 900 * 1024  # 900 KB

#: Maximum response body the lightweight strategy will download.
MAX_RESPONSE_BYTES: int = 10 * 1024 * 1024  # 10 MB

#: Body length threshold (stripped characters) below which a page is
#: considered a JS-only shell that only the headless strategy can render.
JS_SHELL_BODY_THRESHOLD: int = 500

#: Minimum extracted text length (characters) for a page to count as an
#: article.  Shorter extractions are reported as empty content.
MIN_CONTENT_LENGTH: int = 140

#: Maximum length of the excerpt derived from the article text when the page
#: carries no description.
EXCERPT_MAX_CHARS: int = 300

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

#: Content-Type prefixes that the lightweight strategy will extract from.
HTML_CONTENT_TYPES: tuple[str, ...] = (
    "text/html",
    "application/xhtml+xml",
)

#: Content-Type prefixes accepted for PDF documents.
PDF_CONTENT_TYPES: tuple[str, ...] = (
    "application/pdf",
    "application/x-pdf",
    "application/octet-stream",
)

#: Content-Type prefixes accepted for RSS and Atom feeds.
FEED_CONTENT_TYPES: tuple[str, ...] = (
    "application/rss+xml",
    "application/atom+xml",
    "application/rdf+xml",
    "application/xml",
    "text/xml",
)

#: Accept header sent with feed requests.
ACCEPT_FEED: str = (
    "application/rss+xml,application/atom+xml;q=0.9,application/xml;q=0.8,*/*;q=0.5"
)

#: Status codes after which the request may succeed if tried again later.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 425, 429, 500, 502, 503, 504})

#: Accept header sent with document requests.
ACCEPT_HTML: str = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5"

# ---------------------------------------------------------------------------
# URL normalization
# ---------------------------------------------------------------------------

#: Query parameter prefixes dropped during normalization.
TRACKING_PARAM_PREFIXES: tuple[str, ...] = ("utm_",)

#: Exact query parameter names dropped during normalization.
TRACKING_PARAMS: frozenset[str] = frozenset(
    {
        "fbclid",
        "gclid",
        "dclid",
        "msclkid",
        "mc_cid",
        "mc_eid",
        "igshid",
        "yclid",
        "_hsenc",
        "_hsmi",
        "ref_src",
    }
)

#: Path segments that name a directory index rather than an article.
INDEX_PAGES: frozenset[str] = frozenset({"index.html", "index.htm", "index.php"})

#: Title stored when neither the page nor its URL yields one.
UNTITLED: str = "Untitled Article"

# ---------------------------------------------------------------------------
# SSRF policy
# ---------------------------------------------------------------------------

#: Schemes a submitted URL may use.
ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})

#: Cloud instance metadata endpoints (AWS, ECS, Alibaba, AWS IPv6).
METADATA_ADDRESSES: frozenset[str] = frozenset(
    {
        "169.254.169.254",
        "169.254.170.2",
        "100.100.100.200",
        "fd00:ec2::254",
    }
)

#: Host names that resolve to a metadata endpoint inside cloud networks.
METADATA_HOSTNAMES: frozenset[str] = frozenset(
    {
        "metadata.google.internal",
        "metadata",
    }
)

# ---------------------------------------------------------------------------
# Headless rendering
# ---------------------------------------------------------------------------

#: Playwright resource types dropped when image loading is disabled.
IMAGE_RESOURCE_TYPES: frozenset[str] = frozenset({"image", "media"})

#: Chromium launch flags for containerised workers.
CHROMIUM_ARGS: tuple[str, ...] = (
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
)

# ---------------------------------------------------------------------------
# Site handlers
# ---------------------------------------------------------------------------

#: Host names served by the YouTube strategy.
YOUTUBE_HOSTS: frozenset[str] = frozenset(
    {"youtube.com", "www.youtube.com", "m.youtube.com", "youtu.be"}
)

#: YouTube oEmbed endpoint; returns title, channel and thumbnail as JSON.
YOUTUBE_OEMBED_ENDPOINT: str = "https://www.youtube.com/oembed"

#: Accept header sent to oEmbed endpoints.
ACCEPT_JSON: str = "application/json"

#: File extensions of feed documents.
FEED_EXTENSIONS: tuple[str, ...] = (".rss", ".atom", ".xml")

#: Final path segments that name a feed endpoint.
FEED_ENDPOINTS: frozenset[str] = frozenset({"feed", "rss", "atom"})

#: Path segments under which feeds are published.
FEED_DIRECTORIES: frozenset[str] = frozenset({"feed", "feeds", "syndication"})

#: Maximum number of feed entries listed in a saved feed.
FEED_MAX_ENTRIES: int = 50

# ---------------------------------------------------------------------------
# Reputation
# ---------------------------------------------------------------------------

SAFE_BROWSING_ENDPOINT: str = "https://safebrowsing.googleapis.com/v4/threatMatches:find"

SAFE_BROWSING_THREAT_TYPES: tuple[str, ...] = (
    "MALWARE",
    "SOCIAL_ENGINEERING",
    "UNWANTED_SOFTWARE",
    "POTENTIALLY_HARMFUL_APPLICATION",
)

SAFE_BROWSING_TIMEOUT_SECS: float = 5.0
