"""Article ingestion service.

Turns a user-submitted URL into a readable, persisted article.

Sub-modules:
- ``config``             — constants and tuning parameters
- ``urls``               — URL boundary checks and normalization
- ``url_safety``         — SSRF gate (scheme, DNS resolution, address policy)
- ``safe_browsing``      — optional URL reputation lookup
- ``http_fetcher``       — httpx fetcher pinned to validated addresses
- ``content_extractor``  — trafilatura-based article extraction
- ``browser_pool``       — per-process Playwright Chromium pool
- ``strategies``         — extraction strategies and the priority selector
- ``state_machine``      — article status transition table
- ``repository``         — conditional status updates on ``articles``
- ``queue``              — job queue abstraction (Celery and in-memory)
- ``service``            — submission, retry and cancellation
- ``worker``             — per-job ingestion pipeline
- ``tasks``              — Celery task wrapping the worker
- ``router``             — FastAPI router (``/articles/``)
"""
