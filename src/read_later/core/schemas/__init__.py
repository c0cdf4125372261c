"""Pydantic schemas for request/response validation and job payloads.

Sub-modules:
    article — ScrapeRequest, ArticleRead, SubmitResponse, JobPayload
"""

from __future__ import annotations
