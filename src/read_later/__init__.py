"""Read Later: article ingestion service.

Accepts user-submitted URLs, rejects unsafe targets, extracts readable
articles with pluggable strategies and tracks each article's processing
status through an asynchronous job pipeline.
"""

__version__ = "0.1.0"
