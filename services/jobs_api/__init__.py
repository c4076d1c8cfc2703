"""Catalog Ingest - Jobs API service.

FastAPI service for ingestion jobs: registration, polling, synchronous
processing, requeue, progress webhook and upload helpers.
"""

__all__: list[str] = []
