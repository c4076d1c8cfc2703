"""Catalog Ingest - Core application modules.

Provides:
- Settings, SQLite models and DB primitives
- Job orchestrator and Huey work queue
- Utilities: request signing, object store client, archive extraction,
  manifest parsing and field mapping
"""

__version__ = "0.1.0"
