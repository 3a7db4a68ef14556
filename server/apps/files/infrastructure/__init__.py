"""Infrastructure layer for files app.

This package contains integrations with external systems:
- Storage backends (local disk, S3-compatible object stores)
- Storage naming and metadata validation helpers

Keep infrastructure concerns separate from business logic.
"""
