"""Business logic layer for files app.

This package contains all business logic for file operations:
- Access rules for reading and changing files
- Upload, download, update, delete and listing (``FileRegistry``)
- Reconciliation of storage objects with file records

All business logic should be implemented here, separate from
models (data layer) and infrastructure (external systems).

Reference: https://github.com/dry-python
for decoupling business logic from Django views.
"""
