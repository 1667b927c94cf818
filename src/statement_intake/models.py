"""
Alembic model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

from statement_intake.modules.transactions.models import Transaction  # noqa: F401

from statement_intake.modules.extraction.models import ExtractionCache  # noqa: F401
from statement_intake.modules.files.models import ParsedSummary, UploadedFile  # noqa: F401
from statement_intake.modules.imports.models import ImportedItem  # noqa: F401
