"""Database models and bootstrap helpers."""

from .db_init import init_db
from .db_models import (
    Base,
    CreditAccountModel,
    CreditLedgerEntryModel,
    GenerationJobModel,
    MediaArtifactModel,
)

__all__ = [
    "Base",
    "CreditAccountModel",
    "CreditLedgerEntryModel",
    "GenerationJobModel",
    "MediaArtifactModel",
    "init_db",
]
