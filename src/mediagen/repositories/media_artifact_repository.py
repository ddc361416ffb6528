"""Persistence layer for media_artifact records."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.db_models import MediaArtifactModel
from ..db.db_session import session_scope
from ..exceptions import handle_sqlalchemy_errors


@dataclass(slots=True)
class MediaArtifact:
    id: str
    generation_id: str
    account_id: str
    storage_uri: str
    mime_type: str
    size_bytes: int
    is_public: bool
    source_locator: str | None
    created_at: datetime


class MediaArtifactRepository:
    """Catalog of durable copies of generated media."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def add(
        self,
        *,
        generation_id: str,
        account_id: str,
        storage_uri: str,
        mime_type: str,
        size_bytes: int,
        source_locator: str | None,
        is_public: bool = False,
        session: Session | None = None,
    ) -> MediaArtifact:
        """Insert the catalog row; a second row for the same job violates a constraint."""
        model = MediaArtifactModel(
            id=uuid.uuid4().hex,
            generation_id=generation_id,
            account_id=account_id,
            storage_uri=storage_uri,
            mime_type=mime_type,
            size_bytes=size_bytes,
            source_locator=source_locator,
            is_public=is_public,
            created_at=datetime.utcnow(),
        )
        with handle_sqlalchemy_errors(entity="media_artifact"), session_scope(
            self._session_factory, session
        ) as active:
            active.add(model)
            active.flush()
        return self._to_domain(model)

    def get_for_job(self, generation_id: str) -> MediaArtifact | None:
        with self._session_factory() as session:
            model = session.scalars(
                select(MediaArtifactModel).where(MediaArtifactModel.generation_id == generation_id)
            ).first()
            return self._to_domain(model) if model else None

    def count_for_job(self, generation_id: str) -> int:
        with self._session_factory() as session:
            rows = session.scalars(
                select(MediaArtifactModel.id).where(MediaArtifactModel.generation_id == generation_id)
            ).all()
            return len(rows)

    @staticmethod
    def _to_domain(model: MediaArtifactModel) -> MediaArtifact:
        return MediaArtifact(
            id=model.id,
            generation_id=model.generation_id,
            account_id=model.account_id,
            storage_uri=model.storage_uri,
            mime_type=model.mime_type,
            size_bytes=model.size_bytes,
            is_public=model.is_public,
            source_locator=model.source_locator,
            created_at=model.created_at,
        )
