"""Storage for activity documents awaiting delivery."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from sphere_delivery.models import ActivityDocument
from sphere_delivery.services.errors import ActivityNotFoundError


class ActivityStore:
    """Keeps one payload per activity id; payloads are immutable once saved."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def save(
        self,
        activity_id: str,
        activity_type: str,
        actor_uri: str,
        payload: Mapping[str, Any],
    ) -> None:
        """Store the payload unless the activity is already known."""
        with self._session_factory() as db:
            if db.get(ActivityDocument, activity_id) is not None:
                return
            db.add(
                ActivityDocument(
                    activity_id=activity_id,
                    activity_type=activity_type,
                    actor_uri=actor_uri,
                    payload=dict(payload),
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()

    def get_payload(self, activity_id: str) -> dict[str, Any]:
        """Return the stored payload.

        Raises:
            ActivityNotFoundError: If no document exists for ``activity_id``.
        """
        with self._session_factory() as db:
            document = db.get(ActivityDocument, activity_id)
            if document is None:
                raise ActivityNotFoundError(activity_id)
            return dict(document.payload)
