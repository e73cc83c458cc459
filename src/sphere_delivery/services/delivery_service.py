"""Producer-facing entry points for scheduling federation deliveries."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from sphere_delivery.db.time import utcnow
from sphere_delivery.models import ActivityPubDelivery
from sphere_delivery.services.activity_store import ActivityStore
from sphere_delivery.services.delivery_store import DeliveryStats, DeliveryStore
from sphere_delivery.services.keys import KeyStore

logger = logging.getLogger(__name__)

DEFAULT_ACTIVITY_TYPE = "Activity"


def _unique_inboxes(inbox_uris: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for inbox in inbox_uris:
        cleaned = inbox.strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            unique.append(cleaned)
    return unique


class DeliveryService:
    """Turns "deliver this activity to these inboxes" into delivery records."""

    def __init__(
        self,
        deliveries: DeliveryStore,
        activities: ActivityStore,
        keys: KeyStore | None = None,
    ) -> None:
        self.deliveries = deliveries
        self.activities = activities
        self.keys = keys

    def enqueue_activity(
        self,
        activity: Mapping[str, Any],
        actor_uri: str,
        inbox_uris: Iterable[str],
        *,
        activity_type: str | None = None,
        activity_id: str | None = None,
        now: datetime | None = None,
    ) -> list[ActivityPubDelivery]:
        """Schedule ``activity`` for delivery to every distinct inbox.

        Args:
            activity: The activity document; treated as opaque apart from
                its optional ``id`` and ``type`` members.
            actor_uri: Local actor whose key signs the requests.
            inbox_uris: Destination inboxes; duplicates are collapsed.
            activity_type: Overrides the document's ``type``.
            activity_id: Overrides the document's ``id``.
            now: Creation time, defaults to the current time.

        Returns:
            One record per distinct inbox, including records that already
            existed for the same (activity, inbox) pair.
        """
        activity_id = activity_id or str(activity.get("id") or uuid.uuid4())
        activity_type = activity_type or str(activity.get("type") or DEFAULT_ACTIVITY_TYPE)
        inboxes = _unique_inboxes(inbox_uris)
        if not inboxes:
            logger.debug("No inboxes to deliver activity %s to", activity_id)
            return []

        if self.keys is not None:
            self.keys.ensure_key_pair(actor_uri)
        self.activities.save(activity_id, activity_type, actor_uri, activity)

        now = now or utcnow()
        records = [
            self.deliveries.create(
                activity_id=activity_id,
                activity_type=activity_type,
                inbox_uri=inbox,
                actor_uri=actor_uri,
                now=now,
            )
            for inbox in inboxes
        ]
        logger.info(
            "Enqueued %s activity %s for %d inbox(es)", activity_type, activity_id, len(records)
        )
        return records

    def get_deliveries_by_activity(self, activity_id: str) -> list[ActivityPubDelivery]:
        return self.deliveries.list_by_activity(activity_id)

    def get_delivery_stats(self, start: datetime, end: datetime) -> DeliveryStats:
        return self.deliveries.stats(start, end)
