"""Network delivery of signed activities to remote inboxes.

This module provides the DeliveryDispatcher class which performs exactly one
signed HTTP POST per attempt and classifies the result. It never retries on
its own; scheduling further attempts is the coordinator's job.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import httpx

from sphere_delivery.db.time import utcnow
from sphere_delivery.models import ActivityPubDelivery
from sphere_delivery.services import signing
from sphere_delivery.services.config import DeliveryConfig
from sphere_delivery.services.errors import InvalidKeyError, SigningError
from sphere_delivery.services.keys import SigningKeyPair
from sphere_delivery.services.outcomes import (
    AttemptOutcome,
    RetryableFailure,
    Success,
    TerminalFailure,
)

# Configure logger for this module
logger = logging.getLogger(__name__)

ACTIVITY_CONTENT_TYPE = "application/activity+json"
ACCEPT_HEADER = 'application/activity+json, application/ld+json; profile="https://www.w3.org/ns/activitystreams"'

HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500
MAX_ERROR_BODY_CHARS = 200
# UTF-8 needs at most four bytes per character.
MAX_ERROR_BODY_BYTES = MAX_ERROR_BODY_CHARS * 4


async def _read_excerpt(response: httpx.Response) -> str:
    """Read no more than ``MAX_ERROR_BODY_BYTES`` of a streamed error body."""
    buffer = bytearray()
    async for chunk in response.aiter_bytes():
        buffer.extend(chunk)
        if len(buffer) >= MAX_ERROR_BODY_BYTES:
            break
    return bytes(buffer[:MAX_ERROR_BODY_BYTES]).decode("utf-8", errors="replace")


def classify_response(status_code: int, reason_phrase: str = "", body: str = "") -> AttemptOutcome:
    """Map a remote HTTP status onto an attempt outcome.

    2xx is success, 429 and 5xx are worth retrying, anything else will not
    get better by trying again.
    """
    if 200 <= status_code < 300:
        return Success(status_code=status_code)

    reason = f"{status_code} {reason_phrase}".strip()
    excerpt = body.strip()[:MAX_ERROR_BODY_CHARS]
    if excerpt:
        reason = f"{reason}: {excerpt}"

    if status_code == HTTP_TOO_MANY_REQUESTS or status_code >= HTTP_INTERNAL_SERVER_ERROR:
        return RetryableFailure(reason=reason, status_code=status_code)
    return TerminalFailure(reason=reason, status_code=status_code)


class DeliveryDispatcher:
    """HTTP client wrapper that performs single delivery attempts."""

    def __init__(
        self,
        config: DeliveryConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or DeliveryConfig()
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.config.request_timeout_seconds),
                    follow_redirects=False,
                    transport=self._transport,
                    headers={"User-Agent": self.config.user_agent},
                )
        return self._client

    async def attempt(
        self,
        record: ActivityPubDelivery,
        payload: Mapping[str, Any],
        key_pair: SigningKeyPair,
    ) -> AttemptOutcome:
        """Make one signed delivery attempt of ``payload`` to the record's inbox.

        Args:
            record: Delivery being attempted; only its inbox is read.
            payload: Activity document to POST.
            key_pair: Signing keys of the record's actor.

        Returns:
            The classified outcome. Expected failures never raise. The whole
            exchange, body excerpt included, is bounded by
            ``request_timeout_seconds``.
        """
        try:
            url = httpx.URL(record.inbox_uri)
        except (httpx.InvalidURL, TypeError, ValueError) as exc:
            return TerminalFailure(reason=f"Malformed destination: {exc}")
        if url.scheme not in ("http", "https") or not url.host:
            return TerminalFailure(reason=f"Malformed destination: {record.inbox_uri!r}")

        try:
            body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        except (TypeError, ValueError) as exc:
            return TerminalFailure(reason=f"Activity payload is not serializable: {exc}")

        date = signing.http_date(self._clock())
        digest = signing.body_digest(body)
        host = url.netloc.decode("ascii")
        metadata = signing.RequestMetadata(
            method="POST",
            target=url.raw_path.decode("ascii"),
            host=host,
            date=date,
            digest=digest,
            key_id=key_pair.key_id,
        )

        try:
            signature = signing.sign(key_pair.private_key_pem, metadata)
        except InvalidKeyError as exc:
            logger.error("Invalid signing key for %s: %s", key_pair.actor_uri, exc)
            return TerminalFailure(reason=str(exc))
        except SigningError as exc:
            logger.warning("Signing failed for delivery %s: %s", record.id, exc)
            return RetryableFailure(reason=str(exc))

        headers = {
            "Content-Type": ACTIVITY_CONTENT_TYPE,
            "Accept": ACCEPT_HEADER,
            "Host": host,
            "Date": date,
            "Digest": digest,
            "Signature": signature,
        }

        client = await self._ensure_client()
        try:
            request = client.build_request("POST", url, content=body, headers=headers)
        except (UnicodeError, httpx.InvalidURL) as exc:
            logger.error("Cannot build request for delivery %s: %s", record.id, exc)
            return TerminalFailure(reason=f"Malformed request: {exc}")

        logger.debug("Sending delivery %s to %s", record.id, record.inbox_uri)
        try:
            async with asyncio.timeout(self.config.request_timeout_seconds):
                response = await client.send(request, stream=True)
                try:
                    excerpt = "" if response.is_success else await _read_excerpt(response)
                finally:
                    await response.aclose()
        except (TimeoutError, httpx.TimeoutException):
            return RetryableFailure(reason="timeout")
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            return TerminalFailure(reason=f"Malformed destination: {exc}")
        except UnicodeError as exc:
            return TerminalFailure(reason=f"Malformed request: {exc}")
        except httpx.HTTPError as exc:
            return RetryableFailure(reason=f"Network error: {exc}")
        except OSError as exc:
            return RetryableFailure(reason=f"Network error: {exc}")

        logger.debug(
            "Response from %s for delivery %s. Status: %s",
            record.inbox_uri,
            record.id,
            response.status_code,
        )
        return classify_response(response.status_code, response.reason_phrase, excerpt)

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None
