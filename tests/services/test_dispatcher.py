"""Tests for single delivery attempts over a mocked transport."""

import asyncio
import base64
import json
import re
import time

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from sphere_delivery.models import ActivityPubDelivery
from sphere_delivery.services import signing
from sphere_delivery.services.config import DeliveryConfig
from sphere_delivery.services.dispatcher import (
    ACTIVITY_CONTENT_TYPE,
    MAX_ERROR_BODY_BYTES,
    MAX_ERROR_BODY_CHARS,
    DeliveryDispatcher,
    classify_response,
)
from sphere_delivery.services.errors import SigningError
from sphere_delivery.services.keys import SigningKeyPair
from sphere_delivery.services.outcomes import RetryableFailure, Success, TerminalFailure

from ..conftest import ACTIVITY_ID, ACTOR_URI, INBOX_URI, FakeClock


def _record(inbox_uri: str = INBOX_URI) -> ActivityPubDelivery:
    return ActivityPubDelivery(
        id="delivery-1",
        activity_id=ACTIVITY_ID,
        activity_type="Create",
        inbox_uri=inbox_uri,
        actor_uri=ACTOR_URI,
    )


def _dispatcher(handler, clock: FakeClock) -> DeliveryDispatcher:
    return DeliveryDispatcher(
        DeliveryConfig(request_timeout_seconds=1.0, user_agent="SphereDelivery/test"),
        transport=httpx.MockTransport(handler),
        clock=clock,
    )


@pytest.mark.parametrize("status_code", [200, 201, 202, 204])
def test_classify_2xx_is_success(status_code: int) -> None:
    assert classify_response(status_code) == Success(status_code=status_code)


@pytest.mark.parametrize("status_code", [429, 500, 502, 503, 504])
def test_classify_throttling_and_5xx_are_retryable(status_code: int) -> None:
    outcome = classify_response(status_code, "Oops")
    assert isinstance(outcome, RetryableFailure)
    assert outcome.status_code == status_code


@pytest.mark.parametrize("status_code", [301, 400, 401, 403, 404, 408, 410, 422])
def test_classify_other_statuses_are_terminal(status_code: int) -> None:
    outcome = classify_response(status_code, "Nope")
    assert isinstance(outcome, TerminalFailure)
    assert outcome.reason.startswith(f"{status_code} Nope")


def test_classify_truncates_error_body() -> None:
    outcome = classify_response(410, "Gone", "x" * 1000)
    assert outcome.reason == "410 Gone: " + "x" * MAX_ERROR_BODY_CHARS


@pytest.mark.asyncio
async def test_attempt_posts_signed_activity(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(202)

    dispatcher = _dispatcher(handler, clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert outcome == Success(status_code=202)
    assert len(captured) == 1
    request = captured[0]
    assert request.method == "POST"
    assert str(request.url) == INBOX_URI
    assert request.headers["Content-Type"] == ACTIVITY_CONTENT_TYPE
    assert request.headers["Host"] == "remote.example"
    assert request.headers["Date"] == "Thu, 01 Jan 2026 12:00:00 GMT"
    assert request.headers["User-Agent"] == "SphereDelivery/test"
    assert request.headers["Digest"] == signing.body_digest(request.content)
    assert json.loads(request.content) == activity

    params = dict(re.findall(r'(\w+)="([^"]*)"', request.headers["Signature"]))
    assert params["keyId"] == key_pair.key_id
    signed = "\n".join(
        [
            "(request-target): post /users/bob/inbox",
            "host: remote.example",
            f"date: {request.headers['Date']}",
            f"digest: {request.headers['Digest']}",
        ]
    )
    public_key = serialization.load_pem_public_key(key_pair.public_key_pem.encode())
    public_key.verify(
        base64.b64decode(params["signature"]),
        signed.encode(),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )


@pytest.mark.asyncio
async def test_attempt_classifies_server_error(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    dispatcher = _dispatcher(lambda request: httpx.Response(503, text="busy"), clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert outcome == RetryableFailure(reason="503 Service Unavailable: busy", status_code=503)


@pytest.mark.asyncio
async def test_attempt_does_not_follow_redirects(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(301, headers={"Location": "https://elsewhere.example/inbox"})

    dispatcher = _dispatcher(handler, clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert isinstance(outcome, TerminalFailure)
    assert outcome.status_code == 301
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_attempt_timeout_is_retryable(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    dispatcher = _dispatcher(handler, clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert outcome == RetryableFailure(reason="timeout")


@pytest.mark.asyncio
async def test_attempt_connection_error_is_retryable(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    dispatcher = _dispatcher(handler, clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert isinstance(outcome, RetryableFailure)
    assert outcome.reason.startswith("Network error")
    assert outcome.status_code is None


@pytest.mark.asyncio
@pytest.mark.parametrize("inbox", ["not a url", "ftp://remote.example/inbox", "https:///inbox"])
async def test_attempt_malformed_destination_is_terminal(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock, inbox: str
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be hit
        raise AssertionError("no request expected")

    dispatcher = _dispatcher(handler, clock)
    try:
        outcome = await dispatcher.attempt(_record(inbox), activity, key_pair)
    finally:
        await dispatcher.close()

    assert isinstance(outcome, TerminalFailure)
    assert outcome.reason.startswith("Malformed destination")


@pytest.mark.asyncio
async def test_attempt_with_broken_key_is_terminal(activity: dict, clock: FakeClock) -> None:
    broken = SigningKeyPair(actor_uri=ACTOR_URI, private_key_pem="garbage", public_key_pem="")
    dispatcher = _dispatcher(lambda request: httpx.Response(202), clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, broken)
    finally:
        await dispatcher.close()

    assert isinstance(outcome, TerminalFailure)
    assert "Invalid private key" in outcome.reason


@pytest.mark.asyncio
async def test_attempt_with_signing_failure_is_retryable(
    mocker, key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    mocker.patch.object(signing, "sign", side_effect=SigningError("backend hiccup"))
    dispatcher = _dispatcher(lambda request: httpx.Response(202), clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert outcome == RetryableFailure(reason="backend hiccup")


@pytest.mark.asyncio
async def test_attempt_with_non_ascii_key_id_is_terminal(
    rsa_pem_pair: tuple[str, str], activity: dict, clock: FakeClock
) -> None:
    private_pem, public_pem = rsa_pem_pair
    zoe = SigningKeyPair(
        actor_uri="https://local.example/users/zoë",
        private_key_pem=private_pem,
        public_key_pem=public_pem,
    )

    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be hit
        raise AssertionError("no request expected")

    dispatcher = _dispatcher(handler, clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, zoe)
    finally:
        await dispatcher.close()

    assert isinstance(outcome, TerminalFailure)
    assert outcome.reason.startswith("Malformed request")


async def _trickle(chunk: bytes, delay: float, sent: list[int] | None = None):
    while True:
        if sent is not None:
            sent.append(len(chunk))
        yield chunk
        if delay:
            await asyncio.sleep(delay)


@pytest.mark.asyncio
async def test_attempt_bounds_slow_response_body(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, content=_trickle(b"x", 0.1))

    dispatcher = DeliveryDispatcher(
        DeliveryConfig(request_timeout_seconds=0.3, user_agent="SphereDelivery/test"),
        transport=httpx.MockTransport(handler),
        clock=clock,
    )
    started = time.monotonic()
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert outcome == RetryableFailure(reason="timeout")
    assert time.monotonic() - started < 2.0


@pytest.mark.asyncio
async def test_attempt_bounds_slow_response_headers(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(5)
        return httpx.Response(202)

    dispatcher = DeliveryDispatcher(
        DeliveryConfig(request_timeout_seconds=0.2, user_agent="SphereDelivery/test"),
        transport=httpx.MockTransport(handler),
        clock=clock,
    )
    started = time.monotonic()
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert outcome == RetryableFailure(reason="timeout")
    assert time.monotonic() - started < 2.0


@pytest.mark.asyncio
async def test_attempt_reads_only_an_excerpt_of_large_error_bodies(
    key_pair: SigningKeyPair, activity: dict, clock: FakeClock
) -> None:
    sent: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, content=_trickle(b"y" * 64, 0, sent))

    dispatcher = _dispatcher(handler, clock)
    try:
        outcome = await dispatcher.attempt(_record(), activity, key_pair)
    finally:
        await dispatcher.close()

    assert outcome == RetryableFailure(
        reason="500 Internal Server Error: " + "y" * MAX_ERROR_BODY_CHARS, status_code=500
    )
    assert sum(sent) <= MAX_ERROR_BODY_BYTES + 64
