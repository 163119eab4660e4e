"""HMAC-SHA256 request signing and response verification for the OASIS API.

Outgoing requests are signed with the API key over
``"{app_id}:{epoch}:{app_key}:{body}[:{remote_ip}]"``. Responses are signed
by the service with the application key over
``"{username}:{state}:{random_token}:{signed_time}"`` and must be no older
than ``FRESHNESS_WINDOW_S``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, Protocol, TypeVar

from oasis.config import Credentials

FRESHNESS_WINDOW_S = 300  # responses older than 5 minutes are replays

HEADER_EPOCH = "X-OASIS-EPOCH"
HEADER_APP_ID = "X-OASIS-APPID"
HEADER_REQUEST_SECRET = "X-OASIS-REQSECRET"
HEADER_REMOTE_IP = "X-OASIS-IP"

T = TypeVar("T")


def epoch_now() -> int:
    """Current UTC time in whole seconds since 1970-01-01T00:00:00Z."""
    return int(time.time())


def hmac_b64(key: str, message: str) -> str:
    """base64(HMAC-SHA256(key, message)), both UTF-8 encoded."""
    digest = hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def signing_string(
    credentials: Credentials,
    epoch: int,
    body: str,
    remote_ip: str | None = None,
) -> str:
    """Build the exact text the service recomputes to authenticate a request."""
    text = "{}:{}:{}:{}".format(
        credentials.application_id,
        epoch,
        credentials.application_key.get_secret_value(),
        body,
    )
    if remote_ip:
        text += f":{remote_ip}"
    return text


@dataclass(frozen=True)
class SignedRequest:
    """Authentication material for one outgoing call."""

    application_id: int
    epoch: int
    request_secret: str
    body: str
    remote_ip: str | None = None

    def headers(self) -> dict[str, str]:
        headers = {
            HEADER_EPOCH: str(self.epoch),
            HEADER_APP_ID: str(self.application_id),
            HEADER_REQUEST_SECRET: self.request_secret,
        }
        if self.remote_ip:
            headers[HEADER_REMOTE_IP] = self.remote_ip
        return headers


def sign_request(
    credentials: Credentials,
    body: str = "",
    remote_ip: str | None = None,
    epoch: int | None = None,
) -> SignedRequest:
    """Sign a serialized request body. Bodyless calls sign the empty string."""
    if epoch is None:
        epoch = epoch_now()
    secret = hmac_b64(
        credentials.api_key.get_secret_value(),
        signing_string(credentials, epoch, body, remote_ip),
    )
    return SignedRequest(
        application_id=credentials.application_id,
        epoch=epoch,
        request_secret=secret,
        body=body,
        remote_ip=remote_ip or None,
    )


def response_signature(
    application_key: str,
    identity: str,
    state: str,
    random_token: str,
    signed_time: int,
) -> str:
    """Signature the service attaches to a stateful response."""
    return hmac_b64(application_key, f"{identity}:{state}:{random_token}:{signed_time}")


# === Verification result ===


@dataclass(frozen=True)
class Verified(Generic[T]):
    """A response whose signature and freshness both checked out."""

    payload: T


@dataclass(frozen=True)
class Unverified:
    """A response that must not be trusted."""

    reason: str


class SignedResponse(Protocol):
    state: StrEnum
    signed_response: str | None
    random_token: str | None
    signed_time: int | None


R = TypeVar("R", bound=SignedResponse)


def verify_response(
    credentials: Credentials,
    response: R,
    identity: str,
    now: int | None = None,
) -> Verified[R] | Unverified:
    """Check a stateful response's freshness and signature.

    Future-dated responses are not rejected; only the lower bound of the
    freshness window is enforced.
    """
    if response.signed_response is None or response.random_token is None or response.signed_time is None:
        return Unverified("response is missing signature fields")

    if now is None:
        now = epoch_now()
    if response.signed_time < now - FRESHNESS_WINDOW_S:
        return Unverified(f"response is stale (signed {now - response.signed_time}s ago)")

    expected = response_signature(
        credentials.application_key.get_secret_value(),
        identity,
        str(response.state),
        response.random_token,
        response.signed_time,
    )
    if not hmac.compare_digest(expected.encode("utf-8"), response.signed_response.encode("utf-8")):
        return Unverified("signature mismatch")
    return Verified(response)
