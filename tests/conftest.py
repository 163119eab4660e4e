"""Shared fixtures: credentials and a stub OASIS service on httpx.MockTransport."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from oasis.client import OTPProvider
from oasis.signing import response_signature

APP_ID = 4711
APP_KEY = "app-key-secret"
API_KEY = "api-key-secret"
NOW = 1_700_000_000


class StubService:
    """Records requests and answers with a configurable handler."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = lambda r: httpx.Response(200)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def respond_signed(
        self,
        state: str = "VALID",
        *,
        identity: str | None = None,
        signed_time: int = NOW,
        random_token: str = "r4nd0m",
        key: str = APP_KEY,
        status_code: int = 200,
    ) -> None:
        """Answer with a state response signed the way the service signs it."""

        def handler(request: httpx.Request) -> httpx.Response:
            username = identity if identity is not None else json.loads(request.content)["Username"]
            body = {
                "State": state,
                "SignedResponse": response_signature(key, username, state, random_token, signed_time),
                "RandomToken": random_token,
                "SignedTime": signed_time,
            }
            return httpx.Response(status_code, json=body)

        self.handler = handler


@pytest.fixture
def frozen_time(monkeypatch):
    monkeypatch.setattr("oasis.signing.epoch_now", lambda: NOW)
    return NOW


@pytest.fixture
def service() -> StubService:
    return StubService()


@pytest.fixture
def provider(service, frozen_time) -> OTPProvider:
    return OTPProvider(
        APP_ID,
        APP_KEY,
        API_KEY,
        directory_name="acme",
        service_url="https://oasis.test",
        transport=httpx.MockTransport(service),
    )
