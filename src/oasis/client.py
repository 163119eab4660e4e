"""OASIS OTP service client.

Every call is signed with the application's API key (see ``oasis.signing``)
and every stateful response is verified against the application key before
it is returned. Verification is fail-closed: a forged, stale, malformed or
undeliverable response comes back as ``UserAuthenticatorState.INVALID``
instead of raising.

Each operation is async (``*_async``) with a blocking wrapper that runs the
coroutine to completion. The blocking wrappers cannot be used from inside a
running event loop.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from typing import TypeVar

import httpx
from pydantic import SecretStr, ValidationError

from oasis.config import OASIS_SERVICE_URL, ConfigurationError, Credentials, Settings, load_settings
from oasis.models import (
    OasisModel,
    RegisterUser,
    RegisterUserResponse,
    RequestAuthorisationState,
    RequestAuthorisationStateResponse,
    StateResponse,
    VerifyUserOTP,
    VerifyUserOTPResponse,
)
from oasis.signing import SignedRequest, Unverified, Verified, sign_request, verify_response

logger = logging.getLogger(__name__)

API_PREFIX = "/api/ApplicationAPI"

S = TypeVar("S", bound=StateResponse)
M = TypeVar("M", bound=OasisModel)


class OTPProvider:
    """Signed client for the OASIS ApplicationAPI.

    Args:
        application_id: Application ID from the OASIS admin console.
        application_key: Application key, used to verify response signatures.
        api_key: API key, used to sign requests.
        directory_name: Default directory substituted into requests that
            do not name one. Lets the same username exist per directory.
        remote_ip: IP of the end user, sent and signed with every request so
            the service can apply geo restrictions.
        service_url: Base origin of the OASIS service.
        transport: Optional httpx transport (tests, proxies).
        timeout: Optional httpx timeout; httpx defaults apply when omitted.
    """

    def __init__(
        self,
        application_id: int,
        application_key: str | SecretStr,
        api_key: str | SecretStr,
        directory_name: str | None = None,
        remote_ip: str | None = None,
        *,
        service_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float | httpx.Timeout | None = None,
    ) -> None:
        self.credentials = Credentials(
            application_id=application_id,
            application_key=application_key,
            api_key=api_key,
        )
        if remote_ip:
            try:
                ipaddress.ip_address(remote_ip)
            except ValueError:
                raise ValueError(f"remote_ip is not an IP address: {remote_ip!r}") from None

        self.directory_name = directory_name or None
        self.remote_ip = remote_ip or None
        self.service_url = service_url or OASIS_SERVICE_URL
        self._transport = transport
        self._timeout = timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> OTPProvider:
        """Build a provider from environment configuration.

        Raises ConfigurationError if the application ID is missing or not a
        number, or either key is unset, or the default remote IP is
        not an IP address.
        """
        if settings is None:
            settings = load_settings()
        creds = settings.credentials()
        try:
            return cls(
                creds.application_id,
                creds.application_key,
                creds.api_key,
                directory_name=settings.directory_name,
                remote_ip=settings.remote_ip,
                service_url=settings.service_url,
                transport=transport,
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

    def for_remote_ip(self, remote_ip: str | None) -> OTPProvider:
        """Return a provider with the same credentials bound to another end-user IP.

        Raises ValueError if remote_ip is not an IP address.
        """
        return OTPProvider(
            self.credentials.application_id,
            self.credentials.application_key,
            self.credentials.api_key,
            directory_name=self.directory_name,
            remote_ip=remote_ip,
            service_url=self.service_url,
            transport=self._transport,
            timeout=self._timeout,
        )

    def __repr__(self) -> str:
        return (
            f"OTPProvider(application_id={self.credentials.application_id}, "
            f"directory_name={self.directory_name!r}, remote_ip={self.remote_ip!r})"
        )

    # === Plumbing ===

    def _client(self, signed: SignedRequest) -> httpx.AsyncClient:
        kwargs: dict = {
            "base_url": self.service_url,
            "headers": signed.headers(),
            "transport": self._transport,
        }
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout
        return httpx.AsyncClient(**kwargs)

    def _with_directory(self, request: M) -> M:
        if self.directory_name and not request.directory_name:
            return request.model_copy(update={"directory_name": self.directory_name})
        return request

    async def _post(self, path: str, request: OasisModel) -> httpx.Response:
        body = request.to_json()
        signed = sign_request(self.credentials, body, self.remote_ip)
        async with self._client(signed) as client:
            logger.debug("POST %s", path)
            return await client.post(
                f"{API_PREFIX}/{path}",
                content=body.encode("utf-8"),
                headers={"Content-Type": "application/json; charset=utf-8"},
            )

    async def _state_call(self, path: str, request: OasisModel, response_type: type[S]) -> S:
        if not request.username:
            raise ValueError("username is required")
        request = self._with_directory(request)

        try:
            resp = await self._post(path, request)
        except httpx.HTTPError as e:
            logger.warning("OASIS %s transport failure: %s", path, e.__class__.__name__)
            return response_type.invalid()

        result = self._verify(resp, request.username, response_type)
        if isinstance(result, Unverified):
            logger.warning("Rejected OASIS %s response for %s: %s", path, request.username, result.reason)
            return response_type.invalid()
        return result.payload

    def _verify(self, resp: httpx.Response, username: str, response_type: type[S]) -> Verified[S] | Unverified:
        if not resp.is_success:
            return Unverified(f"HTTP {resp.status_code}")
        try:
            payload = response_type.model_validate_json(resp.content)
        except ValidationError as e:
            return Unverified(f"malformed response ({e.error_count()} errors)")
        return verify_response(self.credentials, payload, username)

    # === Operations ===

    async def request_authorisation_state_async(
        self, request: RequestAuthorisationState,
    ) -> RequestAuthorisationStateResponse:
        """Request the authorisation state of a user."""
        return await self._state_call(
            "RequestAuthenticationState", request, RequestAuthorisationStateResponse,
        )

    def request_authorisation_state(
        self, request: RequestAuthorisationState,
    ) -> RequestAuthorisationStateResponse:
        return asyncio.run(self.request_authorisation_state_async(request))

    async def register_user_async(self, request: RegisterUser) -> RegisterUserResponse:
        """Register a user for OTP authentication.

        The register endpoint returns no signed payload, so the response is
        not verified. Transport and parse failures propagate.
        """
        if not request.username:
            raise ValueError("username is required")
        request = self._with_directory(request)
        resp = await self._post("RegisterUser", request)
        resp.raise_for_status()
        return RegisterUserResponse.model_validate_json(resp.content)

    def register_user(self, request: RegisterUser) -> RegisterUserResponse:
        return asyncio.run(self.register_user_async(request))

    async def verify_user_otp_async(self, request: VerifyUserOTP) -> VerifyUserOTPResponse:
        """Verify a registered user's one-time password."""
        return await self._state_call("VerifyUserOTP", request, VerifyUserOTPResponse)

    def verify_user_otp(self, request: VerifyUserOTP) -> VerifyUserOTPResponse:
        return asyncio.run(self.verify_user_otp_async(request))

    async def delete_user_async(self, username: str, directory_name: str | None = None) -> bool:
        """Delete a user. Returns True only when the service answers 200 OK."""
        if not username:
            raise ValueError("username is required")
        directory_name = directory_name or self.directory_name
        qualified = f"{directory_name}\\{username}" if directory_name else username

        signed = sign_request(self.credentials, "", self.remote_ip)
        try:
            async with self._client(signed) as client:
                resp = await client.delete(f"{API_PREFIX}/DeleteUser", params={"userName": qualified})
        except httpx.HTTPError as e:
            logger.warning("OASIS DeleteUser transport failure: %s", e.__class__.__name__)
            return False
        return resp.status_code == httpx.codes.OK

    def delete_user(self, username: str, directory_name: str | None = None) -> bool:
        return asyncio.run(self.delete_user_async(username, directory_name))

    async def hello_world_async(self) -> bool:
        """Check the service is reachable and accepts these credentials."""
        signed = sign_request(self.credentials, "", self.remote_ip)
        try:
            async with self._client(signed) as client:
                resp = await client.get(f"{API_PREFIX}/HelloWorld")
        except httpx.HTTPError as e:
            logger.warning("OASIS HelloWorld transport failure: %s", e.__class__.__name__)
            return False
        return resp.status_code == httpx.codes.OK

    def hello_world(self) -> bool:
        return asyncio.run(self.hello_world_async())
