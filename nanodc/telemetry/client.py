"""
API client for the NanoDC data service.
"""
import asyncio
import logging
import time
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import API_BASE_URL
from .errors import AuthError, AuthErrorKind, FetchError, FetchErrorKind
from .metrics import SNAPSHOT_BYTES, observe_api_request
from .registry import facility_service_id
from .schemas import ScoreRecord, Snapshot, Token
from .settings_store import DeviceSettingsStore

logger = logging.getLogger(__name__)

LOGIN_ENDPOINT = "/auth/login"
DATA_ENDPOINT = "/data"
SCORES_ENDPOINT = "/scores"


class TelemetryClient:
    """
    Client for the NanoDC data API.

    Every call opens a short-lived ``httpx.AsyncClient``; the optional
    ``transport`` is handed to it unchanged so tests can plug in an
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings_store: DeviceSettingsStore,
        base_url: str = API_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.settings_store = settings_store
        self.transport = transport
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.settings_store.get_api_timeout_seconds())

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self._timeout(),
            transport=self.transport,
        )

    async def authenticate(self, client_id: str, secret: str) -> Token:
        """
        Log in and return a bearer token.

        Raises:
            AuthError: INVALID_CREDENTIALS on 401/403, TIMEOUT when the
                request timed out, UNREACHABLE for any other failure
        """
        started = time.perf_counter()
        try:
            async with self._client() as client:
                response = await client.post(LOGIN_ENDPOINT, json={"id": client_id, "secret": secret})
        except httpx.TimeoutException as e:
            observe_api_request(LOGIN_ENDPOINT, "post", "timeout", time.perf_counter() - started)
            logger.error(f"Login timed out: {type(e).__name__}")
            raise AuthError(AuthErrorKind.TIMEOUT, str(e)) from e
        except httpx.RequestError as e:
            observe_api_request(LOGIN_ENDPOINT, "post", "unreachable", time.perf_counter() - started)
            logger.error(f"Login request error: {type(e).__name__}: {str(e)}")
            raise AuthError(AuthErrorKind.UNREACHABLE, str(e)) from e

        observe_api_request(LOGIN_ENDPOINT, "post", str(response.status_code), time.perf_counter() - started)

        if response.status_code in (401, 403):
            logger.error(f"Login rejected: {response.status_code}")
            raise AuthError(AuthErrorKind.INVALID_CREDENTIALS, f"HTTP {response.status_code}")
        if not response.is_success:
            logger.error(f"Login failed: {response.status_code} - {response.text}")
            raise AuthError(AuthErrorKind.UNREACHABLE, f"HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Undecodable login response: {str(e)}")
            raise AuthError(AuthErrorKind.UNREACHABLE, "Login response is not JSON") from e

        token = (body.get("token") or body.get("access_token")) if isinstance(body, dict) else None
        if not token:
            raise AuthError(AuthErrorKind.UNREACHABLE, "Login response carries no token")

        logger.info("Authenticated against the NanoDC data API")
        return Token(access_token=token, token_type=body.get("token_type", "bearer"))

    async def _attempt(self, method: str, token: Token, nanodc_id: Optional[str]) -> httpx.Response:
        """Send one GET or POST for the data resource and log its outcome."""
        headers = token.authorization_header
        started = time.perf_counter()
        try:
            async with self._client() as client:
                if method == "get":
                    params = {"nanodc_id": nanodc_id} if nanodc_id else None
                    response = await client.get(DATA_ENDPOINT, headers=headers, params=params)
                else:
                    payload = {"nanodc_id": nanodc_id} if nanodc_id else {}
                    response = await client.post(DATA_ENDPOINT, headers=headers, json=payload)
        except httpx.RequestError as e:
            observe_api_request(DATA_ENDPOINT, method, type(e).__name__, time.perf_counter() - started)
            logger.warning(f"{method.upper()} {DATA_ENDPOINT} raised {type(e).__name__}")
            raise

        observe_api_request(DATA_ENDPOINT, method, str(response.status_code), time.perf_counter() - started)
        logger.info(f"{method.upper()} {DATA_ENDPOINT} returned {response.status_code}")
        return response

    async def fetch_snapshot(self, token: Token, facility_id: Optional[str] = None) -> Snapshot:
        """
        Fetch one consolidated snapshot.

        A GET is tried first; a non-2xx status or a transport exception
        triggers exactly one POST against the same resource. The outcome
        of the last attempt decides the result.

        Args:
            token: Bearer token from ``authenticate``
            facility_id: Facility to fetch; passed to the service as ``nanodc_id``

        Returns:
            Snapshot: The parsed snapshot

        Raises:
            FetchError: When neither attempt produced a usable snapshot
        """
        nanodc_id = facility_service_id(facility_id) if facility_id else None
        started = time.perf_counter()
        size = 0
        try:
            snapshot = await self._fetch_with_fallback(token, nanodc_id, facility_id)
            size = snapshot.response_bytes
        except FetchError:
            await self._record_call(started, False, 0)
            raise

        await self._record_call(started, True, size)
        SNAPSHOT_BYTES.set(size)
        logger.info(f"Snapshot received for {facility_id or 'default facility'}: {snapshot.counts()}")
        return snapshot

    async def _fetch_with_fallback(
        self, token: Token, nanodc_id: Optional[str], facility_id: Optional[str]
    ) -> Snapshot:
        try:
            response = await self._attempt("get", token, nanodc_id)
            if response.is_success:
                return self._parse_snapshot(response, facility_id)
        except httpx.RequestError:
            # Already logged by _attempt, fall through to the POST
            pass

        try:
            response = await self._attempt("post", token, nanodc_id)
        except httpx.TimeoutException as e:
            raise FetchError(FetchErrorKind.TIMEOUT, str(e)) from e
        except httpx.RequestError as e:
            raise FetchError(FetchErrorKind.UNREACHABLE, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            logger.error(f"HTTP error: {response.status_code} - {response.text}")
            raise FetchError(
                FetchErrorKind.SERVER_ERROR,
                response.text[:200],
                status_code=response.status_code,
            )
        return self._parse_snapshot(response, facility_id)

    def _parse_snapshot(self, response: httpx.Response, facility_id: Optional[str]) -> Snapshot:
        content = response.content
        if not content or not content.strip():
            raise FetchError(FetchErrorKind.EMPTY_BODY, "Response body is empty")
        try:
            body = response.json()
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError
            raise FetchError(FetchErrorKind.MALFORMED_BODY, "Response body is not JSON") from e
        if not body:
            raise FetchError(FetchErrorKind.EMPTY_BODY, "Response body holds no records")
        if not isinstance(body, dict):
            raise FetchError(FetchErrorKind.MALFORMED_BODY, "Response body is not an object")

        body = {k: v for k, v in body.items() if v is not None}
        try:
            return Snapshot.model_validate(
                {**body, "facility_id": facility_id, "response_bytes": len(content)}
            )
        except ValidationError as e:
            logger.error(f"Snapshot failed validation: {e.error_count()} errors")
            raise FetchError(FetchErrorKind.MALFORMED_BODY, str(e)) from e

    async def _record_call(self, started: float, success: bool, size: int):
        latency_ms = (time.perf_counter() - started) * 1000.0
        try:
            await asyncio.to_thread(self.settings_store.record_api_call, latency_ms, success, size)
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Could not record API usage: {str(e)}")

    async def get_score(self, token: Token, node_id: str) -> Optional[ScoreRecord]:
        """Get the score record of one node, or None if the service has none."""
        started = time.perf_counter()
        try:
            async with self._client() as client:
                response = await client.get(
                    SCORES_ENDPOINT, headers=token.authorization_header, params={"node_id": node_id}
                )
        except httpx.RequestError as e:
            observe_api_request(SCORES_ENDPOINT, "get", type(e).__name__, time.perf_counter() - started)
            logger.error(f"Score request error: {str(e)}")
            return None

        observe_api_request(SCORES_ENDPOINT, "get", str(response.status_code), time.perf_counter() - started)
        if not response.is_success:
            logger.error(f"Score request failed with code: {response.status_code}")
            return None
        try:
            data: Dict[str, Any] = response.json()
            return ScoreRecord.model_validate(data)
        except ValueError as e:
            logger.error(f"Unexpected score payload: {str(e)}")
            return None
