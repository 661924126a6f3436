"""Sage Business Cloud Accounting connector.

Purpose
- Provide a small, testable async wrapper for the Sage Accounting v3.1 API.
- Keep OAuth token handling (code exchange/refresh) in one place.

Token persistence is the caller's job: `process_callback` returns a fresh
token without storing it, and `refresh_token` only replaces the token held
in memory. See scripts/sage_auth_local.py for a caller that saves tokens.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx
from dotenv import load_dotenv
from pydantic import ValidationError

from src.backend.integrations.sage_errors import (
    InvalidCode,
    InvalidEmptyToken,
    InvalidHttpResponse,
    InvalidJsonResponse,
    InvalidTokenData,
)
from src.backend.integrations.sage_models import (
    Account,
    JournalData,
    TokenData,
    journal_payload,
    project_accounts,
)

load_dotenv(override=False)

logger = logging.getLogger(__name__)

AUTH_ENDPOINT = "https://oauth.accounting.sage.com"
ACCOUNTING_ENDPOINT = "https://api.accounting.sage.com/v3.1"
CONSENT_URL = "https://www.sageone.com/oauth2/auth/central"
RESULTS_PER_PAGE = 200

DEFAULT_REDIRECT_URI = "http://localhost:8040/sage/callback"

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded;charset=UTF-8",
    "Accept": "application/json",
}


def _debug_enabled() -> bool:
    return os.environ.get("SAGE_DEBUG") in {"1", "true", "TRUE", "yes", "YES"}


class SageClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        token: TokenData | Mapping[str, Any] | None = None,
        *,
        timeout_seconds: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._token: TokenData | None = None
        # Guards `_token`: refresh swaps it while authenticated calls read it.
        # Rebuilt per event loop, since callers may drive one client with
        # several asyncio.run calls.
        self._token_lock: asyncio.Lock | None = None
        self._token_lock_loop: asyncio.AbstractEventLoop | None = None

        if token is not None:
            self._token = self._validate_token(token)

    @classmethod
    def from_env(cls, token: TokenData | Mapping[str, Any] | None = None) -> "SageClient":
        load_dotenv(override=False)
        client_id = os.environ.get("SAGE_CLIENT_ID")
        client_secret = os.environ.get("SAGE_CLIENT_SECRET")
        if not client_id or not client_secret:
            raise ValueError("Missing SAGE_CLIENT_ID or SAGE_CLIENT_SECRET")

        redirect_uri = os.environ.get("SAGE_REDIRECT_URI", DEFAULT_REDIRECT_URI)
        timeout_seconds = float(os.environ.get("SAGE_HTTP_TIMEOUT_SECONDS", "30"))

        return cls(
            client_id,
            client_secret,
            redirect_uri,
            token,
            timeout_seconds=timeout_seconds,
        )

    @staticmethod
    def _validate_token(token: TokenData | Mapping[str, Any]) -> TokenData:
        raw = token.model_dump() if isinstance(token, TokenData) else token
        try:
            return TokenData.model_validate(raw)
        except ValidationError as e:
            raise InvalidTokenData() from e

    @staticmethod
    def _parse_token(resp: httpx.Response) -> TokenData:
        try:
            raw = resp.json()
        except ValueError as e:
            raise InvalidJsonResponse() from e
        if not raw:
            raise InvalidJsonResponse()
        try:
            return TokenData.model_validate(raw)
        except ValidationError as e:
            raise InvalidJsonResponse() from e

    @property
    def token(self) -> TokenData | None:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def _lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._token_lock is None or self._token_lock_loop is not loop:
            self._token_lock = asyncio.Lock()
            self._token_lock_loop = loop
        return self._token_lock

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport)

    def get_consent_url(self, state: str | None = None) -> str:
        """Return the browser URL where the user grants this app access."""

        params = {
            "filter": "apiv3.1",
            "response_type": "code",
            "scope": "full_access",
            "redirect_uri": self._redirect_uri,
            "client_id": self._client_id,
        }
        if state:
            params["state"] = state
        return f"{CONSENT_URL}?{urlencode(params)}"

    async def _post_token_form(self, form: dict[str, str]) -> httpx.Response:
        async with self._http() as http:
            resp = await http.post(f"{AUTH_ENDPOINT}/token", data=form, headers=_FORM_HEADERS)

        # Optional debug (safe): logs only the URL, never the form body.
        if _debug_enabled():
            logger.info("[SAGE_DEBUG] POST %s -> %s", resp.url, resp.status_code)
        return resp

    async def process_callback(self, code: str) -> TokenData:
        """Exchange an authorization code for a token set.

        The held token is not changed; callers persist the result and pass it
        back in when constructing a client.
        """

        if not code:
            raise InvalidCode()

        resp = await self._post_token_form(
            {
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self._redirect_uri,
            }
        )
        if not resp.is_success:
            raise InvalidHttpResponse(resp.status_code, resp.text)

        token = self._parse_token(resp)
        logger.info("Exchanged authorization code for Sage token")
        return token

    async def refresh_token(self) -> TokenData:
        """Swap the held refresh token for a new token set and hold it.

        Runs under the token lock, so authenticated calls made meanwhile wait
        for the new access token instead of sending the old one.
        """

        async with self._lock():
            if self._token is None:
                raise InvalidEmptyToken()

            resp = await self._post_token_form(
                {
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "refresh_token",
                    "refresh_token": self._token.refresh_token,
                }
            )
            if not resp.is_success:
                raise InvalidHttpResponse(resp.status_code, resp.text)

            token = self._parse_token(resp)
            self._token = token

        logger.info("Refreshed Sage token")
        return token

    async def _access_token(self) -> str:
        async with self._lock():
            if self._token is None:
                raise InvalidEmptyToken()
            return self._token.access_token

    async def _request_json(
        self,
        http: httpx.AsyncClient,
        method: str,
        api_path: str,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {await self._access_token()}",
            "Accept": "application/json",
        }
        if payload is not None:
            headers["Content-Type"] = "application/json"

        resp = await http.request(
            method,
            f"{ACCOUNTING_ENDPOINT}{api_path}",
            headers=headers,
            params=params,
            json=payload,
        )

        if _debug_enabled():
            logger.info("[SAGE_DEBUG] %s %s -> %s", method, resp.url, resp.status_code)

        if not resp.is_success:
            raise InvalidHttpResponse(resp.status_code, resp.text)
        try:
            return resp.json()
        except ValueError as e:
            raise InvalidJsonResponse() from e

    async def _get_ledger_account_page(
        self, http: httpx.AsyncClient, page: int | None = None
    ) -> dict[str, Any]:
        params = {"items_per_page": str(RESULTS_PER_PAGE), "attributes": "all"}
        if page is not None:
            params["page"] = str(page)

        body = await self._request_json(http, "GET", "/ledger_accounts", params=params)
        if not isinstance(body, dict):
            raise InvalidJsonResponse()
        return body

    @staticmethod
    def _page_count(total: Any) -> int:
        try:
            total_items = float(total or 0)
        except (TypeError, ValueError) as e:
            raise InvalidJsonResponse() from e
        if not math.isfinite(total_items):
            raise InvalidJsonResponse()
        return math.ceil(total_items / RESULTS_PER_PAGE)

    @staticmethod
    def _project_page(body: dict[str, Any]) -> list[Account]:
        try:
            return project_accounts(body.get("$items"))
        except (AttributeError, KeyError, TypeError) as e:
            raise InvalidJsonResponse() from e

    async def get_accounts(self) -> list[Account]:
        """Fetch every ledger account.

        Page 1 tells us `$total`; the remaining pages are fetched concurrently.
        Any failed page fails the whole call.
        """

        async with self._http() as http:
            first = await self._get_ledger_account_page(http)
            accounts = self._project_page(first)

            total_pages = self._page_count(first.get("$total"))
            if total_pages > 1:
                logger.debug("Fetching ledger account pages 2..%d concurrently", total_pages)
                pages = await asyncio.gather(
                    *(
                        self._get_ledger_account_page(http, page)
                        for page in range(2, total_pages + 1)
                    )
                )
                for body in pages:
                    accounts.extend(self._project_page(body))

        logger.info("Fetched %d ledger accounts across %d pages", len(accounts), max(total_pages, 1))
        return accounts

    async def create_journal(self, data: JournalData) -> Any:
        """POST a journal and return Sage's response body."""

        async with self._http() as http:
            body = await self._request_json(http, "POST", "/journals", payload=journal_payload(data))

        logger.info("Created journal dated %s with %d lines", data.date, len(data.journal_lines))
        return body
