"""
Dropbox OAuth2 PKCE token lifecycle.

1. First visit: /connect stores a verifier and redirects to Dropbox.
2. Callback: Dropbox redirects to / with ?code=...&state=...; exchange code for tokens.
3. Later visits: reuse the stored access token, or refresh it silently.
"""
import logging
import time
from typing import Callable

import httpx

from tracker.config import (
    AUTHORIZE_URL,
    DEFAULT_TOKEN_LIFETIME_SECONDS,
    DROPBOX_CLIENT_ID,
    HTTP_TIMEOUT_SECONDS,
    REDIRECT_URI,
    TOKEN_EXPIRY_BUFFER_MS,
    TOKEN_URL,
)
from tracker.errors import AuthorizationExpired, MissingVerifier, TokenRequestError
from tracker.flow_store import FlowStore
from tracker.pkce import build_authorize_url, generate_pkce, generate_state
from tracker.token_store import EXPIRY_KEY, REFRESH_KEY, TOKEN_KEY, CredentialStore

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class TokenManager:
    def __init__(
        self,
        store: CredentialStore,
        flows: FlowStore,
        http: httpx.AsyncClient,
        *,
        client_id: str = DROPBOX_CLIENT_ID,
        redirect_uri: str = REDIRECT_URI,
        authorize_url: str = AUTHORIZE_URL,
        token_url: str = TOKEN_URL,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.flows = flows
        self.http = http
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.authorize_url = authorize_url
        self.token_url = token_url
        self._clock = clock

    def is_authenticated(self) -> bool:
        """True if an access token is stored and more than the buffer remains before expiry."""
        if not self.store.get(TOKEN_KEY):
            return False
        expiry = self.store.get(EXPIRY_KEY)
        if expiry is None:
            return True
        try:
            expires_at = int(expiry)
        except ValueError:
            return False
        return self._clock() < expires_at - TOKEN_EXPIRY_BUFFER_MS

    def has_refresh_token(self) -> bool:
        return bool(self.store.get(REFRESH_KEY))

    @property
    def access_token(self) -> str | None:
        return self.store.get(TOKEN_KEY)

    async def initialize(self, code: str | None = None, state: str | None = None) -> bool:
        """
        Restore a session or complete a pending authorization.
        Returns True when a usable credential is available, False when the user must connect.
        MissingVerifier and TokenRequestError from a code exchange propagate.
        """
        if code:
            await self.exchange_code(code, state)
            return True

        if self.is_authenticated():
            return True

        if self.has_refresh_token():
            try:
                await self.refresh()
                return True
            except AuthorizationExpired as e:
                logger.warning("Token refresh failed, clearing credentials: %s", e)
                self.store.clear()
                return False
            except TokenRequestError as e:
                logger.warning("Token refresh failed, keeping credentials for a later attempt: %s", e)
                return False

        return False

    def start_authorization(self) -> str:
        """Store a fresh PKCE verifier for this flow and return the Dropbox authorize URL."""
        state = generate_state()
        code_verifier, code_challenge = generate_pkce()
        self.flows.store_verifier(state, code_verifier)
        return build_authorize_url(
            authorize_url=self.authorize_url,
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            state=state,
            code_challenge=code_challenge,
            offline=True,
        )

    async def exchange_code(self, code: str, state: str | None) -> None:
        # pop_verifier removes the entry, so a failed exchange cannot be replayed
        code_verifier = self.flows.pop_verifier(state)
        if not code_verifier:
            raise MissingVerifier("No code verifier found. Please try connecting again.")

        data = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self.client_id,
                "code_verifier": code_verifier,
            }
        )
        access_token = data.get("access_token")
        if not access_token:
            raise TokenRequestError("Token response did not include an access token")

        self.store.set(TOKEN_KEY, access_token)
        if data.get("refresh_token"):
            self.store.set(REFRESH_KEY, data["refresh_token"])
        expires_in = int(data.get("expires_in") or DEFAULT_TOKEN_LIFETIME_SECONDS)
        self.store.set(EXPIRY_KEY, str(self._clock() + expires_in * 1000))
        logger.info("Connected to Dropbox (refresh token: %s)", "yes" if data.get("refresh_token") else "no")

    async def refresh(self) -> None:
        """
        Exchange the stored refresh token for a new access token. The refresh token is kept.
        Raises AuthorizationExpired when Dropbox rejects the refresh token (the caller decides whether
        to clear credentials) and TokenRequestError when the endpoint is unreachable or failing.
        """
        refresh_token = self.store.get(REFRESH_KEY)
        if not refresh_token:
            raise AuthorizationExpired("No refresh token stored")
        try:
            data = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": self.client_id,
                }
            )
        except TokenRequestError as e:
            if not e.rejected:
                raise
            raise AuthorizationExpired(str(e), status_code=e.status_code) from e

        access_token = data.get("access_token")
        if not access_token:
            raise AuthorizationExpired("Refresh response did not include an access token")
        self.store.set(TOKEN_KEY, access_token)
        self.store.set(EXPIRY_KEY, str(self._clock() + DEFAULT_TOKEN_LIFETIME_SECONDS * 1000))
        logger.info("Access token refreshed")

    async def ensure_fresh_credential(self, force_refresh: bool = False) -> str:
        """
        Return an access token with at least the expiry buffer left, refreshing first if needed.
        If Dropbox rejects the refresh token, credentials are cleared and AuthorizationExpired is raised.
        A network error or 5xx from the token endpoint raises TokenRequestError and clears nothing.
        """
        if force_refresh or not self.is_authenticated():
            if not self.has_refresh_token():
                raise AuthorizationExpired("Not connected to Dropbox")
            try:
                await self.refresh()
            except AuthorizationExpired:
                self.store.clear()
                raise
        access_token = self.access_token
        if not access_token:
            raise AuthorizationExpired("Not connected to Dropbox")
        return access_token

    def disconnect(self) -> None:
        self.store.clear()

    async def _token_request(self, form: dict[str, str]) -> dict:
        try:
            r = await self.http.post(
                self.token_url,
                data=form,
                headers={"Accept": "application/json"},
                timeout=HTTP_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise TokenRequestError(f"Token endpoint unreachable: {e}") from e

        if r.status_code != 200:
            err = r.json() if r.headers.get("content-type", "").startswith("application/json") else {}
            err_desc = err.get("error_description", err.get("error", r.text)) or "Token request failed"
            raise TokenRequestError(str(err_desc), status_code=r.status_code)
        return r.json()
