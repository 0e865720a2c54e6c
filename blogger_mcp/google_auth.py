"""OAuth authorization-code and refresh flows against Google's identity provider."""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from .credentials import is_expired, needs_refresh
from .errors import CONFIG_ERROR, CREDENTIAL_MISSING, REAUTH_REQUIRED, REMOTE_ERROR, BloggerMcpError
from .logging import get_logger
from .models import ClientSecrets, TokenSet, now_ms

__all__ = [
    "BLOGGER_SCOPE",
    "TOKENINFO_URI",
    "AuthSession",
]

BLOGGER_SCOPE = "https://www.googleapis.com/auth/blogger"
TOKENINFO_URI = "https://oauth2.googleapis.com/tokeninfo"

_GRANT_FAILURE_MARKERS = ("invalid_grant", "invalid_token", "token has been expired", "expired")


class AuthSession:
    """Holds client credentials and the current token set for one account.

    ``redirect_uri`` is rebound before every interactive attempt because the
    callback listener receives an ephemeral port.
    """

    def __init__(
        self,
        secrets: ClientSecrets,
        scopes: Sequence[str] = (BLOGGER_SCOPE,),
        *,
        redirect_uri: str | None = None,
        client: httpx.AsyncClient | None = None,
        tokeninfo_uri: str = TOKENINFO_URI,
        logger: logging.Logger | None = None,
    ) -> None:
        self._secrets = secrets
        self._scopes = list(scopes)
        self.redirect_uri = redirect_uri
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self._owns_client = client is None
        self._tokeninfo_uri = tokeninfo_uri
        self._credentials: TokenSet | None = None
        self._logger = logger or get_logger(__name__)

    @property
    def client_id(self) -> str:
        return self._secrets.client_id

    @property
    def scopes(self) -> list[str]:
        return list(self._scopes)

    @property
    def credentials(self) -> TokenSet | None:
        return self._credentials

    @property
    def access_token(self) -> str | None:
        return self._credentials.access_token if self._credentials else None

    def set_credentials(self, tokens: TokenSet | None) -> None:
        self._credentials = tokens

    def build_authorization_url(self) -> str:
        """Consent-screen URL requesting offline access and forced re-consent."""

        if not self.redirect_uri:
            raise BloggerMcpError(CONFIG_ERROR, "redirect_uri must be set before building the authorization URL")
        params = {
            "client_id": self._secrets.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self._scopes),
            "access_type": "offline",
            "include_granted_scopes": "true",
            "prompt": "consent",
        }
        return str(httpx.URL(self._secrets.auth_uri, params=params))

    async def exchange_code(self, code: str) -> TokenSet:
        if not self.redirect_uri:
            raise BloggerMcpError(CONFIG_ERROR, "redirect_uri must be set before exchanging a code")
        issued_at = now_ms()
        payload = await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
                "client_id": self._secrets.client_id,
                "client_secret": self._secrets.client_secret,
            },
            failure_code=REMOTE_ERROR,
            failure_prefix="Token exchange failed",
        )
        tokens = TokenSet.from_dict(payload, issued_at_ms=issued_at)
        self._credentials = tokens
        self._logger.info("auth.code.exchanged", extra={"context": {"has_refresh_token": bool(tokens.refresh_token)}})
        return tokens

    async def refresh(self) -> TokenSet:
        """Obtain a new access token; failures mean a full re-authentication is needed."""

        current = self._credentials
        if current is None or not current.refresh_token:
            raise BloggerMcpError(REAUTH_REQUIRED, "No refresh token available. Re-authentication is required.")
        issued_at = now_ms()
        try:
            payload = await self._post_token(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": current.refresh_token,
                    "client_id": self._secrets.client_id,
                    "client_secret": self._secrets.client_secret,
                },
                failure_code=REMOTE_ERROR,
                failure_prefix="Token refresh failed",
            )
        except BloggerMcpError as exc:
            self._logger.error("auth.refresh.failed", extra={"context": {"error": exc.message}})
            raise BloggerMcpError(
                REAUTH_REQUIRED,
                "Token refresh failed. Re-authentication is required.",
                details={"cause": exc.message},
            ) from exc

        refreshed = TokenSet.from_dict(payload, issued_at_ms=issued_at)
        if not refreshed.refresh_token:
            refreshed.refresh_token = current.refresh_token
        if not refreshed.access_token:
            raise BloggerMcpError(REAUTH_REQUIRED, "Token refresh returned no access token. Re-authentication is required.")
        self._credentials = refreshed
        self._logger.info("auth.refresh.succeeded")
        return refreshed

    async def ensure_valid(self) -> TokenSet | None:
        """Probe the current token and refresh it when the grant is invalid or expired.

        Returns None when the token was already valid, otherwise the
        refreshed token set.
        """

        current = self._credentials
        if current is None or not current.access_token:
            raise BloggerMcpError(CREDENTIAL_MISSING, "No credential available. Complete the Google sign-in first.")
        if is_expired(current):
            return await self.refresh()
        if needs_refresh(current) and current.refresh_token:
            return await self.refresh()
        try:
            await self._probe(current.access_token)
        except BloggerMcpError as exc:
            if _is_grant_failure(exc):
                return await self.refresh()
            raise
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _probe(self, access_token: str) -> None:
        try:
            response = await self._client.get(self._tokeninfo_uri, params={"access_token": access_token})
        except httpx.HTTPError as exc:
            raise BloggerMcpError(REMOTE_ERROR, f"Token probe failed: {exc}") from exc
        if response.is_success:
            return
        error, description = _provider_error(response)
        raise BloggerMcpError(
            REMOTE_ERROR,
            f"Token probe failed: {description or error}",
            details={"status": response.status_code, "error": error},
        )

    async def _post_token(self, form: dict[str, str], *, failure_code: str, failure_prefix: str) -> dict[str, Any]:
        try:
            response = await self._client.post(
                self._secrets.token_uri,
                data=form,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise BloggerMcpError(failure_code, f"{failure_prefix}: {exc}") from exc
        if not response.is_success:
            error, description = _provider_error(response)
            message = f"{error}: {description}" if description else error
            raise BloggerMcpError(
                failure_code,
                f"{failure_prefix}: {message}",
                details={"status": response.status_code, "error": error},
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise BloggerMcpError(failure_code, f"{failure_prefix}: provider returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise BloggerMcpError(failure_code, f"{failure_prefix}: provider returned an unexpected payload")
        return payload


def _provider_error(response: httpx.Response) -> tuple[str, str]:
    try:
        body = response.json()
    except ValueError:
        return f"http_{response.status_code}", response.text.strip()
    if not isinstance(body, dict):
        return f"http_{response.status_code}", ""
    error = body.get("error")
    if isinstance(error, dict):
        # Google API style: {"error": {"code": ..., "message": ..., "status": ...}}
        return str(error.get("status") or f"http_{response.status_code}"), str(error.get("message") or "")
    return str(error or f"http_{response.status_code}"), str(body.get("error_description") or "")


def _is_grant_failure(exc: BloggerMcpError) -> bool:
    haystack = exc.message.lower()
    details = exc.details or {}
    haystack += " " + str(details.get("error", "")).lower()
    return any(marker in haystack for marker in _GRANT_FAILURE_MARKERS)
