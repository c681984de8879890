"""
Dropbox content API adapter: download and overwrite-upload of one file by path.
No retry or token refresh here; callers pass a token from TokenManager.ensure_fresh_credential().
"""
import json
import logging

import httpx

from tracker.config import CONTENT_URL, HTTP_TIMEOUT_SECONDS
from tracker.errors import RemoteAuthFailure, RemoteNotFound, RemoteStoreError, RemoteTransientFailure

logger = logging.getLogger(__name__)


def _error_summary(r: httpx.Response) -> str:
    if r.headers.get("content-type", "").startswith("application/json"):
        try:
            return r.json().get("error_summary", "") or ""
        except ValueError:
            return ""
    return ""


def _raise_for_response(r: httpx.Response, path: str) -> None:
    if r.status_code == 200:
        return
    summary = _error_summary(r)
    if r.status_code == 409 and summary.startswith("path/not_found"):
        raise RemoteNotFound(f"Not found: {path}", path=path, status_code=r.status_code)
    if r.status_code == 401:
        raise RemoteAuthFailure("Dropbox rejected the access token", path=path, status_code=r.status_code)
    raise RemoteTransientFailure(
        f"Dropbox returned {r.status_code}: {summary or r.text[:200]}",
        path=path,
        status_code=r.status_code,
    )


class DropboxStore:
    def __init__(self, http: httpx.AsyncClient, content_url: str = CONTENT_URL):
        self.http = http
        self.content_url = content_url.rstrip("/")

    async def download(self, path: str, access_token: str) -> bytes:
        """Return file bytes. Raises RemoteNotFound when the path does not exist."""
        r = await self._post(
            "/files/download",
            path,
            access_token,
            {"path": path},
        )
        return r.content

    async def upload(self, path: str, content: bytes, access_token: str) -> None:
        """Overwrite path with content. mute suppresses Dropbox desktop notifications."""
        await self._post(
            "/files/upload",
            path,
            access_token,
            {"path": path, "mode": "overwrite", "mute": True},
            content=content,
        )

    async def _post(
        self,
        endpoint: str,
        path: str,
        access_token: str,
        api_arg: dict,
        content: bytes | None = None,
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Dropbox-API-Arg": json.dumps(api_arg),
        }
        if content is not None:
            headers["Content-Type"] = "application/octet-stream"
        try:
            r = await self.http.post(
                f"{self.content_url}{endpoint}",
                headers=headers,
                content=content,
                timeout=HTTP_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise RemoteTransientFailure(f"Request to Dropbox failed: {e}", path=path) from e
        try:
            _raise_for_response(r, path)
        except RemoteStoreError as e:
            logger.debug("%s %s -> %s", endpoint, path, e)
            raise
        return r
