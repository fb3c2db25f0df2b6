import logging
import threading
from typing import Any

import requests

from ..config import Config

logger = logging.getLogger(__name__)


class RemoteAPIError(Exception):
    """A comments API call failed.

    Attributes:
        status_code: HTTP status, or ``None`` for network-level failures.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(RemoteAPIError):
    """Network error, rate limit (429) or server error (5xx)."""


class PermanentRemoteError(RemoteAPIError):
    """Client error (4xx other than 429): retrying the same request won't help."""


class CommentsClient:
    """Blocking REST client for the file comments API.

    Each worker thread gets its own ``requests.Session`` because calls are
    dispatched through ``asyncio.to_thread``.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.api_url.rstrip("/")

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                self.config.token_header: self.config.access_token,
                "Content-Type": "application/json",
            }
        )
        session.verify = not self.config.insecure
        return session

    def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._get_session().request(
                method,
                url,
                json=json_body,
                params=params,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise TransientRemoteError(f"{method} {path} failed: {e}") from e

        status = response.status_code
        if status == 429:
            retry_after = response.headers.get("Retry-After", "60")
            logger.warning("Comments API rate limited. Retry after %ss", retry_after)
            raise TransientRemoteError(
                f"{method} {path} rate limited (retry after {retry_after}s)", status
            )
        if status >= 500:
            raise TransientRemoteError(
                f"{method} {path} returned {status}: {response.text[:200]}", status
            )
        if status >= 400:
            raise PermanentRemoteError(
                f"{method} {path} returned {status}: {response.text[:200]}", status
            )

        if not response.content:
            return None
        return response.json()

    def get_comments(self, file_key: str) -> list[dict]:
        """
        Fetch every comment of a file, reactions included.
        """
        data = self._request("GET", f"/v1/files/{file_key}/comments")
        return (data or {}).get("comments", [])

    def get_current_user(self) -> dict:
        """
        Return the authenticated user as ``{"id": ..., "handle": ...}``.
        """
        return self._request("GET", "/v1/me")

    def post_comment(
        self, file_key: str, message: str, comment_id: str | None = None
    ) -> dict:
        """
        Post a comment, or a reply when *comment_id* names the root.
        """
        body: dict[str, Any] = {"message": message}
        if comment_id:
            body["comment_id"] = comment_id
        return self._request(
            "POST", f"/v1/files/{file_key}/comments", json_body=body
        )

    def delete_comment(self, file_key: str, comment_id: str) -> None:
        self._request("DELETE", f"/v1/files/{file_key}/comments/{comment_id}")

    def add_reaction(self, file_key: str, comment_id: str, emoji: str) -> None:
        self._request(
            "POST",
            f"/v1/files/{file_key}/comments/{comment_id}/reactions",
            json_body={"emoji": emoji},
        )

    def remove_reaction(self, file_key: str, comment_id: str, emoji: str) -> None:
        self._request(
            "DELETE",
            f"/v1/files/{file_key}/comments/{comment_id}/reactions",
            params={"emoji": emoji},
        )

    def validate_connection(self) -> str:
        """
        Check credentials by resolving the current user.

        Returns:
            The authenticated user's handle.
        """
        me = self.get_current_user()
        return me.get("handle") or me.get("id", "")
