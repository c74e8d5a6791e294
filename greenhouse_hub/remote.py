"""
Firebase Realtime Database REST client

Minimal client for the three operations the hub needs on the remote store:
read a document, overwrite a document and merge fields into a document.
Paths are relative to the database root, e.g. "greenhouses/1/settings".
"""

import logging
from typing import Any, Dict, Optional

import requests

from .exceptions import RemoteStoreError
from .models import DEFAULT_REMOTE_TIMEOUT

logger = logging.getLogger("FirebaseStore")


class FirebaseStore:
    """Realtime Database REST API client with bounded request timeouts."""

    def __init__(
        self,
        database_url: str,
        auth_token: str = "",
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            database_url: Database root, e.g. "https://project.firebaseio.com"
            auth_token: Database secret or ID token, sent as the ``auth`` parameter
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (tests, proxies)
        """
        self.database_url = (database_url or "").rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        # Create a session for connection pooling
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    @property
    def is_configured(self) -> bool:
        """True when a database URL is set."""
        return bool(self.database_url)

    def _url(self, path: str) -> str:
        return f"{self.database_url}/{path.strip('/')}.json"

    def _params(self) -> Dict[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    def _request(self, method: str, path: str, payload: Any = None) -> Any:
        if not self.is_configured:
            raise RemoteStoreError("Remote store URL is not configured")

        try:
            response = self.session.request(
                method,
                self._url(path),
                params=self._params(),
                json=payload,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise RemoteStoreError(f"{method} {path} rejected: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteStoreError(f"{method} {path} failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise RemoteStoreError(f"{method} {path} returned invalid JSON") from e

    def get(self, path: str) -> Any:
        """Read the value at a path, None if absent.

        Raises:
            RemoteStoreError: If the request fails or times out
        """
        return self._request("GET", path)

    def set(self, path: str, data: Dict[str, Any]) -> None:
        """Overwrite the document at a path.

        Raises:
            RemoteStoreError: If the request fails or times out
        """
        self._request("PUT", path, data)
        logger.debug(f"PUT {path}")

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        """Merge fields into the document at a path, a None value deletes the field.

        Raises:
            RemoteStoreError: If the request fails or times out
        """
        self._request("PATCH", path, fields)
        logger.debug(f"PATCH {path}: {sorted(fields)}")

    def close(self):
        """Release pooled connections."""
        self.session.close()
