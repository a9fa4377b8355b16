"""
Storage providers - uniform pull/push over the remote library stores
"""

import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from dastan.errors import (
    ConfigurationError,
    SnapshotFormatError,
    TransientNetworkError,
    UnauthorizedError,
)
from dastan.models import Library, decode_library, encode_library
from dastan.sync_state import ProviderKind, SyncState

DEFAULT_TIMEOUT = 15.0
GITHUB_API_URL = "https://api.github.com"
GIST_FILENAME = "dastan_library.json"


class StorageProvider:
    """Base class for storage providers"""

    kind: ProviderKind

    def __init__(self, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    def pull(self) -> Optional[Library]:
        """Return a fresh library snapshot, or None when nothing is stored yet"""
        raise NotImplementedError

    def push(self, books: Library) -> None:
        """Store a full library snapshot, raising SyncError on failure"""
        raise NotImplementedError

    def describe(self) -> str:
        return self.kind.value


class HttpStorageProvider(StorageProvider):
    """Shared request handling for the HTTP-backed providers"""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None) -> None:
        super().__init__(timeout)
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def _make_request(self, method: str, url: str, **kwargs) -> requests.Response:
        """
        Make an HTTP request with a bounded timeout

        Connection errors and timeouts are raised as TransientNetworkError.
        The response is returned as-is so callers can interpret status codes.
        """
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            self.logger.warning(f"Request timed out: {method} {url} - {str(e)}")
            raise TransientNetworkError(f"Timed out: {method} {url}") from e
        except requests.exceptions.RequestException as e:
            self.logger.warning(f"Request failed: {method} {url} - {str(e)}")
            raise TransientNetworkError(f"Request failed: {method} {url}: {str(e)}") from e

        self.logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    def _raise_for_status(self, response: requests.Response) -> None:
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            raise TransientNetworkError(str(e)) from e

    def _json(self, response: requests.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise SnapshotFormatError(f"Invalid JSON from {response.url}: {str(e)}") from e


class PublicRoomProvider(HttpStorageProvider):
    """Unauthenticated shared namespace keyed by a room id"""

    kind = ProviderKind.PUBLIC

    def __init__(
        self,
        base_url: str,
        room_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not room_id:
            raise ConfigurationError("Public provider needs a room id")
        super().__init__(timeout, session)
        self.base_url = base_url.rstrip("/")
        self.room_id = room_id

    @property
    def room_url(self) -> str:
        return f"{self.base_url}/rooms/{quote(self.room_id, safe='')}"

    def pull(self) -> Optional[Library]:
        response = self._make_request("GET", self.room_url)
        if response.status_code == 404:
            self.logger.info(f"Room {self.room_id} has no library yet")
            return None
        self._raise_for_status(response)
        books = decode_library(self._json(response))
        self.logger.debug(f"Pulled {len(books)} books from room {self.room_id}")
        return books

    def push(self, books: Library) -> None:
        response = self._make_request("PUT", self.room_url, data=encode_library(books).encode("utf-8"))
        self._raise_for_status(response)
        self.logger.debug(f"Pushed {len(books)} books to room {self.room_id}")

    def describe(self) -> str:
        return f"public room {self.room_id}"


class GistProvider(HttpStorageProvider):
    """Private library stored in a GitHub gist, scoped by a personal access token"""

    kind = ProviderKind.PRIVATE

    def __init__(
        self,
        token: str,
        gist_id: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        api_url: str = GITHUB_API_URL,
    ) -> None:
        if not (token and gist_id):
            raise ConfigurationError("Private provider needs both a token and a gist id")
        super().__init__(timeout, session)
        self.gist_id = gist_id
        self.api_url = api_url.rstrip("/")
        self.session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
            }
        )

    @property
    def gist_url(self) -> str:
        return f"{self.api_url}/gists/{self.gist_id}"

    def _check_auth(self, response: requests.Response) -> None:
        if response.status_code == 401:
            raise UnauthorizedError("GitHub rejected the token")
        if response.status_code == 403:
            # 403 with an exhausted quota is rate limiting, not a bad credential
            if response.headers.get("X-RateLimit-Remaining") == "0":
                raise TransientNetworkError("GitHub rate limit exceeded")
            raise UnauthorizedError("GitHub token lacks access to the gist")

    def pull(self) -> Optional[Library]:
        response = self._make_request("GET", self.gist_url)
        self._check_auth(response)
        if response.status_code == 404:
            self.logger.info(f"Gist {self.gist_id} not found")
            return None
        self._raise_for_status(response)

        body = self._json(response)
        if not isinstance(body, dict):
            raise SnapshotFormatError(f"Gist {self.gist_id} response is not a JSON object")
        files = body.get("files") or {}
        if not isinstance(files, dict):
            raise SnapshotFormatError(f"Gist {self.gist_id} has a malformed file list")
        entry = files.get(GIST_FILENAME)
        if not entry:
            self.logger.info(f"Gist {self.gist_id} has no {GIST_FILENAME} yet")
            return None

        if not isinstance(entry, dict):
            raise SnapshotFormatError(f"Gist {self.gist_id} has a malformed {GIST_FILENAME} entry")
        content = entry.get("content")
        if entry.get("truncated") and entry.get("raw_url"):
            raw = self._make_request("GET", entry["raw_url"])
            self._check_auth(raw)
            self._raise_for_status(raw)
            content = raw.text

        if content is None:
            return None
        books = decode_library(content)
        self.logger.debug(f"Pulled {len(books)} books from gist {self.gist_id}")
        return books

    def push(self, books: Library) -> None:
        payload = {"files": {GIST_FILENAME: {"content": encode_library(books)}}}
        response = self._make_request("PATCH", self.gist_url, json=payload)
        self._check_auth(response)
        if response.status_code == 404:
            # GitHub answers 404 for gists the token cannot see
            raise UnauthorizedError(f"Gist {self.gist_id} is not accessible with this token")
        self._raise_for_status(response)
        self.logger.debug(f"Pushed {len(books)} books to gist {self.gist_id}")

    @classmethod
    def create(
        cls,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        api_url: str = GITHUB_API_URL,
    ) -> str:
        """Create a new secret gist seeded with an empty library and return its id"""
        provider = cls(token, "new", timeout=timeout, session=session, api_url=api_url)
        payload = {
            "description": "Dastan library",
            "public": False,
            "files": {GIST_FILENAME: {"content": json.dumps([])}},
        }
        response = provider._make_request("POST", f"{provider.api_url}/gists", json=payload)
        provider._check_auth(response)
        provider._raise_for_status(response)
        body = provider._json(response)
        gist_id = body.get("id") if isinstance(body, dict) else None
        if not gist_id:
            raise SnapshotFormatError("GitHub did not return a gist id")
        provider.logger.info(f"Created gist {gist_id}")
        return gist_id

    def describe(self) -> str:
        return f"gist {self.gist_id}"


class NoneProvider(StorageProvider):
    """Local-only operation: nothing is ever stored remotely"""

    kind = ProviderKind.NONE

    def pull(self) -> Optional[Library]:
        return None

    def push(self, books: Library) -> None:
        return None

    def describe(self) -> str:
        return "local only"


def _build_public(state: SyncState, settings: Dict[str, Any]) -> StorageProvider:
    return PublicRoomProvider(
        settings["base_url"], state.room_id or "", timeout=settings.get("timeout", DEFAULT_TIMEOUT)
    )


def _build_private(state: SyncState, settings: Dict[str, Any]) -> StorageProvider:
    return GistProvider(
        state.token or "",
        state.resource_id or "",
        timeout=settings.get("timeout", DEFAULT_TIMEOUT),
        api_url=settings.get("github_api_url", GITHUB_API_URL),
    )


def _build_none(state: SyncState, settings: Dict[str, Any]) -> StorageProvider:
    return NoneProvider(timeout=settings.get("timeout", DEFAULT_TIMEOUT))


PROVIDER_BUILDERS = {
    ProviderKind.PUBLIC: _build_public,
    ProviderKind.PRIVATE: _build_private,
    ProviderKind.NONE: _build_none,
}


def build_provider(state: SyncState, settings: Dict[str, Any]) -> StorageProvider:
    """Create the provider for the active sync state"""
    return PROVIDER_BUILDERS[state.provider](state, settings)
