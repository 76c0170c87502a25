"""RubyGems API client.

Usage:
    client  = RubyGemsClient(url="https://rubygems.org")
    version = client.latest_version("simplecov")        # "0.22.0"
    line    = gem_line("simplecov", client, require=False)
    # 'gem "simplecov", "~> 0.22", require: false'
"""

import warnings
from typing import Any

import requests


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RubyGemsError(Exception):
    """Base exception for all client errors."""


class NotFoundError(RubyGemsError):
    """Raised on HTTP 404 or when RubyGems knows no version of a gem."""


class NetworkError(RubyGemsError):
    """Raised on connection timeout or unreachable server."""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class RubyGemsClient:
    """Thin wrapper around the rubygems.org REST API."""

    def __init__(self, url: str = "https://rubygems.org", timeout: int = 30) -> None:
        self.base_url = url.rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers["Accept"] = "application/json"

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict:
        """Perform a single GET request and return the parsed JSON response.

        Raises:
            NotFoundError:  HTTP 404
            RubyGemsError:  Any other non-2xx response
            NetworkError:   Timeout or connection failure
        """
        return self._request(endpoint, params or {})

    def latest_version(self, gem: str) -> str:
        """Return the newest released version of *gem*."""
        data = self.get(f"/api/v1/versions/{gem}/latest.json")
        if not isinstance(data, dict):
            raise RubyGemsError(
                f"Unexpected response for '{gem}' from {self.base_url}: expected a JSON object"
            )
        version = str(data.get("version") or "unknown")
        if version == "unknown":
            raise NotFoundError(f"No released version of '{gem}' on {self.base_url}")
        return version

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _request(self, endpoint: str, params: dict[str, Any]) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.exceptions.Timeout as exc:
            raise NetworkError(
                f"Request timed out after {self._timeout}s while contacting '{url}'"
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(
                f"Unable to reach RubyGems server at '{self.base_url}'"
            ) from exc

        if response.status_code == 404:
            raise NotFoundError(f"Resource not found: {url}")
        if not response.ok:
            raise RubyGemsError(
                f"Unexpected response {response.status_code} from {url}: {response.text[:200]}"
            )

        try:
            return response.json()
        except ValueError as exc:
            raise RubyGemsError(f"Invalid JSON in response from {url}") from exc


# ---------------------------------------------------------------------------
# Gemfile helpers
# ---------------------------------------------------------------------------

def pessimistic_constraint(version: str) -> str:
    """Return a ``~>`` constraint locking the major and minor parts of *version*.

    >>> pessimistic_constraint("0.22.0")
    '~> 0.22'
    """
    parts = version.split(".")
    if len(parts) == 1:
        parts.append("0")
    return "~> " + ".".join(parts[:2])


def gem_line(name: str, client: RubyGemsClient | None = None, require: bool | None = None) -> str:
    """Build a Gemfile ``gem`` line for *name*.

    When *client* is given the latest version is looked up and pinned with a
    pessimistic constraint. Lookup failures only warn: the gem is then added
    without a version constraint.
    """
    parts = [f'gem "{name}"']
    if client is not None:
        try:
            parts.append(f'"{pessimistic_constraint(client.latest_version(name))}"')
        except RubyGemsError as exc:
            warnings.warn(
                f"Could not resolve the latest '{name}' version ({exc}); adding it unpinned.",
                UserWarning,
                stacklevel=2,
            )
    if require is False:
        parts.append("require: false")
    return ", ".join(parts)
