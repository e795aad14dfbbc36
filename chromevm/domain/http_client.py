"""
Authenticated HTTP client for the remote provisioning APIs.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import requests

from chromevm import __version__
from chromevm.domain.errors import BackendError, BackendTimeoutError
from chromevm.resilience import CircuitBreaker

logger = logging.getLogger("vm-orchestrator")

USER_AGENT = f"Chrome-VM-Orchestrator/{__version__}"

TokenProvider = Callable[[], "str | None"]


class AuthenticatedHTTPClient:
    """Bearer-token HTTP client bound to one provider base URL.

    Token acquisition is outside this class: ``token_provider`` is called
    on every request and may return None when no credentials are configured.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        circuit_breaker: CircuitBreaker | None = None,
        name: str = "remote",
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: Provider base URL
            token_provider: Callable returning the bearer token (or None)
            timeout: Default per-request timeout in seconds
            session: Optional pre-built requests session
            circuit_breaker: Optional pre-built CircuitBreaker (defaults to a new one)
            name: Provider name, used in logs and metrics
        """
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self.name = name
        self._session = session or requests.Session()
        self._circuit = circuit_breaker or CircuitBreaker(name=name)

    @property
    def circuit(self) -> CircuitBreaker:
        return self._circuit

    @property
    def has_credentials(self) -> bool:
        return bool(self._token())

    def _token(self) -> str | None:
        if self.token_provider is None:
            return None
        return self.token_provider()

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT, "Content-Type": "application/json"}
        token = self._token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _send(self, method: str, url: str, timeout: float, **kwargs: Any) -> requests.Response:
        """Issue the request; server-side failures count against the circuit."""
        resp = self._session.request(
            method, url, headers=self._headers(), timeout=timeout, **kwargs
        )
        if resp.status_code >= 500:
            raise BackendError(
                f"{self.name}: {method} {url} returned {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp

    def request(
        self, method: str, path: str, *, timeout: float | None = None, **kwargs: Any
    ) -> requests.Response:
        """
        Make an authenticated API call.

        Args:
            method: HTTP method
            path: Path relative to the base URL (or an absolute URL)
            timeout: Request timeout in seconds (defaults to the client timeout)
            **kwargs: Additional arguments passed to the request

        Returns:
            Response object (2xx only)

        Raises:
            BackendTimeoutError: If the request timed out
            BackendError: On network errors, open circuit or non-2xx status
        """
        url = self._url(path)
        effective_timeout = self.timeout if timeout is None else timeout
        try:
            resp = self._circuit.call(self._send, method, url, effective_timeout, **kwargs)
        except requests.Timeout as e:
            raise BackendTimeoutError(
                f"{self.name}: {method} {url} timed out after {effective_timeout}s"
            ) from e
        except requests.RequestException as e:
            raise BackendError(f"{self.name}: {method} {url} failed: {e}") from e

        if not resp.ok:
            raise BackendError(
                f"{self.name}: {method} {url} returned {resp.status_code}",
                status_code=resp.status_code,
            )
        return resp

    def request_json(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        """Same as :meth:`request`, returning the decoded JSON body."""
        resp = self.request(method, path, **kwargs)
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise BackendError(f"{self.name}: invalid JSON from {path}: {e}") from e
        return data if isinstance(data, dict) else {"data": data}

    def get(self, path: str, **kwargs: Any) -> dict[str, Any]:
        return self.request_json("GET", path, **kwargs)

    def post(self, path: str, **kwargs: Any) -> dict[str, Any]:
        return self.request_json("POST", path, **kwargs)

    def delete(self, path: str, **kwargs: Any) -> dict[str, Any]:
        return self.request_json("DELETE", path, **kwargs)
