"""
Shared HTTP plumbing for the hosted backend clients.
"""

import asyncio
from typing import Any, Callable, Dict, Iterable, Optional

import requests

from ..domain.exceptions import AuthenticationError, BackendUnavailableError

TokenProvider = Callable[[], str]


def error_message(response: requests.Response) -> str:
    """Extract the error text from a Google-style JSON error body."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or response.reason or ""

    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get("message") or error.get("status") or ""
    if isinstance(error, str):
        return error
    return ""


def error_status(response: requests.Response) -> str:
    """Return the symbolic status (e.g. FAILED_PRECONDITION) of an error body."""
    try:
        payload = response.json()
    except ValueError:
        return ""
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return error.get("status") or ""
    return ""


class BackendRestClient:
    """
    Base class for clients of the hosted backend REST APIs.

    Requests are blocking ``requests`` calls; the async methods of the
    subclasses run them in a worker thread via :meth:`_call`.
    """

    SERVICE_NAME = "backend"

    def __init__(
        self,
        token_provider: Optional[TokenProvider] = None,
        timeout: float = 30,
        session: Optional[requests.Session] = None,
    ):
        self._token_provider = token_provider
        self.timeout = timeout
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        if self._token_provider is None:
            return {}
        return {"Authorization": f"Bearer {self._token_provider()}"}

    def _request(
        self,
        method: str,
        url: str,
        *,
        expected: Iterable[int] = (),
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> requests.Response:
        """
        Perform one HTTP request.

        Statuses listed in ``expected`` are returned to the caller instead
        of being turned into errors.

        Raises:
            AuthenticationError: On 401/403 responses
            BackendUnavailableError: On connection failures and other error statuses
        """
        request_headers = self._headers()
        if headers:
            request_headers.update(headers)

        try:
            response = self._session.request(
                method,
                url,
                headers=request_headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.exceptions.RequestException as exc:
            raise BackendUnavailableError(
                f"Failed to reach {self.SERVICE_NAME}: {exc}"
            ) from exc

        if response.status_code in expected or response.ok:
            return response

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"{self.SERVICE_NAME} rejected the request: {error_message(response)}"
            )

        raise BackendUnavailableError(
            f"{self.SERVICE_NAME} returned HTTP {response.status_code}: "
            f"{error_message(response)}"
        )

    async def _call(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return await asyncio.to_thread(self._request, method, url, **kwargs)
