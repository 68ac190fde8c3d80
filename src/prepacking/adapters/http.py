"""Shared REST plumbing for the reference data and stock management adapters."""

import logging
from typing import Any, Dict, List, Optional

import requests
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

import config

logger = logging.getLogger(__name__)


class ExternalServiceError(Exception):
    """
    An upstream service is unreachable, timed out or failed with a server error.

    Always retryable: the caller may repeat the whole request later.
    """
    retryable = True


class ExternalApiError(Exception):
    """An upstream service rejected the request (4xx other than 404)."""
    retryable = False

    def __init__(self, message: str, status_code: int, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def is_conflict(self) -> bool:
        # referencedata answers duplicate codes with 400, newer services with 409
        return self.status_code in (400, 409)


class _TransientHTTPError(Exception):
    pass


class BaseServiceClient:
    """
    JSON over HTTP with a bounded timeout and bounded retries.

    Connection errors, timeouts and 5xx responses are retried up to
    ``retry_attempts`` times and then surface as ExternalServiceError.
    """

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        retry_attempts: Optional[int] = None,
        retry_wait: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else config.get_http_timeout()
        self.token = token if token is not None else config.get_service_token()
        self.session = session or requests.Session()
        self.retry_attempts = retry_attempts or config.get_http_retry_attempts()
        self.retry_wait = retry_wait

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _send(self, method: str, url: str, params=None, json=None) -> requests.Response:
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            logger.warning(f"Timeout calling {method} {url}: {e}")
            raise _TransientHTTPError(f"Timeout calling {method} {url}") from e
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"Connection error calling {method} {url}: {e}")
            raise _TransientHTTPError(f"Cannot reach {url}") from e

        if response.status_code >= 500:
            logger.warning(f"{method} {url} answered {response.status_code}")
            raise _TransientHTTPError(f"{method} {url} answered {response.status_code}")
        return response

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        allow_not_found: bool = False,
    ) -> Optional[Any]:
        """
        Perform a request and return the decoded JSON body.

        Returns:
            The decoded body, or None for 404 when ``allow_not_found`` is set
            or the body is empty.

        Raises:
            ExternalServiceError: after retries are exhausted
            ExternalApiError: for client errors
        """
        url = f"{self.base_url}{path}"
        logger.debug(f"{method} {url} params={params}")

        retrying = Retrying(
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=10),
            retry=retry_if_exception_type(_TransientHTTPError),
            reraise=False,
        )
        try:
            response = retrying(self._send, method, url, params=params, json=json)
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(f"Giving up on {method} {url} after {self.retry_attempts} attempts: {cause}")
            raise ExternalServiceError(str(cause)) from cause

        if response.status_code == 404 and allow_not_found:
            return None
        if response.status_code >= 400:
            logger.error(f"{method} {url} rejected with {response.status_code}: {response.text}")
            raise ExternalApiError(
                f"{method} {url} rejected with {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        if not response.content:
            return None
        return response.json()

    def get_one(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        return self.request("GET", path, params=params, allow_not_found=True)

    def get_page(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """GET a paginated resource and return its ``content`` list."""
        body = self.request("GET", path, params=params)
        if body is None:
            return []
        if isinstance(body, list):
            return body
        return body.get("content", [])
