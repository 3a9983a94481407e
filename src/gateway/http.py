"""
HTTP reporting gateway (httpx).

Token acquisition / refresh is out of scope: the gateway is handed a
callable that returns a current bearer token.

Status mapping:
  2xx          -> parsed response
  404          -> NotFoundError
  other status -> RemoteError(status, message)
  transport    -> RemoteError(status=None)
"""
from __future__ import annotations

from typing import Any, Callable

import httpx
import pydantic

from src.core.config import get_settings
from src.core.errors import NotFoundError, RemoteError
from src.core.logging import get_logger
from src.query.expression import ReportRequest, ReportResponse

logger = get_logger(__name__)

TokenProvider = Callable[[], str]


def _error_message(resp: httpx.Response) -> str:
    """Pull the API's error message out of the body, falling back to the reason phrase."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message") or resp.reason_phrase
    return resp.reason_phrase


class HttpReportingGateway:
    """Runs reports against the remote Data API.

    Parameters
    ----------
    token_provider : callable
        Returns a bearer token for each request.
    base_url : str, optional
        Defaults to ``settings.gateway_base_url``.
    client : httpx.Client, optional
        Injected client (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str | None = None,
        client: httpx.Client | None = None,
        default_timeout: float | None = None,
    ):
        settings = get_settings()
        self._token_provider = token_provider
        self._base_url = (base_url or settings.gateway_base_url).rstrip("/")
        self._timeout = default_timeout if default_timeout is not None else settings.gateway_timeout_seconds
        self._client = client or httpx.Client()

    def run_report(self, request: ReportRequest, *, timeout: float | None = None) -> ReportResponse:
        url = f"{self._base_url}/properties/{request.subject_id}:runReport"
        body = self._send("POST", url, request.subject_id, timeout, json=request.to_wire())
        try:
            response = ReportResponse.model_validate(body)
        except pydantic.ValidationError as exc:
            raise RemoteError(f"Unexpected runReport response shape: {exc}", status=200) from exc
        logger.info("runReport subject=%s rows=%d", request.subject_id, response.row_count)
        return response

    def get_metadata(self, subject_id: str, *, timeout: float | None = None) -> dict[str, Any]:
        url = f"{self._base_url}/properties/{subject_id}/metadata"
        return self._send("GET", url, subject_id, timeout)

    def close(self) -> None:
        self._client.close()

    def _send(self, method: str, url: str, subject_id: str, timeout: float | None, **kwargs: Any) -> Any:
        headers = {"Authorization": f"Bearer {self._token_provider()}"}
        try:
            resp = self._client.request(
                method, url, headers=headers,
                timeout=timeout if timeout is not None else self._timeout,
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise RemoteError(f"Request to reporting API failed: {exc}") from exc

        if resp.status_code == 404:
            raise NotFoundError(
                f"Subject {subject_id} not found or not accessible", status=404,
            )
        if not resp.is_success:
            raise RemoteError(_error_message(resp), status=resp.status_code)

        try:
            return resp.json()
        except ValueError as exc:
            raise RemoteError(f"Failed to decode reporting API response: {exc}", status=resp.status_code) from exc
