from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

logger = logging.getLogger("admin_gate.rpc")


@dataclass(frozen=True)
class TransportFailure:
    """The call could not complete. ``message`` may be missing."""

    message: str | None = None
    status_code: int | None = None


@dataclass(frozen=True)
class RpcResponse:
    """Raw result of a remote call: either ``data`` or ``error`` is set."""

    data: Any = None
    error: TransportFailure | None = None


class Transport(Protocol):
    async def call(
        self,
        procedure: str,
        payload: Mapping[str, Any],
        *,
        access_token: str | None = None,
    ) -> RpcResponse: ...


def _extract_failure_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        text = response.text.strip()
        return text or None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        if isinstance(error, str):
            return error
        if isinstance(body.get("message"), str):
            return body["message"]
    return None


class HttpxTransport:
    """POSTs JSON payloads to ``{base_url}/{procedure}`` on the hosted function platform.

    Every failure is reported through ``RpcResponse.error`` rather than
    raised, so the invoker can apply a single resolution order.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        headers = {"content-type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, headers=headers)
        if client is not None:
            self._client.headers.update(headers)

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _build_url(self, procedure: str) -> str:
        return f"{self._base_url}/{procedure.lstrip('/')}"

    async def call(
        self,
        procedure: str,
        payload: Mapping[str, Any],
        *,
        access_token: str | None = None,
    ) -> RpcResponse:
        headers: dict[str, str] = {}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            response = await self._client.post(
                self._build_url(procedure), json=dict(payload), headers=headers
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "Remote call failed procedure=%s reason=transport error=%s",
                procedure,
                exc,
            )
            return RpcResponse(error=TransportFailure(message=str(exc) or None))

        if response.is_error:
            message = _extract_failure_message(response)
            logger.warning(
                "Remote call failed procedure=%s status=%d message=%s",
                procedure,
                response.status_code,
                message,
            )
            return RpcResponse(
                error=TransportFailure(message=message, status_code=response.status_code)
            )

        if not response.content:
            return RpcResponse(data=None)

        try:
            return RpcResponse(data=response.json())
        except ValueError:
            logger.warning("Remote call returned non-JSON body procedure=%s", procedure)
            return RpcResponse(
                error=TransportFailure(
                    message="Malformed response body", status_code=response.status_code
                )
            )
