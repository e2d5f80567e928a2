"""Normalized calls to named remote procedures.

A remote call can fail on two independent channels: the transport reports a
failure next to an empty result, or the procedure answers successfully with
an ``error`` object embedded in its payload. ``RemoteInvoker.invoke`` folds
both into a single ``RemoteInvocationError``, checking the transport first.

No retries and no timeouts are applied here.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from ..errors import RemoteInvocationError
from .transport import RpcResponse, Transport

logger = logging.getLogger("admin_gate.rpc")

TRANSPORT_FALLBACK_MESSAGE = "Remote procedure invocation failed"
APPLICATION_FALLBACK_MESSAGE = "Remote procedure returned an error"


def _embedded_error(data: Any) -> tuple[bool, str | None, str | None]:
    """Return (present, message, code) for an error embedded in ``data``."""
    if not isinstance(data, Mapping):
        return False, None, None
    error = data.get("error")
    if not error:
        return False, None, None
    # {"error": "..."} carries its message directly instead of using the fallback.
    if isinstance(error, str):
        return True, error, None
    if isinstance(error, Mapping):
        message = error.get("message")
        code = error.get("code")
        return (
            True,
            message if isinstance(message, str) and message else None,
            code if isinstance(code, str) else None,
        )
    return True, None, None


def unwrap_response(procedure: str, response: RpcResponse) -> Any:
    """Apply the resolution order to a raw response.

    Raises:
        RemoteInvocationError: transport failure, or an embedded error
    """
    if response.error is not None:
        raise RemoteInvocationError(
            response.error.message or TRANSPORT_FALLBACK_MESSAGE,
            procedure=procedure,
            source="transport",
        )

    present, message, code = _embedded_error(response.data)
    if present:
        raise RemoteInvocationError(
            message or APPLICATION_FALLBACK_MESSAGE,
            procedure=procedure,
            source="application",
            remote_code=code,
        )

    return response.data


class RemoteInvoker:
    def __init__(self, transport: Transport):
        self.transport = transport

    async def invoke(
        self,
        procedure: str,
        payload: Mapping[str, Any],
        *,
        access_token: str | None = None,
    ) -> Any:
        """Call ``procedure`` with ``payload`` and return its result payload.

        Args:
            procedure: Name of the remote procedure (e.g. 'admin-crud')
            payload: JSON-serialisable request body
            access_token: Caller's bearer token, forwarded as-is

        Raises:
            RemoteInvocationError: If either failure channel reports an error
        """
        response = await self.transport.call(procedure, payload, access_token=access_token)
        try:
            return unwrap_response(procedure, response)
        except RemoteInvocationError as exc:
            logger.info(
                "Remote procedure failed procedure=%s source=%s message=%s",
                procedure,
                exc.source,
                exc.message,
            )
            raise
