"""HTTP transport for the streaming assistant endpoint."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator

import httpx

from deepterm.configs.system import ChatConfig
from deepterm.core.exceptions import AssistantRequestError

from .models import ChatRequest

logger = logging.getLogger(__name__)


def _error_reason(status_code: int, body: bytes) -> str:
    """Pull ``error`` out of a JSON error body, else a generic reason."""
    try:
        data = json.loads(body)
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"Request failed: {status_code}"


class AssistantClient:
    """Posts a ``ChatRequest`` and yields the raw response frames."""

    def __init__(
        self,
        config: ChatConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = config.endpoint
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(10.0, read=config.timeout_seconds)
        )

    async def stream(self, request: ChatRequest) -> AsyncGenerator[bytes, None]:
        """Yield body frames as they arrive.

        Raises ``AssistantRequestError`` when the backend answers with a
        non-success status.  Closing the generator early closes the
        response.
        """
        payload = request.to_payload()
        logger.debug(
            "Posting chat request",
            extra={
                "endpoint": self._endpoint,
                "history_len": len(request.messages),
                "context_type": request.context.type,
            },
        )
        async with self._client.stream(
            "POST", self._endpoint, json=payload
        ) as response:
            if not response.is_success:
                body = await response.aread()
                raise AssistantRequestError(_error_reason(response.status_code, body))
            async for frame in response.aiter_bytes():
                yield frame

    async def aclose(self) -> None:
        await self._client.aclose()
