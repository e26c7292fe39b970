"""Async client for CALL_WEBHOOK actions."""

import logging

import httpx

logger = logging.getLogger(__name__)


class WebhookClient:
    """POSTs JSON payloads to user-configured webhook URLs.

    Usage::

        async with WebhookClient(secret="...") as webhooks:
            await webhooks.call("https://example.com/hook", {"email": {...}})
    """

    def __init__(self, *, secret: str = "", timeout: float = 10.0) -> None:
        headers = {"Content-Type": "application/json"}
        if secret:
            headers["X-Webhook-Secret"] = secret
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout)

    async def __aenter__(self) -> "WebhookClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def call(self, url: str, payload: dict) -> None:
        """POST ``payload`` to ``url``.

        Raises:
            httpx.HTTPStatusError: On non-2xx response.
            httpx.TransportError: On connection failures and timeouts.
        """
        response = await self._client.post(url, json=payload)
        response.raise_for_status()
        logger.info("Webhook %s responded %d", url, response.status_code)
