"""HTTP client for the Doma poll event API.

Endpoints::

    GET  /v1/poll                    -> {events, lastId, hasMoreEvents}
    POST /v1/poll/ack/{lastId}
    POST /v1/poll/reset/{eventId}

Authenticated with a static ``Api-Key`` header. Requests use a fixed
timeout and are never retried here; the poll timer is the retry loop.

Usage::

    async with DomaApiClient(base_url, api_key) as client:
        response = await client.poll(after_id=0, limit=100)
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import ValidationError

from doma_ingest.core.enums import EventType
from doma_ingest.core.errors import AcknowledgmentError, TransportError
from doma_ingest.core.events import PollResponse

logger = logging.getLogger(__name__)

POLL_PATH = "/v1/poll"
ACK_PATH = "/v1/poll/ack/{last_id}"
RESET_PATH = "/v1/poll/reset/{event_id}"


class DomaApiClient:
    """Async client implementing :class:`~doma_ingest.core.interfaces.IEventSource`.

    Parameters
    ----------
    base_url:
        API root, e.g. ``https://api-testnet.doma.xyz``.
    api_key:
        Value sent in the ``Api-Key`` header.
    timeout:
        Per-request timeout in seconds.
    transport:
        Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Api-Key": self._api_key,
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> DomaApiClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not opened. Use 'async with' or call open().")
        return self._client

    # -- Endpoints -----------------------------------------------------------

    async def poll(
        self,
        after_id: int,
        limit: int,
        event_types: Sequence[EventType] | None = None,
        finalized_only: bool = True,
    ) -> PollResponse:
        """Fetch the next batch of events after *after_id*.

        Raises:
            TransportError: Network failure, timeout, non-2xx status or a
                body that does not parse as a poll response.
        """
        params: dict[str, Any] = {
            "afterId": after_id,
            "limit": limit,
            "finalizedOnly": "true" if finalized_only else "false",
        }
        if event_types:
            params["eventTypes"] = [EventType(t).value for t in event_types]

        logger.debug("Polling for events: %s", params)
        resp = await self._request("GET", POLL_PATH, params=params)
        try:
            return PollResponse.from_api(resp.json())
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            raise TransportError(f"Malformed poll response: {exc}") from exc

    async def acknowledge(self, last_id: int) -> None:
        """Tell upstream that events up to *last_id* have been consumed.

        Raises:
            AcknowledgmentError: The acknowledgment did not go through.
        """
        try:
            await self._request("POST", ACK_PATH.format(last_id=last_id))
        except TransportError as exc:
            raise AcknowledgmentError(last_id, str(exc)) from exc
        logger.debug("Acknowledged events up to %d", last_id)

    async def reset(self, event_id: int) -> None:
        """Rewind the upstream poll position to *event_id*.

        Raises:
            TransportError: The reset did not go through.
        """
        await self._request("POST", RESET_PATH.format(event_id=event_id))
        logger.info("Upstream poll cursor reset to %d", event_id)

    # -- Internals -----------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._require_client()
        try:
            resp = await client.request(method, path, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"{method} {path} returned {exc.response.status_code}: "
                f"{exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc!r}") from exc
        return resp
