"""Push gateway client.

Speaks the Expo-compatible push HTTP API: a JSON list of messages is posted
in one request and the gateway answers with one ticket per message, in the
same order. Tickets with ``status == "error"`` are failures; a
``DeviceNotRegistered`` detail means the token is dead and should be
deactivated right away.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from duet.core.settings import settings

logger = logging.getLogger(__name__)

UNREGISTERED_ERRORS = frozenset({"DeviceNotRegistered", "InvalidCredentials"})


class PushGatewayError(RuntimeError):
    """Raised when the push gateway cannot be reached or answers garbage."""


@dataclass(frozen=True)
class PushPayload:
    """Notification content shared by every token of a recipient."""

    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)
    image: str | None = None


@dataclass(frozen=True)
class TokenResult:
    """Outcome of a dispatch for a single token."""

    token: str
    ok: bool
    error: str | None = None

    @property
    def unregistered(self) -> bool:
        return self.error in UNREGISTERED_ERRORS


@dataclass(frozen=True)
class DispatchResult:
    """Aggregate outcome of a multicast dispatch."""

    results: list[TokenResult]

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.ok)

    @property
    def failure_count(self) -> int:
        return sum(1 for result in self.results if not result.ok)

    @property
    def failed_tokens(self) -> list[str]:
        return [result.token for result in self.results if not result.ok]


class PushGateway:
    """Async HTTP client for the push gateway."""

    def __init__(
        self,
        *,
        enabled: bool | None = None,
        base_url: str | None = None,
        access_token: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._enabled = settings.push_enabled if enabled is None else enabled
        self._url = base_url or settings.push_gateway_url
        self._access_token = access_token or settings.push_gateway_access_token
        self._timeout = timeout if timeout is not None else settings.push_http_timeout_seconds
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "Accept": "application/json",
                "Accept-Encoding": "gzip, deflate",
                "Content-Type": "application/json",
            }
            if self._access_token:
                headers["Authorization"] = f"Bearer {self._access_token}"
            self._client = httpx.AsyncClient(headers=headers, timeout=self._timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    @staticmethod
    def _build_message(token: str, payload: PushPayload) -> dict[str, Any]:
        message: dict[str, Any] = {
            "to": token,
            "title": payload.title,
            "body": payload.body,
            "data": payload.data,
            "sound": "default",
        }
        if payload.image:
            message["image"] = payload.image
        return message

    async def dispatch(self, tokens: list[str], payload: PushPayload) -> DispatchResult:
        """Send ``payload`` to every token in one gateway call.

        Raises:
            PushGatewayError: On transport errors, non-2xx answers or a
                response that does not carry one ticket per token.
        """
        if not tokens:
            return DispatchResult(results=[])

        messages = [self._build_message(token, payload) for token in tokens]
        try:
            response = await self._get_client().post(self._url, json=messages)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            raise PushGatewayError(f"Push gateway request failed: {exc}") from exc
        except ValueError as exc:
            raise PushGatewayError("Push gateway returned invalid JSON") from exc

        tickets = body.get("data") if isinstance(body, dict) else None
        if not isinstance(tickets, list) or len(tickets) != len(tokens):
            raise PushGatewayError("Push gateway response does not match the request")

        results: list[TokenResult] = []
        for token, ticket in zip(tokens, tickets, strict=True):
            if isinstance(ticket, dict) and ticket.get("status") == "ok":
                results.append(TokenResult(token=token, ok=True))
                continue
            details = ticket.get("details") if isinstance(ticket, dict) else None
            error = None
            if isinstance(details, dict):
                error = details.get("error")
            if error is None and isinstance(ticket, dict):
                error = ticket.get("message")
            results.append(TokenResult(token=token, ok=False, error=error or "unknown"))

        result = DispatchResult(results=results)
        logger.debug(
            "Push dispatch finished: %d ok, %d failed", result.success_count, result.failure_count
        )
        return result
