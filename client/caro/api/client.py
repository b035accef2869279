"""One-shot HTTP reads and writes against the game API."""

from __future__ import annotations

import secrets
import time
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from caro.api.exceptions import ApiError, SessionNotFoundError
from caro.session.models import GameResult, Session

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger()

GAME_TYPE_ID = "caro"


def _json_body(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        body = response.json()
    except ValueError as e:
        raise ApiError(f"Invalid JSON from game API: {e}", response.status_code) from e
    return body if isinstance(body, dict) else {}


class GameApiClient:
    """Thin async client for the session endpoints.

    A fresh httpx.AsyncClient is opened per call. Every failure surfaces as
    ApiError; a missing session on fetch is the SessionNotFoundError subclass.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        auth_token: Callable[[], str | None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._auth_token = auth_token
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        token = self._auth_token() if self._auth_token is not None else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                return await client.request(method, path, json=json, headers=self._headers())
            except httpx.RequestError as e:
                raise ApiError(f"Failed to reach game API: {e}") from e

    async def fetch_session(self, room_id: str) -> Session:
        response = await self._request("GET", f"/games/{room_id}")
        if response.status_code == HTTPStatus.NOT_FOUND:
            raise SessionNotFoundError(f"Session {room_id} not found", status_code=response.status_code)
        if response.status_code != HTTPStatus.OK:
            raise ApiError(f"Game API returned {response.status_code}: {response.text}", response.status_code)
        try:
            return Session.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ApiError(f"Invalid session payload: {e}") from e

    async def leave_session(self, room_id: str, guest_id: str | None) -> dict[str, Any]:
        response = await self._request("POST", f"/games/{room_id}/leave", json={"guestId": guest_id})
        if response.status_code != HTTPStatus.OK:
            raise ApiError(f"Leave failed with {response.status_code}: {response.text}", response.status_code)
        return _json_body(response)

    async def submit_result(
        self,
        result: GameResult,
        *,
        game_data: dict[str, Any],
        score: int | None = None,
        game_id: str = GAME_TYPE_ID,
    ) -> dict[str, Any]:
        """Report the local player's result of a finished session to the stats endpoint."""
        body = {
            "result": result.value,
            "score": score,
            "customStats": None,
            "gameData": game_data,
            "timestamp": int(time.time() * 1000),
            "nonce": secrets.token_hex(4),
        }
        response = await self._request("POST", f"/games/{game_id}/stats/submit", json=body)
        if response.status_code not in (HTTPStatus.OK, HTTPStatus.CREATED):
            raise ApiError(f"Result submission failed with {response.status_code}", response.status_code)
        logger.info("submitted game result", result=result.value)
        return _json_body(response)
