"""Async client for the remote inventory API."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from invsync.config import Config
from invsync.errors import (
    Conflict,
    InventoryError,
    NetworkUnavailable,
    NotFound,
    RemoteServiceError,
    Unauthenticated,
    ValidationFailed,
)
from invsync.models import (
    Item,
    ItemDraft,
    Location,
    LocationDraft,
    Transaction,
    TransactionType,
    User,
    format_timestamp,
)

logger = logging.getLogger(__name__)

_STATUS_ERRORS: dict[int, type[InventoryError]] = {
    400: ValidationFailed,
    401: Unauthenticated,
    404: NotFound,
    409: Conflict,
    422: ValidationFailed,
}


class RemoteInventoryClient:
    """One coroutine per remote action, returning model instances.

    Transport problems and timeouts become :class:`NetworkUnavailable`;
    HTTP error statuses become the matching domain error. Nothing is retried
    here.
    """

    def __init__(
        self,
        base_url: str,
        *,
        auth_mode: str = "cookie",
        token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.auth_mode = auth_mode
        self.timeout = timeout
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: Config, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "RemoteInventoryClient":
        return cls(
            config.api_base_url,
            auth_mode=config.auth_mode,
            token=config.api_token,
            timeout=config.request_timeout_sec,
            transport=transport,
        )

    @property
    def token(self) -> str | None:
        return self._token

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RemoteInventoryClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # -- transport -----------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        if self.auth_mode == "bearer" and self._token:
            return {"Authorization": f"Bearer {self._token}"}
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    method,
                    path,
                    json=json,
                    params=params,
                    headers=self._auth_headers(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("%s %s timed out after %.1fs", method, path, self.timeout)
            raise NetworkUnavailable(
                "The inventory server did not respond in time. Please try again."
            ) from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise NetworkUnavailable() from exc

        logger.debug("%s %s -> %s", method, path, response.status_code)

        if response.is_success:
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise RemoteServiceError("The inventory server sent an unreadable response.") from exc

        error_cls = _STATUS_ERRORS.get(response.status_code, RemoteServiceError)
        message = _error_message(response)
        logger.info("%s %s rejected (%s): %s", method, path, response.status_code, message)
        raise error_cls(message, status_code=response.status_code)

    # -- connectivity --------------------------------------------------------

    async def ping(self) -> bool:
        await self._request("GET", "/test")
        return True

    # -- auth ----------------------------------------------------------------

    async def login(self, email: str, password: str) -> User:
        data = await self._request(
            "POST", "/auth/login", json={"email": email, "password": password}
        )
        return self._accept_auth_payload(data)

    async def register(self, email: str, password: str, name: str) -> User:
        data = await self._request(
            "POST",
            "/auth/register",
            json={"email": email, "password": password, "name": name},
        )
        return self._accept_auth_payload(data)

    async def logout(self) -> None:
        try:
            await self._request("POST", "/auth/logout")
        finally:
            if self.auth_mode == "bearer":
                self._token = None
            self._client.cookies.clear()

    async def check_session(self) -> bool:
        try:
            data = await self._request("GET", "/auth/check")
        except Unauthenticated:
            return False
        return bool((data or {}).get("authenticated"))

    async def get_profile(self) -> User:
        data = await self._request("GET", "/auth/profile")
        return User.from_dict(data.get("user", data))

    def _accept_auth_payload(self, data: Any) -> User:
        if not isinstance(data, Mapping) or "user" not in data:
            raise RemoteServiceError("The inventory server sent an unexpected login response.")
        token = data.get("token")
        if token:
            self._token = str(token)
        return User.from_dict(data["user"])

    # -- items ---------------------------------------------------------------

    async def list_items(self) -> list[Item]:
        data = await self._request("GET", "/items")
        return [Item.from_dict(row) for row in data or []]

    async def create_item(self, draft: ItemDraft) -> Item:
        data = await self._request("POST", "/items", json=draft.to_payload())
        return Item.from_dict(data)

    async def update_item(self, item_id: str, fields: Mapping[str, Any]) -> Item:
        data = await self._request("PUT", f"/items/{_segment(item_id)}", json=dict(fields))
        return Item.from_dict(data)

    async def delete_item(self, item_id: str, *, purge_transactions: bool = False) -> None:
        params = {"cascade": "transactions"} if purge_transactions else None
        await self._request("DELETE", f"/items/{_segment(item_id)}", params=params)

    # -- locations -----------------------------------------------------------

    async def list_locations(self) -> list[Location]:
        data = await self._request("GET", "/locations")
        return [Location.from_dict(row) for row in data or []]

    async def create_location(self, draft: LocationDraft) -> Location:
        data = await self._request("POST", "/locations", json=draft.to_payload())
        return Location.from_dict(data)

    async def update_location(self, location_id: str, fields: Mapping[str, Any]) -> Location:
        data = await self._request(
            "PUT", f"/locations/{_segment(location_id)}", json=dict(fields)
        )
        return Location.from_dict(data)

    async def delete_location(self, location_id: str) -> None:
        await self._request("DELETE", f"/locations/{_segment(location_id)}")

    # -- transactions --------------------------------------------------------

    async def list_transactions(self) -> list[Transaction]:
        data = await self._request("GET", "/transactions")
        return [Transaction.from_dict(row) for row in data or []]

    async def create_transaction(
        self,
        *,
        item_id: str,
        transaction_type: TransactionType,
        quantity_change: int,
        notes: str | None = None,
        timestamp: datetime | None = None,
    ) -> Transaction:
        payload: dict[str, Any] = {
            "itemId": item_id,
            "type": TransactionType.parse(transaction_type).value,
            "quantityChange": quantity_change,
        }
        if notes:
            payload["notes"] = notes
        if timestamp is not None:
            payload["timestamp"] = format_timestamp(timestamp)
        data = await self._request("POST", "/transactions", json=payload)
        return Transaction.from_dict(data)

    # -- categories ----------------------------------------------------------

    async def list_categories(self) -> list[str]:
        data = await self._request("GET", "/categories")
        names = []
        for entry in data or []:
            if isinstance(entry, Mapping):
                entry = entry.get("name")
            if entry:
                names.append(str(entry))
        return names

    async def rename_category(self, old_name: str, new_name: str) -> None:
        await self._request(
            "POST",
            "/categories/rename",
            json={"oldName": old_name, "newName": new_name},
        )

    async def delete_category(self, name: str) -> None:
        await self._request("DELETE", f"/categories/{_segment(name)}")


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _error_message(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, Mapping):
        for key in ("message", "detail", "error"):
            value = data.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    text = response.text.strip()
    if text and len(text) <= 200 and not text.lstrip().startswith("<"):
        return text
    return None
