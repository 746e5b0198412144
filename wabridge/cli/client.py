"""
Thin HTTP client over the bridge control surface.

Every method maps 1:1 to an endpoint and returns the decoded JSON body.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx


DEFAULT_BRIDGE_URL = "http://127.0.0.1:3100"
DEFAULT_TIMEOUT_S = 30.0


class BridgeClientError(Exception):
    """An error response, or a body that is not JSON."""


class BridgeAPIClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BRIDGE_URL,
        token: str = "",
        timeout: float = DEFAULT_TIMEOUT_S,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or DEFAULT_BRIDGE_URL).rstrip("/")
        self.token = token or ""

        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self._http = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "BridgeAPIClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ---------- transport ----------

    def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            res = self._http.request(method, path, params=params or None, json=body)
        except httpx.HTTPError as e:
            raise BridgeClientError(f"Request failed: {e}") from e

        try:
            data = res.json()
        except ValueError as e:
            raise BridgeClientError(f"Invalid JSON response: {res.text[:200]}") from e

        if res.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            raise BridgeClientError(message or f"HTTP {res.status_code}")
        return data

    # ---------- endpoints ----------

    def status(self) -> Any:
        return self.request("GET", "/status")

    def events(self, peek: bool = False) -> Any:
        return self.request("GET", "/events/peek" if peek else "/events")

    def chats(self, limit: Optional[int] = None) -> Any:
        return self.request("GET", "/chats", params={"limit": limit})

    def contacts(self, search: Optional[str] = None) -> Any:
        if search:
            return self.request("GET", "/contacts/search", params={"q": search})
        return self.request("GET", "/contacts")

    def groups(self, search: Optional[str] = None) -> Any:
        if search:
            return self.request("GET", "/groups/search", params={"q": search})
        return self.request("GET", "/groups")

    def messages(self, chat_id: str, limit: Optional[int] = None) -> Any:
        path = f"/chats/{quote(chat_id, safe='')}/messages"
        return self.request("GET", path, params={"limit": limit or 20})

    def search(self, query: str, chat_id: Optional[str] = None, limit: Optional[int] = None) -> Any:
        return self.request("GET", "/search", params={"q": query, "chatId": chat_id, "limit": limit})

    def send(self, to: str, message: str) -> Any:
        return self.request("POST", "/send", body={"to": to, "message": message})

    def send_group(self, group_id: str, message: str) -> Any:
        return self.request("POST", "/send-group", body={"groupId": group_id, "message": message})

    def monitor_list(self) -> Any:
        return self.request("GET", "/monitor")

    def monitor_add(
        self,
        contact_id: str,
        webhook: Optional[str] = None,
        keywords: Optional[dict[str, str]] = None,
    ) -> Any:
        body: dict[str, Any] = {"contactId": contact_id}
        if webhook:
            body["webhook"] = webhook
        if keywords:
            body["script"] = {"keywords": keywords}
        return self.request("POST", "/monitor", body=body)

    def monitor_remove(self, contact_id: str) -> Any:
        return self.request("DELETE", f"/monitor/{quote(contact_id, safe='')}")
