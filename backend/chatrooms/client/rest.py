from typing import List, Optional

import httpx


class RestClient:
    """Thin async wrapper over the REST surface."""

    def __init__(self, base_url: str, token: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=10.0)

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        response.raise_for_status()
        return response.json()

    async def login(self, username: str, password: str) -> dict:
        data = await self._request("POST", "/auth/login", json={"username": username, "password": password})
        self.token = data["token"]
        return data["user"]

    async def fetch_messages(self, conversation_id: int) -> List[dict]:
        data = await self._request("GET", f"/messages/{conversation_id}")
        return data["messages"]

    async def send_message(self, conversation_id: int, text: str, client_token: Optional[str] = None) -> dict:
        body = {"text": text, "conversationId": conversation_id}
        if client_token:
            body["clientToken"] = client_token
        data = await self._request("POST", "/messages", json=body)
        return data["message"]

    async def mark_read(self, conversation_id: int) -> dict:
        return await self._request("POST", f"/messages/{conversation_id}/read", json={"confirm": True})

    async def fetch_conversations(self) -> List[dict]:
        data = await self._request("GET", "/conversations")
        return data["conversations"]

    async def heartbeat(self) -> dict:
        return await self._request("PATCH", "/users/last-seen")

    async def aclose(self) -> None:
        await self._client.aclose()
