"""
Chatwoot REST client

Path helpers and the handful of typed calls the follower needs. Every call
goes through the shared RequestExecutor.
"""

import json
import os
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from logger import get_logger
from core.api.errors import ChatwootError, DecodeError
from core.api.executor import RawResponse, RequestExecutor
from core.api.types import Contact, Conversation, Message, Profile

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)

# Environment configuration
CHATWOOT_BASE_URL = "CHATWOOT_BASE_URL"
CHATWOOT_API_TOKEN = "CHATWOOT_API_TOKEN"
CHATWOOT_ACCOUNT_ID = "CHATWOOT_ACCOUNT_ID"

# Cap on message pages for unbounded listings
MAX_PAGINATION_ITERATIONS = 1000


class ChatwootClient:
    """
    Account-scoped Chatwoot API client.

    Usage:
        async with ChatwootClient.from_env() as client:
            profile = await client.get_profile()
    """

    def __init__(self, executor: RequestExecutor, account_id: int):
        self.executor = executor
        self.account_id = account_id

    @classmethod
    def from_env(cls, **executor_kwargs) -> "ChatwootClient":
        """
        Build a client from CHATWOOT_BASE_URL / CHATWOOT_API_TOKEN / CHATWOOT_ACCOUNT_ID.

        Raises:
            ValueError: a variable is missing or the account id is not an integer
        """
        base_url = os.getenv(CHATWOOT_BASE_URL, "").strip()
        token = os.getenv(CHATWOOT_API_TOKEN, "").strip()
        account = os.getenv(CHATWOOT_ACCOUNT_ID, "").strip()
        missing = [
            name for name, value in (
                (CHATWOOT_BASE_URL, base_url),
                (CHATWOOT_API_TOKEN, token),
                (CHATWOOT_ACCOUNT_ID, account),
            ) if not value
        ]
        if missing:
            raise ValueError(f"missing configuration: {', '.join(missing)}")
        try:
            account_id = int(account)
        except ValueError:
            raise ValueError(f"{CHATWOOT_ACCOUNT_ID} must be an integer, got {account!r}") from None
        return cls(RequestExecutor(base_url, token, **executor_kwargs), account_id)

    async def __aenter__(self) -> "ChatwootClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.executor.aclose()

    @property
    def base_url(self) -> str:
        return self.executor.base_url

    # ==================== paths ====================

    def account_path(self, path: str = "") -> str:
        if path and not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}/api/v1/accounts/{self.account_id}{path}"

    def platform_path(self, path: str = "") -> str:
        if path and not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}/platform/api/v1{path}"

    def public_path(self, path: str = "") -> str:
        if path and not path.startswith("/"):
            path = "/" + path
        return f"{self.base_url}/public/api/v1{path}"

    # ==================== generic requests ====================

    async def request(self, method: str, url: str, body: Any = None) -> RawResponse:
        """JSON-encode ``body`` (when given) and execute."""
        payload = None
        content_type = ""
        if body is not None:
            try:
                payload = json.dumps(body).encode("utf-8")
            except (TypeError, ValueError) as e:
                raise DecodeError(f"failed to encode request body: {e}") from e
            content_type = "application/json"
        return await self.executor.execute(method, url, payload, content_type)

    async def request_json(self, method: str, url: str, body: Any = None) -> Any:
        resp = await self.request(method, url, body)
        return resp.json()

    async def raw(self, method: str, path: str, body: Any = None) -> RawResponse:
        """Account-scoped request returning the full response (``api`` command)."""
        return await self.request(method, self.account_path(path), body)

    # ==================== resources ====================

    async def get_profile(self) -> Profile:
        data = await self.request_json("GET", f"{self.base_url}/api/v1/profile")
        return _decode(Profile, data)

    async def get_conversation(self, conversation_id: int) -> Conversation:
        data = await self.request_json("GET", self.account_path(f"/conversations/{conversation_id}"))
        return _decode(Conversation, data)

    async def get_conversation_labels(self, conversation_id: int) -> List[str]:
        data = await self.request_json("GET", self.account_path(f"/conversations/{conversation_id}/labels"))
        payload = (data or {}).get("payload") or []
        return [str(label) for label in payload]

    async def get_contact(self, contact_id: int) -> Contact:
        data = await self.request_json("GET", self.account_path(f"/contacts/{contact_id}"))
        return _decode(Contact, (data or {}).get("payload"))

    async def list_messages_before(self, conversation_id: int, before: int = 0) -> List[Message]:
        path = f"/conversations/{conversation_id}/messages"
        if before > 0:
            path = f"{path}?before={before}"
        data = await self.request_json("GET", self.account_path(path))
        payload = (data or {}).get("payload") or []
        return [_decode(Message, item) for item in payload]

    async def list_messages(self, conversation_id: int, limit: int, max_pages: int = MAX_PAGINATION_ITERATIONS) -> List[Message]:
        """
        Page backwards until ``limit`` messages are collected.

        Stops early on an empty page or when the server repeats a page.

        Raises:
            ValueError: limit <= 0
            ChatwootError: page limit exceeded or a page failed
        """
        if limit <= 0:
            raise ValueError("limit must be > 0")
        if max_pages <= 0:
            max_pages = MAX_PAGINATION_ITERATIONS

        collected: List[Message] = []
        before = 0
        last_min_id = 0
        for _ in range(max_pages):
            page = await self.list_messages_before(conversation_id, before)
            if not page:
                return collected
            collected.extend(page)
            if len(collected) >= limit:
                return collected[:limit]
            min_id = min(m.id for m in page)
            if min_id == last_min_id:
                return collected
            before = last_min_id = min_id
        raise ChatwootError(
            f"pagination limit exceeded ({max_pages} iterations) - API may be returning duplicate data"
        )


def _decode(model: Type[M], data: Optional[Any]) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DecodeError(f"unexpected API response format for {model.__name__}: {e}") from e
