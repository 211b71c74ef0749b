from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional, Protocol, Sequence, Union

import openai
from sqlalchemy.orm import Session

from ..config import settings
from ..models.app_settings import AppSetting

logger = logging.getLogger(__name__)

API_KEY_SETTING = "llm_api_key"

ContentPart = dict[str, Any]
MessageContent = Union[str, Sequence[ContentPart]]


class ChatClient(Protocol):
    model: str

    def complete(self, system: str, content: MessageContent, max_tokens: int) -> str:
        ...


class OpenAIChatClient:
    """Chat-completions client with an explicit per-request timeout."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        max_retries: int = 2,
    ) -> None:
        self.model = model
        self._client = openai.OpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
        )

    def complete(self, system: str, content: MessageContent, max_tokens: int) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=0.2,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": content if isinstance(content, str) else list(content)},
            ],
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


@lru_cache(maxsize=8)
def build_chat_client(
    api_key: str,
    model: str,
    base_url: Optional[str] = None,
    timeout: float = 60.0,
    max_retries: int = 2,
) -> OpenAIChatClient:
    """One client per configuration; a changed credential builds a new client."""
    logger.info("Constructing LLM client for model %s", model)
    return OpenAIChatClient(api_key, model, base_url=base_url, timeout=timeout, max_retries=max_retries)


def resolve_api_key(db: Session) -> Optional[str]:
    stored = db.get(AppSetting, API_KEY_SETTING)
    if stored is not None and stored.value:
        return stored.value
    return settings.llm.api_key or None


def get_chat_client(db: Session) -> Optional[ChatClient]:
    api_key = resolve_api_key(db)
    if not api_key:
        return None
    return build_chat_client(
        api_key,
        settings.llm.model,
        settings.llm.base_url,
        settings.llm.request_timeout_seconds,
        settings.llm.max_retries,
    )


MASK = "********"
MASK_REVEAL_CHARS = 4
MASK_MIN_LENGTH = 12


def mask_secret(value: Optional[str]) -> str:
    if not value:
        return ""
    if len(value) < MASK_MIN_LENGTH:
        return MASK
    return MASK + value[-MASK_REVEAL_CHARS:]
