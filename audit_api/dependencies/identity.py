from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

ACTOR_HEADER = "x-user-id"
SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    """Who is acting on the pipeline; resolved by the caller, never assumed."""

    user_id: Optional[str]

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id=SYSTEM_ACTOR_ID)

    @classmethod
    def anonymous(cls) -> "Actor":
        return cls(user_id=None)


def resolve_actor(request: Request) -> Actor:
    raw = (request.headers.get(ACTOR_HEADER) or "").strip()
    if not raw:
        return Actor.anonymous()
    request.state.user_id = raw
    return Actor(user_id=raw)
