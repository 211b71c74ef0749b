from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..config import settings
from ..dependencies.db import get_db
from ..dependencies.identity import Actor, resolve_actor
from ..models.app_settings import AppSetting
from ..services.llm_client import API_KEY_SETTING, mask_secret
from ..services.store import append_audit_log

router = APIRouter(prefix="/settings")


class LLMSettingsPayload(BaseModel):
    api_key: Optional[str] = None


def _llm_settings_view(db: Session) -> Dict[str, Any]:
    stored = db.get(AppSetting, API_KEY_SETTING)
    if stored is not None and stored.value:
        key, source = stored.value, "database"
    elif settings.llm.api_key:
        key, source = settings.llm.api_key, "environment"
    else:
        key, source = None, None
    return {
        "configured": bool(key),
        "api_key": mask_secret(key),
        "source": source,
        "model": settings.llm.model,
    }


@router.get("/llm")
def get_llm_settings(db: Session = Depends(get_db)):
    return _llm_settings_view(db)


@router.put("/llm")
def update_llm_settings(
    payload: LLMSettingsPayload,
    actor: Actor = Depends(resolve_actor),
    db: Session = Depends(get_db),
):
    """Store or clear the LLM key; an empty value falls back to the environment key."""
    value = (payload.api_key or "").strip()
    stored = db.get(AppSetting, API_KEY_SETTING)
    if stored is None:
        stored = AppSetting(key=API_KEY_SETTING, value=value)
        db.add(stored)
    else:
        stored.value = value
    db.flush()

    append_audit_log(
        db,
        action="UPDATE_SETTING",
        resource="AppSetting",
        resource_id=API_KEY_SETTING,
        actor_id=actor.user_id,
        details={"cleared": not value},
    )
    db.commit()
    return _llm_settings_view(db)
