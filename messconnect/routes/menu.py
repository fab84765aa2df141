from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from messconnect.dependencies import get_kv_store
from messconnect.entities import MenuEntity, now_ms
from messconnect.kv import KeyValueStore
from messconnect.schemas import MenuUpdateRequest, ok
from messconnect.security import require_manager, require_user

router = APIRouter(prefix="/menu", tags=["menu"])


@router.get("")
def get_menu(
    user: dict = Depends(require_user), store: KeyValueStore = Depends(get_kv_store)
):
    menu = MenuEntity.load(store)
    if menu is None:
        raise HTTPException(status_code=404, detail="Menu has not been set yet.")
    return ok(menu)


@router.put("")
def update_menu(
    payload: MenuUpdateRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
):
    menu = MenuEntity.upsert(
        store,
        {"days": [day.model_dump() for day in payload.days], "updatedAt": now_ms()},
    )
    return ok(menu)
