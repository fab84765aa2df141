"""
Mess-wide settings (monthly fee, rules) and the clear-all-data switch.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from messconnect.cache import SettingsCache
from messconnect.config import Settings, get_settings
from messconnect.dependencies import get_kv_store, get_settings_cache
from messconnect.entities import SettingsEntity, clear_all_data
from messconnect.kv import KeyValueStore
from messconnect.schemas import FeeRequest, RulesRequest, ok
from messconnect.security import require_manager, require_staff, require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])


def load_mess_settings(
    store: KeyValueStore, cache: SettingsCache, config: Settings
) -> dict:
    """Current fee and rules, read through the cache."""

    def loader() -> dict:
        state = SettingsEntity.load(store) or {}
        fee = state.get("monthlyFee")
        return {
            "monthlyFee": fee if fee is not None else config.default_monthly_fee,
            "messRules": state.get("messRules") or "",
        }

    return dict(cache.get(loader))


@router.get("")
def get_mess_settings(
    user: dict = Depends(require_user),
    store: KeyValueStore = Depends(get_kv_store),
    cache: SettingsCache = Depends(get_settings_cache),
    config: Settings = Depends(get_settings),
):
    return ok(load_mess_settings(store, cache, config))


@router.get("/fee")
def get_fee(
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    cache: SettingsCache = Depends(get_settings_cache),
    config: Settings = Depends(get_settings),
):
    return ok({"monthlyFee": load_mess_settings(store, cache, config)["monthlyFee"]})


@router.post("/fee")
def set_fee(
    payload: FeeRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    cache: SettingsCache = Depends(get_settings_cache),
):
    state = SettingsEntity.upsert(store, {"monthlyFee": payload.monthlyFee})
    cache.invalidate()
    logger.info("Monthly fee set to %s by %s", payload.monthlyFee, user["id"])
    return ok({"monthlyFee": state["monthlyFee"]})


@router.post("/rules")
def set_rules(
    payload: RulesRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    cache: SettingsCache = Depends(get_settings_cache),
):
    state = SettingsEntity.upsert(store, {"messRules": payload.messRules})
    cache.invalidate()
    return ok({"messRules": state["messRules"]})


@router.post("/clear-all-data")
def clear_data(
    user: dict = Depends(require_staff),
    store: KeyValueStore = Depends(get_kv_store),
    cache: SettingsCache = Depends(get_settings_cache),
):
    removed = clear_all_data(store)
    cache.invalidate()
    logger.warning("All data cleared by %s: %s", user["id"], removed)
    return ok({"removed": removed})
