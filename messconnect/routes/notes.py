from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from messconnect.dependencies import get_kv_store
from messconnect.entities import NoteEntity, new_id, now_ms
from messconnect.kv import KeyValueStore
from messconnect.schemas import NoteCreateRequest, NoteUpdateRequest, ok
from messconnect.security import require_manager

router = APIRouter(prefix="/notes", tags=["notes"])


def _load_note(store: KeyValueStore, note_id: str) -> NoteEntity:
    entity = NoteEntity(store, note_id)
    if not entity.exists():
        raise HTTPException(status_code=404, detail="Note not found.")
    return entity


@router.get("")
def list_notes(
    user: dict = Depends(require_manager), store: KeyValueStore = Depends(get_kv_store)
):
    notes = sorted(
        NoteEntity.list_all(store), key=lambda note: note["createdAt"], reverse=True
    )
    return ok({"notes": notes})


@router.post("")
def create_note(
    payload: NoteCreateRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
):
    note = NoteEntity.create(
        store,
        {"id": new_id(), "text": payload.text, "completed": False, "createdAt": now_ms()},
    )
    return ok(note)


@router.patch("/{note_id}")
def update_note(
    note_id: str,
    payload: NoteUpdateRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
):
    entity = _load_note(store, note_id)
    changes = payload.model_dump(exclude_none=True)
    return ok(entity.patch(changes) if changes else entity.get_state())


@router.delete("/{note_id}")
def delete_note(
    note_id: str,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
):
    _load_note(store, note_id).delete()
    return ok({"id": note_id})
