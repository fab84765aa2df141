"""
Complaints and suggestions: students submit, staff read, managers reply.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Optional, Type

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.datastructures import UploadFile

from messconnect.dependencies import get_email_sender, get_kv_store, get_storage_client
from messconnect.entities import (
    ComplaintEntity,
    IndexedEntity,
    SuggestionEntity,
    new_id,
    now_ms,
)
from messconnect.kv import KeyValueStore
from messconnect.mailer import EmailSender, message_email, send_quietly
from messconnect.schemas import ComplaintRequest, FeedbackRequest, ReplyRequest, ok
from messconnect.security import require_manager, require_staff, require_student
from messconnect.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["feedback"])

MAX_IMAGE_BYTES = 5 * 1024 * 1024
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}


def _present(item: dict, storage: StorageClient) -> dict:
    if item.get("imagePath") and not item.get("imageUrl"):
        return {**item, "imageUrl": storage.presign_get(item["imagePath"])}
    return item


def _newest_first(items: list) -> list:
    return sorted(items, key=lambda item: item.get("createdAt", 0), reverse=True)


def _safe_filename(filename: str) -> str:
    base = os.path.basename(filename or "image")
    return re.sub(r"[^A-Za-z0-9._-]", "_", base)[:80] or "image"


def _create(
    entity_cls: Type[IndexedEntity], store: KeyValueStore, student: dict, fields: dict
) -> dict:
    record = entity_cls.create(
        store,
        {
            "id": new_id(),
            "studentId": student["id"],
            "studentName": student["name"],
            "createdAt": now_ms(),
            **fields,
        },
    )
    logger.info("%s %s submitted by %s", entity_cls.entity_name, record["id"], student["id"])
    return record


def _reply(
    entity_cls: Type[IndexedEntity],
    item_id: str,
    reply: str,
    store: KeyValueStore,
    mailer: EmailSender,
) -> dict:
    entity = entity_cls(store, item_id)
    if not entity.exists():
        raise HTTPException(
            status_code=404, detail=f"{entity_cls.entity_name.capitalize()} not found."
        )
    item = entity.patch({"reply": reply, "repliedAt": now_ms()})
    subject = f"Reply to your {entity_cls.entity_name}"
    send_quietly(mailer, item["studentId"], subject, message_email(subject, reply))
    return item


async def _read_complaint_body(request: Request) -> tuple[dict, Optional[UploadFile]]:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        image = form.get("image")
        data = {
            "text": form.get("text") or "",
            "imageUrl": form.get("imageUrl") or None,
        }
        if isinstance(image, UploadFile) and image.filename:
            return data, image
        return data, None
    try:
        data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body.")
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body.")
    return data, None


@router.post("/complaints")
async def submit_complaint(
    request: Request,
    student: dict = Depends(require_student),
    store: KeyValueStore = Depends(get_kv_store),
    storage: StorageClient = Depends(get_storage_client),
):
    data, image = await _read_complaint_body(request)
    try:
        payload = ComplaintRequest.model_validate(data)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())

    complaint_id = new_id()
    fields = {"id": complaint_id, "text": payload.text, "imageUrl": payload.imageUrl}
    if image is not None:
        if image.content_type not in ALLOWED_IMAGE_TYPES:
            raise HTTPException(status_code=400, detail="Image must be a JPEG, PNG, WebP or GIF.")
        content = await image.read()
        if len(content) > MAX_IMAGE_BYTES:
            raise HTTPException(status_code=400, detail="Image must be 5 MB or smaller.")
        path = f"complaints/{complaint_id}/{_safe_filename(image.filename)}"
        await run_in_threadpool(storage.upload_bytes, path, content, image.content_type)
        fields["imagePath"] = path

    record = await run_in_threadpool(_create, ComplaintEntity, store, student, fields)
    return ok(_present(record, storage))


@router.get("/complaints/mine")
def my_complaints(
    student: dict = Depends(require_student),
    store: KeyValueStore = Depends(get_kv_store),
    storage: StorageClient = Depends(get_storage_client),
):
    items = [
        _present(item, storage)
        for item in ComplaintEntity.list_all(store)
        if item.get("studentId") == student["id"]
    ]
    return ok({"complaints": _newest_first(items)})


@router.get("/complaints/all")
def all_complaints(
    user: dict = Depends(require_staff),
    store: KeyValueStore = Depends(get_kv_store),
    storage: StorageClient = Depends(get_storage_client),
):
    items = [_present(item, storage) for item in ComplaintEntity.list_all(store)]
    return ok({"complaints": _newest_first(items)})


@router.post("/complaints/{complaint_id}/reply")
def reply_to_complaint(
    complaint_id: str,
    payload: ReplyRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    mailer: EmailSender = Depends(get_email_sender),
    storage: StorageClient = Depends(get_storage_client),
):
    item = _reply(ComplaintEntity, complaint_id, payload.reply, store, mailer)
    return ok(_present(item, storage))


@router.post("/suggestions")
def submit_suggestion(
    payload: FeedbackRequest,
    student: dict = Depends(require_student),
    store: KeyValueStore = Depends(get_kv_store),
):
    record = _create(SuggestionEntity, store, student, {"text": payload.text})
    return ok(record)


@router.get("/suggestions/mine")
def my_suggestions(
    student: dict = Depends(require_student),
    store: KeyValueStore = Depends(get_kv_store),
):
    items = [
        item
        for item in SuggestionEntity.list_all(store)
        if item.get("studentId") == student["id"]
    ]
    return ok({"suggestions": _newest_first(items)})


@router.get("/suggestions/all")
def all_suggestions(
    user: dict = Depends(require_staff),
    store: KeyValueStore = Depends(get_kv_store),
):
    return ok({"suggestions": _newest_first(SuggestionEntity.list_all(store))})


@router.post("/suggestions/{suggestion_id}/reply")
def reply_to_suggestion(
    suggestion_id: str,
    payload: ReplyRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    mailer: EmailSender = Depends(get_email_sender),
):
    return ok(_reply(SuggestionEntity, suggestion_id, payload.reply, store, mailer))
