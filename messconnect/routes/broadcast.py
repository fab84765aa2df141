"""
Announcements emailed to every approved student.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from messconnect.dependencies import get_email_sender, get_kv_store
from messconnect.entities import BroadcastEntity, UserEntity, new_id, now_ms
from messconnect.kv import KeyValueStore
from messconnect.mailer import EmailSender, message_email, send_quietly
from messconnect.schemas import MessageRequest, ok
from messconnect.security import require_manager, require_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/broadcast", tags=["broadcast"])


@router.get("")
def list_broadcasts(
    user: dict = Depends(require_user), store: KeyValueStore = Depends(get_kv_store)
):
    items = sorted(
        BroadcastEntity.list_all(store), key=lambda item: item["createdAt"], reverse=True
    )
    return ok({"broadcasts": items})


@router.post("")
def send_broadcast(
    payload: MessageRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    mailer: EmailSender = Depends(get_email_sender),
):
    recipients = [
        item
        for item in UserEntity.list_all(store)
        if item.get("role") == "student" and item.get("status") == "approved"
    ]
    body = message_email(payload.subject, payload.message)
    delivered = sum(
        1
        for student in recipients
        if send_quietly(mailer, student["email"] or student["id"], payload.subject, body)
    )
    record = BroadcastEntity.create(
        store,
        {
            "id": new_id(),
            "subject": payload.subject,
            "message": payload.message,
            "sentBy": user["id"],
            "recipientCount": delivered,
            "createdAt": now_ms(),
        },
    )
    logger.info("Broadcast %s delivered to %d of %d students", record["id"], delivered, len(recipients))
    return ok(record)
