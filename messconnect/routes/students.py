"""
Student administration: approval workflow, removal and direct messages.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from messconnect.dependencies import get_email_sender, get_kv_store, get_storage_client
from messconnect.entities import (
    ComplaintEntity,
    UserEntity,
    delete_user_cascade,
    owned_by,
    public_user,
)
from messconnect.kv import KeyValueStore
from messconnect.mailer import EmailSender, message_email, send_quietly, status_email
from messconnect.schemas import MessageRequest, ok
from messconnect.security import require_manager, require_staff
from messconnect.storage import StorageClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/students", tags=["students"])


def _load_student(store: KeyValueStore, student_id: str) -> UserEntity:
    entity = UserEntity(store, student_id)
    state = entity.get_state_or_none()
    if state is None or state.get("role") != "student":
        raise HTTPException(status_code=404, detail="Student not found.")
    return entity


def _set_status(
    student_id: str, new_status: str, store: KeyValueStore, mailer: EmailSender
) -> dict:
    student = _load_student(store, student_id).patch({"status": new_status})
    logger.info("Student %s marked %s", student_id, new_status)
    send_quietly(
        mailer,
        student["email"] or student["id"],
        "Registration update",
        status_email(student["name"], approved=new_status == "approved"),
    )
    return public_user(student)


@router.get("")
def list_students(
    user: dict = Depends(require_staff), store: KeyValueStore = Depends(get_kv_store)
):
    students = [
        public_user(item)
        for item in UserEntity.list_all(store)
        if item.get("role") == "student"
    ]
    return ok({"students": students})


@router.post("/{student_id}/approve")
def approve_student(
    student_id: str,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    mailer: EmailSender = Depends(get_email_sender),
):
    return ok(_set_status(student_id, "approved", store, mailer))


@router.post("/{student_id}/reject")
def reject_student(
    student_id: str,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    mailer: EmailSender = Depends(get_email_sender),
):
    return ok(_set_status(student_id, "rejected", store, mailer))


@router.delete("/{student_id}")
def delete_student(
    student_id: str,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    storage: StorageClient = Depends(get_storage_client),
):
    _load_student(store, student_id)
    for complaint in owned_by(ComplaintEntity, store, student_id):
        if complaint.get("imagePath"):
            storage.delete(complaint["imagePath"])
    removed = delete_user_cascade(store, student_id)
    return ok({"id": student_id, "removed": removed})


@router.post("/{student_id}/notify")
def notify_student(
    student_id: str,
    payload: MessageRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    mailer: EmailSender = Depends(get_email_sender),
):
    student = _load_student(store, student_id).get_state()
    sent = send_quietly(
        mailer,
        student["email"] or student["id"],
        payload.subject,
        message_email(payload.subject, payload.message),
    )
    if not sent:
        raise HTTPException(status_code=400, detail="Failed to send notification.")
    return ok({"id": student_id, "sent": True})
