"""
Entity layer over the key-value store.

An entity is a flat JSON record stored under `<entity_name>:<id>`. Indexed
entities also keep their id in a per-type `Index` so they can be listed.
Updates are shallow patches; there is no versioning, so concurrent patches
to the same record race and the last write wins.
"""

from __future__ import annotations

import copy
import logging
import time
import uuid
from typing import ClassVar, Dict, List, Optional, Tuple, Type

from messconnect.errors import (
    EntityExistsError,
    EntityNotFoundError,
    InvalidTokenError,
)
from messconnect.index import DEFAULT_PAGE_LIMIT, Index
from messconnect.kv import KeyValueStore

logger = logging.getLogger(__name__)

WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


class Entity:
    """A single record addressed by id."""

    entity_name: ClassVar[str] = ""
    initial_state: ClassVar[dict] = {}

    def __init__(self, store: KeyValueStore, entity_id: str):
        self.store = store
        self.id = entity_id

    @classmethod
    def key_for(cls, entity_id: str) -> str:
        return f"{cls.entity_name}:{entity_id}"

    @property
    def key(self) -> str:
        return self.key_for(self.id)

    def exists(self) -> bool:
        return self.store.get(self.key) is not None

    def get_state(self) -> dict:
        state = self.store.get(self.key)
        if state is None:
            raise EntityNotFoundError(self.entity_name, self.id)
        return state

    def get_state_or_none(self) -> Optional[dict]:
        return self.store.get(self.key)

    def save(self, state: dict) -> dict:
        state = {**state, "id": self.id}
        self.store.put(self.key, state)
        return state

    def patch(self, partial: dict) -> dict:
        """Shallow-merge `partial` onto the stored state and persist it."""
        state = self.get_state()
        state.update(partial)
        state["id"] = self.id
        self.store.put(self.key, state)
        return state

    def delete(self) -> bool:
        return self.store.delete(self.key)

    @classmethod
    def build_state(cls, state: dict) -> dict:
        merged = copy.deepcopy(cls.initial_state)
        merged.update(state)
        return merged

    @classmethod
    def create(cls, store: KeyValueStore, state: dict) -> dict:
        """Persist a new record; fails when the id is already taken."""
        entity_id = state.get("id")
        if not entity_id:
            raise ValueError(f"{cls.entity_name} requires an id")
        record = cls.build_state(state)
        if not store.put_if_absent(cls.key_for(entity_id), record):
            raise EntityExistsError(cls.entity_name, entity_id)
        return record

    @classmethod
    def delete_many(cls, store: KeyValueStore, ids: List[str]) -> int:
        return store.delete_many([cls.key_for(entity_id) for entity_id in ids])


class IndexedEntity(Entity):
    """Entity whose ids are tracked in a per-type index for listing."""

    index_name: ClassVar[str] = ""

    @classmethod
    def index(cls, store: KeyValueStore) -> Index:
        return Index(store, cls.index_name or cls.entity_name)

    @classmethod
    def create(cls, store: KeyValueStore, state: dict) -> dict:
        record = super().create(store, state)
        cls.index(store).add(record["id"])
        return record

    def delete(self) -> bool:
        deleted = super().delete()
        self.index(self.store).remove(self.id)
        return deleted

    @classmethod
    def delete_many(cls, store: KeyValueStore, ids: List[str]) -> int:
        ids = list(ids)
        deleted = super().delete_many(store, ids)
        cls.index(store).remove_many(ids)
        return deleted

    @classmethod
    def list(
        cls,
        store: KeyValueStore,
        cursor: Optional[str] = None,
        limit: int = DEFAULT_PAGE_LIMIT,
    ) -> Tuple[List[dict], Optional[str]]:
        ids, next_cursor = cls.index(store).page(cursor, limit)
        states = store.get_many([cls.key_for(entity_id) for entity_id in ids])
        # A record deleted after its id was paged in is simply skipped.
        return [state for state in states if state is not None], next_cursor

    @classmethod
    def list_all(cls, store: KeyValueStore) -> List[dict]:
        items: List[dict] = []
        cursor: Optional[str] = None
        while True:
            page, cursor = cls.list(store, cursor, limit=500)
            items.extend(page)
            if cursor is None:
                return items

    @classmethod
    def clear(cls, store: KeyValueStore) -> int:
        index = cls.index(store)
        ids = index.list_all()
        deleted = super().delete_many(store, ids)
        index.clear()
        return deleted


class SingletonEntity(Entity):
    """Entity type with exactly one live instance under a fixed id."""

    singleton_id: ClassVar[str] = "singleton"

    @classmethod
    def instance(cls, store: KeyValueStore) -> "SingletonEntity":
        return cls(store, cls.singleton_id)

    @classmethod
    def load(cls, store: KeyValueStore) -> Optional[dict]:
        return cls.instance(store).get_state_or_none()

    @classmethod
    def upsert(cls, store: KeyValueStore, partial: dict) -> dict:
        entity = cls.instance(store)
        current = entity.get_state_or_none() or cls.build_state({})
        current.update(partial)
        return entity.save(current)

    @classmethod
    def clear(cls, store: KeyValueStore) -> int:
        return 1 if cls.instance(store).delete() else 0


class UserEntity(IndexedEntity):
    entity_name = "user"
    initial_state = {
        "id": "",
        "name": "",
        "email": "",
        "phone": "",
        "passwordHash": "",
        "role": "student",
        "status": "pending",
        "verified": False,
        "createdAt": 0,
    }


class ComplaintEntity(IndexedEntity):
    entity_name = "complaint"
    owner_field = "studentId"
    initial_state = {
        "id": "",
        "studentId": "",
        "studentName": "",
        "text": "",
        "imageUrl": None,
        "imagePath": None,
        "reply": None,
        "repliedAt": None,
        "createdAt": 0,
    }


class SuggestionEntity(IndexedEntity):
    entity_name = "suggestion"
    owner_field = "studentId"
    initial_state = {
        "id": "",
        "studentId": "",
        "studentName": "",
        "text": "",
        "reply": None,
        "repliedAt": None,
        "createdAt": 0,
    }


class PaymentEntity(IndexedEntity):
    entity_name = "payment"
    owner_field = "studentId"
    initial_state = {
        "id": "",
        "studentId": "",
        "studentName": "",
        "amount": 0,
        "month": "",
        "status": "paid",
        "method": "razorpay",
        "orderId": None,
        "createdAt": 0,
    }


class PaymentMonthEntity(IndexedEntity):
    """
    Claim on one student's dues for one month. Creating it is atomic, so at
    most one payment can settle a given month.
    """

    entity_name = "payment_month"
    owner_field = "studentId"
    initial_state = {"id": "", "studentId": "", "month": "", "paymentId": ""}

    @staticmethod
    def id_for(student_id: str, month: str) -> str:
        return f"{student_id}:{month}"

    @classmethod
    def is_claimed(cls, store: KeyValueStore, student_id: str, month: str) -> bool:
        return cls(store, cls.id_for(student_id, month)).exists()

    @classmethod
    def claim(
        cls, store: KeyValueStore, student_id: str, month: str, payment_id: str
    ) -> dict:
        """Raises EntityExistsError when the month is already settled."""
        return cls.create(
            store,
            {
                "id": cls.id_for(student_id, month),
                "studentId": student_id,
                "month": month,
                "paymentId": payment_id,
            },
        )

    @classmethod
    def release(cls, store: KeyValueStore, student_id: str, month: str) -> None:
        cls(store, cls.id_for(student_id, month)).delete()


class GuestPaymentEntity(IndexedEntity):
    entity_name = "guest_payment"
    initial_state = {
        "id": "",
        "name": "",
        "email": None,
        "phone": None,
        "amount": 0,
        "status": "paid",
        "method": "razorpay",
        "orderId": None,
        "createdAt": 0,
    }


class NoteEntity(IndexedEntity):
    entity_name = "note"
    initial_state = {"id": "", "text": "", "completed": False, "createdAt": 0}


class BroadcastEntity(IndexedEntity):
    entity_name = "broadcast"
    initial_state = {
        "id": "",
        "subject": "",
        "message": "",
        "sentBy": "",
        "recipientCount": 0,
        "createdAt": 0,
    }


class TokenEntity(IndexedEntity):
    """Single-use, time-bounded token owned by a user."""

    owner_field = "userId"
    initial_state = {"id": "", "userId": "", "expiresAt": 0, "used": False}

    @classmethod
    def issue(cls, store: KeyValueStore, user_id: str, ttl_minutes: int) -> dict:
        return cls.create(
            store,
            {
                "id": uuid.uuid4().hex + uuid.uuid4().hex,
                "userId": user_id,
                "expiresAt": now_ms() + ttl_minutes * 60 * 1000,
                "used": False,
            },
        )

    def consume(self) -> dict:
        """Mark the token used and return it; rejects used or expired tokens."""
        state = self.get_state_or_none()
        if state is None:
            raise InvalidTokenError("Invalid or expired token.")
        if state.get("used"):
            raise InvalidTokenError("This link has already been used.")
        if state.get("expiresAt", 0) < now_ms():
            raise InvalidTokenError("Invalid or expired token.")
        return self.patch({"used": True})


class VerificationTokenEntity(TokenEntity):
    entity_name = "verification_token"


class ResetTokenEntity(TokenEntity):
    entity_name = "reset_token"


def default_menu_days() -> List[dict]:
    return [
        {"day": day, "breakfast": "", "lunch": "", "dinner": ""} for day in WEEKDAYS
    ]


class MenuEntity(SingletonEntity):
    entity_name = "menu"
    initial_state = {"id": "singleton", "days": [], "updatedAt": 0}


class SettingsEntity(SingletonEntity):
    entity_name = "settings"
    initial_state = {"id": "singleton", "monthlyFee": None, "messRules": ""}


INDEXED_ENTITIES: Tuple[Type[IndexedEntity], ...] = (
    UserEntity,
    ComplaintEntity,
    SuggestionEntity,
    PaymentEntity,
    PaymentMonthEntity,
    GuestPaymentEntity,
    NoteEntity,
    BroadcastEntity,
    VerificationTokenEntity,
    ResetTokenEntity,
)

SINGLETON_ENTITIES: Tuple[Type[SingletonEntity], ...] = (MenuEntity, SettingsEntity)

# Records owned by a student; removed together with the student.
USER_DEPENDENTS: Tuple[Type[IndexedEntity], ...] = (
    ComplaintEntity,
    SuggestionEntity,
    PaymentEntity,
    PaymentMonthEntity,
    VerificationTokenEntity,
    ResetTokenEntity,
)


def public_user(state: dict) -> dict:
    return {key: value for key, value in state.items() if key != "passwordHash"}


def owned_by(
    entity_cls: Type[IndexedEntity], store: KeyValueStore, user_id: str
) -> List[dict]:
    field = getattr(entity_cls, "owner_field")
    return [item for item in entity_cls.list_all(store) if item.get(field) == user_id]


def delete_user_cascade(store: KeyValueStore, user_id: str) -> Dict[str, int]:
    """Delete a user and every record they own. Not transactional."""
    removed: Dict[str, int] = {}
    for entity_cls in USER_DEPENDENTS:
        ids = [item["id"] for item in owned_by(entity_cls, store, user_id)]
        removed[entity_cls.entity_name] = entity_cls.delete_many(store, ids)
    removed[UserEntity.entity_name] = 1 if UserEntity(store, user_id).delete() else 0
    logger.info("Deleted user %s with dependents %s", user_id, removed)
    return removed


def clear_all_data(store: KeyValueStore) -> Dict[str, int]:
    """Wipe every entity type. Loops per type with no rollback on failure."""
    removed: Dict[str, int] = {}
    for entity_cls in INDEXED_ENTITIES + SINGLETON_ENTITIES:
        removed[entity_cls.entity_name] = entity_cls.clear(store)
    return removed
