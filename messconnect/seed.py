"""
Built-in staff accounts, recreated whenever they are missing.
"""

from __future__ import annotations

import logging

from messconnect.config import Settings
from messconnect.entities import UserEntity, now_ms
from messconnect.errors import EntityExistsError
from messconnect.kv import KeyValueStore
from messconnect.security import hash_password

logger = logging.getLogger(__name__)


def ensure_staff_accounts(store: KeyValueStore, settings: Settings) -> None:
    accounts = (
        (settings.admin_email, "Admin", "0000000000", settings.admin_password, "admin"),
        (
            settings.manager_email,
            "Manager",
            "1111111111",
            settings.manager_password,
            "manager",
        ),
    )
    for email, name, phone, password, role in accounts:
        email = email.lower()
        if UserEntity(store, email).exists():
            continue
        try:
            UserEntity.create(
                store,
                {
                    "id": email,
                    "name": name,
                    "email": email,
                    "phone": phone,
                    "passwordHash": hash_password(password),
                    "role": role,
                    "status": "approved",
                    "verified": True,
                    "createdAt": now_ms(),
                },
            )
        except EntityExistsError:
            # Another request created it first.
            continue
        logger.info("Created %s account %s", role, email)
