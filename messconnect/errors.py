"""
Domain exceptions shared by the store, entity layer and collaborators.
"""

from __future__ import annotations


class StorageUnavailableError(RuntimeError):
    """The backing key-value store could not be reached."""


class EntityExistsError(ValueError):
    def __init__(self, entity_name: str, entity_id: str):
        super().__init__(f"{entity_name} {entity_id!r} already exists")
        self.entity_name = entity_name
        self.entity_id = entity_id


class EntityNotFoundError(LookupError):
    def __init__(self, entity_name: str, entity_id: str):
        super().__init__(f"{entity_name} {entity_id!r} not found")
        self.entity_name = entity_name
        self.entity_id = entity_id


class UpstreamServiceError(RuntimeError):
    """A third-party HTTP service (payment gateway, email) failed."""


class InvalidTokenError(ValueError):
    """A verification or reset token is unknown, used or expired."""
