"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from messconnect.cache import SettingsCache
from messconnect.config import get_settings
from messconnect.kv import (
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
    SqlKeyValueStore,
)
from messconnect.mailer import EmailSender, InMemoryEmailSender, ResendEmailSender
from messconnect.payments import InMemoryPaymentGateway, PaymentGateway, RazorpayGateway
from messconnect.storage import CosStorageClient, InMemoryStorageClient, StorageClient

logger = logging.getLogger(__name__)

_kv_store: KeyValueStore | None = None
_storage_client: StorageClient | None = None
_email_sender: EmailSender | None = None
_settings_cache: SettingsCache | None = None


def get_kv_store() -> KeyValueStore:
    """
    Return a singleton store so entity state persists across requests.
    """
    global _kv_store
    if _kv_store:
        return _kv_store

    settings = get_settings()
    if settings.use_in_memory_backends:
        _kv_store = InMemoryKeyValueStore()
    elif settings.redis_url:
        _kv_store = RedisKeyValueStore(
            url=settings.redis_url, namespace=settings.kv_namespace
        )
    elif settings.database_url:
        _kv_store = SqlKeyValueStore(settings.database_url)
    else:
        logger.warning("No REDIS_URL or DATABASE_URL configured; data is not durable")
        _kv_store = InMemoryKeyValueStore()
    return _kv_store


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.cos_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = CosStorageClient(
            bucket=settings.cos_bucket,
            region=settings.cos_region or "",
            endpoint=settings.cos_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return _storage_client


def get_email_sender() -> EmailSender:
    global _email_sender
    if _email_sender:
        return _email_sender

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.resend_api_key:
        _email_sender = InMemoryEmailSender()
    else:
        _email_sender = ResendEmailSender(
            api_key=settings.resend_api_key, sender=settings.email_from
        )
    return _email_sender


def get_payment_gateway() -> Optional[PaymentGateway]:
    """
    Build the gateway from the current configuration, or None when the
    Razorpay keys are missing.
    """
    settings = get_settings()
    if settings.razorpay_key_id and settings.razorpay_key_secret:
        return RazorpayGateway(
            key_id=settings.razorpay_key_id, key_secret=settings.razorpay_key_secret
        )
    if settings.use_in_memory_backends:
        return InMemoryPaymentGateway()
    return None


def get_settings_cache() -> SettingsCache:
    global _settings_cache
    if _settings_cache:
        return _settings_cache
    _settings_cache = SettingsCache(
        ttl_seconds=get_settings().settings_cache_ttl_seconds
    )
    return _settings_cache
