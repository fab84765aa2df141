"""
Dues, gateway checkout, manual (cash) payments and the financial summary.

A month is settled by claiming a `PaymentMonthEntity`; the claim is made
before the payment record so concurrent requests cannot both settle it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from messconnect.cache import SettingsCache
from messconnect.config import Settings, get_settings
from messconnect.dependencies import get_kv_store, get_payment_gateway, get_settings_cache
from messconnect.entities import (
    GuestPaymentEntity,
    PaymentEntity,
    PaymentMonthEntity,
    UserEntity,
    new_id,
    now_ms,
    owned_by,
)
from messconnect.errors import EntityExistsError, UpstreamServiceError
from messconnect.kv import KeyValueStore
from messconnect.payments import PaymentGateway, to_minor_units
from messconnect.routes.settings import load_mess_settings
from messconnect.schemas import (
    MONTH_PATTERN,
    CreateOrderRequest,
    MarkAsPaidRequest,
    VerifyPaymentRequest,
    ok,
)
from messconnect.security import (
    get_optional_user,
    require_manager,
    require_staff,
    require_student,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

ALREADY_PAID = "Dues for this month are already paid."
VERIFICATION_FAILED = "Payment verification failed."
ORDER_MISMATCH = "Payment details do not match the order."


def current_month() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m")


def _require_gateway(gateway: Optional[PaymentGateway]) -> PaymentGateway:
    if gateway is None:
        raise HTTPException(status_code=400, detail="Payment gateway is not configured.")
    return gateway


def _payer(user: Optional[dict]) -> Optional[dict]:
    """The student paying, None for a guest; other roles cannot pay."""
    if user is None:
        return None
    if user.get("role") != "student":
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def _signed_order(gateway: PaymentGateway, payload: VerifyPaymentRequest) -> dict:
    """
    Look up the order the signature covers and check the posted amount
    against it. Amount, month and payer are taken from the order.
    """
    try:
        order = gateway.fetch_order(payload.orderId)
    except UpstreamServiceError:
        logger.exception("Order lookup failed for %s", payload.orderId)
        raise HTTPException(status_code=400, detail=VERIFICATION_FAILED)
    if order is None:
        raise HTTPException(status_code=400, detail=VERIFICATION_FAILED)
    if to_minor_units(payload.amount) != order.get("amount"):
        logger.warning("Amount mismatch for order %s", payload.orderId)
        raise HTTPException(status_code=400, detail=ORDER_MISMATCH)
    return order


@router.get("/payments/mine")
def my_dues(
    student: dict = Depends(require_student),
    store: KeyValueStore = Depends(get_kv_store),
    cache: SettingsCache = Depends(get_settings_cache),
    config: Settings = Depends(get_settings),
):
    fee = load_mess_settings(store, cache, config)["monthlyFee"]
    payments = sorted(
        owned_by(PaymentEntity, store, student["id"]),
        key=lambda payment: (payment["month"], payment["createdAt"]),
        reverse=True,
    )
    month = current_month()
    paid = PaymentMonthEntity.is_claimed(store, student["id"], month)
    return ok(
        {
            "monthlyFee": fee,
            "currentMonth": month,
            "currentMonthPaid": paid,
            "amountDue": 0 if paid else fee,
            "payments": payments,
        }
    )


@router.post("/payments/create-order")
def create_order(
    payload: CreateOrderRequest,
    user: Optional[dict] = Depends(get_optional_user),
    store: KeyValueStore = Depends(get_kv_store),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    cache: SettingsCache = Depends(get_settings_cache),
    config: Settings = Depends(get_settings),
):
    student = _payer(user)
    gateway = _require_gateway(gateway)

    if student is not None:
        month = payload.month or current_month()
        if PaymentMonthEntity.is_claimed(store, student["id"], month):
            raise HTTPException(status_code=400, detail=ALREADY_PAID)
        amount = load_mess_settings(store, cache, config)["monthlyFee"]
        receipt = f"dues-{month}-{new_id()[:8]}"
        notes = {"studentId": student["id"], "month": month}
    else:
        if payload.guest is None or payload.amount is None:
            raise HTTPException(status_code=400, detail="Guest name and amount are required.")
        month = None
        amount = payload.amount
        receipt = f"guest-{new_id()[:12]}"
        notes = {"guestName": payload.guest.name}

    try:
        order = gateway.create_order(amount, config.razorpay_currency, receipt, notes)
    except UpstreamServiceError:
        logger.exception("Order creation failed for %s", receipt)
        raise HTTPException(status_code=400, detail="Could not create payment order.")

    return ok(
        {
            "orderId": order["id"],
            "amount": amount,
            "currency": order.get("currency", config.razorpay_currency),
            "keyId": gateway.key_id,
            "month": month,
        }
    )


def _record_student_payment(
    store: KeyValueStore, student: dict, order: dict, payload: VerifyPaymentRequest
) -> dict:
    notes = order.get("notes") or {}
    if notes.get("studentId") != student["id"]:
        raise HTTPException(status_code=400, detail=ORDER_MISMATCH)
    month = notes.get("month")
    if not month or (payload.month and payload.month != month):
        raise HTTPException(status_code=400, detail=ORDER_MISMATCH)

    try:
        PaymentMonthEntity.claim(store, student["id"], month, payload.paymentId)
    except EntityExistsError:
        raise HTTPException(status_code=400, detail=ALREADY_PAID)
    try:
        return PaymentEntity.create(
            store,
            {
                "id": payload.paymentId,
                "studentId": student["id"],
                "studentName": student["name"],
                "amount": order["amount"] / 100,
                "month": month,
                "status": "paid",
                "method": "razorpay",
                "orderId": payload.orderId,
                "createdAt": now_ms(),
            },
        )
    except EntityExistsError:
        PaymentMonthEntity.release(store, student["id"], month)
        raise HTTPException(status_code=400, detail="Payment already processed.")


def _record_guest_payment(
    store: KeyValueStore, order: dict, payload: VerifyPaymentRequest
) -> dict:
    notes = order.get("notes") or {}
    if notes.get("studentId"):
        raise HTTPException(status_code=400, detail=ORDER_MISMATCH)
    if payload.guest is None:
        raise HTTPException(status_code=400, detail="Guest details are required.")
    try:
        return GuestPaymentEntity.create(
            store,
            {
                "id": payload.paymentId,
                "name": payload.guest.name,
                "email": payload.guest.email,
                "phone": payload.guest.phone,
                "amount": order["amount"] / 100,
                "status": "paid",
                "method": "razorpay",
                "orderId": payload.orderId,
                "createdAt": now_ms(),
            },
        )
    except EntityExistsError:
        raise HTTPException(status_code=400, detail="Payment already processed.")


@router.post("/payments/verify-payment")
def verify_payment(
    payload: VerifyPaymentRequest,
    user: Optional[dict] = Depends(get_optional_user),
    store: KeyValueStore = Depends(get_kv_store),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
):
    student = _payer(user)
    gateway = _require_gateway(gateway)
    if not gateway.verify(payload.orderId, payload.paymentId, payload.signature):
        logger.warning("Signature mismatch for payment %s", payload.paymentId)
        raise HTTPException(status_code=400, detail=VERIFICATION_FAILED)

    if (
        PaymentEntity(store, payload.paymentId).exists()
        or GuestPaymentEntity(store, payload.paymentId).exists()
    ):
        raise HTTPException(status_code=400, detail="Payment already processed.")

    order = _signed_order(gateway, payload)
    if student is not None:
        record = _record_student_payment(store, student, order, payload)
    else:
        record = _record_guest_payment(store, order, payload)

    logger.info("Recorded payment %s (%s)", record["id"], record["amount"])
    return ok(record)


@router.post("/payments/mark-as-paid")
def mark_as_paid(
    payload: MarkAsPaidRequest,
    user: dict = Depends(require_manager),
    store: KeyValueStore = Depends(get_kv_store),
    cache: SettingsCache = Depends(get_settings_cache),
    config: Settings = Depends(get_settings),
):
    student = UserEntity(store, payload.studentId).get_state_or_none()
    if student is None or student.get("role") != "student":
        raise HTTPException(status_code=404, detail="Student not found.")

    payment_id = new_id()
    try:
        PaymentMonthEntity.claim(store, student["id"], payload.month, payment_id)
    except EntityExistsError:
        raise HTTPException(
            status_code=400, detail="Student has already paid for this month."
        )
    amount = payload.amount or load_mess_settings(store, cache, config)["monthlyFee"]
    record = PaymentEntity.create(
        store,
        {
            "id": payment_id,
            "studentId": student["id"],
            "studentName": student["name"],
            "amount": amount,
            "month": payload.month,
            "status": "paid",
            "method": "cash",
            "createdAt": now_ms(),
        },
    )
    logger.info("Marked %s paid for %s by %s", student["id"], payload.month, user["id"])
    return ok(record)


@router.get("/financials")
def financials(
    month: Optional[str] = Query(None),
    user: dict = Depends(require_staff),
    store: KeyValueStore = Depends(get_kv_store),
    cache: SettingsCache = Depends(get_settings_cache),
    config: Settings = Depends(get_settings),
):
    if month is not None and not MONTH_PATTERN.match(month):
        raise HTTPException(status_code=400, detail="Month must be in YYYY-MM format")
    month = month or current_month()
    fee = load_mess_settings(store, cache, config)["monthlyFee"]

    payments = PaymentEntity.list_all(store)
    guest_payments = GuestPaymentEntity.list_all(store)
    by_month: dict = defaultdict(float)
    for payment in payments:
        by_month[payment["month"]] += payment["amount"]

    paid_ids = {payment["studentId"] for payment in payments if payment["month"] == month}
    approved = [
        item
        for item in UserEntity.list_all(store)
        if item.get("role") == "student" and item.get("status") == "approved"
    ]
    unpaid = [
        {"id": item["id"], "name": item["name"], "phone": item["phone"]}
        for item in approved
        if item["id"] not in paid_ids
    ]

    return ok(
        {
            "month": month,
            "monthlyFee": fee,
            "totalCollected": sum(payment["amount"] for payment in payments),
            "guestCollected": sum(payment["amount"] for payment in guest_payments),
            "collectedThisMonth": by_month.get(month, 0.0),
            "expectedThisMonth": fee * len(approved),
            "byMonth": dict(sorted(by_month.items())),
            "unpaidStudents": unpaid,
            "payments": sorted(payments, key=lambda p: p["createdAt"], reverse=True),
            "guestPayments": sorted(
                guest_payments, key=lambda p: p["createdAt"], reverse=True
            ),
        }
    )
