"""Form payloads for the entities the harness creates.

Human-chosen values (custom codes, names) carry a per-call unique suffix so
concurrently running scenarios never collide on the shared backend.
"""
from __future__ import annotations

import secrets
import time
from typing import Any, Dict, Optional

# A well-formed ObjectId that no backend record will ever carry.
NONEXISTENT_ID = "000000000000000000000000"
NONEXISTENT_CODE = "CODIGO_QUE_NO_EXISTE_123"

DEFAULT_VALID_FROM = "2025-08-01T08:00:00Z"
DEFAULT_VALID_TO = "2025-08-31T23:59:59Z"


def unique_suffix() -> str:
    """Last six digits of the epoch millis plus four random hex chars."""
    return f"{int(time.time() * 1000) % 1_000_000:06d}{secrets.token_hex(2)}"


def coupon_payload(
    group_id: str,
    *,
    reusable: bool,
    custom_code: Optional[str] = None,
    detail: Optional[str] = None,
    discount_type: str = "percent",
    percent: int = 10,
    amount: Optional[int] = None,
    max_use: int = 1,
    customer_max_use: int = 1,
    valid_from: str = DEFAULT_VALID_FROM,
    valid_to: str = DEFAULT_VALID_TO,
    payment_required: bool = False,
    **extra: Any,
) -> Dict[str, Any]:
    suffix = unique_suffix()
    payload: Dict[str, Any] = {
        "group": group_id,
        "valid_from": valid_from,
        "valid_to": valid_to,
        "is_reusable": reusable,
        "max_use": max_use,
        "customer_max_use": customer_max_use,
        "detail": detail or f"QA Test - {'Reusable' if reusable else 'Single Use'} Coupon {suffix}",
        "quantity": 1,
        "discount_type": discount_type,
        "type": "ppv-live",
        "type_code": f"qa_test_{'reusable' if reusable else 'single'}_{suffix}",
        "payment_required": payment_required,
    }
    if discount_type == "amount":
        payload["amount"] = amount if amount is not None else 15
    else:
        payload["percent"] = percent
    if custom_code:
        payload["custom_code"] = custom_code
    payload.update(extra)
    return payload


def coupon_update_payload(group_id: str, **overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "group": group_id,
        "valid_from": DEFAULT_VALID_FROM,
        "valid_to": "2025-09-30T23:59:59Z",
        "is_reusable": True,
        "max_use": 10,
        "customer_max_use": 5,
        "detail": "QA Test - Coupon Updated",
        "discount_type": "amount",
        "amount": 25,
        "type": "ppv-live",
        "type_code": "qa_test_updated",
        "payment_required": True,
    }
    payload.update(overrides)
    return payload


def invalid_coupon_payload() -> Dict[str, Any]:
    """Every field malformed: empty group, unparseable date, out-of-range numbers."""
    return {
        "group": "",
        "valid_from": "fecha-invalida",
        "valid_to": DEFAULT_VALID_TO,
        "is_reusable": "maybe",
        "max_use": "-1",
        "customer_max_use": "texto",
        "custom_code": "INVALID CODE WITH SPACES AND SPECIAL CHARS!",
        "detail": "Negative test - invalid data",
        "quantity": "0",
        "discount_type": "invalid_type",
        "amount": "not_a_number",
        "percent": "150",
        "type": "",
        "type_code": "",
        "payment_required": "not_boolean",
    }


def category_payload(name: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "name": name or f"QA Test Category {unique_suffix()}",
        "description": "Automated QA test category",
        "is_active": True,
    }
    payload.update(extra)
    return payload


def invalid_category_payload() -> Dict[str, Any]:
    return {"name": "", "description": "", "is_active": "invalid_boolean"}
