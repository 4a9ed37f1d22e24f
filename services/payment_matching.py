"""
Payment matching: decide which calls have been paid for.

A call counts as paid when a payment references its id, or, for older
payment records that carry no reliable call id, when a payment snapshot has
the same normalized (name, phone digits, address) key. The second rule is a
heuristic and is reported as such through matchConfidence.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

from database.models import Call, Payment, PaymentCall
from utils.logger import service_logger as logger

WHITESPACE_RE = re.compile(r"\s+")
NON_DIGIT_RE = re.compile(r"\D")

PAID = "Paid"
PENDING = "Pending"
EXACT = "Exact"
HEURISTIC = "Heuristic"


def normalize_name(value: Optional[str]) -> str:
    return WHITESPACE_RE.sub(" ", str(value or "")).strip().lower()


def normalize_phone(value: Optional[str]) -> str:
    return NON_DIGIT_RE.sub("", str(value or ""))


def normalize_address(value: Optional[str]) -> str:
    # internal spacing is significant, only the ends are trimmed
    return str(value or "").strip().lower()


def normalize_key(name: Optional[str], phone: Optional[str], address: Optional[str]) -> Optional[str]:
    """name|phone|address key, or None when all three parts are empty"""
    parts = (normalize_name(name), normalize_phone(phone), normalize_address(address))
    if not any(parts):
        return None
    return "|".join(parts)


def collect_paid_sets(payments: Iterable[Payment]) -> Tuple[Set[str], Set[str]]:
    """Gather the call ids and customer keys referenced by the given payments"""
    paid_ids: Set[str] = set()
    paid_keys: Set[str] = set()
    for payment in payments:
        for ref in payment.calls or []:
            if ref.call_id:
                paid_ids.add(str(ref.call_id).strip())
            key = normalize_key(ref.client_name, ref.phone, ref.address)
            if key:
                paid_keys.add(key)
    return paid_ids, paid_keys


def match_call(call: Call, paid_ids: Set[str], paid_keys: Set[str]) -> Tuple[str, Optional[str]]:
    """
    Returns (status, confidence): ("Paid", "Exact") on an id match,
    ("Paid", "Heuristic") on a key match, ("Pending", None) otherwise
    """
    if str(call.id) in paid_ids:
        return PAID, EXACT
    key = normalize_key(call.client_name, call.phone, call.address)
    if key and key in paid_keys:
        return PAID, HEURISTIC
    return PENDING, None


class PaymentMatchingService:
    """Paid/pending reports for admins and technicians"""

    def __init__(self, db: Session):
        self.db = db

    def customer_payments(self, tech_id: Optional[int] = None) -> Dict[str, Any]:
        """Every call (optionally one technician's) with its paid/pending state"""
        calls_query = self.db.query(Call)
        if tech_id is not None:
            calls_query = calls_query.filter(Call.tech_id == tech_id)
        calls = calls_query.order_by(Call.created_at.desc()).all()

        payments = self.db.query(Payment).options(selectinload(Payment.calls)).all()
        paid_ids, paid_keys = collect_paid_sets(payments)

        items: List[Dict[str, Any]] = []
        for call in calls:
            status, confidence = match_call(call, paid_ids, paid_keys)
            items.append({
                "callId": str(call.id),
                "clientName": call.client_name or "",
                "phone": call.phone or "",
                "address": call.address or "",
                "price": call.price or 0,
                "status": status,
                "matchConfidence": confidence,
                "createdAt": call.created_at.isoformat() if call.created_at else "",
            })

        paid_count = sum(1 for item in items if item["status"] == PAID)
        heuristic_count = sum(1 for item in items if item["matchConfidence"] == HEURISTIC)
        if heuristic_count:
            logger.info("customer payments: %d of %d paid calls matched by name/phone/address",
                        heuristic_count, paid_count)

        return {
            "totalCustomers": len(items),
            "paidCount": paid_count,
            "pendingCount": len(items) - paid_count,
            "items": items,
        }

    def payment_check(self, tech_id: int) -> Dict[str, Any]:
        """
        Paid call ids and customer keys visible to one technician: payments
        the technician submitted plus payments referencing the technician's calls
        """
        own_call_ids = [
            str(row[0]) for row in self.db.query(Call.id).filter(Call.tech_id == tech_id).all()
        ]

        conditions = [Payment.tech_id == tech_id]
        if own_call_ids:
            conditions.append(Payment.calls.any(PaymentCall.call_id.in_(own_call_ids)))

        payments = (
            self.db.query(Payment)
            .options(selectinload(Payment.calls))
            .filter(or_(*conditions))
            .all()
        )
        paid_ids, paid_keys = collect_paid_sets(payments)

        return {
            "paidCallIds": sorted(paid_ids),
            "paidKeys": sorted(paid_keys),
        }
