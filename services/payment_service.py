"""
Payments submitted by technicians
"""

import csv
import io
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from database.models import Call, Payment, PaymentCall, PaymentMode, ServiceForm, Technician, utcnow
from utils.errors import ConflictError, NotFoundError, ValidationError
from utils.logger import service_logger as logger
from utils.validation import numeric_id, parse_amount, parse_id

CSV_COLUMNS = [
    "id", "techId", "techUsername", "receiver", "mode",
    "onlineAmount", "cashAmount", "total", "calls", "createdAt",
]


def parse_mode(value: Any) -> str:
    text = str(value or "").strip().lower()
    for mode in PaymentMode:
        if mode.value.lower() == text:
            return mode.value
    valid = ", ".join(m.value for m in PaymentMode)
    raise ValidationError(f"Invalid mode. Allowed: {valid}")


def payment_to_dict(payment: Payment, with_signature: bool = True) -> Dict[str, Any]:
    data = {
        "_id": str(payment.id),
        "techId": str(payment.tech_id) if payment.tech_id is not None else None,
        "techUsername": payment.tech_username or "",
        "receiver": payment.receiver or "",
        "mode": payment.mode,
        "onlineAmount": payment.online_amount or 0,
        "cashAmount": payment.cash_amount or 0,
        "calls": [
            {
                "callId": ref.call_id,
                "clientName": ref.client_name or "",
                "phone": ref.phone or "",
                "address": ref.address or "",
                "type": ref.service_type or "",
                "price": ref.price or 0,
                "onlineAmount": ref.online_amount or 0,
                "cashAmount": ref.cash_amount or 0,
            }
            for ref in payment.calls
        ],
        "createdAt": payment.created_at.isoformat() if payment.created_at else None,
    }
    if with_signature:
        data["receiverSignature"] = payment.receiver_signature
    return data


def resolve_range(range_name: str = "today", date_from: Optional[str] = None,
                  date_to: Optional[str] = None, now: Optional[datetime] = None):
    """(start, end) for the payment list filters; either bound may be None"""
    current = now or utcnow()
    if range_name == "today":
        return datetime(current.year, current.month, current.day), None
    if range_name in ("7", "30"):
        return current - timedelta(days=int(range_name)), None
    if range_name == "custom":
        start = end = None
        try:
            if date_from:
                start = datetime.strptime(date_from.strip(), "%Y-%m-%d")
            if date_to:
                # to-date is inclusive
                end = datetime.strptime(date_to.strip(), "%Y-%m-%d") + timedelta(days=1)
        except ValueError:
            raise ValidationError("Dates must be YYYY-MM-DD")
        return start, end
    return None, None


class PaymentService:
    """Payment submission, listing and admin totals"""

    def __init__(self, db: Session):
        self.db = db

    def _call_reference(self, item: Dict[str, Any]) -> PaymentCall:
        """PaymentCall from a submitted item, snapshotting the stored call when it exists"""
        raw_id = item.get("callId")
        call_id = str(raw_id).strip() if raw_id not in (None, "") else None
        call = None
        stored_id = numeric_id(call_id) if call_id else None
        if stored_id is not None:
            call = self.db.query(Call).filter(Call.id == stored_id).first()

        source = {
            "client_name": call.client_name if call else item.get("clientName"),
            "phone": call.phone if call else item.get("phone"),
            "address": call.address if call else item.get("address"),
            "service_type": call.service_type if call else item.get("type"),
            "price": call.price if call else parse_amount(item.get("price")),
        }
        ref = PaymentCall(
            call_id=call_id,
            online_amount=parse_amount(item.get("onlineAmount")),
            cash_amount=parse_amount(item.get("cashAmount")),
            **source
        )
        if call is not None:
            call.payment_status = "Submitted"
            call.payment_at = utcnow()
        return ref

    def submit_payment(
        self,
        tech: Dict[str, Any],
        receiver: Optional[str],
        mode: Any,
        online_amount: Any = 0,
        cash_amount: Any = 0,
        receiver_signature: Optional[str] = None,
        calls: Optional[List[Dict[str, Any]]] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Record a payment for the technician identity `tech`.

        An identical (technician, receiver, mode, online, cash) payment made
        earlier the same UTC day is rejected as a duplicate.
        """
        tech_id = parse_id(tech.get("id"), "techId")
        mode_value = parse_mode(mode)
        online = parse_amount(online_amount)
        cash = parse_amount(cash_amount)
        receiver = (receiver or "").strip()
        if calls is not None and not isinstance(calls, list):
            raise ValidationError("calls must be a list")

        current = now or utcnow()
        day_start = datetime(current.year, current.month, current.day)
        duplicate = self.db.query(Payment.id).filter(
            Payment.tech_id == tech_id,
            Payment.receiver == receiver,
            Payment.mode == mode_value,
            Payment.online_amount == online,
            Payment.cash_amount == cash,
            Payment.created_at >= day_start,
            Payment.created_at < day_start + timedelta(days=1)
        ).first()
        if duplicate:
            logger.warning("duplicate payment from technician %s for %s rejected", tech_id, receiver)
            raise ConflictError("Duplicate payment: an identical payment was already submitted today")

        payment = Payment(
            tech_id=tech_id,
            tech_username=tech.get("username"),
            receiver=receiver,
            mode=mode_value,
            online_amount=online,
            cash_amount=cash,
            receiver_signature=receiver_signature,
            created_at=current
        )
        for item in calls or []:
            if isinstance(item, dict):
                payment.calls.append(self._call_reference(item))

        itemized = sum((ref.online_amount or 0) + (ref.cash_amount or 0) for ref in payment.calls)
        if payment.calls and abs(itemized - (online + cash)) > 0.005:
            logger.warning("payment by %s: itemized %.2f differs from total %.2f",
                           tech.get("username"), itemized, online + cash)

        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info("payment %s recorded for technician %s", payment.id, tech.get("username"))
        return payment_to_dict(payment)

    def list_payments(
        self,
        tech_id: Any = None,
        range_name: str = "today",
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Filtered payments, newest first, with online/cash/total sums"""
        query = self.db.query(Payment).options(selectinload(Payment.calls))
        tech_filter = parse_id(tech_id, "techId", required=False)
        if tech_filter is not None:
            query = query.filter(Payment.tech_id == tech_filter)

        start, end = resolve_range(range_name, date_from, date_to, now)
        if start is not None:
            query = query.filter(Payment.created_at >= start)
        if end is not None:
            query = query.filter(Payment.created_at < end)

        payments = query.order_by(Payment.created_at.desc()).all()
        online = sum(p.online_amount or 0 for p in payments)
        cash = sum(p.cash_amount or 0 for p in payments)
        return {
            "items": [payment_to_dict(p) for p in payments],
            "sum": {"online": online, "cash": cash, "total": online + cash},
        }

    @staticmethod
    def export_csv(items: List[Dict[str, Any]]) -> str:
        """CSV text of listed payments, signatures left out"""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for item in items:
            writer.writerow({
                "id": item["_id"],
                "techId": item["techId"],
                "techUsername": item["techUsername"],
                "receiver": item["receiver"],
                "mode": item["mode"],
                "onlineAmount": item["onlineAmount"],
                "cashAmount": item["cashAmount"],
                "total": item["onlineAmount"] + item["cashAmount"],
                "calls": ";".join(c["callId"] or c["clientName"] for c in item["calls"]),
                "createdAt": item["createdAt"],
            })
        return buffer.getvalue()

    def delete_payment(self, payment_id: Any) -> None:
        payment = self.db.query(Payment).filter(Payment.id == parse_id(payment_id, "paymentId")).first()
        if not payment:
            raise NotFoundError("Payment not found")
        self.db.delete(payment)
        self.db.commit()
        logger.info("payment %s deleted", payment_id)

    def summary(self) -> Dict[str, Any]:
        """Admin dashboard counters"""
        total = self.db.query(
            func.sum(func.coalesce(Payment.online_amount, 0.0) + func.coalesce(Payment.cash_amount, 0.0))
        ).scalar()
        return {
            "techs": self.db.query(func.count(Technician.id)).scalar() or 0,
            "forms": self.db.query(func.count(ServiceForm.id)).scalar() or 0,
            "calls": self.db.query(func.count(Call.id)).scalar() or 0,
            "totalPayments": float(total or 0),
        }
