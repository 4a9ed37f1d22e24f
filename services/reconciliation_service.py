"""
Technician reconciliation: calls and submitted payments per reporting window.

Two month figures exist side by side. The call-based one sums the quoted
price of calls closed in the window. The canonical one (monthSubmitted /
summary.monthAmount) sums what technicians actually submitted as payments in
the window, and is never derived from call prices.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

import config
from database.models import Call, CallStatus, Payment, PaymentCall, Technician, utcnow
from utils.errors import ValidationError
from utils.logger import service_logger as logger
from utils.validation import numeric_id, parse_id

DAY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MONTH_RE = re.compile(r"^\d{4}-\d{2}$")

SUBMITTED = "Submitted"
UNSUBMITTED = "Unsubmitted"


def add_months(moment: datetime, months: int) -> datetime:
    """First day of the month `months` away from moment's month"""
    index = moment.year * 12 + (moment.month - 1) + months
    return datetime(index // 12, index % 12 + 1, 1)


def _parse_bound(value: Any) -> Optional[Tuple[datetime, str]]:
    """(moment, unit) for YYYY-MM-DD (unit "day") or YYYY-MM (unit "month")"""
    if not isinstance(value, str):
        return None
    value = value.strip()
    try:
        if DAY_RE.match(value):
            return datetime.strptime(value, "%Y-%m-%d"), "day"
        if MONTH_RE.match(value):
            return datetime.strptime(value, "%Y-%m"), "month"
    except ValueError:
        return None
    return None


def _next_unit(moment: datetime, unit: str) -> datetime:
    if unit == "month":
        return add_months(moment, 1)
    return moment + timedelta(days=1)


def resolve_window(
    month: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    now: Optional[datetime] = None
) -> Tuple[datetime, datetime]:
    """
    Reporting window [start, end).

    Explicit dates win over month; dateTo is inclusive. With only one date the
    window is exactly one unit (day or month, from the date's format) long.
    Unparseable input is ignored and the current calendar month is used.
    """
    start_bound = _parse_bound(date_from)
    end_bound = _parse_bound(date_to)

    if start_bound and end_bound:
        start = start_bound[0]
        end = _next_unit(*end_bound)
    elif start_bound:
        start = start_bound[0]
        end = _next_unit(*start_bound)
    elif end_bound:
        start = end_bound[0]
        end = _next_unit(*end_bound)
    else:
        month_bound = _parse_bound(month)
        if month_bound and month_bound[1] == "month":
            start = month_bound[0]
        else:
            current = now or utcnow()
            start = datetime(current.year, current.month, 1)
        end = add_months(start, 1)

    if start >= end:
        raise ValidationError("dateFrom must not be after dateTo")
    return start, end


def _iso(moment: Optional[datetime]) -> Optional[str]:
    if isinstance(moment, datetime):
        return moment.isoformat()
    return str(moment) if moment else None


def _status_key(status: Any) -> str:
    return status.value if hasattr(status, "value") else str(status)


class ReconciliationService:
    """Per-technician call and payment totals"""

    def __init__(self, db: Session):
        self.db = db

    def technician_calls(
        self,
        month: Optional[str] = None,
        tech_id: Any = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """Full reconciliation report for a window and optional technician"""
        start, end = resolve_window(month, date_from, date_to, now)
        tech_filter = parse_id(tech_id, "techId", required=False)

        # calls without closed_at are windowed by their creation time
        closed_date = func.coalesce(Call.closed_at, Call.created_at)
        in_window = and_(closed_date >= start, closed_date < end)

        by_status = self._status_buckets(in_window, tech_filter)
        lifetime_by_tech = self._closed_by_tech(None, tech_filter)
        month_by_tech = self._closed_by_tech(in_window, tech_filter)
        submitted_by_tech = self._submitted_by_tech(start, end, tech_filter)

        technicians = self._technician_rows(tech_filter, lifetime_by_tech, month_by_tech, submitted_by_tech)

        calls: List[Dict[str, Any]] = []
        if tech_filter is not None:
            calls = self._call_rows(tech_filter, in_window, start, end)

        payments = self._payment_rows(start, end, tech_filter)

        closed_bucket = by_status[CallStatus.CLOSED.value]
        summary = {
            "monthClosed": closed_bucket["count"],
            "monthClosedAmount": closed_bucket["amount"],
            "monthAmount": sum(row["monthSubmitted"] for row in technicians),
            "totalClosed": sum(count for count, _ in lifetime_by_tech.values()),
            "totalAmount": sum(amount for _, amount in lifetime_by_tech.values()),
            "window": {"start": _iso(start), "end": _iso(end)},
        }

        logger.debug(
            "reconciliation %s..%s tech=%s: %d technicians, %d calls, %d payment rows",
            start.date(), end.date(), tech_filter, len(technicians), len(calls), len(payments)
        )

        return {
            "technicians": technicians,
            "summary": summary,
            "calls": calls,
            "payments": payments,
            "monthSummaryByStatus": by_status,
        }

    def _status_buckets(self, in_window, tech_filter: Optional[int]) -> Dict[str, Dict[str, Any]]:
        """Count and price sum per status for calls closed in the window"""
        query = self.db.query(
            Call.status,
            func.count(Call.id),
            func.sum(func.coalesce(Call.price, 0.0))
        ).filter(in_window)
        if tech_filter is not None:
            query = query.filter(Call.tech_id == tech_filter)

        buckets = {status.value: {"count": 0, "amount": 0.0} for status in CallStatus}
        for status, count, amount in query.group_by(Call.status).all():
            buckets[_status_key(status)] = {"count": count or 0, "amount": float(amount or 0)}
        return buckets

    def _closed_by_tech(self, window_clause, tech_filter: Optional[int]) -> Dict[Optional[int], Tuple[int, float]]:
        """Closed call count and price sum per technician id"""
        query = self.db.query(
            Call.tech_id,
            func.count(Call.id),
            func.sum(func.coalesce(Call.price, 0.0))
        ).filter(Call.status == CallStatus.CLOSED)
        if window_clause is not None:
            query = query.filter(window_clause)
        if tech_filter is not None:
            query = query.filter(Call.tech_id == tech_filter)

        return {
            tech_id: (count or 0, float(amount or 0))
            for tech_id, count, amount in query.group_by(Call.tech_id).all()
        }

    def _submitted_by_tech(self, start: datetime, end: datetime, tech_filter: Optional[int]) -> Dict[Optional[int], float]:
        """
        Payment amounts submitted in the window per technician: the sum of the
        per-call fragments, or the payment's own amounts when it lists no calls
        """
        fragment_amount = func.coalesce(PaymentCall.online_amount, 0.0) + func.coalesce(PaymentCall.cash_amount, 0.0)
        payment_amount = func.coalesce(Payment.online_amount, 0.0) + func.coalesce(Payment.cash_amount, 0.0)
        window = and_(Payment.created_at >= start, Payment.created_at < end)

        itemized = self.db.query(Payment.tech_id, func.sum(fragment_amount))\
            .join(PaymentCall, PaymentCall.payment_id == Payment.id)\
            .filter(window)
        unitemized = self.db.query(Payment.tech_id, func.sum(payment_amount))\
            .filter(window, ~Payment.calls.any())
        if tech_filter is not None:
            itemized = itemized.filter(Payment.tech_id == tech_filter)
            unitemized = unitemized.filter(Payment.tech_id == tech_filter)

        totals: Dict[Optional[int], float] = {}
        for query in (itemized, unitemized):
            for tech_id, amount in query.group_by(Payment.tech_id).all():
                totals[tech_id] = totals.get(tech_id, 0.0) + float(amount or 0)
        return totals

    def _technician_rows(self, tech_filter, lifetime_by_tech, month_by_tech, submitted_by_tech) -> List[Dict[str, Any]]:
        query = self.db.query(Technician)
        if tech_filter is not None:
            query = query.filter(Technician.id == tech_filter)

        rows = []
        for tech in query.order_by(Technician.username).all():
            month_closed, month_amount = month_by_tech.get(tech.id, (0, 0.0))
            total_closed, total_amount = lifetime_by_tech.get(tech.id, (0, 0.0))
            rows.append({
                "_id": str(tech.id),
                "name": tech.username or "Unnamed",
                "username": tech.username or "",
                "phone": tech.phone or "",
                "monthClosed": month_closed,
                "monthAmountByPrice": month_amount,
                "monthSubmitted": submitted_by_tech.get(tech.id, 0.0),
                "totalClosed": total_closed,
                "totalAmount": total_amount,
            })
        return rows

    def _call_rows(self, tech_filter: int, in_window, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """The technician's calls in the window with the payments matched to each"""
        calls = self.db.query(Call)\
            .filter(Call.tech_id == tech_filter, in_window)\
            .order_by(Call.created_at.desc())\
            .limit(config.CALL_DETAIL_LIMIT)\
            .all()
        if not calls:
            return []

        fragment_amount = func.coalesce(PaymentCall.online_amount, 0.0) + func.coalesce(PaymentCall.cash_amount, 0.0)
        matches = self.db.query(
            PaymentCall.call_id,
            func.sum(fragment_amount),
            func.max(Payment.created_at),
            func.count(PaymentCall.id)
        ).join(Payment, PaymentCall.payment_id == Payment.id)\
            .filter(Payment.created_at >= start, Payment.created_at < end)\
            .filter(PaymentCall.call_id.in_([str(call.id) for call in calls]))\
            .group_by(PaymentCall.call_id)\
            .all()
        matched = {call_id: (float(amount or 0), last_at, count) for call_id, amount, last_at, count in matches}

        rows = []
        for call in calls:
            submitted, last_at, count = matched.get(str(call.id), (0.0, None, 0))
            rows.append({
                "_id": str(call.id),
                "clientName": call.client_name or "",
                "phone": call.phone or "",
                "address": call.address or "",
                "type": call.service_type or "",
                "price": call.price or 0,
                "status": _status_key(call.status),
                "createdAt": _iso(call.created_at),
                "closedAt": _iso(call.closed_at or call.created_at),
                "closedAtRecorded": call.closed_at is not None,
                "submittedAmount": submitted,
                "paymentStatus": SUBMITTED if submitted > 0 else UNSUBMITTED,
                "matchedPayments": count,
                "lastPaymentAt": _iso(last_at),
            })
        return rows

    def _payment_rows(self, start: datetime, end: datetime, tech_filter: Optional[int]) -> List[Dict[str, Any]]:
        """One row per payment fragment in the window, next to the call it names"""
        query = self.db.query(Payment, PaymentCall)\
            .outerjoin(PaymentCall, PaymentCall.payment_id == Payment.id)\
            .filter(Payment.created_at >= start, Payment.created_at < end)
        if tech_filter is not None:
            query = query.filter(Payment.tech_id == tech_filter)
        pairs = query.order_by(Payment.created_at.desc(), PaymentCall.id).all()

        numeric_ids = {
            numeric_id(ref.call_id) for _, ref in pairs
            if ref is not None and ref.call_id
        }
        numeric_ids.discard(None)
        calls_by_id = {}
        if numeric_ids:
            calls_by_id = {
                str(call.id): call
                for call in self.db.query(Call).filter(Call.id.in_(numeric_ids)).all()
            }

        rows = []
        for payment, ref in pairs:
            if ref is not None:
                online, cash = ref.online_amount or 0, ref.cash_amount or 0
            else:
                online, cash = payment.online_amount or 0, payment.cash_amount or 0
            call = calls_by_id.get(str(ref.call_id)) if ref is not None and ref.call_id else None
            rows.append({
                "paymentId": str(payment.id),
                "techId": str(payment.tech_id) if payment.tech_id is not None else None,
                "techUsername": payment.tech_username or "",
                "receiver": payment.receiver or "",
                "mode": payment.mode,
                "createdAt": _iso(payment.created_at),
                "callId": ref.call_id if ref is not None else None,
                "clientName": (ref.client_name if ref is not None else None) or "",
                "phone": (ref.phone if ref is not None else None) or "",
                "address": (ref.address if ref is not None else None) or "",
                "price": (ref.price if ref is not None else None) or 0,
                "onlineAmount": online,
                "cashAmount": cash,
                "amount": online + cash,
                "callStatus": _status_key(call.status) if call else None,
                "callClosedAt": _iso(call.closed_at or call.created_at) if call else None,
            })
        return rows
