"""
Service call lifecycle: forwarding, edits, reassignment, status changes
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

import config
from database.models import Call, CallStatus, Technician, utcnow
from utils.errors import ConflictError, NotFoundError, ValidationError
from utils.logger import service_logger as logger
from utils.notification_service import NotificationService
from utils.validation import parse_amount, parse_id

# allowed next statuses; same-status updates are always accepted as no-ops
STATUS_TRANSITIONS = {
    CallStatus.PENDING: {CallStatus.IN_PROCESS, CallStatus.COMPLETED, CallStatus.CLOSED, CallStatus.CANCELLED},
    CallStatus.IN_PROCESS: {CallStatus.PENDING, CallStatus.COMPLETED, CallStatus.CLOSED, CallStatus.CANCELLED},
    CallStatus.COMPLETED: {CallStatus.IN_PROCESS, CallStatus.CLOSED, CallStatus.CANCELLED},
    CallStatus.CLOSED: {CallStatus.IN_PROCESS},
    CallStatus.CANCELLED: {CallStatus.PENDING},
}

TECH_TABS = ("All Calls", "Today Calls", "Pending", "Completed", "Closed")

EDITABLE_FIELDS = {
    "clientName": "client_name",
    "phone": "phone",
    "address": "address",
    "notes": "notes",
    "type": "service_type",
    "timeZone": "time_zone",
}


def parse_status(value: Any) -> CallStatus:
    """CallStatus from its display value, case-insensitive"""
    text = str(value or "").strip().lower()
    for status in CallStatus:
        if status.value.lower() == text:
            return status
    valid = ", ".join(s.value for s in CallStatus)
    raise ValidationError(f"Invalid status. Allowed: {valid}")


def call_to_dict(call: Call) -> Dict[str, Any]:
    status = call.status.value if hasattr(call.status, "value") else call.status
    return {
        "_id": str(call.id),
        "clientName": call.client_name or "",
        "phone": call.phone or "",
        "address": call.address or "",
        "type": call.service_type or "",
        "price": call.price or 0,
        "notes": call.notes or "",
        "timeZone": call.time_zone or "",
        "status": status,
        "techId": str(call.tech_id) if call.tech_id is not None else None,
        "techName": call.tech_name or "",
        "createdAt": call.created_at.isoformat() if call.created_at else None,
        "closedAt": call.closed_at.isoformat() if call.closed_at else None,
        "paymentStatus": call.payment_status,
        "paymentAt": call.payment_at.isoformat() if call.payment_at else None,
    }


class CallService:
    """Admin and technician operations on forwarded calls"""

    def __init__(self, db: Session, notifier: Optional[NotificationService] = None):
        self.db = db
        self.notifier = notifier or NotificationService()

    def _get_call(self, call_id: Any) -> Call:
        call = self.db.query(Call).filter(Call.id == parse_id(call_id, "callId")).first()
        if not call:
            raise NotFoundError("Call not found")
        return call

    def _get_technician(self, tech_id: Any) -> Technician:
        tech = self.db.query(Technician).filter(Technician.id == parse_id(tech_id, "techId")).first()
        if not tech:
            raise NotFoundError("Technician not found")
        return tech

    @staticmethod
    def _attach(tech: Optional[Technician], call_id: int) -> None:
        if tech is None:
            return
        assigned = list(tech.assigned_calls or [])
        if str(call_id) not in assigned:
            assigned.append(str(call_id))
        tech.assigned_calls = assigned

    @staticmethod
    def _detach(tech: Optional[Technician], call_id: int) -> None:
        if tech is None:
            return
        tech.assigned_calls = [cid for cid in (tech.assigned_calls or []) if cid != str(call_id)]

    def forward_call(
        self,
        client_name: str,
        phone: Optional[str],
        address: Optional[str],
        tech_id: Any,
        service_type: Optional[str] = None,
        price: Any = None,
        notes: Optional[str] = None,
        time_zone: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a Pending call for a technician"""
        if not client_name or not str(client_name).strip():
            raise ValidationError("clientName is required")
        tech = self._get_technician(tech_id)

        call = Call(
            client_name=str(client_name).strip(),
            phone=phone,
            address=address,
            service_type=service_type,
            price=parse_amount(price),
            notes=notes,
            time_zone=time_zone,
            status=CallStatus.PENDING,
            tech_id=tech.id,
            tech_name=tech.username,
            created_at=utcnow()
        )
        self.db.add(call)
        self.db.flush()
        self._attach(tech, call.id)
        self.db.commit()
        self.db.refresh(call)

        logger.info("call %s forwarded to technician %s", call.id, tech.username)
        self._notify(tech, "New call assigned", f"{call.client_name} - {call.address or ''}".strip(" -"))
        return call_to_dict(call)

    def update_call(self, call_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        """Admin edit of call details; techId reassigns the call"""
        call = self._get_call(call_id)

        for key, attr in EDITABLE_FIELDS.items():
            value = data.get(key)
            if value not in (None, ""):
                setattr(call, attr, value)
        if data.get("price") not in (None, ""):
            call.price = parse_amount(data.get("price"))
        if data.get("status") not in (None, ""):
            self._apply_status(call, parse_status(data["status"]))

        new_tech = data.get("techId")
        if new_tech not in (None, "") and parse_id(new_tech, "techId") != call.tech_id:
            self._reassign(call, self._get_technician(new_tech))

        self.db.commit()
        self.db.refresh(call)
        return call_to_dict(call)

    def change_technician(self, call_id: Any, new_tech_id: Any) -> Dict[str, Any]:
        """Move a call to another technician"""
        if call_id in (None, "") or new_tech_id in (None, ""):
            raise ValidationError("Missing required fields")
        call = self._get_call(call_id)
        tech = self._get_technician(new_tech_id)
        self._reassign(call, tech)
        self.db.commit()
        self.db.refresh(call)

        logger.info("call %s reassigned to technician %s", call.id, tech.username)
        self._notify(tech, "Call reassigned to you", call.client_name)
        return call_to_dict(call)

    def _reassign(self, call: Call, tech: Technician) -> None:
        if call.tech_id is not None and call.tech_id != tech.id:
            old_tech = self.db.query(Technician).filter(Technician.id == call.tech_id).first()
            self._detach(old_tech, call.id)
        call.tech_id = tech.id
        call.tech_name = tech.username
        self._attach(tech, call.id)

    def delete_call(self, call_id: Any) -> None:
        """Delete a call and drop it from its technician's list"""
        call = self._get_call(call_id)
        if call.tech_id is not None:
            tech = self.db.query(Technician).filter(Technician.id == call.tech_id).first()
            self._detach(tech, call.id)
        self.db.delete(call)
        self.db.commit()
        logger.info("call %s deleted", call_id)

    def _apply_status(self, call: Call, new_status: CallStatus, now: Optional[datetime] = None) -> bool:
        """Apply a transition; returns False for a same-status no-op"""
        current = CallStatus(call.status)
        if new_status == current:
            return False
        if new_status not in STATUS_TRANSITIONS[current]:
            logger.warning("rejected status change for call %s: %s -> %s",
                           call.id, current.value, new_status.value)
            raise ValidationError(f"Cannot change status from {current.value} to {new_status.value}")

        call.status = new_status
        if new_status == CallStatus.CLOSED:
            call.closed_at = now or utcnow()
        elif current == CallStatus.CLOSED:
            call.closed_at = None
        return True

    def update_status(self, call_id: Any, status: Any, tech_id: Optional[int] = None,
                      now: Optional[datetime] = None) -> Dict[str, Any]:
        """Change a call's status; with tech_id only that technician's calls are visible"""
        new_status = parse_status(status)
        call = self._get_call(call_id)
        if tech_id is not None and call.tech_id != tech_id:
            raise NotFoundError("Call not found")

        if self._apply_status(call, new_status, now):
            self.db.commit()
            self.db.refresh(call)
        return call_to_dict(call)

    def mark_as_paid(self, call_id: Any, tech: Dict[str, Any]) -> Dict[str, Any]:
        """Technician's manual paid flag on one of their calls"""
        call = self._get_call(call_id)
        if call.tech_id != parse_id(tech["id"], "techId"):
            raise NotFoundError("Call not found")
        if call.payment_status == "Paid":
            raise ConflictError("Call already marked as Paid")

        now = utcnow()
        call.payment_status = "Paid"
        call.payment_at = now
        call.payment_ref = f"manual-mark:{int(now.timestamp() * 1000)}:{tech['id']}"
        self.db.commit()
        self.db.refresh(call)
        return call_to_dict(call)

    def list_calls(
        self,
        status: Optional[str] = None,
        tech_id: Any = None,
        page: Any = 1,
        page_size: int = 50,
        q: Optional[str] = None
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Admin listing, newest first; q searches customer details and technician name"""
        query = self.db.query(Call)
        if status:
            query = query.filter(Call.status == parse_status(status))
        tech_filter = parse_id(tech_id, "techId", required=False)
        if tech_filter is not None:
            query = query.filter(Call.tech_id == tech_filter)
        if q and q.strip():
            pattern = f"%{q.strip()}%"
            query = query.filter(or_(
                Call.client_name.ilike(pattern),
                Call.phone.ilike(pattern),
                Call.address.ilike(pattern),
                Call.tech_name.ilike(pattern)
            ))

        total = query.count()
        offset = (self._page(page) - 1) * page_size
        calls = query.order_by(Call.created_at.desc()).offset(offset).limit(page_size).all()
        return [call_to_dict(c) for c in calls], total

    def my_calls(self, tech_id: int, tab: str = "All Calls", page: Any = 1,
                 now: Optional[datetime] = None) -> Tuple[List[Dict[str, Any]], int]:
        """A technician's calls for one tab of their call list"""
        query = self.db.query(Call).filter(Call.tech_id == tech_id)

        if tab == "Today Calls":
            current = now or utcnow()
            today_start = datetime(current.year, current.month, current.day)
            query = query.filter(Call.created_at >= today_start,
                                 Call.created_at < today_start + timedelta(days=1))
        elif tab in ("Pending", "Completed", "Closed"):
            query = query.filter(Call.status == parse_status(tab))

        page_size = config.CALLS_PAGE_SIZE
        total = query.count()
        offset = (self._page(page) - 1) * page_size
        calls = query.order_by(Call.created_at.desc()).offset(offset).limit(page_size).all()
        return [call_to_dict(c) for c in calls], total

    @staticmethod
    def _page(page: Any) -> int:
        try:
            return max(1, int(page))
        except (TypeError, ValueError):
            return 1

    def _notify(self, tech: Technician, title: str, body: str) -> None:
        if not tech.fcm_token:
            return
        success, message = self.notifier.send_push(tech.fcm_token, title, body)
        if not success:
            logger.warning("push to %s not delivered: %s", tech.username, message)
