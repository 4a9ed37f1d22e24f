"""
Technician accounts
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from database.models import Call, Payment, Technician, utcnow
from utils.auth import hash_password
from utils.errors import ConflictError, NotFoundError, ValidationError
from utils.logger import service_logger as logger
from utils.validation import parse_id


def technician_to_dict(tech: Technician, call_count: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "_id": str(tech.id),
        "username": tech.username,
        "phone": tech.phone or "",
        "avatarUrl": tech.avatar_url or "",
        "hasPushToken": bool(tech.fcm_token),
        "assignedCalls": list(tech.assigned_calls or []),
        "createdAt": tech.created_at.isoformat() if tech.created_at else None,
    }
    if call_count is not None:
        data["callCount"] = call_count
    return data


class TechnicianService:
    """Create, list and delete technicians; profile and device token"""

    def __init__(self, db: Session):
        self.db = db

    def get_technician(self, tech_id: Any) -> Technician:
        tech = self.db.query(Technician).filter(Technician.id == parse_id(tech_id, "techId")).first()
        if not tech:
            raise NotFoundError("Technician not found")
        return tech

    def create_technician(self, username: str, password: str, phone: Optional[str] = None) -> Dict[str, Any]:
        """New technician; usernames are unique"""
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("username and password are required")

        if self.db.query(Technician).filter(Technician.username == username).first():
            raise ConflictError("Username already exists")

        tech = Technician(
            username=username,
            password_hash=hash_password(password),
            phone=phone,
            assigned_calls=[],
            created_at=utcnow()
        )
        self.db.add(tech)
        self.db.commit()
        self.db.refresh(tech)
        logger.info("technician %s created", username)
        return technician_to_dict(tech)

    def list_technicians(self) -> List[Dict[str, Any]]:
        """All technicians with the number of calls they hold"""
        counts = dict(
            self.db.query(Call.tech_id, func.count(Call.id)).group_by(Call.tech_id).all()
        )
        techs = self.db.query(Technician).order_by(Technician.username).all()
        return [technician_to_dict(t, counts.get(t.id, 0)) for t in techs]

    def delete_technician(self, tech_id: Any) -> None:
        """Remove the account; calls and payments keep their history"""
        tech = self.get_technician(tech_id)
        username = tech.username
        self.db.delete(tech)
        self.db.commit()
        logger.info("technician %s deleted", username)

    def update_profile(self, tech_id: Any, phone: Optional[str] = None,
                       avatar_url: Optional[str] = None) -> Dict[str, Any]:
        tech = self.get_technician(tech_id)
        if phone is not None:
            tech.phone = phone
        if avatar_url is not None:
            # empty string removes the avatar
            tech.avatar_url = avatar_url or None
        self.db.commit()
        self.db.refresh(tech)
        return technician_to_dict(tech)

    def save_fcm_token(self, tech_id: Any, token: str) -> None:
        if not token:
            raise ValidationError("token is required")
        tech = self.get_technician(tech_id)
        tech.fcm_token = token
        self.db.commit()

    def tech_summary(self, tech_id: Any, now: Optional[datetime] = None) -> Dict[str, float]:
        """Lifetime online/cash/total payments of a technician and today's total"""
        tech_filter = parse_id(tech_id, "techId")
        online = func.coalesce(Payment.online_amount, 0.0)
        cash = func.coalesce(Payment.cash_amount, 0.0)

        lifetime = self.db.query(func.sum(online), func.sum(cash))\
            .filter(Payment.tech_id == tech_filter)\
            .first()

        current = now or utcnow()
        today_start = datetime(current.year, current.month, current.day)
        today = self.db.query(func.sum(online + cash))\
            .filter(Payment.tech_id == tech_filter, Payment.created_at >= today_start)\
            .scalar()

        online_total = float(lifetime[0] or 0) if lifetime else 0.0
        cash_total = float(lifetime[1] or 0) if lifetime else 0.0
        return {
            "online": online_total,
            "cash": cash_total,
            "total": online_total + cash_total,
            "today": float(today or 0),
        }
