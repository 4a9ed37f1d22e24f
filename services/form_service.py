"""
Service forms: job reports with photos and signature
"""

import csv
import io
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from database.models import ServiceForm, utcnow
from services.payment_matching import normalize_address, normalize_name, normalize_phone
from utils.errors import ValidationError
from utils.logger import service_logger as logger
from utils.validation import parse_amount, parse_id

CSV_COLUMNS = ["id", "techUsername", "clientName", "phone", "address", "payment", "status", "photos", "createdAt"]


def form_key(tech_id: int, day: datetime, client_name: str, address: str, phone: str, payment: float) -> str:
    """Dedupe key: one form per technician, day, customer and amount"""
    return "|".join([
        str(tech_id),
        day.strftime("%Y-%m-%d"),
        normalize_name(client_name),
        normalize_address(address),
        normalize_phone(phone),
        f"{payment:.2f}",
    ])


def form_to_dict(form: ServiceForm) -> Dict[str, Any]:
    return {
        "_id": str(form.id),
        "techId": str(form.tech_id) if form.tech_id is not None else None,
        "techUsername": form.tech_username or "",
        "clientName": form.client_name or "",
        "address": form.address or "",
        "phone": form.phone or "",
        "payment": form.payment or 0,
        "status": form.status or "",
        "signature": form.signature,
        "photos": list(form.photos or []),
        "createdAt": form.created_at.isoformat() if form.created_at else None,
        "updatedAt": form.updated_at.isoformat() if form.updated_at else None,
    }


class FormService:
    """Idempotent form submission and the admin form list"""

    def __init__(self, db: Session):
        self.db = db

    def submit_form(
        self,
        tech: Dict[str, Any],
        client_name: str,
        address: Optional[str] = None,
        phone: Optional[str] = None,
        payment: Any = 0,
        status: Optional[str] = None,
        signature: Optional[str] = None,
        photos: Optional[List[str]] = None,
        now: Optional[datetime] = None
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Save a form; re-submitting the same form the same day appends its
        photos to the existing record. Returns (form, created).
        """
        if not client_name or not str(client_name).strip():
            raise ValidationError("clientName is required")
        if photos is not None and not isinstance(photos, list):
            raise ValidationError("photos must be a list")

        tech_id = parse_id(tech.get("id"), "techId")
        amount = parse_amount(payment)
        current = now or utcnow()
        key = form_key(tech_id, current, client_name, address, phone, amount)
        new_photos = [str(p) for p in (photos or []) if p]

        form = self.db.query(ServiceForm).filter(ServiceForm.form_key == key).first()
        if form:
            existing = list(form.photos or [])
            form.photos = existing + [p for p in new_photos if p not in existing]
            if signature:
                form.signature = signature
            if status:
                form.status = status
            form.updated_at = current
            self.db.commit()
            self.db.refresh(form)
            logger.info("form %s re-submitted, %d photo(s) now", form.id, len(form.photos))
            return form_to_dict(form), False

        form = ServiceForm(
            tech_id=tech_id,
            tech_username=tech.get("username"),
            client_name=str(client_name).strip(),
            address=address,
            phone=phone,
            payment=amount,
            status=status,
            signature=signature,
            photos=new_photos,
            form_key=key,
            created_at=current,
            updated_at=current
        )
        self.db.add(form)
        self.db.commit()
        self.db.refresh(form)
        return form_to_dict(form), True

    def list_forms(
        self,
        q: Optional[str] = None,
        status: Optional[str] = None,
        tech: Optional[str] = None,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Forms filtered by text, status, technician username and date"""
        query = self.db.query(ServiceForm)
        if q:
            pattern = f"%{q.strip()}%"
            query = query.filter(or_(
                ServiceForm.client_name.ilike(pattern),
                ServiceForm.phone.ilike(pattern),
                ServiceForm.address.ilike(pattern)
            ))
        if status:
            query = query.filter(ServiceForm.status == status)
        if tech:
            query = query.filter(ServiceForm.tech_username == tech)
        try:
            if date_from:
                query = query.filter(ServiceForm.created_at >= datetime.strptime(date_from, "%Y-%m-%d"))
            if date_to:
                end = datetime.strptime(date_to, "%Y-%m-%d") + timedelta(days=1)
                query = query.filter(ServiceForm.created_at < end)
        except ValueError:
            raise ValidationError("Dates must be YYYY-MM-DD")

        return [form_to_dict(f) for f in query.order_by(ServiceForm.created_at.desc()).all()]

    @staticmethod
    def export_csv(items: List[Dict[str, Any]]) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, extrasaction="ignore")
        writer.writeheader()
        for item in items:
            row = {"id": item["_id"], **item, "photos": ";".join(item["photos"])}
            writer.writerow(row)
        return buffer.getvalue()
