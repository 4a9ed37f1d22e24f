import os
import tempfile

# must be set before config is imported
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="field-crm-logs-"))
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["PUSH_ENDPOINT"] = ""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import pytest

from database.connection import SessionLocal, configure_engine, init_db
from database.models import Call, CallStatus, Payment, PaymentCall, Technician, utcnow
from utils.auth import hash_password, sign_token


@pytest.fixture
def engine(tmp_path):
    eng = configure_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db()
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client(engine):
    from web_app import app

    app.config["TESTING"] = True
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture
def make_tech(db):
    def _make(username: str = "tech1", password: Optional[str] = None, phone: str = "") -> Technician:
        tech = Technician(
            username=username,
            password_hash=hash_password(password) if password else "unusable",
            phone=phone,
            assigned_calls=[],
        )
        db.add(tech)
        db.commit()
        db.refresh(tech)
        return tech

    return _make


@pytest.fixture
def make_call(db):
    def _make(
        tech: Optional[Technician] = None,
        client_name: str = "Client",
        price: float = 0,
        status: CallStatus = CallStatus.PENDING,
        created_at: Optional[datetime] = None,
        closed_at: Optional[datetime] = None,
        phone: str = "",
        address: str = "",
    ) -> Call:
        call = Call(
            client_name=client_name,
            phone=phone,
            address=address,
            price=price,
            status=status,
            tech_id=tech.id if tech else None,
            tech_name=tech.username if tech else None,
            created_at=created_at or utcnow(),
            closed_at=closed_at,
        )
        db.add(call)
        db.commit()
        db.refresh(call)
        return call

    return _make


@pytest.fixture
def make_payment(db):
    def _make(
        tech_id: Optional[int],
        created_at: datetime,
        refs: Iterable[Dict[str, Any]] = (),
        online: float = 0,
        cash: float = 0,
        receiver: str = "Office",
        mode: str = "Both",
    ) -> Payment:
        payment = Payment(
            tech_id=tech_id,
            tech_username="tech",
            receiver=receiver,
            mode=mode,
            online_amount=online,
            cash_amount=cash,
            created_at=created_at,
        )
        for ref in refs:
            payment.calls.append(PaymentCall(**ref))
        db.add(payment)
        db.commit()
        db.refresh(payment)
        return payment

    return _make


@pytest.fixture
def auth_headers():
    def _headers(role: str, user_id: Any = 1, username: str = "someone") -> Dict[str, str]:
        token = sign_token({"id": user_id, "username": username, "role": role})
        return {"Authorization": f"Bearer {token}"}

    return _headers
