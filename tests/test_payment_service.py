import csv
import io
from datetime import datetime

import pytest

from database.models import Call, CallStatus
from services.payment_service import PaymentService, resolve_range
from utils.errors import ConflictError, NotFoundError, ValidationError

NOW = datetime(2024, 6, 20, 10, 0)


def _identity(tech):
    return {"id": str(tech.id), "username": tech.username, "role": "technician"}


def test_resolve_range() -> None:
    assert resolve_range("today", now=NOW) == (datetime(2024, 6, 20), None)
    assert resolve_range("7", now=NOW) == (datetime(2024, 6, 13, 10), None)
    assert resolve_range("custom", "2024-06-01", "2024-06-10") == (datetime(2024, 6, 1), datetime(2024, 6, 11))
    assert resolve_range("all") == (None, None)
    with pytest.raises(ValidationError):
        resolve_range("custom", "01/06/2024")


def test_submit_snapshots_the_stored_call(db, make_tech, make_call) -> None:
    tech = make_tech("tara")
    call = make_call(tech, client_name="Asha", phone="111", address="A street", price=500,
                     status=CallStatus.CLOSED)

    payment = PaymentService(db).submit_payment(
        _identity(tech), "Office", "both", 300, 200,
        calls=[{"callId": str(call.id), "clientName": "typed differently", "onlineAmount": 300, "cashAmount": 200}],
        now=NOW
    )

    assert payment["mode"] == "Both"
    ref = payment["calls"][0]
    assert (ref["callId"], ref["clientName"], ref["price"]) == (str(call.id), "Asha", 500)
    db.expire_all()
    assert db.get(Call, call.id).payment_status == "Submitted"


def test_submit_keeps_typed_details_for_unknown_calls(db, make_tech) -> None:
    tech = make_tech("tara")

    payment = PaymentService(db).submit_payment(
        _identity(tech), "Office", "Cash", 0, 80,
        calls=[{"clientName": "Walk In", "price": "80", "cashAmount": 80}], now=NOW
    )

    assert payment["calls"][0]["callId"] is None
    assert payment["calls"][0]["clientName"] == "Walk In"
    assert payment["calls"][0]["price"] == 80


def test_duplicate_payment_same_day_is_rejected(db, make_tech) -> None:
    tech = make_tech("tara")
    service = PaymentService(db)
    service.submit_payment(_identity(tech), "Office", "Online", 100, 0, now=NOW)

    with pytest.raises(ConflictError):
        service.submit_payment(_identity(tech), "Office", "Online", 100, 0, now=NOW.replace(hour=18))

    # other amount the same day, same amount the next day
    service.submit_payment(_identity(tech), "Office", "Online", 150, 0, now=NOW)
    service.submit_payment(_identity(tech), "Office", "Online", 100, 0, now=datetime(2024, 6, 21, 9))
    assert len(service.list_payments(range_name="all")["items"]) == 3


def test_invalid_mode_is_rejected(db, make_tech) -> None:
    with pytest.raises(ValidationError):
        PaymentService(db).submit_payment(_identity(make_tech()), "Office", "Cheque", 10, 0, now=NOW)


def test_list_payments_filters_and_sums(db, make_tech, make_payment) -> None:
    tech = make_tech("tara")
    other = make_tech("omar")
    make_payment(tech.id, datetime(2024, 6, 1, 12), online=100, cash=50)
    make_payment(tech.id, datetime(2024, 6, 9, 12), cash=25)
    make_payment(tech.id, datetime(2024, 5, 30, 12), online=999)
    make_payment(other.id, datetime(2024, 6, 2, 12), online=7)

    result = PaymentService(db).list_payments(tech.id, "custom", "2024-06-01", "2024-06-09")

    assert [p["createdAt"][:10] for p in result["items"]] == ["2024-06-09", "2024-06-01"]
    assert result["sum"] == {"online": 100, "cash": 75, "total": 175}


def test_export_csv_leaves_signature_out(db, make_tech, make_payment) -> None:
    tech = make_tech("tara")
    payment = make_payment(tech.id, datetime(2024, 6, 1), refs=[{"call_id": "12"}], online=10)
    payment.receiver_signature = "data:image/png;base64,AAAA"
    db.commit()
    service = PaymentService(db)

    text = service.export_csv(service.list_payments(range_name="all")["items"])
    rows = list(csv.DictReader(io.StringIO(text)))

    assert "base64" not in text
    assert rows[0]["calls"] == "12"
    assert float(rows[0]["total"]) == 10


def test_delete_payment(db, make_tech, make_payment) -> None:
    payment = make_payment(make_tech().id, datetime(2024, 6, 1), refs=[{"call_id": "1"}])
    service = PaymentService(db)

    payment_id = payment.id
    service.delete_payment(str(payment_id))

    assert service.list_payments(range_name="all")["items"] == []
    with pytest.raises(NotFoundError):
        service.delete_payment(payment_id)


def test_summary_counts(db, make_tech, make_call, make_payment) -> None:
    tech = make_tech()
    make_call(tech)
    make_payment(tech.id, datetime(2024, 6, 1), online=10, cash=5)

    assert PaymentService(db).summary() == {"techs": 1, "forms": 0, "calls": 1, "totalPayments": 15.0}
