from datetime import datetime

import pytest

import config
from database.models import CallStatus
from services.reconciliation_service import ReconciliationService
from utils.errors import AuthError, ForbiddenError

RECONCILIATION_URL = "/reconciliation/technician-calls"


def test_reconciliation_requires_admin(client, auth_headers) -> None:
    missing = client.get(RECONCILIATION_URL)
    assert missing.status_code == 401
    assert missing.get_json() == {"success": False, "error": "Unauthorized"}

    wrong_role = client.get(RECONCILIATION_URL, headers=auth_headers("technician"))
    assert wrong_role.status_code == 403
    assert wrong_role.get_json()["error"] == "Forbidden"

    bad_token = client.get(RECONCILIATION_URL, headers={"Authorization": "Bearer nonsense"})
    assert bad_token.status_code == 401


def test_reconciliation_rejects_other_methods(client, auth_headers) -> None:
    response = client.post(RECONCILIATION_URL, headers=auth_headers("admin"))

    assert response.status_code == 405
    assert response.get_json()["error"] == "Method not allowed"


def test_reconciliation_report(client, auth_headers, make_tech, make_call, make_payment) -> None:
    tech = make_tech("tara")
    call = make_call(tech, price=500, status=CallStatus.CLOSED,
                     created_at=datetime(2024, 6, 15), closed_at=datetime(2024, 6, 15, 16))
    make_payment(tech.id, datetime(2024, 6, 20),
                 refs=[{"call_id": str(call.id), "online_amount": 500}], online=500)

    response = client.get(f"{RECONCILIATION_URL}?month=2024-06&techId={tech.id}", headers=auth_headers("admin"))
    body = response.get_json()

    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "private, no-store"
    assert set(body) == {"success", "technicians", "summary", "calls", "payments", "monthSummaryByStatus"}
    assert body["summary"]["monthAmount"] == 500
    assert body["summary"]["window"] == {"start": "2024-06-01T00:00:00", "end": "2024-07-01T00:00:00"}
    assert body["calls"][0]["paymentStatus"] == "Submitted"


def test_reconciliation_bad_parameters(client, auth_headers) -> None:
    headers = auth_headers("admin")

    for tech_id in ("abc", "²", "99999999999999999999"):
        response = client.get(RECONCILIATION_URL, query_string={"techId": tech_id}, headers=headers)
        assert response.status_code == 400
        assert response.get_json()["error"] == "Invalid techId"
    reversed_range = client.get(f"{RECONCILIATION_URL}?dateFrom=2024-06-10&dateTo=2024-06-01", headers=headers)
    assert reversed_range.status_code == 400


def test_payment_with_non_ascii_call_reference(client, auth_headers, make_tech) -> None:
    tech = make_tech("tara")
    payload = {"receiver": "Office", "mode": "Cash", "cashAmount": 40,
               "calls": [{"callId": "¹", "clientName": "Walk In", "cashAmount": 40}]}

    response = client.post("/api/tech/payment", headers=auth_headers("technician", tech.id, "tara"), json=payload)

    assert response.status_code == 201
    assert response.get_json()["payment"]["calls"][0]["clientName"] == "Walk In"


def test_unexpected_failure_is_hidden(client, auth_headers, monkeypatch) -> None:
    def explode(self, *args, **kwargs):
        raise RuntimeError("database is on fire")

    monkeypatch.setattr(ReconciliationService, "technician_calls", explode)
    response = client.get(RECONCILIATION_URL, headers=auth_headers("admin"))

    assert response.status_code == 500
    assert response.get_json() == {"success": False, "error": "Internal Server Error"}


def test_admin_login_and_me(client) -> None:
    response = client.post("/api/auth/login-admin", json={
        "username": config.ADMIN_USERNAME,
        "password": config.ADMIN_DEFAULT_PASSWORD,
    })
    body = response.get_json()

    assert response.status_code == 200
    assert body["user"]["role"] == "admin"
    assert any(c.startswith("token=") for c in response.headers.getlist("Set-Cookie"))

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.get_json()["user"]["username"] == config.ADMIN_USERNAME

    wrong = client.post("/api/auth/login-admin", json={"username": config.ADMIN_USERNAME, "password": "nope"})
    assert wrong.status_code == 401


def test_forward_then_technician_sees_call(client, auth_headers, make_tech) -> None:
    tech = make_tech("tara")

    created = client.post("/api/admin/forward", headers=auth_headers("admin"), json={
        "clientName": "Asha", "phone": "111", "address": "A street", "techId": str(tech.id), "price": 300,
    })
    assert created.status_code == 201
    call_id = created.get_json()["call"]["_id"]

    tech_headers = auth_headers("technician", tech.id, "tara")
    listed = client.get("/api/tech/my-calls?tab=Pending", headers=tech_headers).get_json()
    assert [c["_id"] for c in listed["items"]] == [call_id]

    update = client.post("/api/tech/update-call", headers=tech_headers, json={"id": call_id, "status": "Closed"})
    assert update.get_json()["call"]["status"] == "Closed"

    invalid = client.post("/api/tech/update-call", headers=tech_headers, json={"id": call_id, "status": "Cancelled"})
    assert invalid.status_code == 400


def test_duplicate_payment_returns_conflict(client, auth_headers, make_tech) -> None:
    tech = make_tech("tara")
    headers = auth_headers("technician", tech.id, "tara")
    payload = {"receiver": "Office", "mode": "Cash", "cashAmount": 200, "calls": []}

    first = client.post("/api/tech/payment", headers=headers, json=payload)
    second = client.post("/api/tech/payment", headers=headers, json=payload)

    assert first.status_code == 201
    assert first.get_json()["payment"]["cashAmount"] == 200
    assert second.status_code == 409


def test_payment_check_for_technician(client, auth_headers, make_tech, make_call, make_payment) -> None:
    tech = make_tech("tara")
    call = make_call(tech, client_name="Asha")
    make_payment(tech.id, datetime(2024, 6, 1), refs=[{"call_id": str(call.id), "client_name": "Asha"}])

    body = client.get("/reconciliation/payment-check", headers=auth_headers("technician", tech.id)).get_json()

    assert body["paidCallIds"] == [str(call.id)]


def test_create_tech_conflict(client, auth_headers) -> None:
    headers = auth_headers("admin")
    payload = {"username": "tara", "password": "secret"}

    assert client.post("/api/admin/create-tech", headers=headers, json=payload).status_code == 201
    duplicate = client.post("/api/admin/create-tech", headers=headers, json=payload)
    assert duplicate.status_code == 409
    assert duplicate.get_json()["error"] == "Username already exists"


def test_admin_call_search(client, auth_headers, make_tech, make_call) -> None:
    tech = make_tech("tara")
    make_call(tech, client_name="Asha", address="12 Lake Road")
    make_call(tech, client_name="Bilal", address="4 Hill Street")

    body = client.get("/api/admin/calls", query_string={"q": "lake"}, headers=auth_headers("admin")).get_json()

    assert body["total"] == 1
    assert [c["clientName"] for c in body["items"]] == ["Asha"]


def test_forms_csv_export(client, auth_headers, make_tech) -> None:
    tech = make_tech("tara")
    tech_headers = auth_headers("technician", tech.id, "tara")
    form = {"clientName": "Asha", "payment": 150, "photos": ["a.jpg"]}

    assert client.post("/api/tech/submit-form", headers=tech_headers, json=form).status_code == 201
    assert client.post("/api/tech/submit-form", headers=tech_headers, json=form).status_code == 200

    response = client.get("/api/admin/forms?csv=1", headers=auth_headers("admin"))
    assert response.mimetype == "text/csv"
    assert "Asha" in response.get_data(as_text=True)


def test_unknown_route_is_json(client) -> None:
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    assert response.get_json()["success"] is False


def test_authorize_raises_typed_errors(auth_headers) -> None:
    from web_app import app, authorize

    with app.test_request_context("/"):
        with pytest.raises(AuthError) as missing:
            authorize("admin")
    assert missing.value.status_code == 401

    with app.test_request_context("/", headers=auth_headers("technician")):
        with pytest.raises(ForbiddenError):
            authorize("admin")
        assert authorize("technician")["role"] == "technician"
