from app.payments import ledger
from db import get_conn


def test_new_provider_has_zero_balance(client, provider):
    r = client.get("/v1/balances/me", headers=provider.headers)

    assert r.status_code == 200
    assert r.json() == {
        "holder_id": provider.user_id,
        "currency": "GBP",
        "available": "0.00",
        "pending": "0.00",
        "paid": "0.00",
        "awaiting_charge": "0.00",
    }


def test_balance_follows_payout_lifecycle(client, patient, provider, admin, paid_payment):
    paid_payment(patient.user_id, provider.user_id)
    paid_payment(patient.user_id, provider.user_id, rate="40.00", minutes=60)
    with get_conn() as conn:
        ledger.open_payment(
            conn,
            appointment_id="appt-unpaid",
            payer_id=patient.user_id,
            payee_id=provider.user_id,
            hourly_rate="40.00",
            duration_minutes=30,
        )

    balance = client.get("/v1/balances/me", headers=provider.headers).json()
    assert (balance["available"], balance["pending"], balance["paid"]) == ("59.50", "0.00", "0.00")
    assert balance["awaiting_charge"] == "17.00"

    req = client.post("/v1/payouts/requests", headers=provider.headers).json()
    balance = client.get("/v1/balances/me", headers=provider.headers).json()
    assert (balance["available"], balance["pending"], balance["paid"]) == ("0.00", "59.50", "0.00")

    client.post("/v1/payouts/mark-paid", json={"requestId": req["id"]}, headers=admin.headers)
    balance = client.get("/v1/balances/me", headers=provider.headers).json()
    assert (balance["available"], balance["pending"], balance["paid"]) == ("0.00", "0.00", "59.50")


def test_admin_balance_is_platform_fees(client, patient, admin, paid_payment):
    paid_payment(patient.user_id, admin.user_id)

    balance = client.get("/v1/balances/me", headers=admin.headers).json()

    assert (balance["available"], balance["pending"], balance["paid"]) == ("25.50", "0.00", "0.00")


def test_balance_requires_auth(client):
    assert client.get("/v1/balances/me").status_code == 401
