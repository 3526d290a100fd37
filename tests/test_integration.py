import json

from reservation_billing import billing
from reservation_billing.models import Order, Payment, utcnow

from conftest import TestingSessionLocal


def test_full_subscription_lifecycle_integration(client, mocker, sign_params):
    """
    1. Checkout opens an Allpay payment page (API -> DB + Allpay mocked)
    2. Intake form completes the same order
    3. Browser returns on the success page and activates the order
    4. Allpay notifies the second monthly charge
    5. Health report reflects the re-armed billing date
    """
    response = mocker.Mock(text=json.dumps({"url": "https://pay.example/session"}), status_code=200, ok=True)
    mocker.patch("reservation_billing.allpay.requests.post", return_value=response)

    checkout = client.post("/api/allpay/create-payment", json={
        "orderId": "ORDER-INT-001",
        "plan": "weekly",
        "billingFrequency": "monthly",
        "amount": 39,
        "email": "guest@example.com",
        "firstName": "Guest",
        "lastName": "User",
        "phoneNumber": "050-1234567",
    })
    assert checkout.status_code == 200
    assert checkout.json()["paymentUrl"] == "https://pay.example/session"

    intake = client.post("/api/onboarding", json={
        "orderId": "ORDER-INT-001",
        "firstName": "Guest",
        "lastName": "User",
        "phoneNumber": "050-1234567",
        "email": "guest@example.com",
        "address": "1 Main St",
        "reservationWith": "kids",
        "numberOfPeople": "4",
        "preferredDay": "sunday",
        "preferredTime": "19:00",
        "startDateOption": "next-week",
        "pricingPlan": "weekly",
        "billingFrequency": "monthly",
    })
    assert intake.status_code == 200

    verify = client.post("/api/payment/verify", json={"orderId": "ORDER-INT-001"})
    assert verify.json()["status"] == "active"

    webhook = client.post("/api/allpay/webhook", json=sign_params({
        "order_id": "ORDER-INT-001",
        "status": 1,
        "subscription_id": "SUB-INT",
        "charge_number": "2",
        "transaction_id": "TX-2",
        "amount": "39.00",
    }))
    assert webhook.status_code == 200

    db = TestingSessionLocal()
    order = db.query(Order).filter_by(order_id="ORDER-INT-001").one()
    today = utcnow().date()
    assert order.status == "active"
    assert order.customer_id is not None
    assert order.number_of_people == 4
    assert order.last_payment_date == today
    assert order.next_charge_date == billing.next_charge_date(today, "monthly")
    # only the first charge stamps the subscription id
    assert order.subscription_id is None
    payment = db.query(Payment).filter_by(transaction_id="TX-2").one()
    assert payment.charge_number == 2
    assert payment.is_recurring is True
    db.close()

    health = client.get("/api/orders/ORDER-INT-001/health")
    assert health.json()["status"] == "healthy"
    assert health.json()["lastChargeNumber"] == 2


def test_duplicate_notification_is_applied_idempotently(client, sign_params):
    db = TestingSessionLocal()
    db.add(Order(order_id="ORDER-DUP", plan="weekly", billing_frequency="annual", amount=390, status="pending"))
    db.commit()
    db.close()

    params = sign_params({"order_id": "ORDER-DUP", "status": "1", "subscription_id": "SUB-D", "transaction_id": "TX-1"})
    for _ in range(2):
        assert client.post("/api/allpay/webhook", json=params).status_code == 200

    db = TestingSessionLocal()
    order = db.query(Order).filter_by(order_id="ORDER-DUP").one()
    assert order.status == "active"
    assert order.subscription_id == "SUB-D"
    assert order.next_charge_date == billing.next_charge_date(utcnow().date(), "annual")
    # the ledger keeps every accepted delivery
    assert db.query(Payment).filter_by(transaction_id="TX-1").count() == 2
    db.close()
