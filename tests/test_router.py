from fastapi.testclient import TestClient
import pytest

from app.main import app
from app.payments.cache import OrchestratorCache, get_orchestrator_cache
from app.payments.errors import ProviderConnectionError
from app.payments.models import (
    Bank,
    ProviderCategory,
    TransactionRecord,
    TransactionStatus,
)
from app.payments.orchestrator import PaymentOrchestrator
from app.tenants.store import TenantConfigStore, get_tenant_store
from tests.fixtures.payments import make_tenant_config


@pytest.fixture
def orchestrator_cache(fake_factories):
    return OrchestratorCache(
        factory=lambda config: PaymentOrchestrator(config, fake_factories.as_dict())
    )


@pytest.fixture
def client(orchestrator_cache):
    """Test client with an in-memory tenant store and fake adapters."""
    inactive = make_tenant_config("closed-bank", "tips").model_copy(
        update={"active": False}
    )
    store = TenantConfigStore(
        [
            make_tenant_config("acme-bank", "selcom", "tips", "gepg"),
            make_tenant_config("tips-mfi", "tips"),
            make_tenant_config("bills-only", "selcom"),
            inactive,
        ]
    )
    app.dependency_overrides[get_tenant_store] = lambda: store
    app.dependency_overrides[get_orchestrator_cache] = lambda: orchestrator_cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def record(**overrides) -> TransactionRecord:
    data = {
        "reference": "TIPS0001",
        "type": "TIPS_TRANSFER",
        "amount": 2500.0,
        "status": TransactionStatus.COMPLETED,
    }
    data.update(overrides)
    return TransactionRecord(**data)


def test_healthz():
    resp = TestClient(app).get("/healthz")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_missing_tenant_header(client):
    resp = client.get("/payments/methods")
    assert resp.status_code == 400
    assert "X-Tenant-ID" in resp.json()["detail"]


def test_unknown_tenant(client):
    resp = client.get("/payments/methods", headers={"X-Tenant-ID": "nobody"})
    assert resp.status_code == 404


def test_inactive_tenant_not_found(client):
    resp = client.get("/payments/methods", headers={"X-Tenant-ID": "closed-bank"})
    assert resp.status_code == 404


def test_methods_for_tips_only_tenant(client):
    resp = client.get("/payments/methods", headers={"X-Tenant-ID": "TIPS-MFI"})
    assert resp.status_code == 200
    types = [m["type"] for m in resp.json()]
    assert types == ["BANK_TRANSFER", "MOBILE_TRANSFER", "QR_PAYMENT"]


def test_availability(client):
    headers = {"X-Tenant-ID": "tips-mfi"}

    resp = client.get("/payments/availability/bill_payment", headers=headers)
    assert resp.json() == {"payment_type": "bill_payment", "available": False}

    resp = client.get("/payments/availability/QR_PAYMENT", headers=headers)
    assert resp.json()["available"] is True


def test_disabled_capability_is_forbidden(client, fake_factories):
    resp = client.post(
        "/payments/bills/pay",
        headers={"X-Tenant-ID": "tips-mfi"},
        json={"biller_code": "LUKU", "account_number": "0412", "amount": 5000},
    )

    assert resp.status_code == 403
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "FEATURE_NOT_ENABLED"
    assert body["error"]["message"] == "Bill payment not available for this tenant"
    assert fake_factories.built[ProviderCategory.SELCOM] == []


def test_non_positive_amount_rejected(client):
    resp = client.post(
        "/payments/airtime",
        headers={"X-Tenant-ID": "acme-bank"},
        json={"phone_number": "255700000000", "amount": 0},
    )
    assert resp.status_code == 422


def test_pay_bill(client, fake_factories):
    headers = {"X-Tenant-ID": "acme-bank"}
    client.get("/payments/methods", headers=headers)
    selcom = fake_factories.last(ProviderCategory.SELCOM)
    selcom.pay_bill.return_value = record(reference="BILL0001", type="BILL_PAYMENT")

    resp = client.post(
        "/payments/bills/pay",
        headers=headers,
        json={"biller_code": "LUKU", "account_number": "0412", "amount": 5000},
    )

    assert resp.status_code == 200
    assert resp.json()["reference"] == "BILL0001"
    assert selcom.pay_bill.await_args.kwargs["customer_ref"] == "0412"


def test_provider_error_is_bad_gateway(client, fake_factories):
    headers = {"X-Tenant-ID": "acme-bank"}
    client.get("/payments/methods", headers=headers)
    tips = fake_factories.last(ProviderCategory.TIPS)
    tips.get_banks.side_effect = ProviderConnectionError("switch down", provider="tips")

    resp = client.get("/payments/banks", headers=headers)

    assert resp.status_code == 502
    assert resp.json()["error"]["code"] == "PROVIDER_ERROR"


def test_qr_validate_requires_merchant_or_qr(client):
    resp = client.post(
        "/payments/qr/validate",
        headers={"X-Tenant-ID": "tips-mfi"},
        json={"merchant_name": "Shop"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Merchant ID or QR data is required"


def test_qr_pay_resolves_bank_name(client, fake_factories):
    headers = {"X-Tenant-ID": "tips-mfi"}
    client.get("/payments/methods", headers=headers)
    tips = fake_factories.last(ProviderCategory.TIPS)
    tips.get_banks.return_value = [
        Bank(code="NMB", name="NMB Bank"),
        Bank(code="CRDB", name="CRDB Bank PLC"),
    ]
    tips.transfer.return_value = record()

    resp = client.post(
        "/payments/qr/pay",
        headers=headers,
        json={
            "source_account": "0150000001",
            "merchant_id": "M1",
            "merchant_name": "Shop",
            "merchant_account": "1234567890",
            "merchant_bank": "crdb bank",
            "amount": 2500,
            "reference": "INV-7",
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["payment_type"] == "QR_PAYMENT"
    assert body["qr_reference"] == "INV-7"
    assert tips.transfer.await_args.kwargs["destination_bank_code"] == "CRDB"


def test_qr_pay_keeps_bank_code(client, fake_factories):
    headers = {"X-Tenant-ID": "tips-mfi"}
    client.get("/payments/methods", headers=headers)
    tips = fake_factories.last(ProviderCategory.TIPS)
    tips.transfer.return_value = record()

    client.post(
        "/payments/qr/pay",
        headers=headers,
        json={
            "source_account": "0150000001",
            "merchant_id": "M1",
            "merchant_name": "Shop",
            "merchant_account": "1234567890",
            "merchant_bank": "CRDB",
            "amount": 2500,
        },
    )

    tips.get_banks.assert_not_awaited()
    assert tips.transfer.await_args.kwargs["destination_bank_code"] == "CRDB"


def test_health_report(client):
    resp = client.get("/payments/health", headers={"X-Tenant-ID": "acme-bank"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["tenant_id"] == "acme-bank"
    assert body["overall"] == "healthy"
    assert set(body["adapters"]) == {"selcom", "tips", "gepg"}


def test_status_unknown_provider(client):
    resp = client.get(
        "/payments/status/paypal/REF1", headers={"X-Tenant-ID": "acme-bank"}
    )
    assert resp.status_code == 403
    assert resp.json()["error"]["message"] == "Provider paypal not available"


def test_cache_invalidate(client, orchestrator_cache, fake_factories):
    headers = {"X-Tenant-ID": "acme-bank"}
    client.get("/payments/methods", headers=headers)
    first = orchestrator_cache.get("acme-bank")

    resp = client.post("/payments/cache/invalidate", params={"tenant_id": "ACME-BANK"})

    assert resp.status_code == 200
    assert resp.json() == {"tenant_id": "ACME-BANK", "evicted": 1}

    client.get("/payments/methods", headers=headers)
    assert orchestrator_cache.get("acme-bank") is not first


def test_cache_invalidate_leaves_evicted_adapters_open(client, fake_factories):
    """Requests still holding an evicted orchestrator can keep using it."""
    headers = {"X-Tenant-ID": "acme-bank"}
    client.get("/payments/methods", headers=headers)

    client.post("/payments/cache/invalidate", params={"tenant_id": "acme-bank"})

    for adapters in fake_factories.built.values():
        adapters[-1].aclose.assert_not_awaited()


def test_qr_pay_bank_name_without_transfer_switch(client, fake_factories):
    """Resolving a bank name reports the QR capability as the missing one."""
    resp = client.post(
        "/payments/qr/pay",
        headers={"X-Tenant-ID": "bills-only"},
        json={
            "source_account": "0150000001",
            "merchant_id": "M1",
            "merchant_name": "Shop",
            "merchant_account": "1234567890",
            "merchant_bank": "CRDB Bank",
            "amount": 2500,
        },
    )

    assert resp.status_code == 403
    assert resp.json()["error"] == {
        "code": "FEATURE_NOT_ENABLED",
        "message": "QR payments not available for this tenant",
    }
    selcom = fake_factories.last(ProviderCategory.SELCOM)
    assert selcom.method_calls == []
