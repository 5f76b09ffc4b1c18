"""
Tests for the payment orchestrator.

Covers adapter registry construction, dispatch to the owning adapter,
fail-fast behaviour for disabled capabilities, QR flows and health
aggregation.
"""

import pytest

from app.payments.errors import CapabilityUnavailableError, ProviderConnectionError
from app.payments.models import (
    AccountValidation,
    AdapterHealth,
    Bank,
    HealthState,
    PaymentType,
    ProviderCategory,
    TransactionRecord,
    TransactionStatus,
)
from app.payments.orchestrator import PaymentOrchestrator, build_adapter_registry
from tests.fixtures.payments import make_tenant_config, tlv

DISPATCH_CALLS = [
    ("get_billers", (), "Bill payment"),
    ("validate_biller", ("LUKU", "123"), "Bill payment"),
    ("pay_bill", ("LUKU", "123", 5000.0), "Bill payment"),
    ("buy_airtime", ("255700000000", 1000.0), "Airtime purchase"),
    ("get_banks", (), "Bank transfers"),
    ("validate_bank_account", ("123", "CRDB"), "Bank transfers"),
    ("transfer_to_bank", ("SRC", "DST", "CRDB", 100.0), "Bank transfers"),
    ("transfer_to_mobile", ("SRC", "255700000000", 100.0), "Mobile transfers"),
    ("validate_qr_merchant", ("M1", "Shop", None), "QR payments"),
    ("lookup_qr_merchant", ("M1",), "QR payments"),
    ("pay_qr_merchant", ("SRC", "M1", "Shop", "123", "CRDB", 100.0), "QR payments"),
    ("get_government_services", (), "Government payments"),
    ("lookup_control_number", ("991234",), "Government payments"),
    ("pay_government_bill", ("991234", 100.0), "Government payments"),
    ("verify_receipt", ("RCPT1",), "Government payments"),
]


def make_record(**overrides) -> TransactionRecord:
    data = {
        "reference": "TIPSABC123",
        "type": "TIPS_TRANSFER",
        "amount": 2500.0,
        "status": TransactionStatus.COMPLETED,
    }
    data.update(overrides)
    return TransactionRecord(**data)


class TestAdapterRegistry:
    """Tests for registry construction from tenant flags."""

    def test_builds_only_enabled_adapters(self, tips_only_config, fake_factories):
        registry = build_adapter_registry(tips_only_config, fake_factories.as_dict())

        assert registry.tips is not None
        assert registry.selcom is None
        assert registry.gepg is None
        assert len(registry) == 1
        assert fake_factories.built[ProviderCategory.SELCOM] == []

    def test_adapters_receive_tenant_scoped_config(
        self, all_enabled_config, fake_factories
    ):
        build_adapter_registry(all_enabled_config, fake_factories.as_dict())

        selcom = fake_factories.last(ProviderCategory.SELCOM)
        assert selcom.tenant_id == "acme-bank"
        assert selcom.config.api_key == "selcom-key"

    def test_items_in_category_order(self, all_enabled_config, fake_factories):
        registry = build_adapter_registry(all_enabled_config, fake_factories.as_dict())
        assert [c for c, _ in registry.items()] == list(ProviderCategory)

    def test_real_adapters_built_by_default(self, all_enabled_config):
        from app.payments.adapters import GEPGAdapter, SelcomAdapter, TIPSAdapter

        registry = build_adapter_registry(all_enabled_config)

        assert isinstance(registry.selcom, SelcomAdapter)
        assert isinstance(registry.tips, TIPSAdapter)
        assert isinstance(registry.gepg, GEPGAdapter)


class TestAvailability:
    """Tests for availability queries."""

    def test_no_integrations_has_no_methods(
        self, no_integrations_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(
            no_integrations_config, fake_factories.as_dict()
        )

        assert orchestrator.get_available_methods() == []
        assert not any(orchestrator.is_available(t) for t in PaymentType)

    def test_tips_only_availability(self, tips_only_config, fake_factories):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())

        assert orchestrator.is_available("BILL_PAYMENT") is False
        assert orchestrator.is_available("BANK_TRANSFER") is True
        assert orchestrator.is_available(PaymentType.QR_PAYMENT) is True
        assert orchestrator.is_available(PaymentType.GOVERNMENT) is False

    def test_unknown_payment_type_unavailable(self, all_enabled_config, fake_factories):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())
        assert orchestrator.is_available("CRYPTO") is False

    def test_methods_follow_constructed_adapters(
        self, tips_only_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())

        methods = orchestrator.get_available_methods()

        assert [m.type for m in methods] == [
            PaymentType.BANK_TRANSFER,
            PaymentType.MOBILE_TRANSFER,
            PaymentType.QR_PAYMENT,
        ]
        assert all(m.provider == ProviderCategory.TIPS for m in methods)

    def test_all_methods(self, all_enabled_config, fake_factories):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())
        assert {m.type for m in orchestrator.get_available_methods()} == set(
            PaymentType
        )


@pytest.mark.asyncio
class TestDispatch:
    """Tests for dispatching operations to adapters."""

    @pytest.mark.parametrize("method, args, capability", DISPATCH_CALLS)
    async def test_missing_adapter_fails_fast(
        self, no_integrations_config, fake_factories, method, args, capability
    ):
        orchestrator = PaymentOrchestrator(
            no_integrations_config, fake_factories.as_dict()
        )

        with pytest.raises(CapabilityUnavailableError) as exc_info:
            await getattr(orchestrator, method)(*args)

        assert str(exc_info.value) == f"{capability} not available for this tenant"
        assert exc_info.value.tenant_id == "empty-sacco"

    async def test_no_fallback_to_other_category(self, tips_only_config, fake_factories):
        """Bill payment never reaches the transfer adapter."""
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())

        with pytest.raises(CapabilityUnavailableError):
            await orchestrator.pay_bill("LUKU", "123", 5000.0)

        tips = fake_factories.last(ProviderCategory.TIPS)
        assert tips.method_calls == []

    async def test_pay_bill_dispatches_to_selcom(
        self, all_enabled_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())
        selcom = fake_factories.last(ProviderCategory.SELCOM)
        selcom.pay_bill.return_value = make_record(type="BILL_PAYMENT")

        result = await orchestrator.pay_bill("LUKU", "04123456789", 5000.0, "255700")

        assert result.type == "BILL_PAYMENT"
        selcom.pay_bill.assert_awaited_once_with(
            biller_code="LUKU",
            customer_ref="04123456789",
            amount=5000.0,
            phone="255700",
            description=None,
        )

    async def test_transfer_to_bank_uses_bank_account_type(
        self, all_enabled_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())
        tips = fake_factories.last(ProviderCategory.TIPS)
        tips.transfer.return_value = make_record()

        await orchestrator.transfer_to_bank("SRC", "DST", "CRDB", 2500.0)

        assert tips.transfer.await_args.kwargs["account_type"] == "BANK"

    async def test_adapter_failure_propagates(self, all_enabled_config, fake_factories):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())
        tips = fake_factories.last(ProviderCategory.TIPS)
        tips.get_banks.side_effect = ProviderConnectionError("switch down")

        with pytest.raises(ProviderConnectionError):
            await orchestrator.get_banks()

    async def test_check_status_routes_to_named_provider(
        self, all_enabled_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())

        await orchestrator.check_transaction_status("GEPG123", "gepg")

        gepg = fake_factories.last(ProviderCategory.GEPG)
        gepg.check_status.assert_awaited_once_with("GEPG123")

    async def test_check_status_missing_provider(self, tips_only_config, fake_factories):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())

        with pytest.raises(CapabilityUnavailableError, match="Provider selcom not available"):
            await orchestrator.check_transaction_status("BILL1", ProviderCategory.SELCOM)

    async def test_check_status_unknown_provider(self, all_enabled_config, fake_factories):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())

        with pytest.raises(CapabilityUnavailableError, match="Provider paypal not available"):
            await orchestrator.check_transaction_status("X1", "paypal")


@pytest.mark.asyncio
class TestQRPayments:
    """Tests for QR merchant validation and payment."""

    async def test_validate_uses_decoded_account(self, tips_only_config, fake_factories):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())
        tips = fake_factories.last(ProviderCategory.TIPS)
        tips.validate_account.return_value = AccountValidation(
            valid=True, account_name="MAMA NTILIE SHOP", bank_name="CRDB Bank"
        )
        qr = tlv("26", tlv("00", "TZ.TZ.0012") + tlv("01", "1234567890"))

        result = await orchestrator.validate_qr_merchant("M1", "Shop", qr)

        tips.validate_account.assert_awaited_once_with(
            account_number="1234567890", bank_code="0012", account_type="BANK"
        )
        assert result.valid is True
        assert result.merchant_name == "MAMA NTILIE SHOP"
        assert result.bank_name == "CRDB Bank"
        assert result.account_number == "1234567890"

    async def test_validate_malformed_qr_uses_merchant_id(
        self, tips_only_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())
        tips = fake_factories.last(ProviderCategory.TIPS)
        tips.validate_account.return_value = AccountValidation(valid=False)

        result = await orchestrator.validate_qr_merchant("M1", "Shop", "2699broken")

        tips.validate_account.assert_awaited_once_with(
            account_number="M1", bank_code="", account_type="BANK"
        )
        assert result.merchant_name == "Shop"
        assert result.valid is False

    async def test_pay_qr_merchant_narration_and_enrichment(
        self, tips_only_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())
        tips = fake_factories.last(ProviderCategory.TIPS)
        tips.transfer.return_value = make_record()

        result = await orchestrator.pay_qr_merchant(
            source_account="0150000001",
            merchant_id="M1",
            merchant_name="Shop",
            merchant_account="1234567890",
            merchant_bank_code="0012",
            amount=2500.0,
            reference="INV-7",
        )

        kwargs = tips.transfer.await_args.kwargs
        assert kwargs["narration"] == "QR Payment to Shop - INV-7"
        assert kwargs["recipient_name"] == "Shop"
        assert kwargs["destination_account"] == "1234567890"
        assert result.payment_type == PaymentType.QR_PAYMENT
        assert result.merchant_id == "M1"
        assert result.qr_reference == "INV-7"
        assert result.reference == "TIPSABC123"

    async def test_pay_qr_merchant_without_reference(
        self, tips_only_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())
        tips = fake_factories.last(ProviderCategory.TIPS)
        tips.transfer.return_value = make_record()

        await orchestrator.pay_qr_merchant("SRC", "M1", "Shop", "123", "0012", 10.0)

        assert tips.transfer.await_args.kwargs["narration"] == "QR Payment to Shop"

    async def test_resolve_merchant_bank_by_name(self, tips_only_config, fake_factories):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())
        tips = fake_factories.last(ProviderCategory.TIPS)
        tips.get_banks.return_value = [Bank(code="NMB", name="NMB Bank")]

        assert await orchestrator.resolve_merchant_bank("nmb") == "NMB"
        assert await orchestrator.resolve_merchant_bank("Unknown Bank") == "Unknown Bank"

    async def test_resolve_merchant_bank_code_passthrough(
        self, tips_only_config, fake_factories
    ):
        orchestrator = PaymentOrchestrator(tips_only_config, fake_factories.as_dict())
        tips = fake_factories.last(ProviderCategory.TIPS)

        assert await orchestrator.resolve_merchant_bank("CRDB") == "CRDB"
        assert await orchestrator.resolve_merchant_bank(None) is None
        tips.get_banks.assert_not_awaited()

    async def test_resolve_merchant_bank_requires_qr_capability(self, fake_factories):
        orchestrator = PaymentOrchestrator(
            make_tenant_config("bills-only", "selcom"), fake_factories.as_dict()
        )

        with pytest.raises(CapabilityUnavailableError) as exc_info:
            await orchestrator.resolve_merchant_bank("CRDB Bank")

        assert str(exc_info.value) == "QR payments not available for this tenant"


@pytest.mark.asyncio
class TestHealthCheck:
    """Tests for health aggregation."""

    async def test_all_healthy(self, all_enabled_config, fake_factories):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())

        report = await orchestrator.health_check()

        assert report.overall == HealthState.HEALTHY
        assert set(report.adapters) == {"selcom", "tips", "gepg"}

    async def test_one_adapter_raises(self, all_enabled_config, fake_factories):
        """Two healthy adapters and one raising degrade the overall status."""
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())
        gepg = fake_factories.last(ProviderCategory.GEPG)
        gepg.health_check.side_effect = RuntimeError("gateway unreachable")

        report = await orchestrator.health_check()

        assert report.overall == HealthState.DEGRADED
        assert report.adapters["gepg"].status == HealthState.UNHEALTHY
        assert report.adapters["gepg"].error == "gateway unreachable"
        assert report.adapters["selcom"].status == HealthState.HEALTHY
        assert report.adapters["tips"].status == HealthState.HEALTHY

    async def test_unhealthy_status_degrades(self, all_enabled_config, fake_factories):
        orchestrator = PaymentOrchestrator(all_enabled_config, fake_factories.as_dict())
        selcom = fake_factories.last(ProviderCategory.SELCOM)
        selcom.health_check.return_value = AdapterHealth(
            adapter="FakeSelcomAdapter", status=HealthState.UNHEALTHY, error="401"
        )

        report = await orchestrator.health_check()

        assert report.overall == HealthState.DEGRADED

    async def test_no_adapters_is_healthy(self, no_integrations_config, fake_factories):
        orchestrator = PaymentOrchestrator(
            no_integrations_config, fake_factories.as_dict()
        )

        report = await orchestrator.health_check()

        assert report.overall == HealthState.HEALTHY
        assert report.adapters == {}
        assert report.tenant_id == "empty-sacco"
