"""
Tests for COD eligibility and fee rules
"""
import pytest

from marketplace_cod.models.order import Order, PaymentMethod
from marketplace_cod.schemas.order import ShippingAddress
from marketplace_cod.services.cod_service import CodService


ADDRESS = ShippingAddress(state="Texas", city="Austin", postal_code="73301", phone="+1 512 555 0100")


@pytest.fixture
def cod_service(settings):
    return CodService(settings)


class TestValidateCodAvailability:
    def test_eligible_order(self, cod_service):
        result = cod_service.validate_cod_availability(ADDRESS, 100000)

        assert result.available
        assert result.errors == []
        assert result.warnings == []
        assert result.cod_fee_cents == 2000
        assert result.delivery_estimate.text == "3-5 business days"
        assert not result.requires_verification

    def test_restricted_state_blocks_regardless_of_amount(self, settings):
        settings.COD_RESTRICTED_STATES = ["Alaska"]
        service = CodService(settings)
        address = ShippingAddress(state="alaska", city="Juneau", phone="+1 907 555 0100")

        result = service.validate_cod_availability(address, 100000)

        assert not result.available
        assert result.errors == ["COD is not available for your delivery location."]

    @pytest.mark.parametrize("field,value", [
        ("COD_RESTRICTED_CITIES", ["AUSTIN"]),
        ("COD_RESTRICTED_POSTAL_CODES", ["73301"]),
    ])
    def test_restricted_city_or_postal_code(self, settings, field, value):
        setattr(settings, field, value)
        assert not CodService(settings).is_available_for_address(ADDRESS)

    def test_every_failed_rule_is_reported(self, settings):
        settings.COD_ENABLED = False
        settings.COD_RESTRICTED_CITIES = ["Austin"]
        service = CodService(settings)
        address = ShippingAddress(state="Texas", city="Austin")

        result = service.validate_cod_availability(address, 100)

        assert not result.available
        assert result.errors == [
            "COD is currently disabled.",
            "COD is only available for orders above $500.00.",
            "COD is not available for your delivery location.",
            "Phone number is required for COD orders.",
        ]

    def test_amount_above_maximum(self, cod_service):
        result = cod_service.validate_cod_availability(ADDRESS, 50000001)
        assert "COD is not available for orders above $500,000.00." in result.errors

    def test_boundaries_are_inclusive(self, cod_service):
        assert cod_service.validate_cod_availability(ADDRESS, 50000).available
        assert cod_service.validate_cod_availability(ADDRESS, 50000000).available

    def test_explicit_phone_overrides_missing_address_phone(self, cod_service):
        address = {"state": "Texas", "city": "Austin", "postal_code": "73301"}
        assert not cod_service.validate_cod_availability(address, 100000).available
        assert cod_service.validate_cod_availability(address, 100000, phone="555-0100").available

    def test_high_value_order_warns_but_stays_available(self, cod_service):
        result = cod_service.validate_cod_availability(ADDRESS, 1000000)

        assert result.available
        assert result.requires_verification
        assert result.warnings == ["High-value order: a confirmation call is required before dispatch."]


class TestFees:
    @pytest.mark.parametrize("amount,fee", [
        (10000, 500),      # 2% = 200, fixed fee wins
        (25000, 500),      # 2% = 500, tie
        (100000, 2000),    # 2% wins
        (99999, 1999),     # truncated
    ])
    def test_cod_fee_is_higher_of_fixed_and_percentage(self, cod_service, amount, fee):
        assert cod_service.get_cod_fee(amount) == fee

    def test_total_with_cod_fee(self, cod_service):
        breakdown = cod_service.calculate_total_with_cod_fee(100000)
        assert breakdown.cod_fee_cents == 2000
        assert breakdown.total_cents == 102000

    def test_payment_instructions_include_amount_due(self, cod_service):
        instructions = cod_service.get_payment_instructions(100000)
        assert instructions[0] == "Amount due on delivery: $1,020.00 (includes $20.00 COD fee)."
        assert len(cod_service.get_payment_instructions()) == 3


class TestValidateCodOrder:
    def test_valid_order(self, cod_service):
        order = Order(
            order_number="ORD-1",
            payment_method=PaymentMethod.COD.value,
            total_cents=100000,
            shipping_state="Texas",
            shipping_city="Austin",
            shipping_phone="+1 512 555 0100",
        )
        assert cod_service.validate_cod_order(order).valid

    def test_card_order_is_not_cod(self, cod_service):
        order = Order(
            order_number="ORD-2",
            payment_method=PaymentMethod.CARD.value,
            total_cents=100000,
            shipping_phone="+1 512 555 0100",
        )
        result = cod_service.validate_cod_order(order)
        assert not result.valid
        assert result.errors == ["Order is not a Cash on Delivery order."]
