"""
Cash on Delivery eligibility and fees.

Pure rules, no database access. Every rule is evaluated so the caller gets
the full list of reasons COD is not offered.
"""

from typing import List, Optional, Union

from marketplace_cod.config import Settings, get_settings
from marketplace_cod.core.money import format_cents, higher_of, percent_of
from marketplace_cod.models.order import Order
from marketplace_cod.schemas.cod import (
    CodAvailability,
    CodFeeBreakdown,
    CodOrderValidation,
    DeliveryEstimate,
)
from marketplace_cod.schemas.order import ShippingAddress

AddressLike = Union[ShippingAddress, dict]


class CodService:
    """COD availability, surcharge and delivery estimate rules."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @staticmethod
    def _address(address: Optional[AddressLike]) -> Optional[ShippingAddress]:
        if address is None or isinstance(address, ShippingAddress):
            return address
        return ShippingAddress.model_validate(address)

    @staticmethod
    def _matches(value: Optional[str], restricted: List[str]) -> bool:
        if not value:
            return False
        value = value.strip().lower()
        return any(value == item.strip().lower() for item in restricted)

    def is_available_for_address(self, address: Optional[AddressLike]) -> bool:
        """False when the address falls in a restricted state, city or postal code."""
        address = self._address(address)
        if address is None:
            return True
        return not (
            self._matches(address.state, self.settings.COD_RESTRICTED_STATES)
            or self._matches(address.city, self.settings.COD_RESTRICTED_CITIES)
            or self._matches(address.postal_code, self.settings.COD_RESTRICTED_POSTAL_CODES)
        )

    def get_cod_fee(self, order_amount_cents: int) -> int:
        """max(fixed fee, truncated percentage fee)."""
        percentage_fee = percent_of(order_amount_cents, self.settings.COD_FEE_PERCENTAGE)
        return higher_of(self.settings.COD_FIXED_FEE_CENTS, percentage_fee)

    def get_delivery_time_estimate(self) -> DeliveryEstimate:
        min_days = self.settings.COD_MIN_DELIVERY_DAYS
        max_days = self.settings.COD_MAX_DELIVERY_DAYS
        return DeliveryEstimate(
            min_days=min_days,
            max_days=max_days,
            text=f"{min_days}-{max_days} business days",
        )

    def requires_verification(self, order_amount_cents: int) -> bool:
        """High-value orders are flagged for manual review, not blocked."""
        return order_amount_cents >= self.settings.COD_HIGH_VALUE_THRESHOLD_CENTS

    def validate_cod_availability(
        self,
        address: Optional[AddressLike],
        order_amount_cents: int,
        phone: Optional[str] = None,
    ) -> CodAvailability:
        """
        Decide whether COD can be offered.

        Args:
            address: Shipping address (state, city, postal_code, phone)
            order_amount_cents: Order amount before the COD fee
            phone: Contact phone; falls back to the address phone

        Returns:
            CodAvailability with every failed rule listed in ``errors``
        """
        address = self._address(address)
        errors: List[str] = []
        warnings: List[str] = []
        min_amount = self.settings.COD_MIN_ORDER_AMOUNT_CENTS
        max_amount = self.settings.COD_MAX_ORDER_AMOUNT_CENTS

        if not self.settings.COD_ENABLED:
            errors.append("COD is currently disabled.")

        if order_amount_cents < min_amount:
            errors.append(f"COD is only available for orders above {format_cents(min_amount)}.")
        if order_amount_cents > max_amount:
            errors.append(f"COD is not available for orders above {format_cents(max_amount)}.")

        if not self.is_available_for_address(address):
            errors.append("COD is not available for your delivery location.")

        contact_phone = phone or (address.phone if address else None)
        if not contact_phone or not contact_phone.strip():
            errors.append("Phone number is required for COD orders.")

        requires_verification = self.requires_verification(order_amount_cents)
        if requires_verification:
            warnings.append("High-value order: a confirmation call is required before dispatch.")

        return CodAvailability(
            available=not errors,
            errors=errors,
            warnings=warnings,
            cod_fee_cents=self.get_cod_fee(order_amount_cents),
            delivery_estimate=self.get_delivery_time_estimate(),
            requires_verification=requires_verification,
            min_order_amount_cents=min_amount,
            max_order_amount_cents=max_amount,
        )

    def validate_cod_order(self, order: Order) -> CodOrderValidation:
        """Re-run the availability rules against a placed COD order."""
        errors: List[str] = []
        if not order.is_cod():
            errors.append("Order is not a Cash on Delivery order.")

        availability = self.validate_cod_availability(order.shipping_address, order.total_cents)
        errors.extend(availability.errors)
        return CodOrderValidation(valid=not errors, errors=errors)

    def calculate_total_with_cod_fee(self, order_amount_cents: int) -> CodFeeBreakdown:
        fee = self.get_cod_fee(order_amount_cents)
        return CodFeeBreakdown(
            order_amount_cents=order_amount_cents,
            cod_fee_cents=fee,
            total_cents=order_amount_cents + fee,
        )

    def get_payment_instructions(self, order_amount_cents: Optional[int] = None) -> List[str]:
        instructions = [
            "Please keep the exact amount ready at the time of delivery.",
            "Pay the delivery person in cash when you receive your order.",
            "Ask the delivery person for a receipt after payment.",
        ]
        if order_amount_cents is not None:
            total = self.calculate_total_with_cod_fee(order_amount_cents)
            instructions.insert(
                0,
                f"Amount due on delivery: {format_cents(total.total_cents)} "
                f"(includes {format_cents(total.cod_fee_cents)} COD fee).",
            )
        return instructions
