"""
Payout orchestration.

A payout reserves AVAILABLE earnings (oldest first) through
PayoutEarningLine rows and moves them to PROCESSING. The payout then runs
through PAYOUT_TRANSITIONS; completion marks exactly those earnings PAID,
failure or cancellation puts exactly those earnings back to AVAILABLE.

Payout lifecycle:
    PENDING -> PROCESSING -> COMPLETED | FAILED
    PENDING | PROCESSING -> CANCELLED
    PENDING -> COMPLETED (manual settlement)
    FAILED -> PENDING (retry)
"""

from typing import Dict, List, Optional, Sequence
import uuid
import logging

from sqlalchemy import select

from marketplace_cod.config import Settings, get_settings
from marketplace_cod.core import events
from marketplace_cod.core.exceptions import BankTransferError, ConcurrentUpdateError
from marketplace_cod.core.money import format_cents, percent_of, HUNDRED
from marketplace_cod.database import UnitOfWork
from marketplace_cod.db_types import utcnow
from marketplace_cod.models.payout import Payout, PayoutEarningLine, PayoutMethod, PayoutStatus
from marketplace_cod.models.vendor import EarningStatus, Vendor, VendorEarning, VendorStatus
from marketplace_cod.schemas.payout import PayoutResult, TransferReceipt
from marketplace_cod.services.activity_log_service import ActivityLogService
from marketplace_cod.services.vendor_earning_service import VendorEarningService

logger = logging.getLogger(__name__)


# =============================================================================
# TRANSITION RULES
# =============================================================================

PAYOUT_TRANSITIONS: Dict[str, List[str]] = {
    PayoutStatus.PENDING.value: [
        PayoutStatus.PROCESSING.value,   # Initiate transfer
        PayoutStatus.COMPLETED.value,    # Settled outside the gateway
        PayoutStatus.CANCELLED.value,
    ],
    PayoutStatus.PROCESSING.value: [
        PayoutStatus.COMPLETED.value,
        PayoutStatus.FAILED.value,
        PayoutStatus.CANCELLED.value,
    ],
    PayoutStatus.FAILED.value: [
        PayoutStatus.PENDING.value,      # Retry
    ],
    PayoutStatus.COMPLETED.value: [],    # Terminal state
    PayoutStatus.CANCELLED.value: [],    # Terminal state
}


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a payout transition is allowed."""
    return new_status in PAYOUT_TRANSITIONS.get(current_status, [])


def last_four(account_number: Optional[str]) -> Optional[str]:
    if not account_number:
        return None
    return account_number[-4:]


# =============================================================================
# TRANSFER GATEWAY
# =============================================================================

class SimulatedBankTransferGateway:
    """
    Stand-in for a real payment provider.

    Always succeeds for vendors with bank details and returns a TXN-
    reference.
    """

    async def send(self, payout: Payout, vendor: Vendor) -> TransferReceipt:
        transaction_id = f"TXN-{uuid.uuid4().hex[:13].upper()}"
        logger.info(
            f"Bank transfer simulated for payout {payout.payout_ref}: "
            f"{format_cents(payout.net_amount_cents)} ({transaction_id})"
        )
        return TransferReceipt(
            success=True,
            transaction_id=transaction_id,
            message="Transfer accepted",
            processed_at=utcnow(),
        )


# =============================================================================
# SERVICE
# =============================================================================

class PayoutService:
    """Service for requesting, processing and settling vendor payouts."""

    def __init__(
        self,
        uow: UnitOfWork,
        settings: Optional[Settings] = None,
        earning_service: Optional[VendorEarningService] = None,
        transfer_gateway: Optional[SimulatedBankTransferGateway] = None,
    ):
        self.uow = uow
        self.db = uow.session
        self.settings = settings or get_settings()
        self.earnings = earning_service or VendorEarningService(uow, self.settings)
        self.gateway = transfer_gateway or SimulatedBankTransferGateway()
        self.activity = ActivityLogService(self.db)

    # ==================== HELPERS ====================

    def calculate_processing_fee(self, amount_cents: int) -> int:
        if self.settings.PAYOUT_FEE_TYPE == "fixed":
            return self.settings.PAYOUT_FEE_FIXED_CENTS
        return percent_of(amount_cents, self.settings.PAYOUT_FEE_PERCENTAGE / HUNDRED)

    @staticmethod
    def generate_payout_ref() -> str:
        return f"PO-{uuid.uuid4().hex[:12].upper()}"

    async def _lock_vendor(self, vendor_id: uuid.UUID) -> Optional[Vendor]:
        result = await self.db.execute(
            select(Vendor)
            .where(Vendor.id == vendor_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _lock_payout(self, payout_id: uuid.UUID) -> Optional[Payout]:
        result = await self.db.execute(
            select(Payout)
            .where(Payout.id == payout_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _lock_available_earnings(self, vendor_id: uuid.UUID) -> Sequence[VendorEarning]:
        result = await self.db.execute(
            select(VendorEarning)
            .where(
                VendorEarning.vendor_id == vendor_id,
                VendorEarning.status == EarningStatus.AVAILABLE.value,
            )
            .order_by(VendorEarning.available_at.asc(), VendorEarning.created_at.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def get_line_earning_ids(self, payout_id: uuid.UUID) -> List[uuid.UUID]:
        """Ids of the earnings this payout reserved."""
        result = await self.db.execute(
            select(PayoutEarningLine.earning_id).where(PayoutEarningLine.payout_id == payout_id)
        )
        return list(result.scalars().all())

    async def _move_earnings(
        self,
        earning_ids: List[uuid.UUID],
        from_status: EarningStatus,
        to_status: EarningStatus,
    ) -> int:
        """Conditional status flip; every listed earning must be in ``from_status``."""
        if not earning_ids:
            return 0
        result = await self.db.execute(
            select(VendorEarning)
            .where(
                VendorEarning.id.in_(earning_ids),
                VendorEarning.status == from_status.value,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        earnings = result.scalars().all()
        if len(earnings) != len(earning_ids):
            raise ConcurrentUpdateError("vendor_earning", len(earning_ids), len(earnings))
        now = utcnow()
        for earning in earnings:
            earning.status = to_status.value
            earning.updated_at = now
        await self.db.flush()
        return len(earnings)

    def _set_status(self, payout: Payout, new_status: PayoutStatus) -> str:
        previous = payout.status
        payout.status = new_status.value
        return previous

    @staticmethod
    def _refused(message: str, payout: Optional[Payout] = None) -> PayoutResult:
        logger.info(f"Payout operation refused: {message}")
        return PayoutResult.fail(message, payout=payout)

    # ==================== REQUESTS ====================

    async def create_payout_request(
        self,
        vendor_id: uuid.UUID,
        amount_cents: int,
        requested_by: Optional[uuid.UUID] = None,
    ) -> PayoutResult:
        """
        Reserve available earnings for a payout of ``amount_cents``.

        Earnings are taken whole, oldest first, until the amount is covered.
        The last earning may overshoot; the overshoot stays reserved with the
        payout and is reported as ``reserved_surplus_cents``. It is not
        returned to the vendor's balance: when the payout completes every
        reserved earning is settled as PAID, so the surplus is forfeited.
        """
        vendor = await self._lock_vendor(vendor_id)
        if vendor is None:
            return self._refused(f"Vendor {vendor_id} not found.")
        if vendor.status != VendorStatus.APPROVED.value:
            return self._refused("Only approved vendors can request payouts.")

        if amount_cents <= 0:
            return self._refused("Requested amount must be positive.")

        earnings = await self._lock_available_earnings(vendor_id)
        available_balance = sum(e.net_amount_cents for e in earnings)

        if amount_cents > available_balance:
            return self._refused(
                f"Requested amount {format_cents(amount_cents)} exceeds available balance "
                f"{format_cents(available_balance)}."
            )
        minimum = self.settings.PAYOUT_MINIMUM_AMOUNT_CENTS
        if amount_cents < minimum:
            return self._refused(
                f"Requested amount is below minimum payout amount of {format_cents(minimum)}."
            )

        processing_fee_cents = self.calculate_processing_fee(amount_cents)
        if processing_fee_cents > amount_cents:
            return self._refused("Requested amount does not cover the processing fee.")

        selected: List[VendorEarning] = []
        remaining = amount_cents
        for earning in earnings:
            if remaining <= 0:
                break
            selected.append(earning)
            remaining -= earning.net_amount_cents

        reserved_cents = sum(e.net_amount_cents for e in selected)
        surplus_cents = reserved_cents - amount_cents

        await self._move_earnings(
            [e.id for e in selected], EarningStatus.AVAILABLE, EarningStatus.PROCESSING
        )

        payout = Payout(
            vendor_id=vendor.id,
            payout_ref=self.generate_payout_ref(),
            period_start=min(e.created_at for e in selected),
            period_end=max(e.created_at for e in selected),
            items_count=len(selected),
            amount_cents=amount_cents,
            processing_fee_cents=processing_fee_cents,
            net_amount_cents=amount_cents - processing_fee_cents,
            reserved_amount_cents=reserved_cents,
            status=PayoutStatus.PENDING.value,
            payout_method=PayoutMethod.BANK_TRANSFER.value,
            payout_details={
                "bank_name": vendor.bank_name,
                "bank_account_name": vendor.bank_account_name,
                "bank_account_number": last_four(vendor.bank_account_number),
                "reserved_surplus_cents": surplus_cents,
            },
            requested_by=requested_by,
            lines=[
                PayoutEarningLine(earning_id=e.id, net_amount_cents=e.net_amount_cents)
                for e in selected
            ],
        )
        self.db.add(payout)
        await self.db.flush()

        if surplus_cents:
            logger.warning(
                f"Payout {payout.payout_ref} reserved {format_cents(reserved_cents)} "
                f"for a request of {format_cents(amount_cents)}"
            )

        await self.activity.log(
            action="payout_requested",
            entity_type="payout",
            entity_id=payout.id,
            actor_id=requested_by,
            properties={
                "vendor_id": str(vendor.id),
                "amount_cents": amount_cents,
                "reserved_amount_cents": reserved_cents,
                "reserved_surplus_cents": surplus_cents,
                "items_count": len(selected),
            },
            description=f"Payout {payout.payout_ref} requested for {format_cents(amount_cents)}",
        )
        logger.info(
            f"Payout {payout.payout_ref} created for vendor {vendor.id}: "
            f"{format_cents(amount_cents)} from {len(selected)} earning(s)"
        )
        return PayoutResult.ok("Payout request created.", payout=payout)

    async def process_automatic_payout(self, vendor: Vendor) -> Optional[Payout]:
        """
        Request the vendor's whole available balance.

        Returns None when auto payout is off or the balance is under the
        minimum.
        """
        if not vendor.auto_payout_enabled:
            return None

        available_balance = await self.earnings.get_available_balance(vendor.id)
        minimum = self.settings.PAYOUT_MINIMUM_AMOUNT_CENTS
        if available_balance < minimum:
            logger.info(
                f"Vendor {vendor.id} balance {format_cents(available_balance)} is below the "
                f"automatic payout minimum of {format_cents(minimum)}"
            )
            return None

        result = await self.create_payout_request(vendor.id, available_balance)
        if not result.success:
            logger.warning(f"Automatic payout for vendor {vendor.id} not created: {result.message}")
            return None

        logger.info(f"Automatic payout {result.payout.payout_ref} created for vendor {vendor.id}")
        return result.payout

    # ==================== PROCESSING ====================

    async def initiate_payout(
        self,
        payout_id: uuid.UUID,
        processed_by: Optional[uuid.UUID] = None,
    ) -> PayoutResult:
        """PENDING -> PROCESSING."""
        payout = await self._lock_payout(payout_id)
        if payout is None:
            return self._refused(f"Payout {payout_id} not found.")
        if payout.status != PayoutStatus.PENDING.value:
            return self._refused("Payout cannot be processed in its current status.", payout)

        self._set_status(payout, PayoutStatus.PROCESSING)
        payout.processed_by = processed_by
        await self.db.flush()

        await self.activity.log(
            action="payout_initiated",
            entity_type="payout",
            entity_id=payout.id,
            actor_id=processed_by,
            description=f"Payout {payout.payout_ref} processing initiated",
        )
        logger.info(f"Payout {payout.payout_ref} initiated")
        return PayoutResult.ok("Payout processing initiated.", payout=payout)

    async def process_bank_transfer(self, payout: Payout) -> TransferReceipt:
        """
        Send the payout's net amount to the vendor's bank account.

        Raises:
            BankTransferError: vendor bank details are incomplete or the gateway failed
        """
        vendor = await self.db.get(Vendor, payout.vendor_id)
        if vendor is None or not vendor.has_bank_details():
            raise BankTransferError("Vendor bank details are incomplete.")

        receipt = await self.gateway.send(payout, vendor)
        if not receipt.success:
            raise BankTransferError(receipt.message)
        return receipt

    async def mark_as_paid(
        self,
        payout_id: uuid.UUID,
        transaction_details: Optional[dict] = None,
        processed_by: Optional[uuid.UUID] = None,
    ) -> PayoutResult:
        """PENDING | PROCESSING -> COMPLETED; reserved earnings become PAID."""
        payout = await self._lock_payout(payout_id)
        if payout is None:
            return self._refused(f"Payout {payout_id} not found.")
        if not can_transition(payout.status, PayoutStatus.COMPLETED.value):
            return self._refused("Payout cannot be marked as paid in its current status.", payout)

        details = transaction_details or {}
        now = utcnow()
        earning_ids = await self.get_line_earning_ids(payout.id)
        await self._move_earnings(earning_ids, EarningStatus.PROCESSING, EarningStatus.PAID)

        self._set_status(payout, PayoutStatus.COMPLETED)
        payout.processed_at = now
        payout.processed_by = processed_by
        payout.merge_details(
            transaction_id=details.get("transaction_id"),
            paid_at=now.isoformat(),
            payment_method=details.get("method", "bank_transfer"),
        )
        await self.db.flush()
        forfeited_cents = payout.reserved_amount_cents - payout.amount_cents
        if forfeited_cents:
            logger.warning(
                f"Payout {payout.payout_ref} settled {format_cents(forfeited_cents)} of reserved earnings "
                "beyond the requested amount"
            )

        await self.activity.log(
            action="payout_completed",
            entity_type="payout",
            entity_id=payout.id,
            actor_id=processed_by,
            properties={
                "transaction_id": details.get("transaction_id"),
                "earnings": len(earning_ids),
                "reserved_amount_cents": payout.reserved_amount_cents,
                "forfeited_surplus_cents": forfeited_cents,
            },
            description=f"Payout {payout.payout_ref} completed",
        )
        self.uow.record(events.PayoutCompleted(
            payout_id=payout.id,
            payout_ref=payout.payout_ref,
            vendor_id=payout.vendor_id,
            net_amount_cents=payout.net_amount_cents,
        ))
        logger.info(f"Payout {payout.payout_ref} completed, {len(earning_ids)} earning(s) paid")
        return PayoutResult.ok("Payout marked as paid.", payout=payout)

    async def mark_as_failed(
        self,
        payout_id: uuid.UUID,
        reason: str,
        processed_by: Optional[uuid.UUID] = None,
    ) -> PayoutResult:
        """PROCESSING -> FAILED; reserved earnings go back to AVAILABLE."""
        payout = await self._lock_payout(payout_id)
        if payout is None:
            return self._refused(f"Payout {payout_id} not found.")
        if not can_transition(payout.status, PayoutStatus.FAILED.value):
            return self._refused("Only payouts being processed can be marked as failed.", payout)

        earning_ids = await self.get_line_earning_ids(payout.id)
        await self._move_earnings(earning_ids, EarningStatus.PROCESSING, EarningStatus.AVAILABLE)

        self._set_status(payout, PayoutStatus.FAILED)
        payout.failure_reason = reason
        payout.processed_by = processed_by
        payout.merge_details(failure_reason=reason, failed_at=utcnow().isoformat())
        await self.db.flush()

        await self.activity.log(
            action="payout_failed",
            entity_type="payout",
            entity_id=payout.id,
            actor_id=processed_by,
            properties={"reason": reason},
            description=f"Payout {payout.payout_ref} failed",
        )
        self.uow.record(events.PayoutFailed(
            payout_id=payout.id,
            payout_ref=payout.payout_ref,
            vendor_id=payout.vendor_id,
            reason=reason,
        ))
        logger.warning(f"Payout {payout.payout_ref} marked as failed: {reason}")
        return PayoutResult.ok("Payout marked as failed.", payout=payout)

    async def cancel_payout(
        self,
        payout_id: uuid.UUID,
        reason: str,
        cancelled_by: Optional[uuid.UUID] = None,
    ) -> PayoutResult:
        """PENDING | PROCESSING -> CANCELLED; reserved earnings go back to AVAILABLE."""
        payout = await self._lock_payout(payout_id)
        if payout is None:
            return self._refused(f"Payout {payout_id} not found.")
        if not can_transition(payout.status, PayoutStatus.CANCELLED.value):
            return self._refused("Payout cannot be cancelled in its current status.", payout)

        earning_ids = await self.get_line_earning_ids(payout.id)
        await self._move_earnings(earning_ids, EarningStatus.PROCESSING, EarningStatus.AVAILABLE)

        self._set_status(payout, PayoutStatus.CANCELLED)
        payout.cancellation_reason = reason
        payout.cancelled_at = utcnow()
        payout.processed_by = cancelled_by
        await self.db.flush()

        await self.activity.log(
            action="payout_cancelled",
            entity_type="payout",
            entity_id=payout.id,
            actor_id=cancelled_by,
            properties={"reason": reason},
            description=f"Payout {payout.payout_ref} cancelled",
        )
        logger.info(f"Payout {payout.payout_ref} cancelled: {reason}")
        return PayoutResult.ok("Payout cancelled.", payout=payout)

    async def retry_payout(
        self,
        payout_id: uuid.UUID,
        processed_by: Optional[uuid.UUID] = None,
    ) -> PayoutResult:
        """
        FAILED -> PENDING, re-reserving the payout's own earnings.

        Refused if any of those earnings has since been reserved elsewhere
        or withheld.
        """
        payout = await self._lock_payout(payout_id)
        if payout is None:
            return self._refused(f"Payout {payout_id} not found.")
        if payout.status != PayoutStatus.FAILED.value:
            return self._refused("Only failed payouts can be retried.", payout)

        earning_ids = await self.get_line_earning_ids(payout.id)
        locked = await self.db.execute(
            select(VendorEarning)
            .where(VendorEarning.id.in_(earning_ids))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        unavailable = [e for e in locked.scalars().all() if e.status != EarningStatus.AVAILABLE.value]
        if unavailable:
            return self._refused(
                f"{len(unavailable)} earning(s) in this payout are no longer available.", payout
            )

        await self._move_earnings(earning_ids, EarningStatus.AVAILABLE, EarningStatus.PROCESSING)

        self._set_status(payout, PayoutStatus.PENDING)
        payout.failure_reason = None
        payout.processed_by = processed_by
        payout.retry_count = (payout.retry_count or 0) + 1
        await self.db.flush()

        await self.activity.log(
            action="payout_retried",
            entity_type="payout",
            entity_id=payout.id,
            actor_id=processed_by,
            properties={"retry_count": payout.retry_count},
            description=f"Payout {payout.payout_ref} retry initiated",
        )
        logger.info(f"Payout {payout.payout_ref} retry #{payout.retry_count} initiated")
        return PayoutResult.ok("Payout retry initiated.", payout=payout)

    async def process_payout(
        self,
        payout_id: uuid.UUID,
        processed_by: Optional[uuid.UUID] = None,
    ) -> PayoutResult:
        """Initiate, transfer, then mark paid or failed."""
        initiated = await self.initiate_payout(payout_id, processed_by)
        if not initiated.success:
            return initiated

        try:
            receipt = await self.process_bank_transfer(initiated.payout)
        except BankTransferError as e:
            logger.error(f"Bank transfer failed for payout {initiated.payout.payout_ref}: {e}")
            failed = await self.mark_as_failed(payout_id, str(e), processed_by)
            return PayoutResult.fail(f"Bank transfer failed: {e}", payout=failed.payout)

        return await self.mark_as_paid(
            payout_id,
            {"transaction_id": receipt.transaction_id, "method": "bank_transfer"},
            processed_by,
        )

    # ==================== QUERIES ====================

    async def get_vendor_payouts(
        self,
        vendor_id: uuid.UUID,
        status: Optional[PayoutStatus] = None,
    ) -> List[Payout]:
        query = select(Payout).where(Payout.vendor_id == vendor_id)
        if status is not None:
            query = query.where(Payout.status == status.value)
        result = await self.db.execute(query.order_by(Payout.created_at.desc()))
        return list(result.scalars().all())
