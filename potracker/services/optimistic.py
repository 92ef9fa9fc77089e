"""
Optimistic updates - apply a local change first, confirm or roll back later.

States:
- PENDING: Created, nothing applied yet
- APPLIED: Local change applied, remote call outstanding
- CONFIRMED: Remote call succeeded
- ROLLED_BACK: Remote call failed, local change undone

Transitions:
- PENDING -> APPLIED: apply_fn ran (synchronously, before any await)
- APPLIED -> CONFIRMED: remote call and on_success succeeded
- APPLIED -> ROLLED_BACK: remote call or on_success failed, or run() was cancelled

Records created locally are stamped with a provisional id so they can be
told apart from server-confirmed ones.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

PROVISIONAL_ID_PREFIX = "optimistic_"


class OptimisticStatus(str, Enum):
    """Optimistic operation states."""

    PENDING = "PENDING"
    APPLIED = "APPLIED"
    CONFIRMED = "CONFIRMED"
    ROLLED_BACK = "ROLLED_BACK"


@dataclass
class OptimisticResult(Generic[T]):
    """Outcome envelope of an optimistic operation."""

    success: bool
    data: T | None = None
    error: Exception | None = None


def generate_provisional_id() -> str:
    """Return a fresh provisional identifier."""
    return f"{PROVISIONAL_ID_PREFIX}{uuid.uuid4().hex}"


def is_provisional_id(value: Any) -> bool:
    """Check whether a value is a provisional identifier."""
    return isinstance(value, str) and value.startswith(PROVISIONAL_ID_PREFIX)


@dataclass
class OptimisticOperation(Generic[T]):
    """
    A local mutation paired with the remote call that confirms it.

    Usage:
        op = OptimisticOperation(
            apply_fn=lambda: orders.append(draft),
            remote_call=lambda: client.post("/purchase-orders", payload),
            rollback_fn=lambda: orders.remove(draft),
        )
        result = await op.run()
    """

    apply_fn: Callable[[], Any]
    remote_call: Callable[[], Awaitable[T]]
    rollback_fn: Callable[[], Any] | None = None
    on_success: Callable[[T], Any] | None = None
    on_error: Callable[[Exception], Any] | None = None
    id: str = field(default_factory=generate_provisional_id)
    status: OptimisticStatus = OptimisticStatus.PENDING

    async def run(self) -> OptimisticResult[T]:
        """
        Apply, await confirmation, and roll back on failure.

        Never raises: every failure is reported through the returned
        envelope and ``on_error``. Rollback always runs before ``on_error``.
        Cancellation is the exception: the local change is rolled back and
        CancelledError propagates, without ``on_error``.
        """
        if self.status is not OptimisticStatus.PENDING:
            raise RuntimeError(f"Optimistic operation {self.id} already ran")

        try:
            self.apply_fn()
        except Exception as e:
            # Nothing was applied, so there is nothing to roll back
            logger.warning(f"Optimistic update {self.id} could not be applied: {e}")
            self._notify_error(e)
            return OptimisticResult(success=False, error=e)
        self.status = OptimisticStatus.APPLIED

        try:
            result = await self.remote_call()
            if self.on_success:
                self.on_success(result)
        except asyncio.CancelledError:
            self._rollback("cancelled")
            raise
        except Exception as e:
            self._rollback(e)
            self._notify_error(e)
            return OptimisticResult(success=False, error=e)

        self.status = OptimisticStatus.CONFIRMED
        return OptimisticResult(success=True, data=result)

    def _rollback(self, reason: Exception | str) -> None:
        logger.warning(f"Rolling back optimistic update {self.id}: {reason}")
        if self.rollback_fn:
            try:
                self.rollback_fn()
            except Exception as e:
                logger.error(f"Rollback of optimistic update {self.id} failed: {e}")
        self.status = OptimisticStatus.ROLLED_BACK

    def _notify_error(self, error: Exception) -> None:
        if not self.on_error:
            return
        try:
            self.on_error(error)
        except Exception as e:
            logger.error(f"on_error callback for {self.id} failed: {e}")


async def run_optimistic_update(
    apply_fn: Callable[[], Any],
    remote_call: Callable[[], Awaitable[T]],
    on_success: Callable[[T], Any] | None = None,
    on_error: Callable[[Exception], Any] | None = None,
    rollback_fn: Callable[[], Any] | None = None,
) -> OptimisticResult[T]:
    """Build and run a one-off OptimisticOperation."""
    operation = OptimisticOperation(
        apply_fn=apply_fn,
        remote_call=remote_call,
        rollback_fn=rollback_fn,
        on_success=on_success,
        on_error=on_error,
    )
    return await operation.run()


# Provisional records


class LineItemInput(BaseModel):
    """Line item as entered locally, before the server prices it."""

    sku: str = ""
    description: str = ""
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal = Decimal(0)


class ProvisionalLineItem(LineItemInput):
    """Line item created locally and not yet confirmed by the server."""

    id: str
    line_number: int
    tax_amount: Decimal
    total_amount: Decimal
    shipped_quantity: Decimal = Decimal(0)
    pending_quantity: Decimal
    received_quantity: Decimal = Decimal(0)
    returned_quantity: Decimal = Decimal(0)
    created_at: datetime
    updated_at: datetime
    is_provisional: bool = True


class OrderItemInput(BaseModel):
    """Order line carrying its pre-computed total."""

    model_config = ConfigDict(extra="allow")

    total_price: Decimal = Decimal(0)


class PurchaseOrderInput(BaseModel):
    """Purchase order form data."""

    po_number: str
    vendor_id: str
    vendor_warehouse_id: str | None = None
    po_date: str | None = None
    expected_delivery: str | None = None
    notes: str = ""
    items: list[OrderItemInput] = Field(default_factory=list)


class ProvisionalPurchaseOrder(BaseModel):
    """Purchase order created locally and not yet confirmed by the server."""

    id: str
    po_number: str
    vendor_id: str
    vendor_warehouse_id: str | None = None
    status: str = "draft"
    po_date: str | None = None
    expected_delivery: str | None = None
    notes: str = ""
    item_count: int
    grand_total: Decimal
    created_at: datetime
    updated_at: datetime
    is_provisional: bool = True


def create_provisional_item(
    item: LineItemInput | dict[str, Any], line_number: int
) -> ProvisionalLineItem:
    """Price a locally entered line item. Arithmetic is exact (Decimal)."""
    if not isinstance(item, LineItemInput):
        item = LineItemInput.model_validate(item)

    line_total = item.quantity * item.unit_price
    tax_amount = line_total * item.tax_rate / 100
    now = datetime.now()

    return ProvisionalLineItem(
        **item.model_dump(),
        id=generate_provisional_id(),
        line_number=line_number,
        tax_amount=tax_amount,
        total_amount=line_total + tax_amount,
        pending_quantity=item.quantity,
        created_at=now,
        updated_at=now,
    )


def create_provisional_order(
    order: PurchaseOrderInput | dict[str, Any],
) -> ProvisionalPurchaseOrder:
    """Build a draft purchase order from form data."""
    if not isinstance(order, PurchaseOrderInput):
        order = PurchaseOrderInput.model_validate(order)

    now = datetime.now()
    return ProvisionalPurchaseOrder(
        id=generate_provisional_id(),
        po_number=order.po_number,
        vendor_id=order.vendor_id,
        vendor_warehouse_id=order.vendor_warehouse_id,
        po_date=order.po_date,
        expected_delivery=order.expected_delivery,
        notes=order.notes,
        item_count=len(order.items),
        grand_total=sum((i.total_price for i in order.items), Decimal(0)),
        created_at=now,
        updated_at=now,
    )
