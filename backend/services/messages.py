from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Union

from models.order import Order, OrderItem

FILS = Decimal("0.001")

# Formatters take model items or the raw {"name", "qty", "price", "note"} maps
Items = Sequence[Union[OrderItem, Dict[str, Any]]]

def money(value) -> str:
    """Three-decimal amount, e.g. 8.2 -> '8.200'"""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        amount = Decimal(0)
    return str(amount.quantize(FILS, rounding=ROUND_HALF_UP))

def line_total(item: OrderItem) -> str:
    return money(Decimal(str(item.price)) * item.qty)

def _item_lines(items: Items) -> List[str]:
    lines = []
    for item in items:
        if isinstance(item, dict):
            item = OrderItem.model_validate(item)
        lines.append(f"• {item.name} (x{item.qty}) - {line_total(item)}")
        if item.note:
            lines.append(f"   Note: {item.note}")
    return lines

def _timestamp(created_at: Optional[datetime]) -> Optional[str]:
    if created_at is None:
        return None
    return created_at.astimezone(timezone.utc).strftime("%m/%d/%Y %I:%M %p")

def _render(header: str, order_no: str, table: Optional[str], items: Items, subtotal,
            currency: str, reason: Optional[str] = None, created_at: Optional[datetime] = None) -> str:
    lines = [header, f"Order: {order_no}"]
    if table:
        lines.append(f"Table: {table}")
    stamp = _timestamp(created_at)
    if stamp:
        lines.append(f"Time: {stamp}")
    if reason and reason.strip():
        lines.append(f"Reason: {reason.strip()}")
    lines.append("")
    lines.append("Items:")
    lines.extend(_item_lines(items))
    lines.append("")
    lines.append(f"Total: {money(subtotal)} {currency}".rstrip())
    return "\n".join(lines)

def format_new(order_no: str, table: Optional[str], items: Items, subtotal,
               currency: str = "BHD", created_at: Optional[datetime] = None) -> str:
    return _render("🔔 New Order", order_no, table, items, subtotal, currency, created_at=created_at)

def format_cancelled(order_no: str, table: Optional[str], items: Items, subtotal,
                     reason: Optional[str] = None, currency: str = "BHD",
                     created_at: Optional[datetime] = None) -> str:
    return _render("❌ Order Cancelled", order_no, table, items, subtotal, currency,
                   reason=reason, created_at=created_at)

def format_order(order: Order, cancelled: bool) -> str:
    if cancelled:
        return format_cancelled(order.order_no, order.table, order.items, order.subtotal,
                                reason=order.cancellation_reason, currency=order.currency,
                                created_at=order.created_at)
    return format_new(order.order_no, order.table, order.items, order.subtotal,
                      currency=order.currency, created_at=order.created_at)
