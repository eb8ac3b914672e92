from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from enum import Enum as PyEnum

from models.schemas import StoredDocument

class OrderStatus(str, PyEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    CANCELLED = "cancelled"

class EventKind(str, PyEnum):
    """Outbound message kinds and the order status each one watches"""
    NEW = "new"
    CANCELLED = "cancelled"

    @property
    def status(self) -> OrderStatus:
        return OrderStatus.PENDING if self is EventKind.NEW else OrderStatus.CANCELLED

    @property
    def flag_prefix(self) -> str:
        return "waNew" if self is EventKind.NEW else "waCancel"

    @property
    def sent_field(self) -> str:
        return f"notifications.{self.flag_prefix}Sent"

    def flag_updates(self, sid: str, sent_at: datetime) -> dict:
        """Field-path -> value map recording a delivered message"""
        return {
            f"notifications.{self.flag_prefix}Sent": True,
            f"notifications.{self.flag_prefix}SentAt": sent_at,
            f"notifications.{self.flag_prefix}Sid": sid,
        }

class OrderItem(BaseModel):
    name: str = "Unknown"
    qty: int = 1
    price: float = 0.0
    note: Optional[str] = None

class Order(BaseModel):
    id: str
    path: str
    update_time: Optional[str] = None
    status: Optional[str] = None
    order_no: str
    table: Optional[str] = None
    subtotal: float = 0.0
    currency: str = "BHD"
    items: List[OrderItem] = Field(default_factory=list)
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    tenant_id: Optional[str] = None
    branch_id: Optional[str] = None
    notifications: dict = Field(default_factory=dict)

    @classmethod
    def from_document(cls, doc: StoredDocument) -> "Order":
        """Build an order from decoded fields, tolerating loosely typed data"""
        f = doc.fields
        items = []
        for raw in f.get("items") or []:
            if not isinstance(raw, dict):
                continue
            note = raw.get("note")
            items.append(OrderItem(
                name=str(raw.get("name") or "Unknown"),
                qty=_as_int(raw.get("qty"), 1),
                price=_as_float(raw.get("price")),
                note=str(note).strip() if note is not None and str(note).strip() else None,
            ))
        table = f.get("table")
        reason = f.get("cancellationReason")
        created_at = f.get("createdAt")
        tenant_id, branch_id = branch_from_path(doc.path)
        return cls(
            id=doc.id,
            path=doc.path,
            update_time=doc.update_time,
            status=str(f["status"]) if f.get("status") is not None else None,
            order_no=str(f.get("orderNo") or doc.id),
            table=str(table) if table not in (None, "") else None,
            subtotal=_as_float(f.get("subtotal")),
            currency=str(f.get("currency") or "BHD"),
            items=items,
            cancellation_reason=str(reason) if reason not in (None, "") else None,
            created_at=created_at if isinstance(created_at, datetime) else None,
            tenant_id=tenant_id or _as_str(f.get("merchantId")),
            branch_id=branch_id or _as_str(f.get("branchId")),
            notifications=f.get("notifications") or {},
        )

def branch_from_path(path: str):
    """Extract (tenant, branch) from '<tenants>/{t}/branches/{b}/<orders>/{id}'"""
    parts = path.split("/")
    for i in range(len(parts) - 3):
        if parts[i + 2] == "branches" and i + 3 < len(parts):
            return parts[i + 1], parts[i + 3]
    return None, None

def _as_str(value):
    return value if isinstance(value, str) and value else None

def _as_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default

def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
