from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

class BranchRef(BaseModel):
    tenant_id: str = Field(..., alias="tenantId", min_length=1)
    branch_id: str = Field(..., alias="branchId", min_length=1)

    class Config:
        populate_by_name = True
        frozen = True

    @property
    def key(self) -> str:
        return f"{self.tenant_id}/{self.branch_id}"

class NotificationConfig(BaseModel):
    enabled: bool = False
    destination_address: str = Field("", alias="destinationAddress")

    class Config:
        populate_by_name = True

    @property
    def deliverable(self) -> bool:
        return self.enabled and bool(self.destination_address.strip())

class StoredDocument(BaseModel):
    """A document as read from the store, fields already decoded"""
    id: str
    path: str
    name: str
    fields: Dict[str, Any] = Field(default_factory=dict)
    update_time: Optional[str] = None

class RunSummary(BaseModel):
    scan_all: bool = False
    branches: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    aborted: bool = False
