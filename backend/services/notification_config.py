import logging
from typing import Optional

from pydantic import ValidationError

from core.errors import QueryError
from core.firestore import FirestoreClient
from models.schemas import BranchRef, NotificationConfig

logger = logging.getLogger(__name__)

def config_path(branch: BranchRef, tenants_collection: str = "merchants") -> str:
    return f"{tenants_collection}/{branch.tenant_id}/branches/{branch.branch_id}/config/notifications"

async def get_config(store: FirestoreClient, branch: BranchRef,
                     tenants_collection: str = "merchants") -> Optional[NotificationConfig]:
    """Per-branch channel settings; None when absent or unreadable"""
    path = config_path(branch, tenants_collection)
    try:
        doc = await store.get_document(path)
    except QueryError as e:
        logger.warning(f"Could not read {path}: {e}")
        return None
    if doc is None:
        return None
    try:
        return NotificationConfig.model_validate(doc.fields)
    except ValidationError as e:
        logger.warning(f"Invalid notification config at {path}: {e}")
        return None
