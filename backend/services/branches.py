import json
import logging
from typing import List, Optional

from pydantic import ValidationError

from core.errors import ConfigError
from models.schemas import BranchRef

logger = logging.getLogger(__name__)

def parse_branch_list(raw: str) -> List[BranchRef]:
    """Parse the allow-list JSON, dropping entries that are not {tenantId, branchId}"""
    text = raw.strip()
    # Dashboards and shell exports sometimes wrap the whole value in quotes
    while len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        text = text[1:-1].strip()
    try:
        entries = json.loads(text)
    except ValueError as e:
        raise ConfigError(f"Branch list is not valid JSON: {e}")
    if not isinstance(entries, list):
        raise ConfigError("Branch list must be a JSON array")

    branches = []
    for entry in entries:
        if not isinstance(entry, dict):
            logger.warning(f"Dropping malformed branch entry: {entry!r}")
            continue
        try:
            branches.append(BranchRef.model_validate(entry))
        except ValidationError:
            logger.warning(f"Dropping malformed branch entry: {entry!r}")
    return branches

def resolve_branches(raw: Optional[str]) -> Optional[List[BranchRef]]:
    """Branches to scan, or None to scan every tenant's orders.

    A missing, malformed or empty allow-list falls back to the cross-tenant scan.
    """
    if not raw or not raw.strip():
        return None
    try:
        branches = parse_branch_list(raw)
    except ConfigError as e:
        logger.warning(f"Ignoring NOTIFY_BRANCHES ({e}); scanning all tenants")
        return None
    if not branches:
        logger.warning("NOTIFY_BRANCHES has no usable entries; scanning all tenants")
        return None
    return branches
