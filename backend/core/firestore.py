"""
Minimal Firestore REST client: structured queries, single-document reads and
precondition-guarded commits. Only the calls the notification worker needs.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from core.credentials import CredentialProvider
from core.errors import QueryError
from core.firestore_values import decode_fields, encode_value
from models.schemas import StoredDocument

logger = logging.getLogger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"
WRITABLE_PREFIX = "notifications."
PRECONDITION_STATUSES = {"FAILED_PRECONDITION", "ABORTED"}

class CommitResult(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"

def equality_query(collection_id: str, filters: Dict[str, Any], limit: int,
                   all_descendants: bool = False, order_by: str = "createdAt",
                   start_after: Optional[StoredDocument] = None) -> dict:
    """AND of equality filters, oldest first, capped at ``limit``.

    Ties on ``order_by`` are broken by document name, so ``start_after`` can
    resume a scan strictly after the last document of the previous page.
    """
    field_filters = [
        {"fieldFilter": {"field": {"fieldPath": path}, "op": "EQUAL", "value": encode_value(value)}}
        for path, value in filters.items()
    ]
    if len(field_filters) == 1:
        where = field_filters[0]
    else:
        where = {"compositeFilter": {"op": "AND", "filters": field_filters}}
    source = {"collectionId": collection_id}
    if all_descendants:
        source["allDescendants"] = True
    query = {
        "from": [source],
        "where": where,
        "orderBy": [
            {"field": {"fieldPath": order_by}, "direction": "ASCENDING"},
            {"field": {"fieldPath": "__name__"}, "direction": "ASCENDING"},
        ],
        "limit": limit,
    }
    if start_after is not None:
        query["startAt"] = {
            "values": [encode_value(start_after.fields.get(order_by)), {"referenceValue": start_after.name}],
            "before": False,
        }
    return query

class FirestoreClient:
    def __init__(self, project_id: str, credentials: CredentialProvider, client: httpx.AsyncClient,
                 database: str = "(default)", base_url: str = FIRESTORE_URL):
        self.credentials = credentials
        self.client = client
        self.root = f"projects/{project_id}/databases/{database}/documents"
        self.base_url = f"{base_url}/{self.root}"

    async def _headers(self) -> Dict[str, str]:
        token = await self.credentials.get_access_token()
        return {"Authorization": f"Bearer {token}"}

    def _to_document(self, raw: dict) -> StoredDocument:
        name = raw["name"]
        path = name.split(f"{self.root}/", 1)[-1]
        return StoredDocument(
            id=path.rsplit("/", 1)[-1],
            path=path,
            name=name,
            fields=decode_fields(raw.get("fields")),
            update_time=raw.get("updateTime"),
        )

    async def run_query(self, parent: Optional[str], structured_query: dict) -> List[StoredDocument]:
        """Run a structured query under ``parent``, or across the whole database when None"""
        url = f"{self.base_url}/{parent}:runQuery" if parent else f"{self.base_url}:runQuery"
        try:
            response = await self.client.post(url, json={"structuredQuery": structured_query},
                                              headers=await self._headers())
        except httpx.HTTPError as e:
            raise QueryError(f"Query request failed: {e}")
        if response.status_code // 100 != 2:
            raise QueryError(f"Query failed ({response.status_code}): {response.text[:300]}",
                             response.status_code)
        try:
            rows = response.json()
        except ValueError as e:
            raise QueryError(f"Query returned invalid JSON: {e}")
        # Empty results come back as rows carrying only readTime
        return [self._to_document(row["document"]) for row in rows if row.get("document")]

    async def get_document(self, path: str) -> Optional[StoredDocument]:
        try:
            response = await self.client.get(f"{self.base_url}/{path}", headers=await self._headers())
        except httpx.HTTPError as e:
            raise QueryError(f"Read of {path} failed: {e}")
        if response.status_code == 404:
            return None
        if response.status_code // 100 != 2:
            raise QueryError(f"Read of {path} failed ({response.status_code})", response.status_code)
        return self._to_document(response.json())

    async def commit_update(self, doc: StoredDocument, updates: Dict[str, Any]) -> CommitResult:
        """Apply field-path updates to one document under an optimistic precondition.

        The write is conditioned on the document's ``updateTime`` when known,
        otherwise on its existence. A failed precondition means another run got
        there first and is reported as SKIPPED rather than raised.
        """
        for path in updates:
            if not path.startswith(WRITABLE_PREFIX):
                raise ValueError(f"Refusing to write outside {WRITABLE_PREFIX}*: {path}")

        fields: Dict[str, Any] = {}
        for path, value in updates.items():
            node = fields
            parts = path.split(".")
            for part in parts[:-1]:
                node = node.setdefault(part, {})
            node[parts[-1]] = value

        if doc.update_time:
            precondition = {"updateTime": doc.update_time}
        else:
            precondition = {"exists": True}

        write = {
            "update": {"name": doc.name, "fields": {k: encode_value(v) for k, v in fields.items()}},
            "updateMask": {"fieldPaths": list(updates)},
            "currentDocument": precondition,
        }
        try:
            response = await self.client.post(f"{self.base_url}:commit", json={"writes": [write]},
                                              headers=await self._headers())
        except httpx.HTTPError as e:
            raise QueryError(f"Commit for {doc.path} failed: {e}")

        if response.status_code // 100 == 2:
            return CommitResult.OK
        if self._is_precondition_failure(response, precondition):
            logger.info(f"Precondition failed for {doc.path}; already handled by another run")
            return CommitResult.SKIPPED
        raise QueryError(f"Commit for {doc.path} failed ({response.status_code}): {response.text[:300]}",
                         response.status_code)

    @staticmethod
    def _is_precondition_failure(response: httpx.Response, precondition: dict) -> bool:
        if response.status_code == 409:
            return True
        if response.status_code == 404 and "exists" in precondition:
            return True
        try:
            status = response.json().get("error", {}).get("status")
        except (ValueError, AttributeError):
            return False
        return status in PRECONDITION_STATUSES
