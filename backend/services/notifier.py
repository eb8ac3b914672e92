"""
Scheduled WhatsApp notifier for new and cancelled orders.

Each run finds orders whose notification flag is still false, sends one
message per order, then records the flag with a commit conditioned on the
document version that was read. Two overlapping runs may both pick the same
order; only one of them gets its commit through, the other sees a failed
precondition and moves on. Delivery happens before the commit, so a crash in
between can repeat a message on the next run.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from config import Settings
from core.credentials import CredentialProvider
from core.errors import DeliveryError, QueryError
from core.firestore import CommitResult, FirestoreClient, equality_query
from models.order import EventKind, Order, branch_from_path
from models.schemas import BranchRef, NotificationConfig, RunSummary, StoredDocument
from services.branches import resolve_branches
from services.messages import format_order
from services.notification_config import get_config
from services.whatsapp import WhatsAppClient
from utils.pacing import Pacer

logger = logging.getLogger(__name__)

class NotificationWorker:
    def __init__(self, settings: Settings, credentials: CredentialProvider, store: FirestoreClient,
                 whatsapp: WhatsAppClient, pacer: Optional[Pacer] = None,
                 now: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.settings = settings
        self.credentials = credentials
        self.store = store
        self.whatsapp = whatsapp
        self.pacer = pacer or Pacer(settings.send_delay_seconds)
        self.now = now

    def branch_path(self, branch: BranchRef) -> str:
        return f"{self.settings.tenants_collection}/{branch.tenant_id}/branches/{branch.branch_id}"

    def pending_query(self, kind: EventKind, all_descendants: bool = False,
                      start_after: Optional[StoredDocument] = None) -> dict:
        return equality_query(
            self.settings.orders_collection,
            {"status": kind.status.value, kind.sent_field: False},
            limit=self.settings.page_size,
            all_descendants=all_descendants,
            start_after=start_after,
        )

    async def run(self) -> RunSummary:
        """One scheduled invocation. AuthError propagates and aborts the run."""
        summary = RunSummary()
        if not self.settings.twilio_configured:
            logger.error("Twilio credentials are not configured; skipping run")
            summary.aborted = True
            return summary

        await self.credentials.get_access_token()

        branches = resolve_branches(self.settings.notify_branches)
        if branches is None:
            summary.scan_all = True
            logger.info("No branch allow-list; scanning orders across all tenants")
            await self._scan_all(summary)
        else:
            summary.branches = len(branches)
            logger.info(f"Scanning {len(branches)} configured branches")
            for branch in branches:
                try:
                    await self._process_branch(branch, summary)
                except QueryError as e:
                    logger.error(f"Branch {branch.key} aborted: {e}")
                    summary.errors.append(f"{branch.key}: {e}")

        logger.info(
            f"Run finished: sent={summary.sent} skipped={summary.skipped} "
            f"failed={summary.failed} branches={summary.branches}"
        )
        return summary

    async def _process_branch(self, branch: BranchRef, summary: RunSummary):
        config = await get_config(self.store, branch, self.settings.tenants_collection)
        if config is None or not config.deliverable:
            logger.debug(f"Notifications disabled or not configured for {branch.key}")
            return

        parent = self.branch_path(branch)
        for kind in EventKind:
            docs = await self.store.run_query(parent, self.pending_query(kind))
            if docs:
                logger.info(f"{branch.key}: {len(docs)} orders awaiting {kind.value} notification")
            for doc in docs:
                await self._process_order(doc, kind, config, summary)

    async def _scan_all(self, summary: RunSummary):
        configs: Dict[str, Optional[NotificationConfig]] = {}
        for kind in EventKind:
            try:
                await self._scan_kind(kind, configs, summary)
            except QueryError as e:
                logger.error(f"Cross-tenant {kind.value} query failed: {e}")
                summary.errors.append(f"{kind.value}: {e}")
        summary.branches = len(configs)

    async def _scan_kind(self, kind: EventKind, configs: Dict[str, Optional[NotificationConfig]],
                         summary: RunSummary):
        """Page through one event kind until page_size deliverable orders are handled.

        Orders in disabled or unconfigured branches never get their flag set, so
        they would otherwise fill the oldest-first page on every run.
        """
        page_size = self.settings.page_size
        handled = 0
        cursor: Optional[StoredDocument] = None
        for _ in range(self.settings.scan_max_pages):
            docs = await self.store.run_query(
                None, self.pending_query(kind, all_descendants=True, start_after=cursor))
            for doc in docs:
                if handled >= page_size:
                    return
                branch = self._branch_of(doc)
                if branch is None:
                    logger.warning(f"Cannot tell which branch {doc.path} belongs to; skipping")
                    continue
                if branch.key not in configs:
                    configs[branch.key] = await get_config(self.store, branch, self.settings.tenants_collection)
                config = configs[branch.key]
                if config is None or not config.deliverable:
                    continue
                await self._process_order(doc, kind, config, summary)
                handled += 1
            if handled >= page_size or len(docs) < page_size:
                return
            cursor = docs[-1]
        logger.warning(f"Stopped cross-tenant {kind.value} scan after {self.settings.scan_max_pages} pages")

    def _branch_of(self, doc: StoredDocument) -> Optional[BranchRef]:
        tenant_id, branch_id = branch_from_path(doc.path)
        tenant_id = tenant_id or doc.fields.get("merchantId")
        branch_id = branch_id or doc.fields.get("branchId")
        if not isinstance(tenant_id, str) or not isinstance(branch_id, str) or not tenant_id or not branch_id:
            return None
        return BranchRef(tenant_id=tenant_id, branch_id=branch_id)

    async def _process_order(self, doc: StoredDocument, kind: EventKind,
                             config: NotificationConfig, summary: RunSummary):
        try:
            order = Order.from_document(doc)
            if order.notifications.get(f"{kind.flag_prefix}Sent") is True:
                return
            body = format_order(order, cancelled=kind is EventKind.CANCELLED)

            await self.pacer.wait()
            try:
                sid = await self.whatsapp.send(self.settings.twilio_whatsapp_from,
                                               config.destination_address, body)
            except DeliveryError as e:
                # Flag stays false so the next run retries
                logger.warning(f"Delivery failed for order {order.order_no} ({doc.path}): {e}")
                summary.failed += 1
                return

            result = await self.store.commit_update(doc, kind.flag_updates(sid, self.now()))
            if result is CommitResult.OK:
                logger.info(f"Sent {kind.value} notification for order {order.order_no} (sid {sid})")
                summary.sent += 1
            else:
                summary.skipped += 1
        except QueryError as e:
            logger.error(f"Could not record notification for {doc.path}: {e}")
            summary.failed += 1
            summary.errors.append(f"{doc.path}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error processing order {doc.path}")
            summary.failed += 1
            summary.errors.append(f"{doc.path}: {e}")
