import pytest

from core.errors import QueryError
from core.firestore import CommitResult, equality_query
from models.order import EventKind

from fake_services import created, order_fields

BRANCH = "merchants/m1/branches/b1"


def pending_new_query(limit=10, all_descendants=False, start_after=None):
    return equality_query("orders", {"status": "pending", "notifications.waNewSent": False},
                          limit=limit, all_descendants=all_descendants, start_after=start_after)


class TestEqualityQuery:
    def test_shape(self):
        query = pending_new_query()
        assert query["from"] == [{"collectionId": "orders"}]
        assert query["where"]["compositeFilter"]["op"] == "AND"
        paths = [f["fieldFilter"]["field"]["fieldPath"] for f in query["where"]["compositeFilter"]["filters"]]
        assert paths == ["status", "notifications.waNewSent"]
        assert [o["field"]["fieldPath"] for o in query["orderBy"]] == ["createdAt", "__name__"]
        assert all(o["direction"] == "ASCENDING" for o in query["orderBy"])
        assert "startAt" not in query
        assert query["limit"] == 10

    def test_collection_group(self):
        assert pending_new_query(all_descendants=True)["from"] == [{"collectionId": "orders", "allDescendants": True}]

    def test_single_filter_is_not_composite(self):
        query = equality_query("orders", {"status": "pending"}, limit=5)
        assert "fieldFilter" in query["where"]


class TestRunQuery:
    async def test_oldest_first_and_capped(self, backend, store):
        for i in range(12):
            backend.put(f"{BRANCH}/orders/o{i:02d}", order_fields(f"ORD-{i}", minute=59 - i))
        docs = await store.run_query(BRANCH, pending_new_query())
        assert len(docs) == 10
        minutes = [d.fields["createdAt"] for d in docs]
        assert minutes == sorted(minutes)
        assert docs[0].id == "o11"
        assert docs[0].path == f"{BRANCH}/orders/o11"
        assert docs[0].update_time

    async def test_empty_result(self, store):
        assert await store.run_query(BRANCH, pending_new_query()) == []

    async def test_scoped_query_ignores_other_branches(self, backend, store):
        backend.put(f"{BRANCH}/orders/a", order_fields("ORD-A"))
        backend.put("merchants/m2/branches/b7/orders/b", order_fields("ORD-B"))
        docs = await store.run_query(BRANCH, pending_new_query())
        assert [d.id for d in docs] == ["a"]

    async def test_cross_tenant_query(self, backend, store):
        backend.put(f"{BRANCH}/orders/a", order_fields("ORD-A", minute=1))
        backend.put("merchants/m2/branches/b7/orders/b", order_fields("ORD-B", minute=0))
        docs = await store.run_query(None, pending_new_query(all_descendants=True))
        assert [d.path for d in docs] == ["merchants/m2/branches/b7/orders/b", f"{BRANCH}/orders/a"]

    async def test_start_after_resumes_past_previous_page(self, backend, store):
        for i in range(5):
            backend.put(f"{BRANCH}/orders/o{i}", order_fields(f"ORD-{i}", minute=i))
        # Same createdAt as o1, ordered after it by name
        backend.put(f"{BRANCH}/orders/o1b", order_fields("ORD-1B", minute=1))

        first = await store.run_query(None, pending_new_query(limit=2, all_descendants=True))
        assert [d.id for d in first] == ["o0", "o1"]
        query = pending_new_query(limit=2, all_descendants=True, start_after=first[-1])
        assert query["startAt"]["before"] is False
        assert query["startAt"]["values"][1] == {"referenceValue": first[-1].name}

        second = await store.run_query(None, query)
        assert [d.id for d in second] == ["o1b", "o2"]
        assert backend.queries[-1]["parent"] is None

    async def test_rescan_is_stable(self, backend, store):
        backend.put(f"{BRANCH}/orders/a", order_fields("ORD-A"))
        first = await store.run_query(BRANCH, pending_new_query())
        second = await store.run_query(BRANCH, pending_new_query())
        assert [(d.id, d.update_time) for d in first] == [(d.id, d.update_time) for d in second]

    async def test_failure_raises_query_error(self, backend, store):
        backend.query_status = 503
        with pytest.raises(QueryError) as exc:
            await store.run_query(BRANCH, pending_new_query())
        assert exc.value.status_code == 503


class TestGetDocument:
    async def test_missing_document(self, store):
        assert await store.get_document(f"{BRANCH}/config/nothing") is None

    async def test_decodes_fields(self, store):
        doc = await store.get_document(f"{BRANCH}/config/notifications")
        assert doc.fields == {"enabled": True, "destinationAddress": "+973 3600 0001"}


class TestCommitUpdate:
    async def test_commit_removes_order_from_next_scan(self, backend, store):
        backend.put(f"{BRANCH}/orders/a", order_fields("ORD-A"))
        [doc] = await store.run_query(BRANCH, pending_new_query())

        result = await store.commit_update(doc, EventKind.NEW.flag_updates("SM1", created(30)))

        assert result is CommitResult.OK
        notifications = backend.fields(f"{BRANCH}/orders/a")["notifications"]
        assert notifications["waNewSent"] is True
        assert notifications["waNewSid"] == "SM1"
        assert notifications["waCancelSent"] is False
        assert await store.run_query(BRANCH, pending_new_query()) == []

    async def test_racing_commits_only_one_wins(self, backend, store):
        backend.put(f"{BRANCH}/orders/a", order_fields("ORD-A"))
        [snapshot] = await store.run_query(BRANCH, pending_new_query())

        first = await store.commit_update(snapshot, EventKind.NEW.flag_updates("SM1", created(30)))
        second = await store.commit_update(snapshot, EventKind.NEW.flag_updates("SM2", created(31)))

        assert (first, second) == (CommitResult.OK, CommitResult.SKIPPED)
        assert backend.fields(f"{BRANCH}/orders/a")["notifications"]["waNewSid"] == "SM1"

    async def test_precondition_uses_update_time(self, backend, store):
        backend.put(f"{BRANCH}/orders/a", order_fields("ORD-A"))
        [doc] = await store.run_query(BRANCH, pending_new_query())
        await store.commit_update(doc, EventKind.NEW.flag_updates("SM1", created(30)))
        write = backend.commits[-1]["writes"][0]
        assert write["currentDocument"] == {"updateTime": doc.update_time}
        assert write["updateMask"]["fieldPaths"] == [
            "notifications.waNewSent", "notifications.waNewSentAt", "notifications.waNewSid",
        ]

    async def test_exists_precondition_when_version_unknown(self, backend, store):
        backend.put(f"{BRANCH}/orders/a", order_fields("ORD-A"))
        [doc] = await store.run_query(BRANCH, pending_new_query())
        unversioned = doc.model_copy(update={"update_time": None})
        assert await store.commit_update(unversioned, {"notifications.waNewSent": True}) is CommitResult.OK
        assert backend.commits[-1]["writes"][0]["currentDocument"] == {"exists": True}

        del backend.docs[f"{BRANCH}/orders/a"]
        assert await store.commit_update(unversioned, {"notifications.waNewSent": True}) is CommitResult.SKIPPED

    async def test_refuses_fields_outside_notifications(self, backend, store):
        backend.put(f"{BRANCH}/orders/a", order_fields("ORD-A"))
        [doc] = await store.run_query(BRANCH, pending_new_query())
        with pytest.raises(ValueError):
            await store.commit_update(doc, {"status": "served"})
        assert backend.commits == []
