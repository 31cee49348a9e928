"""
Tests for tag reconciliation.

Each test seeds the in-memory store, injects faults through
FaultyConnection where needed, and checks both the returned errors and
what ended up in the tables.
"""

import pytest

from tagsync.reconciliation import TagReconciler, compute_diff
from tagsync.reconciliation import engine as engine_module
from tagsync.services.storage import (
    ConflictError,
    PermissionDeniedError,
    StorageError,
)

from tests.fakes import OWNER, RECORD, linked_names, tag_named


async def seed_tag(store, name, owner=OWNER):
    return await store.insert("tags", {"owner_id": owner, "name": name})


async def seed_link(store, tag, record=RECORD):
    return await store.insert("record_tags", {"record_id": record, "tag_id": tag["id"]})


class TestComputeDiff:
    """Tests for the pure diff step."""

    def test_splits_add_remove_unchanged(self):
        """Test names are sorted into the three buckets."""
        diff = compute_diff(["work", "travel"], {"t1": "work", "t2": "food"})
        assert diff.to_add == ["travel"]
        assert diff.to_remove == ["t2"]
        assert diff.unchanged == ["work"]

    def test_compares_current_names_case_insensitively(self):
        """Test a legacy mixed-case name matches its lowercase form."""
        diff = compute_diff(["work"], {"t1": "Work"})
        assert diff.is_empty
        assert diff.unchanged == ["work"]

    def test_empty_desired_removes_everything(self):
        """Test an empty tag list unlinks every current tag."""
        diff = compute_diff([], {"t1": "a", "t2": "b"})
        assert diff.to_add == []
        assert sorted(diff.to_remove) == ["t1", "t2"]

    def test_keeps_input_order(self):
        """Test additions keep the order the user typed."""
        diff = compute_diff(["c", "a", "b"], {})
        assert diff.to_add == ["c", "a", "b"]


class TestReconcileHappyPath:
    """Tests for reconciliation without injected faults."""

    @pytest.mark.asyncio
    async def test_creates_and_links_new_tags(self, reconciler, store):
        """Test new names become owner-scoped tags linked to the record."""
        errors = await reconciler.reconcile(OWNER, RECORD, "Work, Travel ")

        assert errors == []
        assert linked_names(store) == ["travel", "work"]
        assert {row["owner_id"] for row in store.rows("tags")} == {OWNER}

    @pytest.mark.asyncio
    async def test_normalizes_before_syncing(self, reconciler, store):
        """Test duplicates, blanks and over-long names never reach the store."""
        raw = "work, WORK , , " + "x" * 51 + ", travel"
        errors = await reconciler.reconcile(OWNER, RECORD, raw)

        assert errors == []
        assert sorted(row["name"] for row in store.rows("tags")) == ["travel", "work"]

    @pytest.mark.asyncio
    async def test_keeps_first_ten_of_fifteen_in_input_order(self, reconciler, store):
        """Test fifteen names link exactly the first ten, in the order typed."""
        names = [f"tag{i:02d}" for i in reversed(range(15))]

        report = await reconciler.reconcile_with_report(OWNER, RECORD, ", ".join(names))

        assert report.errors == []
        assert report.desired == names[:10]
        assert report.linked == names[:10]
        assert linked_names(store) == sorted(names[:10])
        assert len(store.rows("tags")) == 10

    @pytest.mark.asyncio
    async def test_overlapping_sets_keep_shared_links(self, reconciler, store, primary):
        """Test going from {a, b, c} to {b, c, d} leaves the b and c links untouched."""
        await reconciler.reconcile(OWNER, RECORD, "a, b, c")
        tag_ids = {row["name"]: row["id"] for row in store.rows("tags")}
        kept_links = {
            row["id"] for row in store.rows("record_tags")
            if row["tag_id"] in (tag_ids["b"], tag_ids["c"])
        }
        link_inserts_before = primary.count("insert", "record_tags")

        report = await reconciler.reconcile_with_report(OWNER, RECORD, "b, c, d")

        assert report.errors == []
        assert report.diff.unchanged == ["b", "c"]
        assert report.removed == [tag_ids["a"]]
        assert report.linked == ["d"]
        assert linked_names(store) == ["b", "c", "d"]
        assert kept_links <= {row["id"] for row in store.rows("record_tags")}
        assert len(kept_links) == 2
        assert primary.count("insert", "record_tags") == link_inserts_before + 1

    @pytest.mark.asyncio
    async def test_reuses_existing_tag(self, reconciler, store):
        """Test an owner's existing tag is linked, not duplicated."""
        existing = await seed_tag(store, "work")

        errors = await reconciler.reconcile(OWNER, RECORD, "work")

        assert errors == []
        assert len(store.rows("tags")) == 1
        assert store.rows("record_tags")[0]["tag_id"] == existing["id"]

    @pytest.mark.asyncio
    async def test_finds_legacy_mixed_case_tag(self, reconciler, store):
        """Test lookup ignores case, so old "Work" rows are reused."""
        await seed_tag(store, "Work")

        errors = await reconciler.reconcile(OWNER, RECORD, "work")

        assert errors == []
        assert len(store.rows("tags")) == 1
        assert linked_names(store) == ["Work"]

    @pytest.mark.asyncio
    async def test_tags_are_scoped_per_owner(self, reconciler, store):
        """Test another owner's tag with the same name is not reused."""
        await seed_tag(store, "work", owner="someone-else")

        await reconciler.reconcile(OWNER, RECORD, "work")

        owners = sorted(row["owner_id"] for row in store.rows("tags"))
        assert owners == sorted(["someone-else", OWNER])

    @pytest.mark.asyncio
    async def test_removes_links_no_longer_wanted(self, reconciler, store):
        """Test dropped names are unlinked while tag rows survive."""
        await reconciler.reconcile(OWNER, RECORD, "work, travel")

        errors = await reconciler.reconcile(OWNER, RECORD, "work")

        assert errors == []
        assert linked_names(store) == ["work"]
        assert len(store.rows("tags")) == 2

    @pytest.mark.asyncio
    async def test_empty_string_clears_all_links(self, reconciler, store):
        """Test an empty tag string unlinks everything."""
        await reconciler.reconcile(OWNER, RECORD, "work, travel")

        assert await reconciler.reconcile(OWNER, RECORD, "") == []
        assert await reconciler.reconcile(OWNER, RECORD, None) == []
        assert linked_names(store) == []

    @pytest.mark.asyncio
    async def test_other_records_untouched(self, reconciler, store):
        """Test only the target record's links change."""
        await reconciler.reconcile(OWNER, "txn-2", "work")
        await reconciler.reconcile(OWNER, RECORD, "work")

        await reconciler.reconcile(OWNER, RECORD, "")

        assert linked_names(store, "txn-2") == ["work"]

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, reconciler, store, primary):
        """Test reconciling the same string twice writes nothing the second time."""
        await reconciler.reconcile(OWNER, RECORD, "work, travel")
        writes_before = primary.count("insert") + primary.count("delete")

        errors = await reconciler.reconcile(OWNER, RECORD, "Travel, WORK")

        assert errors == []
        assert primary.count("insert") + primary.count("delete") == writes_before
        assert linked_names(store) == ["travel", "work"]

    @pytest.mark.asyncio
    async def test_report_describes_the_run(self, reconciler, store):
        """Test reconcile_with_report exposes the diff and what changed."""
        await reconciler.reconcile(OWNER, RECORD, "old")
        report = await reconciler.reconcile_with_report(OWNER, RECORD, "new")

        assert report.succeeded
        assert report.desired == ["new"]
        assert report.diff.to_add == ["new"]
        assert report.linked == ["new"]
        assert len(report.removed) == 1


class TestConflicts:
    """Tests for races with other clients."""

    @pytest.mark.asyncio
    async def test_tag_created_concurrently_is_found_again(self, reconciler, store, primary):
        """Test a uniqueness conflict on create falls back to a second lookup."""
        async def other_client_wins(table, row):
            if table == "tags":
                primary.before_insert = None
                await store.insert("tags", {"owner_id": OWNER, "name": row["name"]})

        primary.before_insert = other_client_wins

        report = await reconciler.reconcile_with_report(OWNER, RECORD, "work")

        assert report.errors == []
        assert len(store.rows("tags")) == 1
        assert linked_names(store) == ["work"]

    @pytest.mark.asyncio
    async def test_conflict_is_not_retried_with_backoff(self, reconciler, store, primary, sleep):
        """Test a conflict goes straight to the re-lookup."""
        async def other_client_wins(table, row):
            if table == "tags":
                primary.before_insert = None
                await store.insert("tags", {"owner_id": OWNER, "name": row["name"]})

        primary.before_insert = other_client_wins

        await reconciler.reconcile(OWNER, RECORD, "work")

        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_conflict_without_visible_tag_is_reported(self, reconciler, primary, elevated):
        """Test a conflict whose winner cannot be found yields one error."""
        for conn in (primary, elevated):
            conn.fail("insert", "tags", error=ConflictError("duplicate key"))

        errors = await reconciler.reconcile(OWNER, RECORD, "ghost")

        assert errors == ['Failed to create or find tag "ghost" after conflict.']

    @pytest.mark.asyncio
    async def test_link_already_present_counts_as_success(self, reconciler, store, primary):
        """Test a duplicate link from a concurrent run is not an error."""
        async def other_client_links(table, row):
            if table == "record_tags":
                primary.before_insert = None
                await store.insert("record_tags", dict(row))

        primary.before_insert = other_client_links

        report = await reconciler.reconcile_with_report(OWNER, RECORD, "work")

        assert report.errors == []
        assert report.linked == ["work"]
        assert len(store.rows("record_tags")) == 1


class TestFailures:
    """Tests for partial failure and fallback."""

    @pytest.mark.asyncio
    async def test_permission_denied_uses_elevated_connection(
        self, reconciler, store, primary, elevated, sleep
    ):
        """Test an RLS rejection on primary is retried on elevated at once."""
        primary.fail("insert", "tags", error=PermissionDeniedError("rls", code="42501"))

        errors = await reconciler.reconcile(OWNER, RECORD, "work")

        assert errors == []
        assert elevated.count("insert", "tags") == 1
        assert linked_names(store) == ["work"]
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_one_bad_tag_does_not_block_the_others(self, reconciler, store, primary, elevated):
        """Test a failing tag yields one error naming it; the rest link."""
        for conn in (primary, elevated):
            conn.fail("find", "tags", when=tag_named("bad"))

        errors = await reconciler.reconcile(OWNER, RECORD, "good, bad, fine")

        assert len(errors) == 1
        assert errors[0].startswith('Error finding tag "bad"')
        assert linked_names(store) == ["fine", "good"]

    @pytest.mark.asyncio
    async def test_failed_tag_is_retried_within_budget(self, reconciler, primary, elevated, sleep):
        """Test per-tag calls use two retries, trying both connections each time."""
        for conn in (primary, elevated):
            conn.fail("find", "tags", when=tag_named("bad"))

        await reconciler.reconcile(OWNER, RECORD, "bad")

        assert primary.count("find", "tags") == 3
        assert elevated.count("find", "tags") == 3
        assert sleep.delays == pytest.approx([0.5, 1.0])

    @pytest.mark.asyncio
    async def test_create_failure_is_reported(self, reconciler, store, primary, elevated):
        """Test a tag that cannot be created is reported by name."""
        for conn in (primary, elevated):
            conn.fail("insert", "tags", error=StorageError("check constraint"), when=tag_named("bad"))

        errors = await reconciler.reconcile(OWNER, RECORD, "bad, good")

        assert errors == ['Error creating tag "bad": check constraint']
        assert linked_names(store) == ["good"]

    @pytest.mark.asyncio
    async def test_link_failure_is_reported(self, reconciler, store, primary, elevated):
        """Test a failed link names the tag."""
        for conn in (primary, elevated):
            conn.fail("insert", "record_tags", error=StorageError("fk violation"))

        errors = await reconciler.reconcile(OWNER, RECORD, "work")

        assert errors == ['Error linking tag "work": fk violation']
        assert len(store.rows("tags")) == 1

    @pytest.mark.asyncio
    async def test_unreadable_current_state_aborts(self, reconciler, store, primary):
        """Test a failed read of current links returns one error and writes nothing."""
        primary.fail("select", "record_tags", error=StorageError("down"))

        errors = await reconciler.reconcile(OWNER, RECORD, "work, travel")

        assert errors == ["Error fetching current tags: down"]
        assert primary.count("insert") == 0
        assert store.rows("tags") == []

    @pytest.mark.asyncio
    async def test_current_state_read_is_retried(self, reconciler, store, primary, sleep):
        """Test a transient read failure recovers within the default policy."""
        primary.fail("select", "record_tags", times=2)

        errors = await reconciler.reconcile(OWNER, RECORD, "work")

        assert errors == []
        assert sleep.delays == pytest.approx([0.5, 1.0])
        assert linked_names(store) == ["work"]

    @pytest.mark.asyncio
    async def test_removal_failure_does_not_stop_additions(self, reconciler, store, primary):
        """Test a failed unlink is reported while new tags still link."""
        await reconciler.reconcile(OWNER, RECORD, "old")
        primary.fail("delete", "record_tags", error=StorageError("locked"))

        errors = await reconciler.reconcile(OWNER, RECORD, "new")

        assert errors == ["Error removing tags: locked"]
        assert linked_names(store) == ["new", "old"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_returned_not_raised(self, reconciler, monkeypatch):
        """Test reconcile never raises, even on a programming error."""
        def broken_diff(desired, current):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine_module, "compute_diff", broken_diff)

        errors = await reconciler.reconcile(OWNER, RECORD, "work")

        assert errors == ["Unexpected error while syncing tags: boom"]


class TestReadHelpers:
    """Tests for the read-only helpers."""

    @pytest.mark.asyncio
    async def test_current_tag_string(self, reconciler):
        """Test the record's tags come back as an edit-field string."""
        await reconciler.reconcile(OWNER, RECORD, "work")
        assert await reconciler.current_tag_string(RECORD) == "work"
        assert await reconciler.current_tag_string("no-such-record") == ""

    @pytest.mark.asyncio
    async def test_current_tag_string_round_trips(self, reconciler):
        """Test feeding the string back in changes nothing."""
        await reconciler.reconcile(OWNER, RECORD, "b, a")
        text = await reconciler.current_tag_string(RECORD)

        report = await reconciler.reconcile_with_report(OWNER, RECORD, text)

        assert report.diff.is_empty

    @pytest.mark.asyncio
    async def test_current_tag_string_raises_on_failure(self, reconciler, primary):
        """Test the read helper propagates storage errors."""
        primary.fail("select", "record_tags", error=StorageError("down"))
        with pytest.raises(StorageError):
            await reconciler.current_tag_string(RECORD)

    @pytest.mark.asyncio
    async def test_list_owner_tags_sorted(self, reconciler, store):
        """Test an owner's tags are listed by name, other owners excluded."""
        await seed_tag(store, "zeta")
        await seed_tag(store, "alpha")
        await seed_tag(store, "mine-not", owner="other")

        tags = await reconciler.list_owner_tags(OWNER)

        assert [tag.name for tag in tags] == ["alpha", "zeta"]
        assert all(tag.owner_id == OWNER for tag in tags)

    def test_normalizer_uses_settings(self, executor):
        """Test the configured limits reach the normalizer."""
        from tagsync.config import TagSettings

        reconciler = TagReconciler(executor, tag_settings=TagSettings(max_tags_per_record=2))
        assert reconciler.normalizer.parse("a, b, c") == ["a", "b"]
