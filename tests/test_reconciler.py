"""Tests for the archive reconciler."""
from datetime import datetime, timezone

from conftest import FICTION, FIXED_TIME, make_manifest, make_ref
from fiction_mirror.models import ChapterContent, Presence
from fiction_mirror.reconciler import reconcile
from fiction_mirror.storage import chapter_filename


def ids(items):
    return [getattr(item, 'chapter_id') for item in items]


def content_for(n, body=None, title=None):
    return ChapterContent.from_content(
        chapter_id=str(n),
        title=title or f"Chapter {n}",
        content=body or f"<p>body {n}</p>",
        fetched_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


class TestFetchPlan:
    def test_fresh_archive_fetches_everything(self):
        plan = reconcile(None, [make_ref(n) for n in (1, 2, 3)], FICTION, incremental=True)
        assert ids(plan.to_fetch) == ["1", "2", "3"]
        assert plan.skipped == []

    def test_incremental_fetches_only_new(self):
        prior = make_manifest(range(1, 6))
        refs = [make_ref(n) for n in range(1, 8)]
        plan = reconcile(prior, refs, FICTION, incremental=True)

        assert ids(plan.to_fetch) == ["6", "7"]
        assert plan.skipped == ["1", "2", "3", "4", "5"]

    def test_full_resync_fetches_all_listed(self):
        prior = make_manifest(range(1, 6))
        refs = [make_ref(n) for n in range(1, 8)]
        plan = reconcile(prior, refs, FICTION, incremental=False)
        assert ids(plan.to_fetch) == [str(n) for n in range(1, 8)]

    def test_damaged_content_is_refetched(self):
        prior = make_manifest([1, 2, 3])
        refs = [make_ref(n) for n in (1, 2, 3)]
        plan = reconcile(prior, refs, FICTION, incremental=True, intact={"1", "3"})
        assert ids(plan.to_fetch) == ["2"]

    def test_reappearing_orphan_is_present_again(self):
        prior = make_manifest([1, 2, 3], orphaned={2})
        plan = reconcile(prior, [make_ref(n) for n in (1, 2, 3)], FICTION, incremental=True)

        assert plan.to_fetch == []
        manifest = plan.assemble({})
        assert all(e.presence == Presence.PRESENT for e in manifest.entries)


class TestOrphans:
    def test_removed_chapter_is_orphaned_in_place(self):
        prior = make_manifest([1, 2, 3, 4])
        refs = [make_ref(1, order=0), make_ref(3, order=1), make_ref(4, order=2)]
        plan = reconcile(prior, refs, FICTION, incremental=True)

        assert plan.orphaned == ["2"]
        assert plan.to_fetch == []
        manifest = plan.assemble({})
        assert ids(manifest.entries) == ["1", "2", "3", "4"]
        orphan = manifest.get("2")
        assert orphan.presence == Presence.ORPHANED
        assert orphan.ref.order == 1
        assert orphan.fingerprint == "fp-2"
        assert orphan.filename == prior.get("2").filename

    def test_removal_applies_in_full_resync(self):
        prior = make_manifest([1, 2, 3])
        plan = reconcile(prior, [make_ref(1), make_ref(3, order=1)], FICTION, incremental=False)
        assert plan.orphaned == ["2"]
        assert ids(plan.to_fetch) == ["1", "3"]
        assert plan.assemble({}).get("2").presence == Presence.ORPHANED

    def test_leading_orphans_stay_first(self):
        prior = make_manifest([1, 2, 3])
        plan = reconcile(prior, [make_ref(2, order=0), make_ref(3, order=1)], FICTION, incremental=True)
        manifest = plan.assemble({})
        assert ids(manifest.entries) == ["1", "2", "3"]
        assert manifest.entries[0].presence == Presence.ORPHANED

    def test_orphan_follows_its_former_neighbour(self):
        prior = make_manifest([1, 2, 3])
        refs = [make_ref(3, order=0), make_ref(1, order=1)]
        manifest = reconcile(prior, refs, FICTION, incremental=True).assemble({})
        assert ids(manifest.entries) == ["3", "1", "2"]

    def test_consecutive_orphans_keep_relative_order(self):
        prior = make_manifest([1, 2, 3, 4, 5])
        refs = [make_ref(1, order=0), make_ref(5, order=1), make_ref(6, order=2)]
        manifest = reconcile(prior, refs, FICTION, incremental=True).assemble({"6": content_for(6)})
        assert ids(manifest.entries) == ["1", "2", "3", "4", "5", "6"]
        assert [e.presence for e in manifest.entries] == [
            Presence.PRESENT, Presence.ORPHANED, Presence.ORPHANED,
            Presence.ORPHANED, Presence.PRESENT, Presence.PRESENT,
        ]

    def test_existing_orphans_are_not_reported_again(self):
        prior = make_manifest([1, 2, 3], orphaned={2})
        plan = reconcile(prior, [make_ref(1), make_ref(3, order=1)], FICTION, incremental=True)
        assert plan.orphaned == []
        assert plan.assemble({}).get("2").presence == Presence.ORPHANED

    def test_empty_toc_orphans_everything(self):
        prior = make_manifest([1, 2])
        manifest = reconcile(prior, [], FICTION, incremental=True).assemble({})
        assert ids(manifest.entries) == ["1", "2"]
        assert all(e.presence == Presence.ORPHANED for e in manifest.entries)


class TestRenamesAndReorders:
    def test_rename_updates_title_without_fetch(self):
        prior = make_manifest([1, 2, 3])
        refs = [make_ref(1), make_ref(2, title="Chapter 2: Rewritten"), make_ref(3)]
        plan = reconcile(prior, refs, FICTION, incremental=True)

        assert plan.to_fetch == []
        assert plan.renamed == ["2"]
        entry = plan.assemble({}).get("2")
        assert entry.title == "Chapter 2: Rewritten"
        assert entry.ref.title == "Chapter 2: Rewritten"
        assert entry.fingerprint == "fp-2"
        assert entry.fetched_at == FIXED_TIME

    def test_reorder_follows_remote(self):
        prior = make_manifest([1, 2, 3])
        refs = [make_ref(2, order=0), make_ref(1, order=1), make_ref(3, order=2)]
        manifest = reconcile(prior, refs, FICTION, incremental=True).assemble({})

        assert ids(manifest.entries) == ["2", "1", "3"]
        assert manifest.get("2").ref.order == 0
        # file names are fixed at first save
        assert manifest.get("2").filename == prior.get("2").filename


class TestAssemble:
    def test_fetched_chapter_becomes_present(self):
        plan = reconcile(None, [make_ref(1)], FICTION, incremental=True)
        manifest = plan.assemble({"1": content_for(1, title="Page Title")})

        entry = manifest.get("1")
        assert entry.presence == Presence.PRESENT
        assert entry.title == "Page Title"
        assert entry.ref.title == "Chapter 1"
        assert entry.filename == chapter_filename(make_ref(1))
        assert manifest.fiction == FICTION

    def test_unfetched_new_chapter_is_left_out(self):
        plan = reconcile(make_manifest([1]), [make_ref(1), make_ref(2)], FICTION, incremental=True)
        assert ids(plan.assemble({}).entries) == ["1"]

    def test_failed_refetch_keeps_prior_content(self):
        prior = make_manifest([1, 2])
        plan = reconcile(prior, [make_ref(1), make_ref(2)], FICTION, incremental=False)
        manifest = plan.assemble({"1": content_for(1)})

        assert manifest.get("1").fingerprint != "fp-1"
        assert manifest.get("2").fingerprint == "fp-2"
        assert manifest.get("2").presence == Presence.PRESENT

    def test_unchanged_refetch_keeps_timestamp(self):
        prior = make_manifest([1])
        fresh = content_for(1)
        prior.entries[0] = prior.entries[0].model_copy(update={'fingerprint': fresh.fingerprint})
        manifest = reconcile(prior, [make_ref(1)], FICTION, incremental=False).assemble({"1": fresh})
        assert manifest.get("1").fetched_at == FIXED_TIME

    def test_changed_refetch_updates_timestamp(self):
        prior = make_manifest([1])
        fresh = content_for(1)
        manifest = reconcile(prior, [make_ref(1)], FICTION, incremental=False).assemble({"1": fresh})
        assert manifest.get("1").fingerprint == fresh.fingerprint
        assert manifest.get("1").fetched_at == fresh.fetched_at
