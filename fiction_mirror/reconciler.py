"""Reconcile a fresh TOC parse against the archive manifest.

Everything here is pure: inputs are the prior manifest and the freshly parsed
chapter list, outputs are a fetch plan and the recipe for the next manifest.
"""
import logging
from collections import defaultdict
from typing import Dict, List, Mapping, Optional, Set

from pydantic import BaseModel, Field

from fiction_mirror.models import (
    ArchiveManifest,
    ChapterContent,
    ChapterRef,
    Fiction,
    ManifestEntry,
    Presence,
)
from fiction_mirror.storage import chapter_filename

logger = logging.getLogger(__name__)


class PlanSlot(BaseModel):
    """One position in the next manifest."""
    ref: ChapterRef
    prior: Optional[ManifestEntry] = None
    presence: Presence = Presence.PRESENT
    fetch: bool = False

    @property
    def chapter_id(self) -> str:
        return self.ref.chapter_id

    @property
    def filename(self) -> str:
        if self.prior is not None:
            return self.prior.filename
        return chapter_filename(self.ref)


class ReconcilePlan(BaseModel):
    """Fetch plan plus the ordered skeleton of the next manifest."""
    fiction: Fiction
    incremental: bool
    slots: List[PlanSlot] = Field(default_factory=list)
    renamed: List[str] = Field(default_factory=list)
    orphaned: List[str] = Field(default_factory=list)

    @property
    def to_fetch(self) -> List[ChapterRef]:
        return [slot.ref for slot in self.slots if slot.fetch]

    @property
    def skipped(self) -> List[str]:
        return [
            slot.chapter_id for slot in self.slots
            if slot.presence == Presence.PRESENT and not slot.fetch
        ]

    def slot(self, chapter_id: str) -> PlanSlot:
        for slot in self.slots:
            if slot.chapter_id == chapter_id:
                return slot
        raise KeyError(chapter_id)

    def assemble(self, results: Mapping[str, ChapterContent]) -> ArchiveManifest:
        """
        Build the next manifest from the plan and the chapters fetched so far.

        A planned chapter missing from ``results`` keeps its prior entry if it
        has one and is left out otherwise, so a partial run only ever advances
        the manifest by completed chapters.

        Args:
            results: Extracted chapters keyed by chapter id

        Returns:
            The manifest to commit
        """
        entries: List[ManifestEntry] = []
        for slot in self.slots:
            prior = slot.prior

            if slot.presence == Presence.ORPHANED:
                entries.append(prior.model_copy(update={'presence': Presence.ORPHANED}))
                continue

            content = results.get(slot.chapter_id) if slot.fetch else None
            if content is not None:
                unchanged = prior is not None and prior.fingerprint == content.fingerprint
                entries.append(ManifestEntry(
                    ref=slot.ref,
                    title=content.title or slot.ref.title,
                    fingerprint=content.fingerprint,
                    filename=slot.filename,
                    fetched_at=prior.fetched_at if unchanged else content.fetched_at,
                    presence=Presence.PRESENT,
                ))
            elif prior is not None:
                update = {'ref': slot.ref, 'presence': Presence.PRESENT}
                if prior.ref.title != slot.ref.title:
                    update['title'] = slot.ref.title
                entries.append(prior.model_copy(update=update))

        return ArchiveManifest(fiction=self.fiction, entries=entries)


def reconcile(
    prior: Optional[ArchiveManifest],
    refs: List[ChapterRef],
    fiction: Fiction,
    incremental: bool,
    intact: Optional[Set[str]] = None,
) -> ReconcilePlan:
    """
    Diff the fresh chapter list against the prior manifest.

    - New chapters are fetched.
    - Known chapters are skipped in incremental mode when their stored
      content is intact; only the title and order follow the TOC. Otherwise
      they are fetched again.
    - Chapters gone from the TOC are orphaned, never dropped, and stay right
      after the nearest earlier entry that is still listed.

    Args:
        prior: Manifest from the previous run, or None
        refs: Fresh TOC chapter list in remote order
        fiction: Fresh fiction metadata
        incremental: Skip chapters whose content is already stored
        intact: Chapter ids whose stored file matches its fingerprint;
            None trusts the manifest

    Returns:
        The reconcile plan
    """
    prior = prior or ArchiveManifest()
    known: Dict[str, ManifestEntry] = prior.by_id()
    fresh_ids = {ref.chapter_id for ref in refs}

    # Orphans keyed by the id of the nearest earlier entry still listed remotely
    leading: List[ManifestEntry] = []
    trailing: Dict[str, List[ManifestEntry]] = defaultdict(list)
    anchor: Optional[str] = None
    for entry in prior.entries:
        if entry.chapter_id in fresh_ids:
            anchor = entry.chapter_id
        elif anchor is None:
            leading.append(entry)
        else:
            trailing[anchor].append(entry)

    plan = ReconcilePlan(fiction=fiction, incremental=incremental)

    def add_orphans(entries: List[ManifestEntry]) -> None:
        for entry in entries:
            plan.slots.append(PlanSlot(ref=entry.ref, prior=entry, presence=Presence.ORPHANED))
            if entry.presence != Presence.ORPHANED:
                plan.orphaned.append(entry.chapter_id)
                logger.info(f"Chapter {entry.chapter_id} '{entry.ref.title}' no longer listed, keeping as orphaned")

    add_orphans(leading)
    for ref in refs:
        entry = known.get(ref.chapter_id)
        if entry is None:
            plan.slots.append(PlanSlot(ref=ref, fetch=True))
        else:
            stored = intact is None or ref.chapter_id in intact
            fetch = not (incremental and stored)
            if not fetch and entry.ref.title != ref.title:
                plan.renamed.append(ref.chapter_id)
                logger.info(f"Chapter {ref.chapter_id} renamed: '{entry.ref.title}' -> '{ref.title}'")
            plan.slots.append(PlanSlot(ref=ref, prior=entry, fetch=fetch))
        add_orphans(trailing.get(ref.chapter_id, []))

    logger.info(
        f"Plan: {len(plan.to_fetch)} to fetch, {len(plan.skipped)} up to date, "
        f"{len(plan.orphaned)} newly orphaned"
    )
    return plan
