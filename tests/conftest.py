"""Shared pytest fixtures for the fiction-mirror test suite."""
import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Union

import httpx
import pytest

from fiction_mirror.config import Settings
from fiction_mirror.models import ArchiveManifest, ChapterRef, Fiction, ManifestEntry, Presence
from fiction_mirror.storage import chapter_filename

SITE = "https://www.royalroad.com"
FICTION_PATH = "/fiction/4242/the-long-road"
FICTION_URL = SITE + FICTION_PATH
FIXED_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fake site
# ---------------------------------------------------------------------------

class FakeSite:
    """In-memory Royal Road fiction served through httpx.MockTransport."""

    def __init__(self, title: str = "The Long Road", author: str = "Jane Quill"):
        self.title = title
        self.author = author
        self.chapters: List[dict] = []
        self.requests: List[str] = []
        self.failures: Dict[str, List[Union[int, type]]] = {}
        self.broken_pages: set = set()
        self.toc_broken = False
        self.row_attr = "data-url"
        self.redirect_loops: set = set()
        self.delay = 0.0
        self.in_flight = 0
        self.peak = 0

    # -- content -----------------------------------------------------------

    def add_chapter(self, chapter_id: int, title: Optional[str] = None, body: Optional[str] = None) -> None:
        self.chapters.append({
            'id': chapter_id,
            'title': title or f"Chapter {chapter_id}",
            'body': body or f"The rain kept falling on day {chapter_id}.",
        })

    def remove_chapter(self, chapter_id: int) -> None:
        self.chapters = [c for c in self.chapters if c['id'] != chapter_id]

    def rename_chapter(self, chapter_id: int, title: str) -> None:
        for chapter in self.chapters:
            if chapter['id'] == chapter_id:
                chapter['title'] = title

    def chapter_path(self, chapter_id: int) -> str:
        return f"{FICTION_PATH}/chapter/{chapter_id}/part-{chapter_id}"

    def chapter_url(self, chapter_id: int) -> str:
        return SITE + self.chapter_path(chapter_id)

    def fail(self, chapter_id: int, outcomes: List[Union[int, type]]) -> None:
        """Queue failures (status codes or httpx exception classes) for a chapter."""
        self.failures[self.chapter_path(chapter_id)] = list(outcomes)

    def toc_html(self) -> str:
        rows = "".join(
            f'<tr style="cursor: pointer" {self.row_attr}="{self.chapter_path(c["id"])}" class="chapter-row">'
            f'<td><a href="{self.chapter_path(c["id"])}">{c["title"]}</a></td>'
            f'<td data-content="0"><a href="{self.chapter_path(c["id"])}"><time>1 day ago</time></a></td>'
            f'</tr>'
            for c in self.chapters
        )
        table = (
            '<table class="table" id="chapters"><thead><tr><th>Name</th><th>Release</th></tr></thead>'
            f'<tbody>{rows}</tbody></table>'
        )
        if self.toc_broken:
            table = f'<div class="chapter-list">{rows}</div>'
        return (
            f'<html><head><title>{self.title} | Royal Road</title></head><body>'
            f'<div class="fic-title"><h1 class="font-white">{self.title}</h1>'
            f'<h4 class="font-white"><span>by</span> <span>'
            f'<a href="/profile/99" class="font-white">{self.author}</a></span></h4></div>'
            f'{table}</body></html>'
        )

    def chapter_html(self, chapter: dict) -> str:
        content_class = "chapter-body" if chapter['id'] in self.broken_pages else "chapter-inner chapter-content"
        return (
            f'<html><head><title>{chapter["title"]} - {self.title} | Royal Road</title></head><body>'
            f'<div class="fic-header"><h1 class="font-white break-word">{chapter["title"]}</h1>'
            f'<h2 class="font-white">{self.title}</h2></div>'
            f'<div class="nav-buttons"><a href="#">Previous</a><a href="#">Next</a></div>'
            f'<div class="{content_class}">'
            f'<p>{chapter["body"]}</p>'
            f'<script>trackReader();</script>'
            f'<p>Unauthorized usage: this story is on Amazon without permission. Report it.</p>'
            f'</div></body></html>'
        )

    # -- transport ---------------------------------------------------------

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append(path)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)

            queued = self.failures.get(path)
            if queued:
                outcome = queued.pop(0)
                if isinstance(outcome, int):
                    return httpx.Response(outcome, request=request)
                raise outcome("connection reset", request=request)

            if path in {self.chapter_path(c) for c in self.redirect_loops}:
                return httpx.Response(302, headers={"Location": str(request.url)}, request=request)

            if path == FICTION_PATH:
                return httpx.Response(200, html=self.toc_html(), request=request)
            for chapter in self.chapters:
                if path == self.chapter_path(chapter['id']):
                    return httpx.Response(200, html=self.chapter_html(chapter), request=request)
            return httpx.Response(404, request=request)
        finally:
            self.in_flight -= 1

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def chapter_requests(self) -> List[str]:
        return [p for p in self.requests if p != FICTION_PATH]

    def reset_requests(self) -> None:
        self.requests = []


@pytest.fixture
def site():
    """Fiction with three chapters."""
    fake = FakeSite()
    for chapter_id in (101, 102, 103):
        fake.add_chapter(chapter_id)
    return fake


# ---------------------------------------------------------------------------
# Settings fixture
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    """Settings tuned for fast tests: tiny spacing, no backoff."""
    return Settings(
        _env_file=None,
        time_limit_ms=1,
        connections=2,
        max_retries=2,
        retry_backoff=0,
        request_timeout=5,
    )


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------

FICTION = Fiction(title="The Long Road", author="Jane Quill", url=FICTION_URL)


def make_ref(n: int, title: Optional[str] = None, order: Optional[int] = None) -> ChapterRef:
    return ChapterRef(
        chapter_id=str(n),
        title=title or f"Chapter {n}",
        url=f"{FICTION_URL}/chapter/{n}/part-{n}",
        order=n - 1 if order is None else order,
    )


def make_entry(n: int, presence: Presence = Presence.PRESENT, order: Optional[int] = None) -> ManifestEntry:
    ref = make_ref(n, order=order)
    return ManifestEntry(
        ref=ref,
        title=ref.title,
        fingerprint=f"fp-{n}",
        filename=chapter_filename(ref),
        fetched_at=FIXED_TIME,
        presence=presence,
    )


def make_manifest(ids, orphaned=()) -> ArchiveManifest:
    return ArchiveManifest(
        fiction=FICTION,
        entries=[
            make_entry(n, Presence.ORPHANED if n in orphaned else Presence.PRESENT)
            for n in ids
        ],
    )
