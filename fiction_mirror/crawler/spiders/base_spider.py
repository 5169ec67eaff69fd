"""Base spider class for all site-specific parsers."""
import logging
import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from scrapy.http import HtmlResponse

from fiction_mirror.models import ChapterContent, ChapterRef, Fiction
from fiction_mirror.normalizer import ContentCleaner

logger = logging.getLogger(__name__)


class BaseSpider(ABC):
    """
    Base spider that all site-specific spiders must inherit from.

    A spider owns every selector for its site: the TOC structure and the
    chapter page structure. Nothing outside the spider knows about markup,
    so a site redesign only touches the spider.
    """

    CHAPTER_ID_PATTERN = re.compile(r'/chapter/(\d+)(?:/|$)')

    def __init__(self, cleaner: Optional[ContentCleaner] = None):
        self.cleaner = cleaner or ContentCleaner()

    @staticmethod
    def make_response(url: str, body: bytes) -> HtmlResponse:
        """Wrap fetched bytes in a read-only, queryable document."""
        return HtmlResponse(url=url, body=body, encoding='utf-8')

    def parse_toc(self, url: str, body: bytes) -> Tuple[Fiction, List[ChapterRef]]:
        """
        Parse the fiction's main page.

        Args:
            url: TOC URL the body was fetched from
            body: Raw response body

        Returns:
            Fiction metadata and the chapter references in remote order

        Raises:
            LayoutChangedError: expected TOC markers are missing
        """
        logger.info(f"Parsing fiction main page: {url}")
        response = self.make_response(url, body)

        fiction = self.extract_fiction_metadata(response)
        chapter_data = self.extract_chapter_list(response)

        refs: List[ChapterRef] = []
        seen = set()
        for data in chapter_data:
            chapter_id = self.chapter_id_for(data['url'])
            if chapter_id in seen:
                logger.warning(f"Duplicate chapter {chapter_id} in TOC, keeping first: {data['url']}")
                continue
            seen.add(chapter_id)
            refs.append(ChapterRef(
                chapter_id=chapter_id,
                title=data['title'],
                url=data['url'],
                order=len(refs),
            ))

        logger.info(f"Found {len(refs)} chapters for '{fiction.title}'")
        return fiction, refs

    def parse_chapter(self, ref: ChapterRef, body: bytes, fiction: Fiction) -> ChapterContent:
        """
        Parse an individual chapter page into clean content.

        The title shown on the chapter page wins over the TOC title, which
        can lag behind edits.

        Raises:
            ExtractError: expected chapter markers are missing
        """
        response = self.make_response(ref.url, body)
        title, raw_html = self.extract_chapter(response, fiction)
        content = self.cleaner.clean_html(raw_html, drop_paragraph=self.is_boilerplate_paragraph)
        return ChapterContent.from_content(
            chapter_id=ref.chapter_id,
            title=title or ref.title,
            content=content,
        )

    def chapter_id_for(self, url: str) -> str:
        """
        Derive the stable identifier of a chapter from its URL.

        Uses the numeric site id after ``/chapter/`` when there is one,
        otherwise the last path segment.
        """
        path = urlparse(url).path
        match = self.CHAPTER_ID_PATTERN.search(path)
        if match:
            return match.group(1)
        segments = [s for s in path.split('/') if s]
        return segments[-1] if segments else url

    def is_boilerplate_paragraph(self, html: str) -> bool:
        """Whether a content paragraph is injected site boilerplate."""
        return False

    @abstractmethod
    def extract_fiction_metadata(self, response: HtmlResponse) -> Fiction:
        """
        Extract fiction-level metadata from the main page.

        Args:
            response: Response wrapping the TOC page
        """

    @abstractmethod
    def extract_chapter_list(self, response: HtmlResponse) -> list:
        """
        Extract list of chapters from main page.

        Args:
            response: Response wrapping the TOC page

        Returns:
            List of dicts with keys: 'title', 'url' (absolute)
        """

    @abstractmethod
    def extract_chapter(self, response: HtmlResponse, fiction: Fiction) -> Tuple[str, str]:
        """
        Locate the chapter title and raw content container.

        Returns:
            (title, container HTML); title may be empty
        """
