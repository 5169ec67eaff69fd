"""Royal Road spider."""
import logging
import re
from typing import Tuple

from scrapy.http import HtmlResponse

from fiction_mirror.crawler.spiders.base_spider import BaseSpider
from fiction_mirror.exceptions import ExtractError, LayoutChangedError
from fiction_mirror.models import Fiction

logger = logging.getLogger(__name__)

SITE_SUFFIX = " | Royal Road"
CHAPTER_ROW = 'tr[data-url^="/fiction/"]'

# Words used in the anti-piracy notices Royal Road injects into chapter text
WARNING_PATTERN = re.compile(
    r'on Amazon|Royal Road|appropriated|content|illicitly|misappropriated'
    r'|narrative|novel|permission|pilfered|purloined|report|story|taken'
    r'|theft|unauthorized|stolen',
    re.IGNORECASE,
)
WARNING_MAX_LENGTH = 150
WARNING_MIN_MATCHES = 3


def is_warning(html: str) -> bool:
    """If a short paragraph reads like an injected stolen-content notice."""
    if len(html) >= WARNING_MAX_LENGTH:
        return False
    matches = {m.group(0).lower() for m in WARNING_PATTERN.finditer(html)}
    return len(matches) >= WARNING_MIN_MATCHES


class RoyalRoadSpider(BaseSpider):
    """
    Spider for RoyalRoad.com fictions.

    RoyalRoad is a popular web novel platform.
    """

    def extract_fiction_metadata(self, response: HtmlResponse) -> Fiction:
        """Extract fiction metadata from RoyalRoad."""
        title = response.css('h1::text').get('').strip()
        if not title:
            title = response.css('title::text').get('').strip()
            if title.endswith(SITE_SUFFIX):
                title = title[:-len(SITE_SUFFIX)]
        if not title:
            raise LayoutChangedError(response.url, "fiction title")

        author = response.css('h4 a[href*="/profile/"]::text').get('').strip()

        logger.info(f"RoyalRoad fiction: {title} by {author or 'unknown'}")
        return Fiction(title=title, author=author, url=response.url)

    def extract_chapter_list(self, response: HtmlResponse) -> list:
        """Extract chapter list from RoyalRoad."""
        table = response.css('table#chapters')
        if not table:
            raise LayoutChangedError(response.url, "table#chapters")

        rows = table.css(CHAPTER_ROW)
        # A filled table with no recognisable row is a redesign, not an empty fiction
        if table.xpath('.//tr[td]') and not rows:
            raise LayoutChangedError(response.url, CHAPTER_ROW)

        chapters = []
        for row in rows:
            chapter_url = row.css('::attr(data-url)').get()
            chapter_title = row.css('td a::text').get('').strip()

            if not chapter_title:
                raise LayoutChangedError(response.url, f"chapter title link in row {chapter_url}")

            chapters.append({
                'title': chapter_title,
                'url': response.urljoin(chapter_url),
            })

        return chapters

    def extract_chapter(self, response: HtmlResponse, fiction: Fiction) -> Tuple[str, str]:
        """Extract chapter title and content container from RoyalRoad."""
        content_div = response.css('div.chapter-content')
        if not content_div:
            raise ExtractError(response.url, "div.chapter-content")

        title = response.css('h1::text').get('').strip()
        if not title:
            title = response.css('title::text').get('').strip()
            if title.endswith(SITE_SUFFIX):
                title = title[:-len(SITE_SUFFIX)]
            fiction_suffix = f" - {fiction.title}"
            if title.endswith(fiction_suffix):
                title = title[:-len(fiction_suffix)]

        return title, content_div.get()

    def is_boilerplate_paragraph(self, html: str) -> bool:
        return is_warning(html)
