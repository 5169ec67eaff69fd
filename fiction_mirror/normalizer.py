"""Content normalization and cleaning utilities."""
import re
import logging
from typing import Callable, Optional

import bleach
from bs4 import BeautifulSoup
from slugify import slugify

logger = logging.getLogger(__name__)


class ContentCleaner:
    """
    Clean and normalize HTML content from scraped chapters.

    Removes ads, scripts, navigation, and other junk.
    Produces clean, reader-friendly HTML.
    """

    # Allowed HTML tags for chapter content
    ALLOWED_TAGS = [
        'p', 'br', 'em', 'strong', 'b', 'i', 'u', 's',
        'h1', 'h2', 'h3', 'h4', 'h5', 'h6',
        'blockquote', 'ol', 'ul', 'li',
        'table', 'thead', 'tbody', 'tr', 'th', 'td',
        'hr', 'span', 'div', 'sup', 'sub',
    ]

    # Allowed attributes
    ALLOWED_ATTRIBUTES = {
        '*': ['class'],
    }

    # Common ad/navigation class patterns
    JUNK_PATTERNS = [
        r'ad[s]?[-_]',
        r'advertisement',
        r'banner',
        r'sidebar',
        r'navigation',
        r'nav[-_]',
        r'menu',
        r'footer',
        r'social',
        r'share',
        r'comment',
        r'popup',
        r'modal',
        r'related',
    ]

    def __init__(self):
        self.junk_pattern = re.compile('|'.join(self.JUNK_PATTERNS), re.IGNORECASE)

    def clean_html(
        self,
        html: str,
        drop_paragraph: Optional[Callable[[str], bool]] = None,
    ) -> str:
        """
        Clean HTML content.

        Args:
            html: Raw HTML string
            drop_paragraph: Optional predicate over a paragraph's inner HTML;
                matching paragraphs are removed before sanitizing

        Returns:
            Cleaned HTML string
        """
        if not html:
            return ""

        soup = BeautifulSoup(html, 'lxml')

        # Remove script and style tags
        for tag in soup(['script', 'style', 'iframe', 'noscript']):
            tag.decompose()

        # Remove elements with junk classes/ids
        for element in soup.find_all(class_=True):
            if element.decomposed:
                continue
            classes = ' '.join(element.get('class', []))
            if self.junk_pattern.search(classes):
                element.decompose()

        for element in soup.find_all(id=True):
            if element.decomposed:
                continue
            if self.junk_pattern.search(element.get('id', '')):
                element.decompose()

        if drop_paragraph is not None:
            for paragraph in soup.find_all('p'):
                if paragraph.decomposed:
                    continue
                inner = paragraph.decode_contents()
                if drop_paragraph(inner):
                    logger.debug(f"Removing paragraph: {inner}")
                    paragraph.decompose()

        body = soup.body
        content_html = body.decode_contents() if body is not None else str(soup)

        clean_html = bleach.clean(
            content_html,
            tags=self.ALLOWED_TAGS,
            attributes=self.ALLOWED_ATTRIBUTES,
            strip=True,
        )

        return self._normalize_whitespace(clean_html)

    def _normalize_whitespace(self, html: str) -> str:
        """Normalize paragraph spacing and whitespace."""
        html = re.sub(r'\n{3,}', '\n\n', html)
        html = re.sub(r' {2,}', ' ', html)

        # Clean up empty tags
        html = re.sub(r'<p>\s*</p>', '', html)
        html = re.sub(r'<div>\s*</div>', '', html)

        return html.strip()

    def extract_text(self, html: str) -> str:
        """Extract plain text from HTML."""
        soup = BeautifulSoup(html, 'lxml')
        return soup.get_text(separator=' ', strip=True)

    def count_words(self, html: str) -> int:
        """Count words in HTML content."""
        return len(self.extract_text(html).split())


class SlugGenerator:
    """Generate filesystem-safe slugs from titles."""

    @staticmethod
    def generate_slug(text: str, default: str = "fiction") -> str:
        """
        Generate a slug from text.

        Args:
            text: Input text (e.g., fiction title)
            default: Returned when the text has no usable characters

        Returns:
            Slugified text
        """
        return slugify(text or "", max_length=120) or default
