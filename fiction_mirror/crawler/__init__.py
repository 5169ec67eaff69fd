"""Site-specific crawling: spider registry and spiders."""
import logging
from typing import Optional, Type
from urllib.parse import urlparse

from fiction_mirror.crawler.spiders import BaseSpider, RoyalRoadSpider
from fiction_mirror.exceptions import ConfigError

logger = logging.getLogger(__name__)


class SpiderRegistry:
    """
    Registry mapping domains to spiders.

    Used to select the appropriate spider for a given URL.
    """

    DOMAIN_SPIDER_MAP = {
        'royalroad.com': RoyalRoadSpider,
        'www.royalroad.com': RoyalRoadSpider,
        # Add more domain -> spider mappings here
    }

    @classmethod
    def get_spider_for_url(cls, url: str) -> Optional[Type[BaseSpider]]:
        """
        Determine which spider to use for a given URL.

        Args:
            url: The fiction URL

        Returns:
            Spider class or None if no spider found
        """
        domain = urlparse(url).netloc.lower()
        spider_cls = cls.DOMAIN_SPIDER_MAP.get(domain)

        if not spider_cls:
            logger.warning(f"No spider registered for domain: {domain}")

        return spider_cls

    @classmethod
    def is_supported(cls, url: str) -> bool:
        """Check if URL is supported."""
        return cls.get_spider_for_url(url) is not None

    @classmethod
    def create(cls, url: str) -> BaseSpider:
        """
        Instantiate the spider for a URL.

        Raises:
            ConfigError: URL is not http(s) or its domain has no spider
        """
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ConfigError("URL must be an absolute http(s) URL", {"url": url})

        spider_cls = cls.get_spider_for_url(url)
        if spider_cls is None:
            raise ConfigError("No spider available for this URL", {"url": url})
        return spider_cls()


__all__ = ["SpiderRegistry", "BaseSpider", "RoyalRoadSpider"]
