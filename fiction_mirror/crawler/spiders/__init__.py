"""Site-specific spiders."""
from fiction_mirror.crawler.spiders.base_spider import BaseSpider
from fiction_mirror.crawler.spiders.royalroad import RoyalRoadSpider

__all__ = ["BaseSpider", "RoyalRoadSpider"]
