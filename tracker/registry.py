"""Source registry and adapter construction."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict

from .config import TrackerConfig
from .http_client import HttpFetcher
from .rate_limit import RateLimiter
from .sources import SourceAdapter
from .sources.mangadex import MangaDexAdapter
from .sources.selectors import SelectorSet
from .sources.weebcentral import WeebCentralAdapter

LOGGER = logging.getLogger(__name__)

AdapterFactory = Callable[[TrackerConfig, HttpFetcher, RateLimiter], SourceAdapter]


@dataclass(slots=True)
class SourceDefinition:
    """Configuration for a supported manga source."""

    slug: str
    factory: AdapterFactory
    default_delay: float

    def build_adapter(self, config: TrackerConfig, fetcher: HttpFetcher) -> SourceAdapter:
        delay = config.rate_limit.delay_for(self.slug, self.default_delay)
        return self.factory(config, fetcher, RateLimiter(delay))


def _build_mangadex(config: TrackerConfig, fetcher: HttpFetcher, rate_limiter: RateLimiter) -> SourceAdapter:
    return MangaDexAdapter(fetcher, rate_limiter=rate_limiter, search_limit=config.search_limit)


def _build_weebcentral(config: TrackerConfig, fetcher: HttpFetcher, rate_limiter: RateLimiter) -> SourceAdapter:
    selectors = None
    if config.weebcentral_selectors_file is not None:
        selectors = SelectorSet.from_file(config.weebcentral_selectors_file)
        LOGGER.info(
            "Loaded WeebCentral selectors version %s from %s",
            selectors.version,
            config.weebcentral_selectors_file,
        )
    return WeebCentralAdapter(
        fetcher,
        rate_limiter=rate_limiter,
        selectors=selectors,
        search_limit=config.search_limit,
    )


_SOURCE_REGISTRY: Dict[str, SourceDefinition] = {
    "mangadex": SourceDefinition(
        slug="mangadex",
        factory=_build_mangadex,
        default_delay=MangaDexAdapter.default_delay,
    ),
    "weebcentral": SourceDefinition(
        slug="weebcentral",
        factory=_build_weebcentral,
        default_delay=WeebCentralAdapter.default_delay,
    ),
}


def get_source_definition(slug: str) -> SourceDefinition:
    """Return the source definition for ``slug`` or raise ``KeyError``."""

    normalized = slug.lower()
    if normalized not in _SOURCE_REGISTRY:
        raise KeyError(f"Unsupported source '{slug}'. Available: {', '.join(sorted(_SOURCE_REGISTRY))}")
    return _SOURCE_REGISTRY[normalized]


def list_sources() -> list[str]:
    return list(_SOURCE_REGISTRY)


def build_adapters(config: TrackerConfig, fetcher: HttpFetcher) -> dict[str, SourceAdapter]:
    """Instantiate one adapter per registered source, each with its own rate limiter."""

    return {slug: definition.build_adapter(config, fetcher) for slug, definition in _SOURCE_REGISTRY.items()}


__all__ = ["SourceDefinition", "build_adapters", "get_source_definition", "list_sources"]
