"""Breadth-first crawl of a company's official website for address data."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Set, Tuple
from urllib import robotparser
from urllib.parse import urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup

from crm_enrich.core.config import Settings, get_settings
from crm_enrich.core.extractor import extract_addresses
from crm_enrich.core.fetcher import bare_host, build_session, fetch_url, sanitize_website
from crm_enrich.models import CrawlResult, ExtractedAddress

logger = logging.getLogger(__name__)

# Path or anchor-text fragments that make a link worth following below the homepage.
CRAWL_KEYWORDS = (
    "locations",
    "location",
    "contact",
    "about",
    "facilities",
    "plants",
    "offices",
    "where-we-are",
    "global-locations",
    "our-companies",
    "brands",
    "subsidiaries",
    "portfolio",
)
MIN_ADDRESS_LENGTH = 6
_SKIPPED_SCHEMES = ("mailto:", "tel:", "javascript:", "data:")


def normalize_url(url: str) -> str:
    """Drop query string and fragment so trivial URL variants collapse."""

    parsed = urlparse(url)
    return urlunparse((parsed.scheme, parsed.netloc, parsed.path or "/", "", "", ""))


def dedupe_addresses(addresses: List[ExtractedAddress]) -> List[ExtractedAddress]:
    """Keep the first address for each lowercased, whitespace-collapsed raw string."""

    seen: Set[str] = set()
    unique: List[ExtractedAddress] = []
    for address in addresses:
        key = " ".join(address.raw.split()).lower()
        if key in seen:
            continue
        seen.add(key)
        unique.append(address)
    return unique


@dataclass
class CrawlSession:
    """Mutable state of a single crawl; never shared between crawls."""

    root_url: str
    host: str
    max_pages: int
    max_depth: int
    queue: Deque[Tuple[str, int]] = field(default_factory=deque)
    seen: Set[str] = field(default_factory=set)
    visited: List[str] = field(default_factory=list)
    addresses: List[ExtractedAddress] = field(default_factory=list)

    def is_same_origin(self, url: str) -> bool:
        parsed = urlparse(url)
        if parsed.scheme not in {"http", "https"}:
            return False
        return bare_host(url) == self.host

    def enqueue(self, url: str, depth: int) -> bool:
        normalized = normalize_url(url)
        if not self.is_same_origin(normalized):
            return False
        if normalized in self.seen or depth > self.max_depth or len(self.seen) >= self.max_pages:
            return False
        self.seen.add(normalized)
        self.queue.append((normalized, depth))
        return True


def _link_matches_keywords(url: str, anchor_text: str) -> bool:
    path = urlparse(url).path.lower()
    text = anchor_text.lower()
    return any(keyword in path or keyword in text for keyword in CRAWL_KEYWORDS)


class SiteCrawler:
    """Crawl one official domain and collect address candidates."""

    def __init__(
        self,
        website: str,
        *,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
        max_pages: Optional[int] = None,
        max_depth: Optional[int] = None,
        delay_s: Optional[float] = None,
        respect_robots: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        sanitized = sanitize_website(website)
        if not sanitized:
            raise ValueError("A valid website URL is required for crawling")

        self.root_url = sanitized
        self.host = bare_host(sanitized)
        self.settings = settings or get_settings()
        self.max_pages = max_pages if max_pages is not None else self.settings.crawl_max_pages
        self.max_depth = max_depth if max_depth is not None else self.settings.crawl_max_depth
        self.delay_s = delay_s if delay_s is not None else self.settings.crawl_delay_seconds
        self.respect_robots = (
            respect_robots if respect_robots is not None else self.settings.crawl_respect_robots
        )
        self._owns_session = session is None
        self.session = session or build_session(self.settings)
        self._sleep = sleep
        self._robots: Optional[robotparser.RobotFileParser] = None

    def _load_robot_rules(self) -> Optional[robotparser.RobotFileParser]:
        parsed = urlparse(self.root_url)
        robots_url = urlunparse((parsed.scheme, parsed.netloc, "/robots.txt", "", "", ""))
        try:
            response = self.session.get(robots_url, timeout=self.settings.request_timeout)
        except requests.RequestException as exc:  # noqa: BLE001
            logger.debug("Unable to read robots.txt from %s: %s", robots_url, exc)
            return None
        if response.status_code != 200:
            return None
        parser_obj = robotparser.RobotFileParser()
        parser_obj.parse(response.text.splitlines())
        return parser_obj

    def _is_allowed_by_robots(self, url: str) -> bool:
        if not self._robots:
            return True
        allowed = self._robots.can_fetch(self.session.headers.get("User-Agent", "*"), url)
        if not allowed:
            logger.info("Robots.txt disallows %s", url)
        return allowed

    def _process_page(self, state: CrawlSession, url: str, depth: int, html: str) -> None:
        for address in extract_addresses(html, url):
            if len(address.raw) >= MIN_ADDRESS_LENGTH:
                state.addresses.append(address)

        if depth >= state.max_depth:
            return

        soup = BeautifulSoup(html, "html.parser")
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith("#") or href.lower().startswith(_SKIPPED_SCHEMES):
                continue
            absolute = urljoin(url, href)
            if depth == 0 or _link_matches_keywords(absolute, anchor.get_text(" ", strip=True)):
                state.enqueue(absolute, depth + 1)

    def crawl(self) -> CrawlResult:
        state = CrawlSession(
            root_url=self.root_url,
            host=self.host,
            max_pages=self.max_pages,
            max_depth=self.max_depth,
        )
        if self.respect_robots:
            self._robots = self._load_robot_rules()

        state.enqueue(self.root_url, 0)
        while state.queue:
            url, depth = state.queue.popleft()
            if not self._is_allowed_by_robots(url):
                continue

            if self.delay_s:
                self._sleep(self.delay_s)

            try:
                fetched = fetch_url(self.session, url, timeout=self.settings.request_timeout)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to fetch %s: %s", url, exc)
                continue
            if not fetched:
                continue

            final_url, html = fetched
            if not state.is_same_origin(final_url):
                logger.info("Redirect from %s left the site (%s); skipping page", url, final_url)
                continue

            state.visited.append(url)
            try:
                self._process_page(state, final_url, depth, html)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to parse %s: %s", url, exc)

        addresses = dedupe_addresses(state.addresses)
        logger.info(
            "Crawled %s: pages_visited=%d addresses=%d",
            self.host,
            len(state.visited),
            len(addresses),
        )
        return CrawlResult(addresses=addresses, subsidiary_links=[], pages_visited=list(state.visited))

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> "SiteCrawler":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.close()


def crawl_official_site(
    website: str,
    max_pages: Optional[int] = None,
    max_depth: Optional[int] = None,
    **kwargs,
) -> CrawlResult:
    """Crawl ``website`` and return its deduplicated addresses."""

    with SiteCrawler(website, max_pages=max_pages, max_depth=max_depth, **kwargs) as crawler:
        return crawler.crawl()
