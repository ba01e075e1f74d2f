import pytest
import requests

from crm_enrich.core import crawler
from crm_enrich.core.config import Settings
from crm_enrich.models import ExtractedAddress

FOOTER = "<footer><p>455 Industrial Pkwy, Houston, TX 77002</p></footer>"

SITE = {
    "https://acme.com/": (
        "<html><body>"
        '<a href="/contact">Contact</a>'
        '<a href="/locations">Our plants</a>'
        '<a href="/products?id=1">Products</a>'
        '<a href="https://other.com/locations">Partner</a>'
        '<a href="mailto:sales@acme.com">Mail</a>'
        '<a href="#top">Top</a>'
        f"{FOOTER}</body></html>"
    ),
    "https://acme.com/contact": f"<html><body><p>Write to us</p>{FOOTER}</body></html>",
    "https://acme.com/locations": (
        "<html><body>"
        '<a href="/locations/plant-a">Plant A</a>'
        '<a href="/careers">Careers</a>'
        '<a href="https://other.com/about">Elsewhere</a>'
        "<p>12 Harbor Rd, Erie, PA 16501</p>"
        "</body></html>"
    ),
    "https://acme.com/locations/plant-a": (
        '<html><body><a href="/locations/plant-a/contact">Contact plant</a>'
        "<p>900 Mill Lane, Dayton, OH 45402</p></body></html>"
    ),
    "https://acme.com/products": "<html><body><p>Widgets</p></body></html>",
    "https://acme.com/careers": "<html><body><p>Jobs at 1 Job St, Austin, TX 78701</p></body></html>",
}


class DummyResponse:
    def __init__(self, status_code=200, text="", url=None, headers=None):
        self.status_code = status_code
        self.text = text
        self.url = url
        self.headers = headers if headers is not None else {"Content-Type": "text/html"}


class DummySession:
    def __init__(self, pages, redirects=None, robots=None):
        self.pages = pages
        self.redirects = redirects or {}
        self.robots = robots
        self.headers = {"User-Agent": "TestBot/1.0"}
        self.requested = []

    def get(self, url, timeout=None, allow_redirects=True):
        self.requested.append(url)
        if url.endswith("/robots.txt"):
            if self.robots is None:
                return DummyResponse(status_code=404)
            return DummyResponse(text=self.robots, headers={"Content-Type": "text/plain"})
        if url in self.redirects:
            final_url = self.redirects[url]
            return DummyResponse(text=self.pages.get(final_url, "<html></html>"), url=final_url)
        if url not in self.pages:
            return DummyResponse(status_code=404, url=url)
        return DummyResponse(text=self.pages[url], url=url)


def _crawl(session, **kwargs):
    options = dict(
        settings=Settings(database_url=""),
        session=session,
        max_pages=50,
        max_depth=2,
        delay_s=0,
        respect_robots=False,
    )
    options.update(kwargs)
    return crawler.crawl_official_site("acme.com", **options)


def test_crawl_follows_site_links_breadth_first():
    session = DummySession(SITE)

    result = _crawl(session)

    assert result.pages_visited == [
        "https://acme.com/",
        "https://acme.com/contact",
        "https://acme.com/locations",
        "https://acme.com/products",
        "https://acme.com/locations/plant-a",
    ]
    assert result.subsidiary_links == []


def test_crawl_never_requests_off_origin_urls():
    session = DummySession(SITE)

    _crawl(session)

    assert all(url.startswith("https://acme.com/") for url in session.requested)


def test_crawl_respects_depth_bound():
    result = _crawl(DummySession(SITE), max_depth=1)

    assert "https://acme.com/locations/plant-a" not in result.pages_visited
    assert "https://acme.com/careers" not in result.pages_visited


def test_crawl_respects_page_limit():
    session = DummySession(SITE)

    result = _crawl(session, max_pages=2)

    assert len(result.pages_visited) <= 2
    assert len(session.requested) <= 2


def test_crawl_dedupes_addresses_across_pages():
    result = _crawl(DummySession(SITE))

    raws = [address.raw for address in result.addresses]
    assert raws.count("455 Industrial Pkwy, Houston, TX 77002") == 1
    assert "12 Harbor Rd, Erie, PA 16501" in raws
    assert "900 Mill Lane, Dayton, OH 45402" in raws
    assert "Jobs at 1 Job St, Austin, TX 78701" not in raws


def test_redirect_off_site_is_not_visited():
    session = DummySession(SITE, redirects={"https://acme.com/contact": "https://other.com/contact"})

    result = _crawl(session)

    assert "https://acme.com/contact" not in result.pages_visited
    assert all("other.com" not in url for url in result.pages_visited)


def test_robots_disallow_is_honoured():
    session = DummySession(SITE, robots="User-agent: *\nDisallow: /locations\n")

    result = _crawl(session, respect_robots=True)

    assert "https://acme.com/locations" not in result.pages_visited
    assert "https://acme.com/contact" in result.pages_visited


def test_fetch_failures_are_skipped():
    class FlakySession(DummySession):
        def get(self, url, timeout=None, allow_redirects=True):
            if url == "https://acme.com/contact":
                raise requests.Timeout("slow")
            return super().get(url, timeout=timeout, allow_redirects=allow_redirects)

    result = _crawl(FlakySession(SITE))

    assert "https://acme.com/contact" not in result.pages_visited
    assert "https://acme.com/locations" in result.pages_visited


def test_unexpected_fetch_errors_keep_collected_addresses():
    class BrokenSession(DummySession):
        def get(self, url, timeout=None, allow_redirects=True):
            if url == "https://acme.com/contact":
                raise ValueError("undecodable body")
            return super().get(url, timeout=timeout, allow_redirects=allow_redirects)

    result = _crawl(BrokenSession(SITE))

    raws = [address.raw for address in result.addresses]
    assert "https://acme.com/contact" not in result.pages_visited
    assert "https://acme.com/locations/plant-a" in result.pages_visited
    assert any("Houston" in raw for raw in raws)
    assert any("Dayton" in raw for raw in raws)


def test_delay_between_requests_uses_injected_sleep():
    delays = []

    _crawl(DummySession(SITE), delay_s=0.5, sleep=delays.append, max_pages=3)

    assert delays == [0.5, 0.5, 0.5]


def test_invalid_website_raises():
    with pytest.raises(ValueError):
        crawler.SiteCrawler("", settings=Settings(database_url=""), session=DummySession({}))


def test_enqueue_rules():
    state = crawler.CrawlSession(root_url="https://acme.com/", host="acme.com", max_pages=3, max_depth=1)

    assert state.enqueue("https://acme.com/", 0) is True
    assert state.enqueue("https://acme.com/?utm=1#x", 0) is False  # same page once normalised
    assert state.enqueue("https://www.acme.com/about", 1) is True
    assert state.enqueue("https://evil.com/", 1) is False
    assert state.enqueue("https://acme.com/deep", 2) is False
    assert state.enqueue("https://acme.com/contact", 1) is True
    assert state.enqueue("https://acme.com/more", 1) is False  # page limit reached


def test_dedupe_addresses_keeps_first_occurrence():
    first = ExtractedAddress(raw="1 Main St,  Erie, PA 16501", source_url="https://acme.com/a")
    second = ExtractedAddress(raw="1 main st, erie, pa 16501", source_url="https://acme.com/b")
    other = ExtractedAddress(raw="2 Main St, Erie, PA 16501", source_url="https://acme.com/b")

    assert crawler.dedupe_addresses([first, second, other]) == [first, other]
