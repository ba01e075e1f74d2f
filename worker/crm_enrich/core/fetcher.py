"""HTTP fetch helpers shared by the site crawler."""

from __future__ import annotations

import logging
from typing import Optional, Tuple
from urllib.parse import urlparse, urlunparse

import requests

from crm_enrich.core.config import Settings, get_settings

logger = logging.getLogger(__name__)

USER_AGENT = "CrmEnrichBot/1.0 (address extraction)"
REQUEST_TIMEOUT = 10

# Websites on these hosts are listings about a company, never the company itself.
DIRECTORY_DOMAINS = {
    "linkedin.com",
    "wikipedia.org",
    "zoominfo.com",
    "dnb.com",
    "dunandbradstreet.com",
    "chamberofcommerce.com",
    "bloomberg.com",
    "reuters.com",
    "thomasnet.com",
    "indeed.com",
    "glassdoor.com",
    "facebook.com",
    "twitter.com",
    "x.com",
    "instagram.com",
    "youtube.com",
    "crunchbase.com",
    "pitchbook.com",
    "craft.co",
    "owler.com",
    "manta.com",
    "yellowpages.com",
    "bbb.org",
    "yelp.com",
    "mapquest.com",
    "loopnet.com",
    "hotfrog.com",
    "bizjournals.com",
    "sec.gov",
}


def bare_host(url: str) -> str:
    """Lowercased host of ``url`` without port or a leading ``www.``."""

    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def sanitize_website(raw_url: str) -> Optional[str]:
    """Normalise raw website strings into absolute https URLs."""

    if not raw_url:
        return None

    url = raw_url.strip()
    if not url:
        return None

    parsed = urlparse(url, scheme="https")
    if not parsed.netloc:
        parsed = urlparse(f"https://{url}")

    if not parsed.netloc or parsed.scheme not in {"http", "https"}:
        return None

    normalized_path = parsed.path or "/"
    if not normalized_path.startswith("/"):
        normalized_path = f"/{normalized_path}"

    normalized = parsed._replace(path=normalized_path, fragment="", query="", params="")
    return urlunparse(normalized)


def is_directory_domain(url: str) -> bool:
    host = bare_host(sanitize_website(url) or "")
    if not host:
        return True
    if host in DIRECTORY_DOMAINS or host.endswith(".gov") or host.endswith(".wikipedia.org"):
        return True
    return any(host.endswith(f".{domain}") for domain in DIRECTORY_DOMAINS)


def build_session(settings: Optional[Settings] = None) -> requests.Session:
    """Create a session carrying the crawler's fixed identity headers."""

    settings = settings or get_settings()
    session = requests.Session()
    session.headers["User-Agent"] = settings.crawl_user_agent or USER_AGENT
    session.headers.setdefault("Accept", "text/html,application/xhtml+xml")
    session.headers.setdefault("Accept-Language", "en-US,en;q=0.9")
    return session


def fetch_url(session: requests.Session, url: str, *, timeout: int = REQUEST_TIMEOUT) -> Optional[Tuple[str, str]]:
    """Fetch a URL once and return the final URL + body when it is HTML content.

    Non-2xx answers, non-HTML payloads and transport errors all yield ``None``;
    the caller simply skips the page.
    """

    try:
        response = session.get(
            url,
            timeout=timeout,
            allow_redirects=True,
        )
    except requests.RequestException as exc:  # noqa: BLE001
        logger.warning("Failed to fetch %s: %s", url, exc)
        return None

    if not 200 <= response.status_code < 300:
        logger.debug("Skipping %s (status=%s)", url, response.status_code)
        return None

    content_type = response.headers.get("Content-Type", "").lower()
    if content_type and "html" not in content_type:
        logger.debug("Skipping non-HTML content at %s (content-type=%s)", url, content_type)
        return None

    return response.url or url, response.text
