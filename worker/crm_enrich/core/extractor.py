"""Address extraction from fetched pages.

Two tiers run on every page and their results are concatenated:

* JSON-LD blocks describing an Organization / LocalBusiness / Place with an
  ``address`` object (authoritative when present).
* A line-based heuristic over the visible text that keeps lines carrying both
  a US state abbreviation and a ZIP code.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from bs4 import BeautifulSoup

from crm_enrich.models import HEURISTIC, STRUCTURED, ExtractedAddress

logger = logging.getLogger(__name__)

ACCEPTED_TYPES = ("organization", "localbusiness", "place")

MIN_LINE_LENGTH = 15
MAX_LINE_LENGTH = 200

US_STATE_REGEX = re.compile(
    r"\b(AL|AK|AZ|AR|CA|CO|CT|DC|DE|FL|GA|HI|ID|IL|IN|IA|KS|KY|LA|ME|MD|MA|MI|MN|MS|MO|MT|NE|NV|NH|NJ|NM"
    r"|NY|NC|ND|OH|OK|OR|PA|RI|SC|SD|TN|TX|UT|VT|VA|WA|WV|WI|WY)\b"
)
ZIP_REGEX = re.compile(r"\b\d{5}(?:-\d{4})?\b")
CITY_STATE_ZIP_REGEX = re.compile(
    r"(?:^|,)\s*([A-Za-z][A-Za-z .'-]*?)\s*,\s*([A-Z]{2})\.?\s+\d{5}(?:-\d{4})?\b"
)
US_TOKEN_REGEX = re.compile(r"\bUSA?\b")
BLOCK_TAGS = [
    "address", "article", "aside", "blockquote", "dd", "div", "dl", "dt", "footer", "form",
    "h1", "h2", "h3", "h4", "h5", "h6", "header", "li", "main", "nav", "ol", "p", "section",
    "table", "td", "th", "tr", "ul",
]
WHITESPACE_REGEX = re.compile(r"\s+")


def _clean(value: Any) -> Optional[str]:
    if isinstance(value, str):
        cleaned = WHITESPACE_REGEX.sub(" ", value).strip()
        return cleaned or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _first_field(address: Dict[str, Any], *names: str) -> Optional[str]:
    for name in names:
        value = _clean(address.get(name))
        if value:
            return value
    return None


def _node_types(node: Dict[str, Any]) -> str:
    declared = node.get("@type")
    if isinstance(declared, list):
        return " ".join(str(item) for item in declared if item).lower()
    return str(declared or "").lower()


def _is_accepted_node(node: Any) -> bool:
    if not isinstance(node, dict):
        return False
    types = _node_types(node)
    return any(accepted in types for accepted in ACCEPTED_TYPES)


def iter_typed_nodes(data: Any) -> Iterator[Dict[str, Any]]:
    """Yield the JSON-LD nodes we know how to read.

    Recognised shapes are a typed object, an array of typed objects and an
    object wrapping an ``@graph`` array. Nesting is unwrapped one level only;
    anything else is ignored.
    """

    if isinstance(data, list):
        candidates = list(data)
    elif isinstance(data, dict):
        candidates = [data]
        graph = data.get("@graph")
        if isinstance(graph, list):
            candidates.extend(graph)
    else:
        return

    for node in candidates:
        if _is_accepted_node(node):
            yield node


def parse_structured_address(address: Dict[str, Any], source_url: str) -> Optional[ExtractedAddress]:
    """Map a schema.org PostalAddress-like object onto ``ExtractedAddress``."""

    street_value = address.get("streetAddress")
    if isinstance(street_value, list):
        street = _clean(", ".join(part for part in (_clean(item) for item in street_value) if part))
    else:
        street = _first_field(address, "streetAddress", "street")

    city = _first_field(address, "addressLocality", "city")
    state = _first_field(address, "addressRegion", "state")
    postal_code = _first_field(address, "postalCode", "postal_code")

    country_value = address.get("addressCountry", address.get("country"))
    if isinstance(country_value, dict):
        country = _clean(country_value.get("name"))
    else:
        country = _clean(country_value)

    parts = [part for part in (street, city, state, postal_code, country) if part]
    if not parts:
        return None

    return ExtractedAddress(
        raw=", ".join(parts),
        source_url=source_url,
        provenance=STRUCTURED,
        street=street,
        city=city,
        state=state,
        postal_code=postal_code,
        country=country,
    )


def extract_structured_addresses(soup: BeautifulSoup, source_url: str) -> List[ExtractedAddress]:
    results: List[ExtractedAddress] = []
    for script in soup.find_all("script", attrs={"type": re.compile(r"application/ld\+json", re.IGNORECASE)}):
        payload = script.string or script.get_text()
        if not payload or not payload.strip():
            continue
        try:
            data = json.loads(payload)
        except ValueError as exc:
            logger.debug("Ignoring invalid JSON-LD block on %s: %s", source_url, exc)
            continue

        for node in iter_typed_nodes(data):
            address = node.get("address")
            entries = address if isinstance(address, list) else [address]
            for entry in entries:
                if not isinstance(entry, dict):
                    continue
                parsed = parse_structured_address(entry, source_url)
                if parsed:
                    results.append(parsed)
    return results


def _infer_city(line: str, state: str) -> Optional[str]:
    for match in CITY_STATE_ZIP_REGEX.finditer(line):
        if match.group(2) == state:
            city = match.group(1).strip()
            # "123 Main St, Springfield, IL" -> take the segment right before the state.
            if city and not city[0].isdigit():
                return city
    return None


def extract_text_addresses(text: str, source_url: str) -> List[ExtractedAddress]:
    """Heuristic tier: keep lines that carry both a state token and a ZIP code."""

    results: List[ExtractedAddress] = []
    for line in (text or "").split("\n"):
        line = line.strip()
        if len(line) < MIN_LINE_LENGTH or len(line) > MAX_LINE_LENGTH:
            continue

        raw = WHITESPACE_REGEX.sub(" ", line)
        zip_match = ZIP_REGEX.search(raw)
        state_match = US_STATE_REGEX.search(raw)
        if not zip_match or not state_match:
            continue

        state = state_match.group(1)
        results.append(
            ExtractedAddress(
                raw=raw,
                source_url=source_url,
                provenance=HEURISTIC,
                city=_infer_city(raw, state),
                state=state,
                postal_code=zip_match.group(0),
                country="US" if US_TOKEN_REGEX.search(raw) else None,
            )
        )
    return results


def visible_text(soup: BeautifulSoup) -> str:
    """Body text with one line per block element; inline markup stays on its line."""

    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    root = soup.body or soup
    for block in root.find_all(BLOCK_TAGS):
        block.insert_before("\n")
        block.insert_after("\n")
    return root.get_text()


def extract_addresses(html: str, source_url: str) -> List[ExtractedAddress]:
    """Return every address candidate found on one page, structured tier first."""

    if not html:
        return []

    soup = BeautifulSoup(html, "html.parser")
    addresses = extract_structured_addresses(soup, source_url)
    addresses.extend(extract_text_addresses(visible_text(soup), source_url))
    return addresses
