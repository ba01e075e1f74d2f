import pytest

from crm_enrich.core import extractor
from crm_enrich.models import HEURISTIC, STRUCTURED

PAGE = """
<html>
<head>
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "Organization", "name": "Acme",
 "address": [
   {"@type": "PostalAddress", "streetAddress": "100 Main St", "addressLocality": "Springfield",
    "addressRegion": "IL", "postalCode": "62701", "addressCountry": "US"},
   {"@type": "PostalAddress", "streetAddress": "200 Oak Ave", "addressLocality": "Peoria",
    "addressRegion": "IL", "postalCode": "61602"}
 ]}
</script>
<script type="application/ld+json">{ this is not json </script>
<script type="application/ld+json">
{"@graph": [
  {"@type": "WebSite", "address": {"streetAddress": "ignored"}},
  {"@type": ["LocalBusiness", "Store"], "address": {"streetAddress": "300 Pine Rd",
   "addressLocality": "Austin", "addressRegion": "TX", "postalCode": "78701",
   "addressCountry": {"@type": "Country", "name": "United States"}}}
]}
</script>
</head>
<body>
<footer><p>Plant 4<br>455 Industrial Pkwy, Houston, TX 77002</p></footer>
</body>
</html>
"""


def test_structured_addresses_come_first_in_document_order():
    addresses = extractor.extract_addresses(PAGE, "https://acme.com/")

    raws = [address.raw for address in addresses]
    assert raws[:3] == [
        "100 Main St, Springfield, IL, 62701, US",
        "200 Oak Ave, Peoria, IL, 61602",
        "300 Pine Rd, Austin, TX, 78701, United States",
    ]
    assert [address.provenance for address in addresses[:3]] == [STRUCTURED] * 3
    assert addresses[3].raw == "455 Industrial Pkwy, Houston, TX 77002"
    assert addresses[3].provenance == HEURISTIC
    assert all(address.source_url == "https://acme.com/" for address in addresses)


def test_structured_fields_are_kept():
    address = extractor.extract_addresses(PAGE, "https://acme.com/")[0]

    assert address.street == "100 Main St"
    assert address.city == "Springfield"
    assert address.state == "IL"
    assert address.postal_code == "62701"
    assert address.country == "US"


def test_iter_typed_nodes_ignores_unknown_shapes():
    assert list(extractor.iter_typed_nodes("text")) == []
    assert list(extractor.iter_typed_nodes({"@type": "Product"})) == []
    nodes = list(extractor.iter_typed_nodes([{"@type": "Place"}, {"@type": "Event"}]))
    assert nodes == [{"@type": "Place"}]


def test_parse_structured_address_joins_street_lines():
    parsed = extractor.parse_structured_address(
        {"streetAddress": ["1 Dock St", "Building 2"], "addressLocality": "Erie"}, "https://acme.com/"
    )
    assert parsed.raw == "1 Dock St, Building 2, Erie"
    assert extractor.parse_structured_address({}, "https://acme.com/") is None


@pytest.mark.parametrize(
    "line",
    [
        "100 Main Street, Springfield, IL 62701",
        "Springfield, IL 62701-1234",
        "Corporate HQ: 9 Elm Ave, Dover DE 19901",
    ],
)
def test_heuristic_accepts_state_and_zip_lines(line):
    found = extractor.extract_text_addresses(line, "https://acme.com/")
    assert [address.raw for address in found] == [line]


@pytest.mark.parametrize(
    "line",
    [
        "IL 62701",  # too short
        "Call our Springfield office today",  # no state, no ZIP
        "We ship to all 50 states from IL",  # state without ZIP
        "Order number 62701 has shipped",  # ZIP without state
        "ilinois il 62701 springfield main",  # lowercase state
        "Springfield, IL 62701 " + "x" * 200,  # too long
    ],
)
def test_heuristic_rejects_lines(line):
    assert extractor.extract_text_addresses(line, "https://acme.com/") == []


def test_heuristic_infers_city_and_country():
    (address,) = extractor.extract_text_addresses("100 Main Street, Springfield, IL 62701 USA", "https://acme.com/")

    assert address.city == "Springfield"
    assert address.state == "IL"
    assert address.postal_code == "62701"
    assert address.country == "US"


def test_houston_is_not_a_country_token():
    (address,) = extractor.extract_text_addresses("455 Industrial Pkwy, Houston, TX 77002", "https://acme.com/")

    assert address.country is None
    assert address.city == "Houston"


def test_visible_text_breaks_blocks_and_drops_scripts():
    html = "<html><body><div>Visit us</div><div>1 Main St<br>North East, PA 16428</div><script>var x = 'PA 16428';</script></body></html>"

    addresses = extractor.extract_addresses(html, "https://acme.com/contact")

    assert [address.raw for address in addresses] == ["North East, PA 16428"]


def test_empty_html_has_no_addresses():
    assert extractor.extract_addresses("", "https://acme.com/") == []
