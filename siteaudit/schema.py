"""Structured-data (JSON-LD and microdata) detection and validation."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Tuple

from bs4 import BeautifulSoup, Tag

from .document import SchemaReport

LOGGER = logging.getLogger(__name__)

LOCAL_BUSINESS_TYPES = frozenset(
    {
        "LocalBusiness",
        "AutomotiveBusiness",
        "Bakery",
        "BarOrPub",
        "CafeOrCoffeeShop",
        "Dentist",
        "Electrician",
        "FinancialService",
        "FoodEstablishment",
        "HealthAndBeautyBusiness",
        "HomeAndConstructionBusiness",
        "Hotel",
        "LegalService",
        "LodgingBusiness",
        "MedicalBusiness",
        "Plumber",
        "ProfessionalService",
        "RealEstateAgent",
        "Restaurant",
        "Store",
    }
)

ARTICLE_TYPES = frozenset({"Article", "BlogPosting", "NewsArticle"})

IDENTITY_TYPES = frozenset({"Organization", "Person"}) | LOCAL_BUSINESS_TYPES

REQUIRED_FIELDS: Dict[str, Tuple[str, ...]] = {
    "Organization": ("name", "url"),
    "LocalBusiness": ("name", "address", "telephone"),
    "Person": ("name",),
    "Product": ("name",),
    "Article": ("headline",),
    "WebSite": ("name", "url"),
    "BreadcrumbList": ("itemListElement",),
    "FAQPage": ("mainEntity",),
}

_JSONLD_TYPE_RE = re.compile(r"application/ld\+json", re.IGNORECASE)


def is_identity_type(type_name: str) -> bool:
    return type_name in IDENTITY_TYPES


def required_fields_for(type_name: str) -> Tuple[str, ...]:
    if type_name in LOCAL_BUSINESS_TYPES:
        return REQUIRED_FIELDS["LocalBusiness"]
    if type_name in ARTICLE_TYPES:
        return REQUIRED_FIELDS["Article"]
    return REQUIRED_FIELDS.get(type_name, ())


def _type_names(value: Any) -> List[str]:
    """Normalize ``@type`` / ``itemtype`` values to bare schema.org type names."""
    if isinstance(value, str):
        candidates = value.split()
    elif isinstance(value, list):
        candidates = [item for item in value if isinstance(item, str)]
    else:
        return []
    names = []
    for candidate in candidates:
        name = candidate.rstrip("/").rsplit("/", 1)[-1].rsplit("#", 1)[-1]
        if name:
            names.append(name)
    return names


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def _has_field(props: Dict[str, Any], field_name: str) -> bool:
    if _is_present(props.get(field_name)):
        return True
    if field_name == "telephone":
        contact = props.get("contactPoint")
        points = contact if isinstance(contact, list) else [contact]
        return any(
            isinstance(point, dict) and _is_present(point.get("telephone"))
            for point in points
        )
    return False


# ---------------------------------------------------------------------------
# JSON-LD
# ---------------------------------------------------------------------------


def _iter_jsonld_nodes(data: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(data, list):
        for item in data:
            yield from _iter_jsonld_nodes(item)
        return
    if not isinstance(data, dict):
        return
    if "@type" in data:
        yield data
    graph = data.get("@graph")
    if isinstance(graph, list):
        for item in graph:
            yield from _iter_jsonld_nodes(item)


def _parse_jsonld(soup: BeautifulSoup) -> Tuple[List[Dict[str, Any]], int, int]:
    nodes: List[Dict[str, Any]] = []
    blocks = 0
    invalid = 0
    for script in soup.find_all("script", attrs={"type": _JSONLD_TYPE_RE}):
        blocks += 1
        raw = (script.string or script.get_text() or "").strip()
        raw = re.sub(r"^<!--|-->$", "", raw).strip()
        if not raw:
            invalid += 1
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.debug("Invalid JSON-LD block: %s", exc)
            invalid += 1
            continue
        nodes.extend(_iter_jsonld_nodes(data))
    return nodes, blocks, invalid


# ---------------------------------------------------------------------------
# Microdata
# ---------------------------------------------------------------------------


def _microdata_value(element: Tag) -> Any:
    if element.has_attr("itemscope"):
        return {"@type": " ".join(_type_names(element.get("itemtype", "")))}
    for attr in ("content", "href", "src", "datetime", "value"):
        if element.has_attr(attr):
            return element[attr]
    return " ".join(element.get_text(" ", strip=True).split())


def _parse_microdata(soup: BeautifulSoup) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    for scope in soup.find_all(attrs={"itemscope": True}):
        if not scope.has_attr("itemtype") or scope.has_attr("itemprop"):
            continue
        node: Dict[str, Any] = {"@type": _type_names(scope.get("itemtype", ""))}
        for prop in scope.find_all(attrs={"itemprop": True}):
            owner = prop.find_parent(attrs={"itemscope": True})
            if owner is not scope:
                continue
            for name in str(prop.get("itemprop", "")).split():
                node.setdefault(name, _microdata_value(prop))
        items.append(node)
    return items


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def merge_by_type(nodes: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Merge nodes sharing a declared type; the first non-empty value of a property wins."""
    merged: Dict[str, Dict[str, Any]] = {}
    for node in nodes:
        for type_name in _type_names(node.get("@type")):
            target = merged.setdefault(type_name, {})
            for key, value in node.items():
                if key.startswith("@") or not _is_present(value):
                    continue
                target.setdefault(key, value)
    return merged


def validate_required(merged: Dict[str, Dict[str, Any]]) -> Dict[str, List[str]]:
    missing: Dict[str, List[str]] = {}
    for type_name, props in merged.items():
        absent = [name for name in required_fields_for(type_name) if not _has_field(props, name)]
        if absent:
            missing[type_name] = absent
    return missing


def analyze_schema(soup: BeautifulSoup) -> SchemaReport:
    """Scan rendered markup for structured data and validate it per type."""
    jsonld_nodes, jsonld_blocks, invalid = _parse_jsonld(soup)
    microdata_nodes = _parse_microdata(soup)
    merged = merge_by_type(jsonld_nodes + microdata_nodes)
    types = sorted(merged)
    return SchemaReport(
        types=types,
        merged=merged,
        missing_fields=validate_required(merged),
        invalid_blocks=invalid,
        jsonld_blocks=jsonld_blocks,
        microdata_items=len(microdata_nodes),
        identity_types=[name for name in types if is_identity_type(name)],
    )
