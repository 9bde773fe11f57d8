"""Name/Address/Phone extraction and cross-page consistency."""

from __future__ import annotations

import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .document import ContactSignals, NapReport, PageRecord
from .schema import IDENTITY_TYPES

PHONE_RE = re.compile(r"(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b")
EMAIL_RE = re.compile(r"[a-z0-9._%+-]+@[a-z0-9.-]+\.[a-z]{2,}", re.IGNORECASE)
ADDRESS_RE = re.compile(
    r"\b\d{1,5}\s+[a-z0-9][a-z0-9 .,'-]{1,60}?\s"
    r"(?:street|st|avenue|ave|road|rd|drive|dr|lane|ln|way|court|ct|boulevard|blvd|"
    r"circle|cir|place|pl)\b\.?",
    re.IGNORECASE,
)

_IGNORED_EMAIL_DOMAINS = ("example.com", "test.com", "sentry.io")

# Deduction per extra variation of a field.
VARIATION_PENALTY = 20


def normalize_phone(raw: str) -> Optional[str]:
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    if len(digits) != 10:
        return None
    return digits


def normalize_address(raw: str) -> str:
    text = " ".join((raw or "").lower().split())
    return text.strip(" ,.-")


def normalize_name(raw: str) -> str:
    return " ".join((raw or "").split()).strip()


def _schema_address(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return normalize_address(value) or None
    if isinstance(value, dict):
        street = value.get("streetAddress")
        if isinstance(street, str) and street.strip():
            return normalize_address(street)
    if isinstance(value, list) and value:
        return _schema_address(value[0])
    return None


def _unique(values: Iterable[Optional[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for value in values:
        if value:
            seen.setdefault(value, None)
    return list(seen)


def extract_contact_signals(
    text: str,
    schema: Optional[Dict[str, Dict[str, Any]]] = None,
    tel_links: Sequence[str] = (),
) -> ContactSignals:
    """Collect NAP candidates from structured data, ``tel:`` links and visible text.

    Structured identity data takes precedence for the address, since the
    free-text pattern is much noisier.
    """
    names: List[Optional[str]] = []
    addresses: List[Optional[str]] = []
    phones: List[Optional[str]] = []

    for type_name, props in sorted((schema or {}).items()):
        if type_name not in IDENTITY_TYPES:
            continue
        if isinstance(props.get("name"), str):
            names.append(normalize_name(props["name"]))
        addresses.append(_schema_address(props.get("address")))
        if isinstance(props.get("telephone"), str):
            phones.append(normalize_phone(props["telephone"]))

    phones.extend(normalize_phone(link) for link in tel_links)
    phones.extend(normalize_phone(match) for match in PHONE_RE.findall(text or ""))
    if not any(addresses):
        addresses.extend(normalize_address(match) for match in ADDRESS_RE.findall(text or ""))

    emails = [
        email.lower()
        for email in EMAIL_RE.findall(text or "")
        if not email.lower().endswith(_IGNORED_EMAIL_DOMAINS)
    ]

    return ContactSignals(
        names=_unique(names),
        addresses=_unique(addresses),
        phones=_unique(phones),
        emails=_unique(emails),
    )


def _primary(counter: Counter) -> Optional[str]:
    if not counter:
        return None
    return sorted(counter.items(), key=lambda item: (-item[1], item[0]))[0][0]


def analyze_consistency(pages: Sequence[PageRecord]) -> NapReport:
    """Compare NAP values across pages.

    The score starts at 100 and loses 20 points per extra variant of a name,
    address or phone. A site without any address or phone scores 0.
    """
    names: Counter = Counter()
    addresses: Counter = Counter()
    phones: Counter = Counter()
    pages_with_nap: List[str] = []

    for page in pages:
        contact = page.contact
        if contact.is_empty:
            continue
        pages_with_nap.append(str(page.url))
        names.update(contact.names)
        addresses.update(contact.addresses)
        phones.update(contact.phones)

    report = NapReport(
        names=sorted(names),
        addresses=sorted(addresses),
        phones=sorted(phones),
        pages_with_nap=sorted(pages_with_nap),
    )
    if not phones and not addresses:
        report.score = 0
        report.consistent = True
        return report

    extra = sum(max(0, len(counter) - 1) for counter in (names, addresses, phones))
    report.score = max(0, 100 - VARIATION_PENALTY * extra)
    report.consistent = extra == 0
    if report.consistent:
        return report

    primary_name = _primary(names)
    primary_address = _primary(addresses)
    primary_phone = _primary(phones)
    inconsistent = []
    for page in pages:
        contact = page.contact
        if (
            any(name != primary_name for name in contact.names)
            or any(address != primary_address for address in contact.addresses)
            or any(phone != primary_phone for phone in contact.phones)
        ):
            inconsistent.append(str(page.url))
    report.inconsistent_pages = sorted(inconsistent)
    return report
