"""Delivery details (city, neighborhood, phone) pulled out of free text.

Customers usually answer "where should we deliver?" in one line such as
``"Cocody, Angré 07 12 34 56 78"`` or spread over labelled fragments
(``"ville: Abidjan, quartier Cocody"``).  Combined forms are tried first;
each field then falls back to its own pattern family.  The first pattern
that matches a field wins.
"""

from __future__ import annotations

import re

from src.models.schemas import DeliveryInfo

_LETTER = r"A-Za-zÀ-ÿ"

# "Place, Sub-place 0712345678" and "Place Sub-place 0712345678"
_COMBINED = (
    re.compile(
        rf"\b([{_LETTER}][{_LETTER}\s-]{{1,40}}),\s*([{_LETTER}0-9][{_LETTER}0-9\s-]{{1,40}}?)\s+(\+?[\d\s-]{{8,}})\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"\b([{_LETTER}][{_LETTER}\s-]{{1,40}})\s+([{_LETTER}0-9][{_LETTER}0-9\s-]{{1,40}}?)\s+(\+?[\d\s-]{{8,}})\b",
        re.IGNORECASE,
    ),
)

_CITY = (
    re.compile(
        rf"(?<!\w)(?:ville|commune|city)\s*:?\s*([{_LETTER}][{_LETTER}\s-]{{0,60}}?)(?:\s*,|\s*$|\s+quartier|\s+numéro|\s+tel)",
        re.IGNORECASE,
    ),
    re.compile(
        rf"(?:je suis à|j'habite à|livrez à|livrer à|livraison à|i live in|i am in|deliver to)\s+"
        rf"([{_LETTER}][{_LETTER}\s-]{{0,60}}?)(?:\s*,|\s*\.|\s*$|\s+quartier|\s+numéro|\s+tel)",
        re.IGNORECASE,
    ),
)

_NEIGHBORHOOD = (
    re.compile(
        rf"(?<!\w)(?:quartier|neighbou?rhood|district)\s*:?\s*([{_LETTER}0-9][{_LETTER}0-9\s-]{{0,60}}?)(?:\s*,|\s*\.|\s*$|\s+numéro|\s+tel|\s+\+?\d{{8}})",
        re.IGNORECASE,
    ),
)

_PHONE = (
    re.compile(
        r"(?:numéro|tel|téléphone|contact|phone)\s*:?\s*(\+?[\d\s-]{8,})",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:^|\s)(\+?(?:225|229|226|228|221|223|224)?\s*\d{2}\s*\d{2}\s*\d{2}\s*\d{2,3})(?:\s|$)"
    ),
    re.compile(r"\b(0\d{8,9})\b"),
    re.compile(r"(\+?(?:225|224)\s*\d[\d\s]{7,})\b"),
)

_PHONE_SEPARATORS = re.compile(r"[\s-]+")


def _clean_place(value: str) -> str | None:
    cleaned = " ".join(value.split()).strip(" -,")
    return cleaned or None


def normalize_phone(raw: str) -> str:
    """Remove spaces and dashes from a captured phone number."""
    return _PHONE_SEPARATORS.sub("", raw.strip())


def extract_delivery_info(text: str) -> DeliveryInfo:
    """Return the delivery fields found in *text*.

    ``has_delivery_info`` is true as soon as any one field was captured.
    """
    if not text:
        return DeliveryInfo()

    city: str | None = None
    neighborhood: str | None = None
    phone: str | None = None

    for pattern in _COMBINED:
        found = pattern.search(text)
        if found:
            city = _clean_place(found.group(1))
            neighborhood = _clean_place(found.group(2))
            phone = normalize_phone(found.group(3))
            break

    if city is None:
        for pattern in _CITY:
            found = pattern.search(text)
            if found:
                city = _clean_place(found.group(1))
                break

    if neighborhood is None:
        for pattern in _NEIGHBORHOOD:
            found = pattern.search(text)
            if found:
                neighborhood = _clean_place(found.group(1))
                break

    if phone is None:
        for pattern in _PHONE:
            found = pattern.search(text)
            if found:
                phone = normalize_phone(found.group(1))
                break

    return DeliveryInfo(
        has_delivery_info=bool(city or neighborhood or phone),
        city=city,
        neighborhood=neighborhood,
        phone=phone,
    )
