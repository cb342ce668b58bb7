"""Catalog lookups: the per-tenant inverted index and per-product patterns.

``CatalogIndex`` maps name tokens and SKUs to products so that only
products sharing a token with the message are examined.  Tokens are
plural-folded ("poulets" and "poulet" index the same key).

``ProductPatterns`` compiles, per product head word, the regexes that find
a requested quantity or a negation in front of the product name.  The
compiled bundles live in a bounded cache shared across tenants.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, NamedTuple

from src.analysis.lexicons import (
    NEGATION_TEMPLATES,
    NUMBER_WORDS,
    QUANTITY_EXPRESSIONS,
    QUANTITY_UNITS,
)
from src.models.schemas import Product, QuantityMention
from src.utils.cache import BoundedCache

_TOKEN = re.compile(r"[\w-]+")
_NUMERIC_QUANTITY = re.compile(r"(\d+)\s*" + QUANTITY_UNITS + r"?")
_NUMBER_WORD = re.compile(
    r"(?<!\w)(" + "|".join(re.escape(w) for w in NUMBER_WORDS) + r")(?!\w)"
)
# Optional adjective between the quantity and the product ("3 beaux poulets").
_FILLER = r"\s+(?:[a-zà-ÿ'’]*\s+)?"


def fold_token(token: str) -> str:
    """Strip one trailing plural marker (``s``/``x``) from tokens longer than 3."""
    if len(token) > 3 and token[-1] in "sx":
        return token[:-1]
    return token


def message_tokens(text: str) -> set[str]:
    """Return the raw and plural-folded tokens of lowercased *text*."""
    tokens = set(_TOKEN.findall(text.lower()))
    return tokens | {fold_token(t) for t in tokens}


def head_word(product_name: str) -> str:
    """Return the folded first word of a product name, used to anchor patterns."""
    words = product_name.lower().split()
    return fold_token(words[0]) if words else ""


# ---------------------------------------------------------------------------
# Inverted index
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IndexedProduct:
    product: Product
    name: str
    tokens: tuple[str, ...]
    sku: str | None = None


@dataclass
class CatalogIndex:
    """Token -> products index over one tenant's active catalog snapshot.

    Parameters
    ----------
    products:
        Active products, in catalog order.
    min_token_length:
        Name tokens must be strictly longer than this to be indexed.
    """

    products: list[Product]
    min_token_length: int = 2
    _entries: list[IndexedProduct] = field(init=False, repr=False)
    _by_token: dict[str, list[int]] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._entries = []
        self._by_token = {}
        for position, product in enumerate(self.products):
            name = product.name.lower().strip()
            tokens: list[str] = []
            for raw in _TOKEN.findall(name):
                if len(raw) <= self.min_token_length:
                    continue
                folded = fold_token(raw)
                if folded not in tokens:
                    tokens.append(folded)
            sku = product.sku.lower().strip() if product.sku else None
            self._entries.append(IndexedProduct(product, name, tuple(tokens), sku or None))

            keys = set(tokens)
            if sku:
                keys.add(sku)
            for key in keys:
                self._by_token.setdefault(key, []).append(position)

    def __len__(self) -> int:
        return len(self._entries)

    def candidates(self, tokens: Iterable[str]) -> list[IndexedProduct]:
        """Return indexed products sharing at least one token, in catalog order."""
        positions: set[int] = set()
        for token in tokens:
            positions.update(self._by_token.get(token, ()))
        return [self._entries[i] for i in sorted(positions)]

    def is_unique_token(self, token: str) -> bool:
        return len(self._by_token.get(token, ())) == 1

    def match(
        self,
        text: str,
        is_negated: Callable[[str, str], bool] | None = None,
    ) -> list[Product]:
        """Resolve the products mentioned in *text*.

        A candidate is accepted when its full name or its SKU appears in the
        text, when at least ``min(2, len(tokens))`` of its name tokens appear,
        or when its head token appears and no other product shares that
        token.  ``is_negated(text, name)`` may veto an accepted product.
        """
        lower = text.lower()
        present = message_tokens(lower)
        matched: list[Product] = []
        for entry in self.candidates(present):
            if not self._accepts(entry, lower, present):
                continue
            if is_negated is not None and is_negated(lower, entry.product.name):
                continue
            matched.append(entry.product)
        return matched

    def _accepts(self, entry: IndexedProduct, lower: str, present: set[str]) -> bool:
        if entry.name and entry.name in lower:
            return True
        if entry.sku and entry.sku in lower:
            return True
        if not entry.tokens:
            return False
        hits = sum(1 for token in entry.tokens if token in present)
        if hits >= min(2, len(entry.tokens)):
            return True
        head = entry.tokens[0]
        return head in present and self.is_unique_token(head)


# ---------------------------------------------------------------------------
# Quantity and negation patterns
# ---------------------------------------------------------------------------

class _PatternBundle(NamedTuple):
    expressions: tuple[tuple[re.Pattern[str], int], ...]
    number_words: tuple[tuple[re.Pattern[str], int], ...]
    numeric: tuple[re.Pattern[str], ...]
    negations: tuple[re.Pattern[str], ...]


def _compile_bundle(word: str) -> _PatternBundle:
    anchor = re.escape(word)
    return _PatternBundle(
        expressions=tuple(
            (re.compile(r"(?<!\w)" + re.escape(expr) + _FILLER + anchor), value)
            for expr, value in QUANTITY_EXPRESSIONS.items()
        ),
        number_words=tuple(
            (re.compile(r"(?<!\w)" + re.escape(number) + _FILLER + anchor), value)
            for number, value in NUMBER_WORDS.items()
        ),
        numeric=(
            re.compile(r"(\d+)" + _FILLER + anchor),
            re.compile(r"(\d+)\s*x\s*" + anchor),
        ),
        negations=tuple(
            re.compile(template.format(word=anchor)) for template in NEGATION_TEMPLATES
        ),
    )


class ProductPatterns:
    """Quantity and negation lookups keyed by product head word.

    Parameters
    ----------
    min_quantity, max_quantity:
        Clamp range for every extracted quantity; ``min_quantity`` is also
        the default when nothing is found.
    cache_size:
        Compiled bundles kept before the oldest half is evicted.
    """

    def __init__(self, min_quantity: int = 1, max_quantity: int = 100, cache_size: int = 5000) -> None:
        self.min_quantity = min_quantity
        self.max_quantity = max_quantity
        self._cache: BoundedCache[str, _PatternBundle] = BoundedCache(cache_size)

    def __len__(self) -> int:
        return len(self._cache)

    def _bundle(self, product_name: str) -> _PatternBundle | None:
        word = head_word(product_name)
        if not word:
            return None
        return self._cache.get_or_create(word, lambda: _compile_bundle(word))

    def clamp(self, value: int) -> int:
        return max(self.min_quantity, min(self.max_quantity, value))

    def quantity_for(self, text: str, product_name: str) -> int:
        """Return the quantity requested for *product_name* in *text*.

        Vague expressions are tried first, then number words, then digits.
        The first hit wins and is clamped; no hit yields ``min_quantity``.
        """
        bundle = self._bundle(product_name)
        if bundle is None:
            return self.min_quantity
        lower = text.lower()

        for pattern, value in bundle.expressions:
            if pattern.search(lower):
                return self.clamp(value)
        for pattern, value in bundle.number_words:
            if pattern.search(lower):
                return self.clamp(value)
        for pattern in bundle.numeric:
            found = pattern.search(lower)
            if found:
                return self.clamp(int(found.group(1)))
        return self.min_quantity

    def is_negated(self, text: str, product_name: str) -> bool:
        """True when a negation precedes the product head word within three words."""
        bundle = self._bundle(product_name)
        if bundle is None:
            return False
        lower = text.lower()
        return any(pattern.search(lower) for pattern in bundle.negations)


def extract_quantities(text: str, min_quantity: int = 1, max_quantity: int = 100) -> list[QuantityMention]:
    """List every in-range quantity mentioned in *text*, digits first."""
    lower = text.lower()
    mentions: list[QuantityMention] = []
    for found in _NUMERIC_QUANTITY.finditer(lower):
        value = int(found.group(1))
        if min_quantity <= value <= max_quantity:
            mentions.append(
                QuantityMention(value=value, type="numeric", raw=found.group(0).strip())
            )
    for found in _NUMBER_WORD.finditer(lower):
        value = NUMBER_WORDS[found.group(1)]
        if min_quantity <= value <= max_quantity:
            mentions.append(QuantityMention(value=value, type="word", raw=found.group(1)))
    return mentions
