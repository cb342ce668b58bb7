"""Tests for the catalog index and quantity/negation patterns (``src.analysis.catalog``)."""

from __future__ import annotations

import pytest

from src.analysis.catalog import (
    CatalogIndex,
    ProductPatterns,
    extract_quantities,
    fold_token,
    head_word,
    message_tokens,
)
from src.models.schemas import Product


def _product(pid: str, name: str, sku: str | None = None, stock: int = 10) -> Product:
    return Product(id=pid, name=name, sku=sku, price=1000, stock=stock)


@pytest.fixture
def menu() -> list[Product]:
    return [
        _product("p-poulet", "Poulet rôti"),
        _product("p-attieke", "Attiéké poisson"),
        _product("p-bissap", "Jus de bissap", sku="BIS-01"),
        _product("p-orange", "Jus d'orange"),
    ]


# =========================================================================
# Tokens
# =========================================================================


class TestTokens:
    @pytest.mark.parametrize(
        ("token", "expected"),
        [("poulets", "poulet"), ("gâteaux", "gâteau"), ("jus", "jus"), ("bus", "bus"), ("rôti", "rôti")],
    )
    def test_fold_token(self, token: str, expected: str) -> None:
        assert fold_token(token) == expected

    def test_message_tokens_include_raw_and_folded(self) -> None:
        tokens = message_tokens("Trois POULETS")
        assert {"trois", "troi", "poulets", "poulet"} <= tokens

    def test_head_word(self) -> None:
        assert head_word("Poulets braisés") == "poulet"
        assert head_word("") == ""


# =========================================================================
# Index matching
# =========================================================================


class TestCatalogIndex:
    def test_unique_head_token_matches(self, menu) -> None:
        index = CatalogIndex(menu)
        assert [p.id for p in index.match("je veux 3 poulets")] == ["p-poulet"]

    def test_shared_head_token_needs_more_evidence(self, menu) -> None:
        index = CatalogIndex(menu)
        assert index.match("un jus svp") == []
        assert [p.id for p in index.match("un jus orange")] == ["p-orange"]

    def test_full_name_matches(self, menu) -> None:
        index = CatalogIndex(menu)
        assert [p.id for p in index.match("donnez-moi un jus de bissap")] == ["p-bissap"]

    def test_sku_matches(self, menu) -> None:
        index = CatalogIndex(menu)
        assert [p.id for p in index.match("réf bis-01 svp")] == ["p-bissap"]

    def test_results_follow_catalog_order(self, menu) -> None:
        index = CatalogIndex(menu)
        matched = index.match("attiéké et poulet")
        assert [p.id for p in matched] == ["p-poulet", "p-attieke"]

    def test_short_tokens_not_indexed(self, menu) -> None:
        index = CatalogIndex(menu)
        assert index.candidates({"de"}) == []
        assert index.is_unique_token("poisson")
        assert not index.is_unique_token("jus")

    def test_negation_veto(self, menu) -> None:
        index = CatalogIndex(menu)
        patterns = ProductPatterns()
        assert index.match("pas de poulet aujourd'hui", is_negated=patterns.is_negated) == []

    def test_len(self, menu) -> None:
        assert len(CatalogIndex(menu)) == 4
        assert len(CatalogIndex([])) == 0


# =========================================================================
# Quantities and negations
# =========================================================================


class TestProductPatterns:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("je veux 3 poulets", 3),
            ("deux poulets svp", 2),
            ("5x poulet", 5),
            ("3 beaux poulets", 3),
            ("beaucoup de poulets", 10),
            ("quelques poulets", 3),
            ("du poulet", 1),
            ("500 poulets", 100),
        ],
    )
    def test_quantity_for(self, text: str, expected: int) -> None:
        assert ProductPatterns().quantity_for(text, "Poulet rôti") == expected

    def test_custom_clamp(self) -> None:
        patterns = ProductPatterns(min_quantity=1, max_quantity=5)
        assert patterns.quantity_for("10 poulets", "Poulet") == 5
        assert patterns.clamp(0) == 1

    def test_empty_name_defaults(self) -> None:
        patterns = ProductPatterns()
        assert patterns.quantity_for("3 trucs", "") == 1
        assert not patterns.is_negated("pas de truc", "")

    @pytest.mark.parametrize(
        "text",
        ["pas de poulet", "je ne veux pas de poulet", "sans poulet", "aucun poulet", "not the poulet"],
    )
    def test_negated(self, text: str) -> None:
        assert ProductPatterns().is_negated(text, "Poulet rôti")

    def test_not_negated(self) -> None:
        assert not ProductPatterns().is_negated("je veux du poulet", "Poulet rôti")

    def test_bundles_cached_per_head_word(self) -> None:
        patterns = ProductPatterns()
        patterns.quantity_for("2 poulets", "Poulet rôti")
        patterns.quantity_for("2 poulets", "Poulet braisé")
        assert len(patterns) == 1
        patterns.quantity_for("2 jus", "Jus de bissap")
        assert len(patterns) == 2


# =========================================================================
# Free quantity extraction
# =========================================================================


class TestExtractQuantities:
    def test_digits_then_words(self) -> None:
        mentions = extract_quantities("je veux 3 poulets et deux jus")
        assert [(m.value, m.type) for m in mentions] == [(3, "numeric"), (2, "word")]
        assert mentions[1].raw == "deux"

    def test_units_kept_in_raw(self) -> None:
        mentions = extract_quantities("4 pièces")
        assert mentions[0].raw == "4 pièces"

    def test_out_of_range_dropped(self) -> None:
        assert extract_quantities("500 pièces") == []
        assert extract_quantities("0 article") == []
