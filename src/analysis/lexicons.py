"""Static word tables used by the message analyzer.

Two languages are supported: French (primary market) and English.  Every
table here is data only; matching logic lives in the sibling modules.
Security tables are written against the *normalized* form produced by
``src.analysis.security.normalize_for_security`` (lowercase ASCII letters
and single spaces), so they carry no accents or punctuation.
"""

from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Quantities
# ---------------------------------------------------------------------------

NUMBER_WORDS: dict[str, int] = {
    # French
    "un": 1, "une": 1, "deux": 2, "trois": 3, "quatre": 4, "cinq": 5,
    "six": 6, "sept": 7, "huit": 8, "neuf": 9, "dix": 10,
    "onze": 11, "douze": 12, "treize": 13, "quatorze": 14, "quinze": 15,
    "seize": 16, "vingt": 20, "trente": 30, "quarante": 40, "cinquante": 50,
    # English
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "fifteen": 15, "twenty": 20,
    "thirty": 30, "forty": 40, "fifty": 50,
}

# Vague expressions resolve to a conventional count.
QUANTITY_EXPRESSIONS: dict[str, int] = {
    "beaucoup": 10,
    "plusieurs": 5,
    "quelques": 3,
    "peu": 2,
    "plein": 10,
    "nombreux": 8,
    "pas mal": 5,
    "a lot": 10,
    "lots": 10,
    "plenty": 10,
    "many": 8,
    "several": 5,
    "a few": 3,
    "a couple": 2,
}

# Unit words that may follow a bare number ("3 pièces").
QUANTITY_UNITS = r"(?:unités?|pièces?|articles?|units?|pieces?|items?)"

# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------

LEET_MAP: dict[str, str] = {
    "0": "o", "1": "i", "3": "e", "4": "a", "5": "s", "7": "t", "8": "b", "9": "g",
}

INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern)
    for pattern in (
        r"\bignor\w*\s+(?:all|previous|above|your|instructions?)\b",
        r"\bdisregard\s+(?:all\s+)?(?:previous|above|instructions?)\b",
        r"\bforget\s+(?:everything|all|instructions?)\b",
        r"\bnew\s+instructions?\b",
        r"\bsystem\s+prompt\b",
        r"\byou\s+are\s+now\b",
        r"\bact(?:ing)?\s+as\b",
        r"\bpretend(?:ing)?\s+you\s+are\b",
        r"\b(?:jailbreak|bypass|override)\b",
        r"\bignore\s+(?:tout|toutes?|les?\s+instructions?)\b",
        r"\boublie\s+(?:tout|toutes?|les?\s+instructions?)\b",
        r"\btu\s+es\s+maintenant\b",
        r"\bagis\s+comme\b|\bfais\s+comme\s+si\b",
    )
)

INSULT_WORDS: tuple[str, ...] = (
    # French
    "idiot", "stupide", "con", "connard", "debil", "debile", "imbecile",
    "nul", "nulle", "merde", "putain", "encule", "salaud", "batard",
    "cretin", "abruti", "tare", "fou", "arriere",
    # English
    "stupid", "dumb", "ass", "damn", "shit", "fuck", "bastard",
)

# ---------------------------------------------------------------------------
# Language detection
# ---------------------------------------------------------------------------

FRENCH_FUNCTION_WORDS: frozenset[str] = frozenset({
    "je", "tu", "il", "elle", "nous", "vous", "ils", "elles", "le", "la",
    "les", "un", "une", "des", "de", "du", "à", "et", "est", "sont", "avec",
    "pour", "dans", "sur", "bonjour", "merci", "oui", "non", "comment",
    "pourquoi", "quand", "où",
})

ENGLISH_FUNCTION_WORDS: frozenset[str] = frozenset({
    "i", "you", "he", "she", "we", "they", "the", "a", "an", "and", "or",
    "is", "are", "was", "were", "with", "for", "in", "on", "hello", "thanks",
    "yes", "no", "how", "why", "when", "where",
})

FRENCH_DIACRITICS = re.compile(r"[àâäéèêëïîôùûüç]", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------

# intent value -> (weight, keywords).  Keywords match on word boundaries
# against the lowercased message.
INTENT_TABLE: dict[str, tuple[int, tuple[str, ...]]] = {
    "order": (10, (
        "je veux", "j'en veux", "je voudrais", "j'en prends", "je commande",
        "commander", "j'achète", "je prends", "livrez-moi", "envoyez-moi",
        "envoyez", "envoie-moi", "envoie", "je confirme", "je valide",
        "ok pour", "c'est bon pour", "c'est bon", "d'accord pour", "d'accord",
        "donnez-moi", "donne-moi", "donne m'en", "donnez m'en",
        "i want", "i'll take", "order", "buy",
    )),
    "inquiry": (5, (
        "combien", "prix", "tarif", "coût", "disponible", "stock",
        "information", "renseignement", "détails", "caractéristiques",
        "c'est quoi", "qu'est-ce que", "comment", "pourquoi", "quoi", "quel",
        "quelle", "quels", "quelles", "vous avez", "avez-vous", "as-tu",
        "tu as", "y a-t-il", "il y a", "connaître", "savoir", "me dire",
        "me montrer", "voir", "consulter", "catalogue", "produits", "articles",
        "gamme", "collection", "how much", "price", "available", "what is",
        "do you have", "have you", "what", "which",
    )),
    "complaint": (8, (
        "problème", "réclamation", "pas content", "mécontent", "arnaque",
        "erreur", "défaut", "cassé", "ne fonctionne pas", "mauvais", "nul",
        "problem", "complaint", "broken", "not working",
    )),
    "return": (7, (
        "retour", "retourner", "rendre", "renvoyer", "remboursement",
        "rembourser", "remboursé", "échanger", "échange", "changer",
        "pas satisfait", "ne convient pas", "ne me convient pas",
        "return", "refund", "exchange", "send back",
    )),
    "greeting": (2, (
        "bonjour", "salut", "bonsoir", "hello", "hi", "coucou",
        "bonne journée", "ça va",
    )),
    "delivery_info": (6, (
        "livraison", "livrer", "adresse", "quartier", "commune", "ville",
        "numéro", "téléphone", "contact", "delivery", "address",
    )),
    "human_request": (9, (
        "parler à un humain", "conseiller", "responsable", "manager",
        "personne réelle", "pas un robot", "assistance humaine",
        "talk to a human", "real person", "human agent",
    )),
    "modification": (7, (
        "modifier", "modification", "changer", "changement", "au lieu de",
        "plutôt", "remplacer", "finalement", "en fait", "correction",
        "instead of",
    )),
    "cancellation": (8, (
        "annuler", "annulation", "annule", "stop", "arrêter", "arrête",
        "ne veux plus", "plus besoin", "laisse tomber", "cancel",
    )),
}

BASE_INTENTS: tuple[str, ...] = ("greeting", "human_request")

HIGH_CONFIDENCE_SCORE = 10
MEDIUM_CONFIDENCE_SCORE = 5

# ---------------------------------------------------------------------------
# Confirmations and negations
# ---------------------------------------------------------------------------

CONFIRMATION_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^(?:oui|ok|okay|d'accord|je confirme|c'est bon|parfait|super)\b",
        r"^(?:confirmé|je valide|valide|je prends)\b",
        r"^j'en (?:veux|prends)\b",
        r"^(?:donne|donnez)\s*m['’]en\b",
        r"^(?:yes|yep|sure|i confirm|confirmed|i'll take it|deal)\b",
    )
)

# ``{word}`` is replaced with the escaped first token of the product name.
NEGATION_TEMPLATES: tuple[str, ...] = (
    r"\bpas\s+(?:de\s+|d['’])?(?:\w+\s+){{0,3}}{word}",
    r"\bne\s+\w+\s+pas\s+(?:\w+\s+){{0,3}}{word}",
    r"\bsans\s+(?:\w+\s+){{0,3}}{word}",
    r"\baucun\w*\s+(?:\w+\s+){{0,3}}{word}",
    r"\bnot\s+(?:\w+\s+){{0,3}}{word}",
    r"\bwithout\s+(?:\w+\s+){{0,3}}{word}",
    r"\bnone\s+of\s+(?:\w+\s+){{0,3}}{word}",
)
