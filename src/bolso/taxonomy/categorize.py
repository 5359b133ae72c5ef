"""Deterministic keyword categorizer for bank transaction descriptions.

Buckets are checked in order and the first fragment match wins, so the
order of ``KEYWORD_BUCKETS`` is part of the behaviour: delivery apps come
before transport so "UBER EATS" is food, and "99" is tested as transport
before the broader buckets. Matching is a plain case-insensitive substring
test; short fragments such as "OI" or "NET" will match inside longer words.
"""

from __future__ import annotations

from dataclasses import dataclass

GENERAL = "Geral"
OTHER = "Outros"

# Rows carrying one of these are picked up by the re-categorization tool.
UNCATEGORIZED: frozenset[str] = frozenset({GENERAL, OTHER})


@dataclass(frozen=True)
class KeywordBucket:
    name: str
    category: str
    fragments: tuple[str, ...]

    def matches(self, upper_description: str) -> bool:
        return any(fragment in upper_description for fragment in self.fragments)


KEYWORD_BUCKETS: tuple[KeywordBucket, ...] = (
    KeywordBucket(
        "food_delivery",
        "Alimentação",
        ("IFOOD", "IFD*", "RAPPI", "UBER EATS", "ZDELIVERY"),
    ),
    KeywordBucket(
        "transport",
        "Transporte",
        ("UBER", "99", "CABIFY", "LYFT", "POSTO", "SHELL", "IPIRANGA", "BR MANIA"),
    ),
    KeywordBucket(
        "supermarkets",
        "Alimentação",
        (
            "CARREFOUR",
            "PAO DE ACUCAR",
            "EXTRA",
            "ASSAI",
            "ATACADAO",
            "BIG",
            "WALMART",
            "SUPERMERCADO",
        ),
    ),
    KeywordBucket(
        "streaming",
        "Lazer",
        (
            "NETFLIX",
            "SPOTIFY",
            "AMAZON PRIME",
            "DISNEY",
            "HBO",
            "GLOBOPLAY",
            "YOUTUBE",
            "APPLE.COM",
        ),
    ),
    KeywordBucket(
        "ecommerce",
        "Compras",
        (
            "AMAZON",
            "MERCADO LIVRE",
            "MAGAZINELUIZA",
            "AMERICANAS",
            "SHOPEE",
            "ALIEXPRESS",
        ),
    ),
    KeywordBucket(
        "utilities",
        "Utilidades",
        ("ENEL", "CPFL", "SABESP", "COMGAS", "VIVO", "CLARO", "TIM", "OI", "NET"),
    ),
    KeywordBucket(
        "health",
        "Saúde",
        (
            "DROGASIL",
            "DROGA RAIA",
            "PACHECO",
            "DROGARIA",
            "FARMACIA",
            "HOSPITAL",
            "CLINICA",
            "MEDICO",
        ),
    ),
    KeywordBucket(
        "education",
        "Educação",
        ("ALURA", "UDEMY", "COURSERA", "FACULDADE", "UNIVERSIDADE", "ESCOLA"),
    ),
    KeywordBucket(
        "salary",
        "Salário",
        ("SALARIO", "PAGAMENTO", "FOLHA", "REMUNERACAO", "PRO-LABORE"),
    ),
    KeywordBucket(
        "transfers",
        "Transferências",
        ("PIX", "TED", "DOC", "TRANSF"),
    ),
)

PROVIDER_CATEGORY_MAP: dict[str, str] = {
    "FOOD": "Alimentação",
    "TRANSPORT": "Transporte",
    "HOUSING": "Moradia",
    "UTILITIES": "Utilidades",
    "HEALTH": "Saúde",
    "EDUCATION": "Educação",
    "ENTERTAINMENT": "Lazer",
    "SHOPPING": "Compras",
    "TRAVEL": "Viagem",
    "TRANSFERS": "Transferências",
    "SALARY": "Salário",
    "INVESTMENTS": "Investimentos",
    "OTHER_INCOME": "Outras Receitas",
    "OTHER_EXPENSE": "Outras Despesas",
}


def smart_categorize(description: str, provider_category: str | None = None) -> str:
    """Map a transaction description to a spending category.

    Args:
        description: Free-text description from the bank
        provider_category: The aggregator's own category code, used only
            when no keyword bucket matches

    Returns:
        Category name, ``"Geral"`` when nothing matches
    """
    upper = (description or "").upper()
    for bucket in KEYWORD_BUCKETS:
        if bucket.matches(upper):
            return bucket.category
    return PROVIDER_CATEGORY_MAP.get(provider_category or "", GENERAL)


def is_uncategorized(category: str | None) -> bool:
    return category is None or category in UNCATEGORIZED
