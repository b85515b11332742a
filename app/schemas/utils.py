"""Annotations Pydantic réutilisables pour validation.

Ce module centralise les types annotés pour assurer la cohérence
de la validation à travers tous les schémas Pydantic du service.
"""

from decimal import Decimal
from typing import Annotated, Literal

from pydantic import AfterValidator, EmailStr, Field, StringConstraints

# Types de base avec validation
PositiveInt = Annotated[int, Field(gt=0, description="Entier positif")]
NonNegativeInt = Annotated[int, Field(ge=0, description="Entier non-négatif")]

# Chaînes avec contraintes
NonEmptyStr = Annotated[str, StringConstraints(min_length=1, strip_whitespace=True)]


def _reject_sql_wildcards(value: str) -> str:
    """Refuse les caractères spéciaux de LIKE (%, _ et backslash)."""
    for char in ("%", "_", "\\"):
        if char in value:
            raise ValueError(f"Caractère interdit dans la recherche: {char!r}")
    return value


# Terme de recherche libre (utilisé dans des filtres ILIKE)
SanitizedSearchStr = Annotated[
    str,
    StringConstraints(min_length=1, max_length=100, strip_whitespace=True),
    AfterValidator(_reject_sql_wildcards),
]

# Téléphone saisi au comptoir (normalisé ensuite au format E.164 par le service)
RawPhoneNumber = Annotated[
    str,
    StringConstraints(min_length=6, max_length=20, strip_whitespace=True),
    Field(
        description="Numéro de téléphone (local ou international)",
        examples=["0712345678", "+254712345678"],
    ),
]

# Montants (2 décimales)
Money = Annotated[
    Decimal,
    Field(ge=0, max_digits=12, decimal_places=2, description="Montant en devise locale"),
]
Quantity = Annotated[int, Field(gt=0, description="Quantité (strictement positive)")]

# Métadonnées
Email = Annotated[EmailStr, Field(description="Adresse email valide")]
Description = Annotated[str, Field(max_length=2000, description="Description texte")]
Title = Annotated[str, Field(min_length=1, max_length=255, description="Titre")]

# Valeurs métier
StaffRole = Literal["admin", "doctor", "pharmacist", "cashier"]
PaymentMethod = Literal["cash", "mpesa", "card", "insurance"]
SalePaymentStatus = Literal["paid", "unpaid", "pending", "refunded"]
Timeframe = Literal["today", "week", "month", "year", "all"]
