"""
Provider-agnostic card markers.

PSP adapters build request bodies that contain only the markers below, never
real card data.  Before a body leaves the process the active vault rewrites
the markers: the direct vault substitutes decrypted values, a proxying vault
substitutes its own token expressions that the vault's proxy resolves
server-side.

Substitution is a walk over the structured body.  A string leaf that is
exactly a marker is swapped for its value; a leaf that embeds markers inside a
longer string (e.g. an MMYY expiry field) goes through a single left-to-right
pass that tries longer markers first and never rescans replaced text.
"""

import re
from typing import Any, Mapping

from app.errors import ValidationError
from app.models.vault import CardData

CARD_NUMBER = "__CARD_NUMBER__"
CARD_EXP_MONTH = "__CARD_EXP_MONTH__"
CARD_EXP_YEAR = "__CARD_EXP_YEAR__"       # 4-digit year
CARD_EXP_YEAR_2 = "__CARD_EXP_YEAR_2__"   # 2-digit year
CARD_CVC = "__CARD_CVC__"
CARD_HOLDER_NAME = "__CARD_HOLDER_NAME__"

ALL_MARKERS = (
    CARD_NUMBER,
    CARD_EXP_MONTH,
    CARD_EXP_YEAR,
    CARD_EXP_YEAR_2,
    CARD_CVC,
    CARD_HOLDER_NAME,
)


def verify_markers(markers: tuple[str, ...]) -> None:
    """Raise if any marker occurs inside another one."""
    for marker in markers:
        for other in markers:
            if marker != other and marker in other:
                raise ValueError(f"Card marker {marker!r} is contained in {other!r}")


verify_markers(ALL_MARKERS)

_MARKER_PATTERN = re.compile(
    "|".join(re.escape(m) for m in sorted(ALL_MARKERS, key=len, reverse=True))
)


def expiry_year_forms(year: str) -> tuple[str, str]:
    """Return (4-digit, 2-digit) forms of a stored expiry year."""
    year = str(year).strip()
    if len(year) == 2:
        return f"20{year}", year
    return year, year[-2:]


def card_values(card: CardData) -> dict[str, str]:
    year4, year2 = expiry_year_forms(card.exp_year)
    return {
        CARD_NUMBER: card.number,
        CARD_EXP_MONTH: str(card.exp_month).zfill(2),
        CARD_EXP_YEAR: year4,
        CARD_EXP_YEAR_2: year2,
        CARD_CVC: card.cvc,
        CARD_HOLDER_NAME: card.cardholder_name or "",
    }


def substitute(body: Any, replacements: Mapping[str, str]) -> Any:
    """Return a copy of *body* with every marker replaced. Dict keys are left untouched."""
    if isinstance(body, dict):
        return {key: substitute(value, replacements) for key, value in body.items()}
    if isinstance(body, list):
        return [substitute(item, replacements) for item in body]
    if isinstance(body, tuple):
        return tuple(substitute(item, replacements) for item in body)
    if isinstance(body, str):
        if body in replacements:
            return replacements[body]
        if "__CARD_" in body:
            return _MARKER_PATTERN.sub(lambda m: replacements.get(m.group(0), m.group(0)), body)
    return body


def substitute_card_data(body: Any, card: CardData) -> Any:
    return substitute(body, card_values(card))


def contains_markers(body: Any) -> bool:
    if isinstance(body, dict):
        return any(contains_markers(v) for v in body.values())
    if isinstance(body, (list, tuple)):
        return any(contains_markers(v) for v in body)
    if isinstance(body, str):
        return _MARKER_PATTERN.search(body) is not None
    return False


# ---------------------------------------------------------------------------
# Proxy token expressions
# ---------------------------------------------------------------------------

def basis_theory_expressions(token_id: str) -> dict[str, str]:
    """Marker -> Basis Theory proxy expression bound to *token_id*."""
    def expr(path: str, filters: str = "") -> str:
        return f"{{{{ {token_id} | json: '{path}'{filters} }}}}"

    return {
        CARD_NUMBER: expr("$.number"),
        CARD_EXP_MONTH: expr("$.expiration_month", " | pad_left: 2, '0'"),
        CARD_EXP_YEAR: expr("$.expiration_year"),
        CARD_EXP_YEAR_2: expr("$.expiration_year", " | to_string | slice: -2, 2"),
        CARD_CVC: expr("$.cvc"),
        CARD_HOLDER_NAME: expr("$.cardholder_name"),
    }


# ---------------------------------------------------------------------------
# PSP-shaped card objects built from markers only
# ---------------------------------------------------------------------------

# psp -> (wrapper key, fixed fields, cvc key, holder-name key)
_CARD_LAYOUTS: dict[str, tuple[str | None, dict[str, str], str | None, str | None]] = {
    "stripe": (
        None,
        {"number": CARD_NUMBER, "exp_month": CARD_EXP_MONTH, "exp_year": CARD_EXP_YEAR},
        "cvc",
        "name",
    ),
    "adyen": (
        None,
        {
            "type": "scheme",
            "number": CARD_NUMBER,
            "expiryMonth": CARD_EXP_MONTH,
            "expiryYear": CARD_EXP_YEAR,
        },
        "cvc",
        "holderName",
    ),
    "braintree": (
        "creditCard",
        {"number": CARD_NUMBER, "expirationMonth": CARD_EXP_MONTH, "expirationYear": CARD_EXP_YEAR},
        "cvv",
        "cardholderName",
    ),
    "windcave": (
        None,
        {"cardNumber": CARD_NUMBER, "dateExpiryMonth": CARD_EXP_MONTH, "dateExpiryYear": CARD_EXP_YEAR_2},
        "cvc2",
        "cardHolderName",
    ),
    "checkoutcom": (
        None,
        {"type": "card", "number": CARD_NUMBER, "expiry_month": CARD_EXP_MONTH, "expiry_year": CARD_EXP_YEAR},
        "cvv",
        "name",
    ),
    "authorizenet": (
        None,
        {"cardNumber": CARD_NUMBER, "expirationDate": CARD_EXP_MONTH + CARD_EXP_YEAR_2},
        "cardCode",
        None,
    ),
    "chase": (
        None,
        {"accountNumber": CARD_NUMBER, "expirationDate": CARD_EXP_MONTH + CARD_EXP_YEAR_2},
        "cvv",
        None,
    ),
    "nuvei": (
        None,
        {"cardNumber": CARD_NUMBER, "expirationMonth": CARD_EXP_MONTH, "expirationYear": CARD_EXP_YEAR_2},
        "CVV",
        "cardHolderName",
    ),
    "dlocal": (
        "card",
        {"card_number": CARD_NUMBER, "expiration_month": CARD_EXP_MONTH, "expiration_year": CARD_EXP_YEAR},
        "security_code",
        "holder_name",
    ),
    "airwallex": (
        "card",
        {"number": CARD_NUMBER, "expiry_month": CARD_EXP_MONTH, "expiry_year": CARD_EXP_YEAR},
        "cvc",
        "name",
    ),
}


def build_card_payload(
    psp: str,
    include_cvc: bool = True,
    include_holder_name: bool = True,
) -> dict[str, Any]:
    """Card object in the shape *psp* expects, containing markers instead of card data."""
    try:
        wrapper, fields, cvc_key, holder_key = _CARD_LAYOUTS[psp]
    except KeyError:
        raise ValidationError(f"Unknown PSP card layout: {psp}") from None

    card: dict[str, Any] = dict(fields)
    if include_cvc and cvc_key:
        card[cvc_key] = CARD_CVC
    if include_holder_name and holder_key:
        card[holder_key] = CARD_HOLDER_NAME
    return {wrapper: card} if wrapper else card
