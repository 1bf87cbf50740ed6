"""Swedish/English invoice vocabulary: keyword sets, synonyms and labelled-field patterns.

Keyword sets are matched against folded text (lowercase, no diacritics), see
``text_tools.fold``; short keywords only match as whole words.
"""

from __future__ import annotations

import re
from typing import Any

from kostnadskoll.schemas.invoice import BillingType, Category, PaymentMethod
from kostnadskoll.services.text_tools import compile_keywords, fold, has_keyword

# ---------------------------------------------------------------------------
# Keyword sets
# ---------------------------------------------------------------------------

MONTHLY_SIGNALS = compile_keywords(
    [
        "månadskostnad",
        "månadsavgift",
        "per månad",
        "månadsvis",
        "abonnemang",
        "monthly cost",
        "monthly fee",
        "per month",
        "monthly",
        "subscription",
    ]
)
# "/mån", "kr / mån", "/month" (slash forms are not word-like, so they get their own regex)
_MONTHLY_SLASH = re.compile(r"/\s*(?:man(?:ad)?|month)\b")

SERVICE_SIGNALS = compile_keywords(
    [
        "golvvärme",
        "rot",
        "rot-avdrag",
        "rotavdrag",
        "hantverk",
        "renovering",
        "installation",
        "servicearbete",
        "arbete (timmar)",
        "timpris",
        "styckpris",
        "material",
        "rör",
        "rörmokare",
        "snickeri",
        "snickare",
        "målning",
        "bygg",
    ]
)

# Checked in order; first hit wins. Service is checked first on purpose.
CATEGORY_KEYWORDS: tuple[tuple[Category, Any], ...] = (
    (Category.SERVICE, SERVICE_SIGNALS),
    (Category.MOBILE, compile_keywords(["tele2", "telia", "telenor", "halebop", "vimla", "comviq", "hallon", "mobil"])),
    (Category.INTERNET, compile_keywords(["bredband", "internet", "fiber", "broadband"])),
    (
        Category.ELECTRICITY,
        compile_keywords(["elfaktura", "elhandel", "elnät", "elavtal", "vattenfall", "eon", "e.on", "fortum", "tibber"]),
    ),
    (
        Category.INSURANCE,
        compile_keywords(["försäkring", "if", "folksam", "länsförsäkringar", "trygg-hansa", "hedvig", "insurance"]),
    ),
    (Category.STREAMING, compile_keywords(["spotify", "netflix", "hbo", "max", "viaplay", "stream", "disney+"])),
    (Category.BANKING, compile_keywords(["bank", "klarna", "kortavgift", "ränta", "kontopaket"])),
)
# A bare "abonnemang" is weak evidence; only used when nothing more specific matched.
WEAK_MOBILE_SIGNAL = compile_keywords(["abonnemang"])

PAYMENT_METHOD_KEYWORDS: tuple[tuple[PaymentMethod, Any], ...] = (
    (PaymentMethod.AUTOGIRO, compile_keywords(["autogiro"])),
    (PaymentMethod.E_INVOICE, compile_keywords(["e-faktura", "efaktura"])),
    (PaymentMethod.BANKGIRO, compile_keywords(["bankgiro"])),
    (PaymentMethod.PLUSGIRO, compile_keywords(["plusgiro"])),
    (PaymentMethod.CARD, re.compile(r"kort")),
    (PaymentMethod.SWISH, compile_keywords(["swish"])),
)

# ---------------------------------------------------------------------------
# Synonyms for free-form values (AI output, user edits)
# ---------------------------------------------------------------------------

CATEGORY_SYNONYMS: dict[str, Category] = {
    "mobil": Category.MOBILE,
    "mobile": Category.MOBILE,
    "telefoni": Category.MOBILE,
    "telecom": Category.MOBILE,
    "internet": Category.INTERNET,
    "broadband": Category.INTERNET,
    "bredband": Category.INTERNET,
    "el": Category.ELECTRICITY,
    "electricity": Category.ELECTRICITY,
    "energi": Category.ELECTRICITY,
    "forsakring": Category.INSURANCE,
    "insurance": Category.INSURANCE,
    "streaming": Category.STREAMING,
    "bank": Category.BANKING,
    "banking": Category.BANKING,
    "tjanst": Category.SERVICE,
    "tjanster": Category.SERVICE,
    "service": Category.SERVICE,
    "hantverk": Category.SERVICE,
    "installation": Category.SERVICE,
    "renovering": Category.SERVICE,
    "bygg": Category.SERVICE,
    "ovrigt": Category.OTHER,
    "other": Category.OTHER,
}

PAYMENT_METHOD_SYNONYMS: dict[str, PaymentMethod] = {
    "autogiro": PaymentMethod.AUTOGIRO,
    "direct debit": PaymentMethod.AUTOGIRO,
    "e-faktura": PaymentMethod.E_INVOICE,
    "efaktura": PaymentMethod.E_INVOICE,
    "e-invoice": PaymentMethod.E_INVOICE,
    "bankgiro": PaymentMethod.BANKGIRO,
    "plusgiro": PaymentMethod.PLUSGIRO,
    "kort": PaymentMethod.CARD,
    "card": PaymentMethod.CARD,
    "swish": PaymentMethod.SWISH,
    "okant": PaymentMethod.UNKNOWN,
    "unknown": PaymentMethod.UNKNOWN,
}

BILLING_TYPE_SYNONYMS: dict[str, BillingType] = {
    "abonnemang": BillingType.SUBSCRIPTION,
    "subscription": BillingType.SUBSCRIPTION,
    "recurring": BillingType.SUBSCRIPTION,
    "engang": BillingType.ONE_TIME,
    "one-time": BillingType.ONE_TIME,
    "onetime": BillingType.ONE_TIME,
    "oklart": BillingType.UNCLEAR,
    "okant": BillingType.UNCLEAR,
    "unclear": BillingType.UNCLEAR,
}

SERVICE_LIKE_CATEGORY = re.compile(r"tjanst|service|hantverk|installation|renovering|bygg|\brot\b")


def normalize_category(value: Any) -> Category:
    if isinstance(value, Category):
        return value
    return CATEGORY_SYNONYMS.get(fold(value), Category.OTHER)


def normalize_payment_method(value: Any) -> PaymentMethod:
    if isinstance(value, PaymentMethod):
        return value
    return PAYMENT_METHOD_SYNONYMS.get(fold(value), PaymentMethod.UNKNOWN)


def normalize_billing_type(value: Any) -> BillingType | None:
    """Explicit billing type, or ``None`` when it has to be inferred."""
    if isinstance(value, BillingType):
        return value
    return BILLING_TYPE_SYNONYMS.get(fold(value))


def has_monthly_signal(text: Any) -> bool:
    if not text:
        return False
    return has_keyword(text, MONTHLY_SIGNALS) or bool(_MONTHLY_SLASH.search(fold(text)))


def has_service_signal(text: Any) -> bool:
    return bool(text) and has_keyword(text, SERVICE_SIGNALS)


def guess_category(text: Any) -> Category:
    folded = fold(text)
    for category, pattern in CATEGORY_KEYWORDS:
        if pattern.search(folded):
            return category
    if WEAK_MOBILE_SIGNAL.search(folded):
        return Category.MOBILE
    return Category.OTHER


def guess_payment_method(text: Any) -> PaymentMethod:
    folded = fold(text)
    for method, pattern in PAYMENT_METHOD_KEYWORDS:
        if pattern.search(folded):
            return method
    return PaymentMethod.UNKNOWN


# ---------------------------------------------------------------------------
# Labelled-field patterns (raw text, case-insensitive, single line)
# ---------------------------------------------------------------------------

_AMOUNT = r"([0-9][0-9 \u00a0.,]*)"
_DATE = r"([0-9][0-9./\-]*)"
_CODE = r"([a-z0-9][a-z0-9\-]*)"


def _patterns(*raw: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(item, re.IGNORECASE) for item in raw)


FIELD_PATTERNS: dict[str, tuple[re.Pattern[str], ...]] = {
    "customer_number": _patterns(
        rf"kundnummer[: \t]*{_CODE}",
        rf"kundnr\.?[: \t]*{_CODE}",
        rf"customer[ \t]*number[: \t]*{_CODE}",
        rf"\baccount(?:[ \t]*(?:number|no\.?|nr\.?))?[: \t]*{_CODE}",
    ),
    "invoice_number": _patterns(
        rf"fakturanummer[: \t]*{_CODE}",
        rf"invoice[ \t]*number[: \t]*{_CODE}",
        rf"faktura[ \t]*nr\.?[: \t]*{_CODE}",
    ),
    "organization_number": _patterns(
        r"organisationsnummer[: \t]*([0-9][0-9\-]*)",
        r"org\.?[ \t]*nr\.?[: \t]*([0-9][0-9\-]*)",
        r"orgnr[: \t]*([0-9][0-9\-]*)",
    ),
    "ocr_reference": _patterns(
        r"\bocr(?:-nummer|nummer|nr)?[: \t]*([0-9][0-9\- ]{4,})",
        r"betalreferens[: \t]*([0-9][0-9\- ]{4,})",
        r"\breference[: \t]*([0-9][0-9\- ]{4,})",
    ),
    "due_date": _patterns(
        rf"förfallodatum[: \t]*{_DATE}",
        rf"forfallodatum[: \t]*{_DATE}",
        rf"förfaller[: \t]*{_DATE}",
        rf"forfaller[: \t]*{_DATE}",
        rf"due[ \t]*date[: \t]*{_DATE}",
    ),
    "invoice_date": _patterns(
        rf"fakturadatum[: \t]*{_DATE}",
        rf"invoice[ \t]*date[: \t]*{_DATE}",
        rf"\bdatum[: \t]*{_DATE}",
    ),
    "total_amount": _patterns(
        rf"att[ \t]*betala[^0-9\n]*{_AMOUNT}",
        rf"belopp[^0-9\n]*{_AMOUNT}[ \t]*kr",
        rf"\btotal[^0-9\n]*{_AMOUNT}",
    ),
    # Percent rates ("moms 25%") are skipped in rules.py.
    "vat_amount": _patterns(
        rf"varav[ \t]+moms[^0-9\n]*{_AMOUNT}",
        rf"\bmoms[^0-9\n]*{_AMOUNT}",
        rf"\bvat[^0-9\n]*{_AMOUNT}",
    ),
    "monthly_cost": _patterns(
        rf"månadskostnad[: \t]*{_AMOUNT}",
        rf"månadsavgift[: \t]*{_AMOUNT}",
        rf"monthly[ \t]*(?:cost|fee)[: \t]*{_AMOUNT}",
        rf"{_AMOUNT}[ \t]*(?:kr|sek)?[ \t]*/[ \t]*mån(?:ad)?",
        rf"{_AMOUNT}[ \t]*(?:kr|sek)?[ \t]*per[ \t]*månad",
        rf"{_AMOUNT}[ \t]*(?:kr|sek)?[ \t]*månadsvis",
        rf"{_AMOUNT}[ \t]*(?:kr|sek)?[ \t]*(?:/|per)[ \t]*month",
    ),
}

# Lines that plausibly carry a field, used for provenance when no AI snippet exists.
SOURCE_LINE_PATTERNS: dict[str, re.Pattern[str]] = {
    "category": re.compile(
        r"abonnemang|bredband|internet|elfaktura|elhandel|försäkring|bank|stream|installation|hantverk"
        r"|\brot\b|renovering|service|arbete",
        re.IGNORECASE,
    ),
    "monthly_cost": re.compile(
        r"månadskostnad|månadsavgift|per[ \t]*månad|/[ \t]*mån|abonnemang|per[ \t]*month|monthly",
        re.IGNORECASE,
    ),
    "total_amount": re.compile(r"att[ \t]*betala|belopp|\btotal|summa", re.IGNORECASE),
    "currency": re.compile(r"\b(?:sek|eur|usd|kr)\b", re.IGNORECASE),
    "due_date": re.compile(r"förfallo|forfallo|förfaller|forfaller|due[ \t]*date", re.IGNORECASE),
    "invoice_date": re.compile(r"fakturadatum|invoice[ \t]*date|\bdatum", re.IGNORECASE),
    "customer_number": re.compile(r"kundnummer|kundnr|customer[ \t]*number|\baccount", re.IGNORECASE),
    "invoice_number": re.compile(r"fakturanummer|invoice[ \t]*number|faktura[ \t]*nr", re.IGNORECASE),
    "organization_number": re.compile(r"organisationsnummer|org\.?[ \t]*nr|orgnr", re.IGNORECASE),
    "ocr_reference": re.compile(r"\bocr|betalreferens|\breference", re.IGNORECASE),
    "vat_amount": re.compile(r"\bmoms|\bvat\b", re.IGNORECASE),
    "payment_method": re.compile(r"autogiro|e-?faktura|bankgiro|plusgiro|kort|swish", re.IGNORECASE),
}
