"""Outreach email drafts (cancel / negotiate / ask for specification).

Drafts are a pure function of an ``ExtractedInvoice``: six common templates
followed by three tailored to the invoice category. How they are ordered for
the user is decided by a strategy:

* ``ShuffleStrategy``: random order, used on the plain scan path so the same
  draft is not always on top.
* ``SuitabilityStrategy``: deterministic ranking from savings signals
  (recurring entry urgency, market saving, whether the service is still used).
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

from kostnadskoll.schemas.invoice import Category, EmailTemplate, ExtractedInvoice
from kostnadskoll.services.text_tools import format_amount

logger = logging.getLogger(__name__)

INTENT_CANCEL = "cancel"
INTENT_NEGOTIATE = "negotiate"
INTENT_SPECIFICATION = "specification"

_GREETING = "Hej,\n\n"
_SIGN_OFF = "Med vänlig hälsning"


@dataclass(frozen=True)
class _Draft:
    template_id: str
    label: str
    intent: str
    subject: str
    body: str


COMMON_DRAFTS: tuple[_Draft, ...] = (
    _Draft(
        "cancel-formal",
        "Uppsägningsmall",
        INTENT_CANCEL,
        "Uppsägning av abonnemang - kundnummer {customer}",
        "Jag vill säga upp mitt abonnemang hos {vendor}.\n"
        "Kundnummer: {customer}\n"
        "Fakturanummer: {invoice_number}\n"
        "Vänligen bekräfta uppsägningen samt vilket datum avtalet upphör.\n\n"
        "Tack på förhand.\n",
    ),
    _Draft(
        "cancel-fast-track",
        "Uppsägning snabb",
        INTENT_CANCEL,
        "Direkt uppsägning - kundnummer {customer}",
        "Jag önskar avsluta tjänsten hos {vendor} så snart uppsägningstiden tillåter.\n"
        "Kundnummer: {customer}\n"
        "Fakturanummer: {invoice_number}\n\n"
        "Återkom med slutdatum och eventuell slutfaktura.\n\n",
    ),
    _Draft(
        "price-negotiation",
        "Förhandlingsmall",
        INTENT_NEGOTIATE,
        "Förfrågan om bättre pris - kundnummer {customer}",
        "Jag har granskat min senaste faktura från {vendor} och vill se över min kostnad.\n"
        "Nuvarande belopp: {amount}\n"
        "Fakturanummer: {invoice_number}\n"
        "Kan ni erbjuda ett bättre pris eller ett mer fördelaktigt paket?\n\n"
        "Om det inte finns en konkurrenskraftig lösning vill jag gå vidare med uppsägning.\n\n",
    ),
    _Draft(
        "price-negotiation-match",
        "Förhandling: prismatch",
        INTENT_NEGOTIATE,
        "Begäran om prismatch för befintlig kund {customer}",
        "Jag vill fortsätta som kund hos {vendor}, men behöver en bättre prisnivå.\n"
        "Nuvarande kostnad: {amount}\n"
        "Fakturanummer: {invoice_number}\n\n"
        "Kan ni matcha ett mer konkurrenskraftigt erbjudande och återkomma skriftligt?\n\n",
    ),
    _Draft(
        "specification-request",
        "Specifikationsmall",
        INTENT_SPECIFICATION,
        "Begäran om fakturaspecifikation {invoice_number}",
        "Jag behöver hjälp att förtydliga min senaste faktura från {vendor}.\n"
        "Belopp: {amount}\n"
        "Förfallodatum: {due_date}\n"
        "Betalsätt: {payment_method}\n"
        "Kundnummer: {customer}\n\n"
        "Kan ni förklara kostnadsposterna och bekräfta att allt är korrekt debiterat?\n\n"
        "Tack!\n",
    ),
    _Draft(
        "specification-dispute",
        "Specifikation: invändning",
        INTENT_SPECIFICATION,
        "Invändning och begäran om underlag för faktura {invoice_number}",
        "Jag vill bestrida delar av fakturan från {vendor} tills fullständig specifikation finns.\n"
        "Fakturanummer: {invoice_number}\n"
        "Belopp: {amount}\n\n"
        "Skicka tydligt underlag per kostnadspost inklusive datum, omfattning och pris.\n\n",
    ),
)

_CONNECTIVITY_DRAFTS: tuple[_Draft, ...] = (
    _Draft(
        "connectivity-loyalty",
        "Lojalitetsrabatt",
        INTENT_NEGOTIATE,
        "Lojalitetsförslag för befintlig kund {customer}",
        "Jag har varit kund hos {vendor} en längre tid och vill se om ni kan erbjuda en lojalitetsrabatt.\n"
        "Nuvarande kostnad: {amount}\n"
        "Fakturanummer: {invoice_number}\n\n"
        "Om ni kan matcha marknadsnivå fortsätter jag gärna som kund.\n\n",
    ),
    _Draft(
        "connectivity-binding-check",
        "Bindningstid och villkor",
        INTENT_SPECIFICATION,
        "Begäran om bindningstid och uppsägningsvillkor",
        "Jag vill få en tydlig sammanställning av mitt avtal hos {vendor}.\n"
        "Kundnummer: {customer}\n"
        "Fakturanummer: {invoice_number}\n"
        "Förfallodatum: {due_date}\n\n"
        "Vänligen återkom med aktuell bindningstid, uppsägningstid och eventuell slutfaktura.\n\n",
    ),
    _Draft(
        "connectivity-downgrade",
        "Nedgradera abonnemang",
        INTENT_NEGOTIATE,
        "Förfrågan om billigare paket",
        "Jag vill nedgradera mitt abonnemang hos {vendor} till en lägre prisnivå.\n"
        "Nuvarande kostnad: {amount}\n"
        "Kundnummer: {customer}\n\n"
        "Skicka gärna alternativ med lägre månadspris och vad som ingår i varje nivå.\n\n",
    ),
)

_ELECTRICITY_DRAFTS: tuple[_Draft, ...] = (
    _Draft(
        "electricity-price-review",
        "Elprisförhandling",
        INTENT_NEGOTIATE,
        "Översyn av elpris och avtalsnivå",
        "Jag vill omförhandla mitt nuvarande elavtal hos {vendor}.\n"
        "Nuvarande debitering: {amount}\n"
        "Fakturanummer: {invoice_number}\n\n"
        "Kan ni erbjuda ett lägre pris eller ett alternativt avtal som bättre motsvarar min förbrukning?\n\n",
    ),
    _Draft(
        "electricity-grid-breakdown",
        "Nät- och avgiftsspec",
        INTENT_SPECIFICATION,
        "Begäran om tydlig uppdelning av elavgifter",
        "Jag vill få en specificerad förklaring av min elfaktura från {vendor}.\n"
        "Belopp: {amount}\n"
        "Fakturanummer: {invoice_number}\n\n"
        "Vänligen dela upp kostnaden per elhandel, nätavgift, skatter och övriga avgifter.\n\n",
    ),
    _Draft(
        "electricity-switch-intent",
        "Byte av elleverantör",
        INTENT_NEGOTIATE,
        "Sista offert innan leverantörsbyte",
        "Jag utvärderar att byta från {vendor} och vill ge er möjlighet att lämna ett förbättrat erbjudande.\n"
        "Fakturanummer: {invoice_number}\n"
        "Nuvarande kostnad: {amount}\n\n"
        "Om ni kan erbjuda bättre villkor återkommer jag gärna med fortsatt avtal.\n\n",
    ),
)

_INSURANCE_DRAFTS: tuple[_Draft, ...] = (
    _Draft(
        "insurance-premium-review",
        "Premieöversyn",
        INTENT_NEGOTIATE,
        "Begäran om premieöversyn",
        "Jag vill se över premien för min försäkring hos {vendor}.\n"
        "Nuvarande kostnad: {amount}\n"
        "Kundnummer: {customer}\n\n"
        "Kan ni erbjuda en lägre premie eller ett upplägg med samma skydd men bättre pris?\n\n",
    ),
    _Draft(
        "insurance-terms-check",
        "Villkor och självrisk",
        INTENT_SPECIFICATION,
        "Förtydligande av villkor och självrisk",
        "Jag vill få ett skriftligt förtydligande av villkor för min försäkring hos {vendor}.\n"
        "Fakturanummer: {invoice_number}\n"
        "Belopp: {amount}\n\n"
        "Vänligen specificera självrisknivåer, undantag och omfattning för mitt nuvarande avtal.\n\n",
    ),
    _Draft(
        "insurance-bundle-discount",
        "Samlingsrabatt",
        INTENT_NEGOTIATE,
        "Förfrågan om samlingsrabatt",
        "Jag vill undersöka samlingsrabatt hos {vendor} för att sänka min försäkringskostnad.\n"
        "Nuvarande kostnad: {amount}\n"
        "Kundnummer: {customer}\n\n"
        "Skicka gärna förslag på paket och hur mycket jag kan spara per månad.\n\n",
    ),
)

_STREAMING_DRAFTS: tuple[_Draft, ...] = (
    _Draft(
        "streaming-plan-review",
        "Paketöversyn",
        INTENT_NEGOTIATE,
        "Fråga om billigare abonnemang",
        "Jag vill se om det finns ett billigare abonnemang hos {vendor}.\n"
        "Nuvarande månadskostnad: {amount}\n"
        "Kundnummer: {customer}\n\n"
        "Har ni något alternativ med lägre pris som passar samma användning?\n\n",
    ),
    _Draft(
        "streaming-pause-or-cancel",
        "Pausa eller avsluta",
        INTENT_CANCEL,
        "Paus eller uppsägning av abonnemang",
        "Jag vill pausa eller avsluta mitt abonnemang hos {vendor}.\n"
        "Kundnummer: {customer}\n"
        "Förfallodatum: {due_date}\n\n"
        "Vänligen återkom med vilka alternativ som finns och hur uppsägningen påverkar debiteringen.\n\n",
    ),
    _Draft(
        "streaming-annual-discount",
        "Årsplan/rabatt",
        INTENT_NEGOTIATE,
        "Förfrågan om årsplan eller lojalitetsrabatt",
        "Jag vill behålla tjänsten hos {vendor}, men till lägre kostnad.\n"
        "Nuvarande kostnad: {amount}\n"
        "Kundnummer: {customer}\n\n"
        "Erbjuder ni årsbetalning, familjeplan eller annan rabatt som sänker månadskostnaden?\n\n",
    ),
)

_BANK_DRAFTS: tuple[_Draft, ...] = (
    _Draft(
        "bank-fee-review",
        "Avgiftsöversyn",
        INTENT_NEGOTIATE,
        "Begäran om översyn av bankavgifter",
        "Jag vill se över avgifterna kopplade till mitt konto hos {vendor}.\n"
        "Debiterat belopp: {amount}\n"
        "Kundnummer: {customer}\n\n"
        "Vänligen föreslå alternativ med lägre kostnad och beskriv vad som kan justeras.\n\n",
    ),
    _Draft(
        "bank-rate-negotiation",
        "Ränteförhandling",
        INTENT_NEGOTIATE,
        "Förfrågan om bättre ränta eller villkor",
        "Jag vill diskutera bättre villkor för mina banktjänster hos {vendor}.\n"
        "Fakturanummer: {invoice_number}\n"
        "Belopp: {amount}\n\n"
        "Kan ni erbjuda en förbättrad räntenivå eller ett mer förmånligt upplägg?\n\n",
    ),
    _Draft(
        "bank-package-downgrade",
        "Byt till baspaket",
        INTENT_NEGOTIATE,
        "Begäran om enklare bankpaket",
        "Jag vill byta till ett enklare och billigare kontopaket hos {vendor}.\n"
        "Kundnummer: {customer}\n"
        "Nuvarande kostnad: {amount}\n\n"
        "Skicka gärna förslag på baspaket och vilka avgifter som försvinner.\n\n",
    ),
)

_SERVICE_DRAFTS: tuple[_Draft, ...] = (
    _Draft(
        "service-cost-clarification",
        "Tjänst: Kostnadsförklaring",
        INTENT_SPECIFICATION,
        "Begäran om kostnadsförklaring för faktura {invoice_number}",
        "Jag vill få en tydlig genomgång av fakturan för utfört arbete hos {vendor}.\n"
        "Fakturanummer: {invoice_number}\n"
        "Belopp: {amount}\n"
        "Kundnummer: {customer}\n\n"
        "Vänligen specificera materialkostnad, timpris, antal timmar och eventuella övriga avgifter.\n\n",
    ),
    _Draft(
        "service-price-check",
        "Tjänst: Prisjämförelse",
        INTENT_SPECIFICATION,
        "Fråga om prisnivå för utförd tjänst",
        "Jag vill kontrollera prisnivån på arbetet som fakturerats av {vendor}.\n"
        "Fakturanummer: {invoice_number}\n"
        "Belopp: {amount}\n\n"
        "Kan ni bekräfta att priset följer överenskommen offert samt redovisa hur totalen beräknats?\n\n",
    ),
    _Draft(
        "service-material-hours-proof",
        "Tjänst: Material/timmar",
        INTENT_SPECIFICATION,
        "Begäran om underlag för material och arbetstid",
        "Jag önskar komplett underlag för den utförda tjänsten från {vendor}.\n"
        "Fakturanummer: {invoice_number}\n"
        "Belopp: {amount}\n\n"
        "Vänligen redovisa antal timmar, timpris, materiallista, á-priser och eventuella påslag.\n\n",
    ),
)

_GENERIC_DRAFTS: tuple[_Draft, ...] = (
    _Draft(
        "generic-price-review",
        "Allmän prisöversyn",
        INTENT_NEGOTIATE,
        "Begäran om prisöversyn",
        "Jag vill se över kostnaden för min tjänst hos {vendor}.\n"
        "Nuvarande belopp: {amount}\n"
        "Kundnummer: {customer}\n\n"
        "Kan ni erbjuda ett bättre pris eller en mer passande nivå?\n\n",
    ),
    _Draft(
        "generic-termination-followup",
        "Uppsägning med uppföljning",
        INTENT_CANCEL,
        "Begäran om uppsägning och bekräftelse",
        "Jag önskar säga upp avtalet hos {vendor}.\n"
        "Kundnummer: {customer}\n"
        "Fakturanummer: {invoice_number}\n\n"
        "Vänligen bekräfta slutdatum, uppsägningstid och om någon ytterligare debitering tillkommer.\n\n",
    ),
    _Draft(
        "generic-charge-question",
        "Fråga om debitering",
        INTENT_SPECIFICATION,
        "Begäran om förklaring av debitering",
        "Jag behöver ett tydligt underlag för debiteringen från {vendor}.\n"
        "Fakturanummer: {invoice_number}\n"
        "Belopp: {amount}\n"
        "Förfallodatum: {due_date}\n\n"
        "Vänligen återkom med specifikation och hur kostnaden har beräknats.\n\n",
    ),
)

CATEGORY_DRAFTS: dict[Category, tuple[_Draft, ...]] = {
    Category.MOBILE: _CONNECTIVITY_DRAFTS,
    Category.INTERNET: _CONNECTIVITY_DRAFTS,
    Category.ELECTRICITY: _ELECTRICITY_DRAFTS,
    Category.INSURANCE: _INSURANCE_DRAFTS,
    Category.STREAMING: _STREAMING_DRAFTS,
    Category.BANKING: _BANK_DRAFTS,
    Category.SERVICE: _SERVICE_DRAFTS,
}

COMMON_TEMPLATE_IDS = frozenset(draft.template_id for draft in COMMON_DRAFTS)


def _template_context(extracted: ExtractedInvoice) -> dict[str, str]:
    amount = "okänt belopp"
    if extracted.total_amount is not None:
        amount = format_amount(extracted.total_amount, extracted.currency or "SEK")

    return {
        "vendor": extracted.vendor_name or "leverantören",
        "customer": extracted.customer_number or "okänt",
        "invoice_number": extracted.invoice_number or "okänt",
        "amount": amount,
        "due_date": extracted.due_date.isoformat() if extracted.due_date else "okänt förfallodatum",
        "payment_method": str(extracted.payment_method) if extracted.payment_method else "okänt betalsätt",
    }


def _render(draft: _Draft, context: Mapping[str, str]) -> EmailTemplate:
    return EmailTemplate(
        template_id=draft.template_id,
        template_label=draft.label,
        intent=draft.intent,
        subject=draft.subject.format(**context),
        body=_GREETING + draft.body.format(**context) + _SIGN_OFF,
    )


def build_email_templates(extracted: ExtractedInvoice) -> list[EmailTemplate]:
    """Six common drafts followed by the three for the invoice category."""
    context = _template_context(extracted)
    drafts = COMMON_DRAFTS + CATEGORY_DRAFTS.get(extracted.category, _GENERIC_DRAFTS)
    return [_render(draft, context) for draft in drafts]


# ---------------------------------------------------------------------------
# Ordering strategies
# ---------------------------------------------------------------------------


class TemplateStrategy(Protocol):
    def order(
        self, templates: list[EmailTemplate], extracted: Optional[ExtractedInvoice] = None
    ) -> list[EmailTemplate]: ...


class ShuffleStrategy:
    """Random order. Pass a seeded ``random.Random`` for reproducible output."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def order(
        self, templates: list[EmailTemplate], extracted: Optional[ExtractedInvoice] = None
    ) -> list[EmailTemplate]:
        shuffled = list(templates)
        self._rng.shuffle(shuffled)
        return shuffled


def _field(source: Any, name: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(name)
    return getattr(source, name, None)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class SuitabilityStrategy:
    """Rank drafts by how well their intent fits the savings signals.

    ``entry`` is a recurring-service entry from the savings report,
    ``market`` a market comparison for the same service and
    ``usage_answer`` the user's reply to "do you still use it?"
    (``"yes"``/``"no"``). All three are optional; dicts are accepted too.
    """

    def __init__(self, entry: Any = None, market: Any = None, usage_answer: str | None = None) -> None:
        self.entry = entry
        self.market = market
        self.usage_answer = (usage_answer or "").strip().lower()

    def intent_scores(self, category: Any = None) -> dict[str, float]:
        scores = {INTENT_CANCEL: 0.0, INTENT_NEGOTIATE: 0.0, INTENT_SPECIFICATION: 0.0}

        if self.usage_answer == "no":
            scores[INTENT_CANCEL] += 3

        saving_percent = _as_float(_field(self.market, "saving_percent")) or 0.0
        status = str(_field(self.entry, "status") or "").lower()
        if saving_percent >= 15 or status == "high":
            scores[INTENT_NEGOTIATE] += 2
        elif status == "medium":
            scores[INTENT_NEGOTIATE] += 1

        trend = _as_float(_field(self.entry, "trend_percent"))
        if trend is not None and trend >= 8:
            scores[INTENT_SPECIFICATION] += 1

        if category == Category.SERVICE:
            scores[INTENT_SPECIFICATION] += 3

        return scores

    def _category(self, extracted: Optional[ExtractedInvoice]) -> Any:
        for source in (extracted, self.entry, self.market):
            value = _field(source, "category")
            if value:
                return value
        return None

    def order(
        self, templates: list[EmailTemplate], extracted: Optional[ExtractedInvoice] = None
    ) -> list[EmailTemplate]:
        scores = self.intent_scores(self._category(extracted))

        def score(template: EmailTemplate) -> float:
            value = scores.get(template.intent, 0.0)
            if template.template_id not in COMMON_TEMPLATE_IDS:
                value += 0.5
            return value

        ranked = sorted(enumerate(templates), key=lambda pair: (-score(pair[1]), pair[0]))
        return [template for _, template in ranked]


def select_templates(
    extracted: ExtractedInvoice, strategy: TemplateStrategy | None = None
) -> list[EmailTemplate]:
    templates = build_email_templates(extracted)
    return (strategy or ShuffleStrategy()).order(templates, extracted)
