"""Recurring cost detection and savings estimates over a user's invoice history.

``analyze_savings`` is pure and total. Entries without a positive amount or a
parseable date are skipped, never raised on. Service invoices (``Tjänst``) are
one-time work and never count as recurring.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Iterable, Mapping, Optional

from kostnadskoll.schemas.invoice import DEFAULT_CURRENCY, DEFAULT_VENDOR, Category
from kostnadskoll.schemas.savings import (
    CategorySummary,
    MonthlyTotal,
    RecurringServiceEntry,
    SavingsReport,
    SavingsSummary,
    Urgency,
    VendorSummary,
)
from kostnadskoll.services.extraction.vocabulary import normalize_category
from kostnadskoll.services.text_tools import format_number, round2, slug_token, to_date, to_number

logger = logging.getLogger(__name__)

OPPORTUNITY_LIMIT = 8
MAX_RECOMMENDATIONS = 3
MIN_NOTABLE_SAVING = 20
MIN_NOTABLE_TREND = 8
MIN_BENCHMARK_GAP = 20


@dataclass(frozen=True)
class Benchmark:
    target_monthly: Optional[float]
    alternatives: tuple[str, ...]


CATEGORY_BENCHMARKS: dict[Category, Benchmark] = {
    Category.MOBILE: Benchmark(249, ("Lägre surfmängd", "Lojalitetsrabatt", "Kampanj hos annan operatör")),
    Category.INTERNET: Benchmark(399, ("Sänk hastighet", "Bindningstidsrabatt", "Jämför fiberalternativ")),
    Category.ELECTRICITY: Benchmark(999, ("Timpris", "Fastprisjämförelse", "Buntad elhandel + nät")),
    Category.INSURANCE: Benchmark(279, ("Högre självrisk", "Samlingsrabatt", "Jämför villkor mot pris")),
    Category.STREAMING: Benchmark(129, ("Dela familjeplan", "Reklamfinansierad plan", "Pausa abonnemang")),
    Category.BANKING: Benchmark(99, ("Avgiftsfritt kort", "Flytta sparande", "Förhandla paketavgift")),
    Category.SERVICE: Benchmark(
        None,
        (
            "Begär offert från flera leverantörer",
            "Jämför timpris och materialpåslag",
            "Be om fast pris innan nytt arbete",
        ),
    ),
    Category.OTHER: Benchmark(199, ("Prisförhandling", "Byt paket", "Säg upp outnyttjade tjänster")),
}


def get_benchmark(category: Any) -> Benchmark:
    return CATEGORY_BENCHMARKS.get(normalize_category(category), CATEGORY_BENCHMARKS[Category.OTHER])


@dataclass(frozen=True)
class _Observation:
    vendor_name: str
    category: Category
    currency: str
    amount: float
    day: date
    month_key: str


# ─── Step 1: normalize history items ──────────────────


def _get(item: Any, *names: str) -> Any:
    for name in names:
        if isinstance(item, Mapping):
            if name in item:
                return item[name]
        elif hasattr(item, name):
            return getattr(item, name)
    return None


def _effective_amount(item: Any) -> Optional[float]:
    monthly = to_number(_get(item, "monthly_cost", "monthlyCost"))
    if monthly is not None and monthly > 0:
        return monthly
    total = to_number(_get(item, "total_amount", "totalAmount"))
    if total is not None and total > 0:
        return total
    return None


def _effective_date(item: Any) -> Optional[date]:
    for names in (
        ("invoice_date", "invoiceDate"),
        ("due_date", "dueDate"),
        ("scanned_at", "scannedAt"),
        ("created_at", "createdAt"),
    ):
        parsed = to_date(_get(item, *names))
        if parsed is not None:
            return parsed
    return None


def _text(value: Any, fallback: str) -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text or fallback


def normalize_history_items(items: Iterable[Any]) -> list[_Observation]:
    observations: list[_Observation] = []
    for item in items or []:
        amount = _effective_amount(item)
        day = _effective_date(item)
        if amount is None or day is None:
            continue
        observations.append(
            _Observation(
                vendor_name=_text(_get(item, "vendor_name", "vendorName"), DEFAULT_VENDOR),
                category=normalize_category(_get(item, "category")),
                currency=_text(_get(item, "currency"), DEFAULT_CURRENCY).upper(),
                amount=amount,
                day=day,
                month_key=f"{day.year:04d}-{day.month:02d}",
            )
        )
    return observations


# ─── Steps 2-4: grouping and recurrence ───────────────


def collapse_by_month(observations: list[_Observation]) -> list[_Observation]:
    """One observation per month: amounts summed, latest date kept."""
    by_month: dict[str, _Observation] = {}
    for obs in sorted(observations, key=lambda o: o.day):
        existing = by_month.get(obs.month_key)
        if existing is None:
            by_month[obs.month_key] = obs
            continue
        by_month[obs.month_key] = replace(
            existing,
            amount=round2(existing.amount + obs.amount),
            day=max(existing.day, obs.day),
        )
    return sorted(by_month.values(), key=lambda o: o.day)


def month_gap(earlier: str, later: str) -> int:
    from_year, from_month = (int(part) for part in earlier.split("-"))
    to_year, to_month = (int(part) for part in later.split("-"))
    return max(0, (to_year - from_year) * 12 + (to_month - from_month))


def is_likely_recurring(month_keys: Iterable[str]) -> bool:
    months = sorted(set(month_keys))
    if len(months) < 2:
        return False

    gaps = [month_gap(a, b) for a, b in zip(months, months[1:])]
    if len(months) == 2:
        return gaps[0] <= 2

    if not any(gap == 1 for gap in gaps):
        return False
    if any(gap > 3 for gap in gaps) and len(months) < 4:
        return False
    return True


# ─── Steps 5-7: per-service metrics ───────────────────


def compute_trend_percent(previous: Optional[float], latest: Optional[float]) -> Optional[float]:
    if previous is None or latest is None or previous <= 0:
        return None
    return round2((latest - previous) / previous * 100)


def classify_urgency(potential_saving: float, trend_percent: Optional[float]) -> Urgency:
    trend = trend_percent or 0.0
    if potential_saving >= 120 or trend >= 15:
        return Urgency.HIGH
    if potential_saving >= 50 or trend >= 8:
        return Urgency.MEDIUM
    return Urgency.LOW


def _round_half_up(value: float) -> int:
    return int(round2(value) + 0.5) if value >= 0 else -int(-round2(value) + 0.5)


def build_recommendations(
    *,
    category: Category,
    vendor_name: str,
    trend_percent: Optional[float],
    potential_saving: float,
    previous_amount: Optional[float],
    benchmark_gap: float,
    target_monthly: Optional[float],
) -> list[str]:
    if category == Category.SERVICE:
        return [
            "Detta ser ut som en engångstjänst och räknas inte som återkommande månadskostnad.",
            "Kontrollera att arbete, material och moms är tydligt specificerade.",
            f"Be {vendor_name} om prisöversyn eller fastpris vid liknande jobb.",
        ]

    notes: list[str] = []
    if target_monthly is not None and benchmark_gap >= MIN_BENCHMARK_GAP:
        notes.append(
            f"Du ligger över riktpris för {str(category).lower()} (ca {format_number(target_monthly)} kr/mån)."
        )
    if previous_amount is not None and potential_saving >= MIN_NOTABLE_SAVING:
        notes.append(f"Kostnaden ligger {_round_half_up(potential_saving)} kr över föregående månad.")
    if (trend_percent or 0) >= MIN_NOTABLE_TREND:
        notes.append(f"Kostnaden har ökat {_round_half_up(trend_percent)}% mot föregående månad.")

    closer = f"Be {vendor_name} om prisöversyn eller lojalitetsrabatt."
    return notes[: MAX_RECOMMENDATIONS - 1] + [closer]


def _previous_month_entry(monthly: list[_Observation]) -> Optional[_Observation]:
    latest_key = monthly[-1].month_key
    for obs in reversed(monthly[:-1]):
        if obs.month_key != latest_key:
            return obs
    return None


def build_recurring_entry(key: str, group: list[_Observation]) -> Optional[RecurringServiceEntry]:
    first = group[0]
    if first.category == Category.SERVICE:
        return None

    monthly = collapse_by_month(group)
    month_keys = [obs.month_key for obs in monthly]
    if not is_likely_recurring(month_keys):
        return None

    latest = monthly[-1]
    previous = _previous_month_entry(monthly)
    previous_amount = previous.amount if previous else None
    average = round2(sum(obs.amount for obs in monthly) / len(monthly))
    trend = compute_trend_percent(previous_amount, latest.amount)
    benchmark = get_benchmark(first.category)
    target = benchmark.target_monthly
    potential = max(0.0, round2(latest.amount - previous_amount)) if previous_amount is not None else 0.0
    gap = max(0.0, round2(latest.amount - target)) if target is not None else 0.0

    return RecurringServiceEntry(
        key=key,
        vendor_name=first.vendor_name,
        category=str(first.category),
        currency=first.currency,
        months_observed=len(set(month_keys)),
        latest_month=latest.month_key,
        latest_amount=latest.amount,
        previous_month=previous.month_key if previous else None,
        previous_amount=previous_amount,
        average_amount=average,
        trend_percent=trend,
        target_monthly=target,
        benchmark_gap=gap,
        potential_saving=potential,
        status=classify_urgency(potential, trend),
        question=f"Använder du fortfarande {first.vendor_name}?",
        recommendations=build_recommendations(
            category=first.category,
            vendor_name=first.vendor_name,
            trend_percent=trend,
            potential_saving=potential,
            previous_amount=previous_amount,
            benchmark_gap=gap,
            target_monthly=target,
        ),
        alternatives=list(benchmark.alternatives),
    )


def _ranking_key(entry: RecurringServiceEntry):
    return (-entry.potential_saving, -(entry.trend_percent or 0.0), entry.key)


def build_recurring_services(observations: list[_Observation]) -> list[RecurringServiceEntry]:
    groups: dict[str, list[_Observation]] = {}
    for obs in observations:
        key = f"{obs.vendor_name.lower()}|{str(obs.category).lower()}"
        groups.setdefault(key, []).append(obs)

    recurring = [entry for key, group in groups.items() if (entry := build_recurring_entry(key, group))]
    return sorted(recurring, key=_ranking_key)


# ─── Steps 8-10: roll-ups ─────────────────────────────


def build_vendor_summary(recurring: list[RecurringServiceEntry]) -> list[VendorSummary]:
    grouped: dict[str, list[RecurringServiceEntry]] = {}
    for entry in recurring:
        vendor_key = slug_token(entry.vendor_name) or slug_token(DEFAULT_VENDOR)
        grouped.setdefault(vendor_key, []).append(entry)

    vendors: list[VendorSummary] = []
    for vendor_key, entries in grouped.items():
        with_previous = [e for e in entries if e.previous_amount is not None]
        previous_total = round2(sum(e.previous_amount for e in with_previous)) if with_previous else None
        # Trend only over services that have a previous month to compare with.
        trend = compute_trend_percent(previous_total, sum(e.latest_amount for e in with_previous))
        vendors.append(
            VendorSummary(
                vendor_key=vendor_key,
                vendor_name=entries[0].vendor_name,
                categories=sorted({e.category for e in entries}),
                service_count=len(entries),
                latest_amount=round2(sum(e.latest_amount for e in entries)),
                previous_amount=previous_total,
                potential_saving=round2(sum(e.potential_saving for e in entries)),
                trend_percent=trend,
            )
        )

    return sorted(vendors, key=lambda v: (-v.potential_saving, -v.latest_amount, v.vendor_key))


def build_category_summary(recurring: list[RecurringServiceEntry]) -> list[CategorySummary]:
    grouped: dict[str, list[RecurringServiceEntry]] = {}
    for entry in recurring:
        grouped.setdefault(entry.category, []).append(entry)

    summary = [
        CategorySummary(
            category=category,
            service_count=len(entries),
            total_latest_amount=round2(sum(e.latest_amount for e in entries)),
            total_potential_saving=round2(sum(e.potential_saving for e in entries)),
        )
        for category, entries in grouped.items()
    ]
    return sorted(summary, key=lambda c: -c.total_potential_saving)


def select_opportunities(recurring: list[RecurringServiceEntry]) -> list[RecurringServiceEntry]:
    notable = [
        entry
        for entry in recurring
        if entry.potential_saving >= MIN_NOTABLE_SAVING or (entry.trend_percent or 0) >= MIN_NOTABLE_TREND
    ]
    return sorted(notable, key=_ranking_key)[:OPPORTUNITY_LIMIT]


def _totals_by_month(observations: list[_Observation]) -> dict[str, float]:
    totals: dict[str, float] = {}
    for obs in observations:
        totals[obs.month_key] = totals.get(obs.month_key, 0.0) + obs.amount
    return totals


def build_monthly_totals(observations: list[_Observation]) -> list[MonthlyTotal]:
    totals = _totals_by_month(observations)
    return [MonthlyTotal(month_key=key, total=round2(totals[key])) for key in sorted(totals)]


def build_month_summary(observations: list[_Observation]) -> dict[str, Any]:
    totals = _totals_by_month(observations)
    keys = sorted(totals)
    latest_month = keys[-1] if keys else ""
    previous_month = keys[-2] if len(keys) > 1 else ""
    latest_total = totals.get(latest_month, 0.0)
    previous_total = totals.get(previous_month, 0.0)
    delta = round2(latest_total - previous_total)

    return {
        "latest_month": latest_month,
        "previous_month": previous_month,
        "latest_month_total": round2(latest_total),
        "previous_month_total": round2(previous_total),
        "month_delta": delta,
        "month_delta_percent": round2(delta / previous_total * 100) if previous_total > 0 else None,
    }


def analyze_savings(items: Iterable[Any]) -> SavingsReport:
    """Build the savings report. *items* may be ``HistoryEntryOut`` models or plain dicts."""
    observations = normalize_history_items(items)
    recurring = build_recurring_services(observations)
    opportunities = select_opportunities(recurring)

    summary = SavingsSummary(
        recurring_count=len(recurring),
        opportunity_count=len(opportunities),
        estimated_monthly_saving=round2(sum(entry.potential_saving for entry in recurring)),
        **build_month_summary(observations),
    )
    logger.debug(
        "Savings analysis: %d observations, %d recurring, %d opportunities",
        len(observations),
        len(recurring),
        len(opportunities),
    )

    return SavingsReport(
        summary=summary,
        recurring=recurring,
        opportunities=opportunities,
        vendors=build_vendor_summary(recurring),
        monthly_totals=build_monthly_totals(observations),
        category_summary=build_category_summary(recurring),
    )
