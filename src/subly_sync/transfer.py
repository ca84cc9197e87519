"""
JSON backup/restore and CSV reports for subscriptions.
"""

import csv
import io
import json
import logging
import uuid
from dataclasses import replace
from datetime import date

from subly_sync.agenda import annual_cost
from subly_sync.agenda import monthly_spend_projection
from subly_sync.agenda import trailing_months
from subly_sync.models import AppState
from subly_sync.models import ImportFormatError
from subly_sync.models import InvalidStartDateError
from subly_sync.models import Settings
from subly_sync.models import Subscription
from subly_sync.models import normalize_state
from subly_sync.recurrence import parse_start_date

SUBSCRIPTION_HEADER = ["ID", "Name", "Category", "Price", "Currency", "Period", "StartDate"]

logger = logging.getLogger(__name__)


def dump_state_json(state: AppState) -> str:
    return json.dumps(state.to_dict(), indent=2, ensure_ascii=False)


def parse_import(text: str) -> tuple[list[Subscription], Settings | None]:
    """Parse an exported file into subscriptions (and settings, if present).

    Accepts either a bare list of subscriptions or a whole exported state
    object. Rows without an id get a fresh one, rows that fail validation
    (including an unparseable start date) are skipped, and calendar links
    are never imported.

    Raises ImportFormatError when the text is not JSON, has the wrong shape,
    or yields no usable subscription.
    """
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportFormatError(f"Not valid JSON: {e}") from e

    if isinstance(raw, list):
        rows, settings = raw, None
    elif isinstance(raw, dict) and isinstance(raw.get("subscriptions"), list):
        rows, settings = raw["subscriptions"], raw.get("settings")
    else:
        raise ImportFormatError("Expected a list of subscriptions or an exported state object")

    cleaned = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            parse_start_date(row.get("startDate"))
        except InvalidStartDateError:
            logger.warning(f"Skipping {row.get('name')!r}: invalid start date {row.get('startDate')!r}")
            continue
        row = {k: v for k, v in row.items() if k != "calendar"}
        if not str(row.get("id") or "").strip():
            row["id"] = uuid.uuid4().hex
        cleaned.append(row)

    state = normalize_state({"subscriptions": cleaned, "settings": settings})
    if not state.subscriptions:
        raise ImportFormatError("No valid subscriptions found")
    return state.subscriptions, state.settings if isinstance(settings, dict) else None


def merge_imported(existing: list[Subscription], imported: list[Subscription]) -> list[Subscription]:
    """Merge by id: an imported row replaces the same id in place, new ids go last.

    A replaced subscription keeps its existing calendar link so the next
    sync updates its event instead of creating a second one.
    """
    merged = {sub.id: sub for sub in existing}
    for sub in imported:
        current = merged.get(sub.id)
        merged[sub.id] = replace(sub, calendar=current.calendar if current else None)
    return list(merged.values())


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def rows_to_csv(rows: list[list]) -> str:
    """Render rows as CSV with every cell quoted."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerows(rows)
    return buf.getvalue()


def subscription_rows(subscriptions: list[Subscription]) -> list[list]:
    rows: list[list] = [SUBSCRIPTION_HEADER]
    for sub in subscriptions:
        rows.append(
            [sub.id, sub.name, sub.category or "", sub.price, sub.currency, sub.period, sub.start_date]
        )
    return rows


def _currencies(subscriptions: list[Subscription], currency: str | None) -> list[str]:
    if currency:
        return [currency.upper()]
    return sorted({sub.currency.upper() for sub in subscriptions})


def monthly_spend_rows(
    subscriptions: list[Subscription], today: date, currency: str | None = None
) -> list[list]:
    """Month, Amount, Currency rows for the trailing twelve months."""
    months = trailing_months(today)
    projection = monthly_spend_projection(subscriptions, today)
    rows: list[list] = [["Month", "Amount", "Currency"]]
    for cur in _currencies(subscriptions, currency):
        totals = projection.get(cur, [0.0] * len(months))
        for month, amount in zip(months, totals):
            rows.append([month.strftime("%Y-%m"), round(amount, 2), cur])
    return rows


def annual_top_rows(subscriptions: list[Subscription], currency: str | None = None) -> list[list]:
    """Name, AnnualAmount, Currency rows, most expensive first within each currency."""
    rows: list[list] = [["Name", "AnnualAmount", "Currency"]]
    for cur in _currencies(subscriptions, currency):
        in_currency = [sub for sub in subscriptions if sub.currency.upper() == cur]
        for sub in sorted(in_currency, key=annual_cost, reverse=True):
            rows.append([sub.name, round(annual_cost(sub), 2), cur])
    return rows
