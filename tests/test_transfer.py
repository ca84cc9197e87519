"""
Unit tests for JSON backup/restore and the CSV reports.
"""

import json
from datetime import date

import pytest

from subly_sync.models import AppState
from subly_sync.models import CalendarLink
from subly_sync.models import ImportFormatError
from subly_sync.models import Settings
from subly_sync.transfer import annual_top_rows
from subly_sync.transfer import dump_state_json
from subly_sync.transfer import merge_imported
from subly_sync.transfer import monthly_spend_rows
from subly_sync.transfer import parse_import
from subly_sync.transfer import rows_to_csv
from subly_sync.transfer import subscription_rows
from tests.conftest import make_subscription


class TestParseImport:
    def test_exported_state_reads_back(self):
        state = AppState(
            subscriptions=[make_subscription("s1", category="Video"), make_subscription("s2", name="Gym")],
            settings=Settings(calendar_reminder_days_before=4),
        )

        subs, settings = parse_import(dump_state_json(state))

        assert subs == state.subscriptions
        assert settings.calendar_reminder_days_before == 4

    def test_bare_list_has_no_settings(self):
        text = json.dumps([{"id": "a", "name": "A", "price": 1, "period": "monthly", "startDate": "2024-01-01"}])
        subs, settings = parse_import(text)
        assert [s.id for s in subs] == ["a"]
        assert settings is None

    def test_calendar_links_are_not_imported(self):
        sub = make_subscription("s1", calendar=CalendarLink(calendar_id="primary", event_id="e1"))
        subs, _ = parse_import(json.dumps([sub.to_dict()]))
        assert subs[0].calendar is None

    def test_missing_id_gets_one(self):
        subs, _ = parse_import(json.dumps([{"name": "A", "price": 1, "period": "annual", "startDate": "2024-01-01"}]))
        assert len(subs[0].id) == 32

    def test_invalid_rows_are_skipped(self):
        rows = [
            {"id": "ok", "name": "Fine", "price": 2, "period": "monthly", "startDate": "2024-01-01"},
            {"id": "d", "name": "Bad date", "price": 2, "period": "monthly", "startDate": "2024-02-30"},
            {"id": "p", "name": "Bad period", "price": 2, "period": "weekly", "startDate": "2024-01-01"},
            {"id": "n", "name": "", "price": 2, "period": "monthly", "startDate": "2024-01-01"},
            42,
        ]
        subs, _ = parse_import(json.dumps(rows))
        assert [s.id for s in subs] == ["ok"]

    @pytest.mark.parametrize("text", ["{oops", '"a string"', '{"settings": {}}', "[]", '[{"name": "x"}]'])
    def test_unusable_input_raises(self, text):
        with pytest.raises(ImportFormatError):
            parse_import(text)


def test_merge_replaces_in_place_and_keeps_links():
    link = CalendarLink(calendar_id="primary", event_id="e1")
    existing = [make_subscription("s1", name="Old", calendar=link), make_subscription("s2", name="Keep")]
    imported = [make_subscription("s3", name="New"), make_subscription("s1", name="Renamed")]

    merged = merge_imported(existing, imported)

    assert [(s.id, s.name) for s in merged] == [("s1", "Renamed"), ("s2", "Keep"), ("s3", "New")]
    assert merged[0].calendar == link
    assert merged[2].calendar is None


class TestCsv:
    def test_every_cell_is_quoted(self):
        assert rows_to_csv([["a", 1], ['say "hi"', 2.5]]) == '"a","1"\n"say ""hi""","2.5"\n'

    def test_subscription_rows(self):
        rows = subscription_rows([make_subscription("s1", category="Video")])
        assert rows[0][0] == "ID"
        assert rows[1] == ["s1", "Streaming", "Video", 9.99, "USD", "monthly", "2024-01-31"]

    def test_monthly_rows_per_currency(self):
        subs = [
            make_subscription("u", price=10.0, start_date="2023-01-10"),
            make_subscription("e", price=5.0, currency="EUR", period="annual", start_date="2023-06-01"),
        ]

        rows = monthly_spend_rows(subs, date(2024, 2, 15))

        assert rows[0] == ["Month", "Amount", "Currency"]
        assert len(rows) == 1 + 2 * 12
        assert rows[1] == ["2023-03", 0.0, "EUR"]
        eur = {row[0]: row[1] for row in rows[1:] if row[2] == "EUR"}
        assert eur["2023-06"] == 5.0
        assert eur["2023-07"] == 0.0
        usd = [row[1] for row in rows[1:] if row[2] == "USD"]
        assert usd == [10.0] * 12

    def test_monthly_rows_for_absent_currency_are_zero(self):
        rows = monthly_spend_rows([make_subscription("u")], date(2024, 2, 15), currency="jpy")
        assert {row[2] for row in rows[1:]} == {"JPY"}
        assert all(row[1] == 0.0 for row in rows[1:])

    def test_annual_top_rows(self):
        subs = [
            make_subscription("a", name="Cheap", price=1.0),
            make_subscription("b", name="Dear", price=100.0, period="annual"),
            make_subscription("c", name="Mid", price=30.0, period="quarterly"),
        ]
        assert annual_top_rows(subs, "usd") == [
            ["Name", "AnnualAmount", "Currency"],
            ["Mid", 120.0, "USD"],
            ["Dear", 100.0, "USD"],
            ["Cheap", 12.0, "USD"],
        ]
