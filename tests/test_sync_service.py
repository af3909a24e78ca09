"""Tests for the sync orchestrator: batch and single-quote modes.

Runs the real resolver, upserters and mapping against FakeMonday and
FakeSimpro, so these double as end-to-end pipeline tests.
"""

from __future__ import annotations

import pytest

from src.quotesync.sync.schemas import Quote
from src.quotesync.sync.service import HEALTH_CHECK_FAILED
from tests.fakes import ACCOUNTS, CONTACTS, DEALS, FakeMonday, FakeSimpro, build_sync_service, make_quote_json


def _columns_written(monday: FakeMonday) -> list[str]:
    return [call[2] for call in monday.calls_of("change_column_value")]


# ── Batch mode ──


class TestSyncAll:
    @pytest.mark.asyncio
    async def test_creates_account_contacts_deal_and_links(self, monday, simpro):
        result = await build_sync_service(monday, simpro).sync_all()

        assert result.success is True
        assert result.errors == []
        m = result.metrics
        assert (m.quotes_processed, m.accounts_created, m.contacts_created, m.deals_created) == (1, 1, 2, 1)
        assert len(monday.boards[ACCOUNTS]) == 1
        assert [i["name"] for i in monday.boards[CONTACTS]] == ["Jane Citizen", "Sam Sparky"]
        assert [i["name"] for i in monday.boards[DEALS]] == ["Quote #501 - Switchboard upgrade"]
        assert sorted(_columns_written(monday)) == sorted(
            ["deal_stage", "deal_account", "deal_contacts", "contact_deal", "contact_deal"]
        )

    @pytest.mark.asyncio
    async def test_invalid_contact_email_does_not_fail_the_run(self, monday, simpro):
        await build_sync_service(monday, simpro).sync_all()
        site_contact = monday.boards[CONTACTS][1]["columns"]
        assert "contact_email" not in site_contact
        assert site_contact["contact_phone"] == "+61400111222"

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, monday, simpro):
        """A repeat run reuses every item and writes nothing."""
        service = build_sync_service(monday, simpro)
        await service.sync_all()
        calls_after_first = len(monday.calls_of("change_column_value"))

        result = await service.sync_all()

        m = result.metrics
        assert (m.accounts_reused, m.contacts_reused, m.deals_created, m.deals_updated) == (1, 2, 0, 0)
        assert len(monday.boards[DEALS]) == 1
        assert len(monday.boards[CONTACTS]) == 2
        assert len(monday.calls_of("create_item")) == 4
        assert len(monday.calls_of("change_column_value")) == calls_after_first

    @pytest.mark.asyncio
    async def test_value_filter_runs_before_detail_fetch(self, monday):
        simpro = FakeSimpro([make_quote_json(501), make_quote_json(502, Total={"ExTax": 12000})])
        result = await build_sync_service(monday, simpro).sync_all()
        assert simpro.detail_calls == [501]
        assert result.metrics.quotes_skipped == 1
        assert result.metrics.quotes_processed == 1

    @pytest.mark.asyncio
    async def test_ineligible_detail_is_skipped(self, monday):
        simpro = FakeSimpro([make_quote_json(501, Stage="Pending")])
        result = await build_sync_service(monday, simpro).sync_all()
        assert result.success is True
        assert result.metrics.quotes_skipped == 1
        assert monday.calls_of("create_item") == []

    @pytest.mark.asyncio
    async def test_limit_caps_quotes_fetched_and_processed(self, monday):
        simpro = FakeSimpro([make_quote_json(n) for n in (501, 502, 503)])
        result = await build_sync_service(monday, simpro).sync_all(limit=2)
        assert simpro.detail_calls == [501, 502]
        assert result.metrics.deals_created == 2

    @pytest.mark.asyncio
    async def test_unhealthy_system_aborts_before_any_work(self, monday, simpro):
        simpro.healthy = False
        result = await build_sync_service(monday, simpro).sync_all()
        assert result.success is False
        assert result.reason == HEALTH_CHECK_FAILED
        assert result.errors == ["simpro: simpro connection test failed"]
        assert simpro.detail_calls == []
        assert monday.calls == []

    @pytest.mark.asyncio
    async def test_failing_quote_does_not_stop_the_batch(self, monday):
        simpro = FakeSimpro([make_quote_json(501, Customer=None), make_quote_json(502)])
        result = await build_sync_service(monday, simpro).sync_all()
        assert result.success is False
        assert result.message.startswith("Partial success: 1 quotes synced with 1 errors")
        assert "Quote 501" in result.errors[0]
        assert result.metrics.deals_created == 1

    @pytest.mark.asyncio
    async def test_account_failure_still_creates_deal(self, monday, simpro):
        monday.fail_create_on.add(ACCOUNTS)
        result = await build_sync_service(monday, simpro).sync_all()
        assert len(result.errors) == 1
        assert "account 'Acme Pty Ltd' failed" in result.errors[0]
        assert result.metrics.deals_created == 1
        assert "deal_account" not in _columns_written(monday)

    @pytest.mark.asyncio
    async def test_link_failure_is_counted_not_fatal(self, monday, simpro):
        monday.fail_columns.add("deal_account")
        result = await build_sync_service(monday, simpro).sync_all()
        assert result.success is True
        assert result.metrics.links_failed == 1
        assert result.metrics.deals_created == 1


    @pytest.mark.asyncio
    async def test_rejected_backfill_keeps_contact_linked(self, monday, simpro):
        """A contact whose phone backfill fails is still reused and linked to the new deal."""
        jane = monday.add_item(CONTACTS, "Jane Citizen", contact_simpro="71", contact_email="jane@acme.example")
        monday.fail_columns = {"contact_phone"}

        result = await build_sync_service(monday, simpro).sync_all()

        assert result.success is True
        assert result.errors == []
        assert result.metrics.contacts_reused == 1
        linked = monday.boards[DEALS][0]["columns"]["deal_contacts"].split(", ")
        assert jane in linked
        assert len(linked) == 2

# ── Single-quote mode ──


class TestSyncQuote:
    @pytest.mark.asyncio
    async def test_low_value_quote_is_skipped_without_board_calls(self, monday):
        simpro = FakeSimpro([make_quote_json(501, Total={"ExTax": 12000})])
        result = await build_sync_service(monday, simpro).sync_quote(501)
        assert result.success is True
        assert result.skipped is True
        assert "below minimum" in result.reason
        assert monday.calls == []

    @pytest.mark.asyncio
    async def test_eligible_quote_reports_deal_id(self, monday, simpro):
        result = await build_sync_service(monday, simpro).sync_quote(501)
        assert result.success is True
        assert result.deal_item_id == monday.boards[DEALS][0]["id"]

    @pytest.mark.asyncio
    async def test_missing_quote_fails(self, monday, simpro):
        result = await build_sync_service(monday, simpro).sync_quote(999)
        assert result.success is False
        assert "Quote 999" in result.errors[0]

    @pytest.mark.asyncio
    async def test_each_sync_reads_current_contact_details(self, monday, simpro):
        """A contact fixed in simPRO between syncs is re-fetched and backfilled."""
        service = build_sync_service(monday, simpro)
        await service.sync_quote(501)
        sam = next(i for i in monday.boards[CONTACTS] if i["name"] == "Sam Sparky")
        assert "contact_email" not in sam["columns"]

        simpro.contacts[72]["Email"] = "sam@acme.example"
        result = await service.sync_quote(501)

        assert result.success is True
        assert simpro.contact_calls.count(72) == 2
        assert sam["columns"]["contact_email"] == "sam@acme.example"

    @pytest.mark.asyncio
    async def test_salesperson_becomes_owner(self, monday, simpro):
        await build_sync_service(monday, simpro, owners={"Pat Seller": 77}).sync_quote(501)
        _, _, columns = monday.calls_of("create_item")[-1]
        assert columns["deal_owner"] == {"personsAndTeams": [{"id": 77, "kind": "person"}]}


class TestUpdateExistingDeal:
    @pytest.mark.asyncio
    async def test_won_status_sets_stage(self, monday, simpro):
        item_id = monday.add_item(DEALS, "Deal", deal_simpro="501")
        quote = Quote.model_validate(make_quote_json(501, Status={"Name": "Quote: Won"}, IsClosed=True))
        result = await build_sync_service(monday, simpro).update_existing_deal(quote, item_id)
        assert result.success is True
        assert result.metrics.deals_updated == 1
        assert result.message == f"Deal {item_id} stage set to Won"
        assert monday.calls_of("change_column_value") == [(DEALS, item_id, "deal_stage", {"index": 2})]

    @pytest.mark.asyncio
    async def test_non_terminal_status_leaves_deal(self, monday, simpro):
        item_id = monday.add_item(DEALS, "Deal", deal_simpro="501")
        quote = Quote.model_validate(make_quote_json(501))
        result = await build_sync_service(monday, simpro).update_existing_deal(quote, item_id)
        assert result.message == f"Deal {item_id} unchanged"
        assert monday.calls_of("change_column_value") == []


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_reports_each_system(self, monday, simpro):
        monday.healthy = False
        report = await build_sync_service(monday, simpro).health_check()
        assert report.healthy is False
        assert {s.name: s.healthy for s in report.systems} == {"simpro": True, "monday": False}
