"""Tests for camp_spine.ops.intake — request processing and the domain race."""

import threading
from dataclasses import replace

import pytest

from camp_spine.core.repositories import JobRepository, OrganizationRepository, SourceRepository
from camp_spine.core.schema import create_core_tables
from camp_spine.ops.context import OperationContext
from camp_spine.ops.intake import (
    CITY_NOT_FOUND,
    MISSING_WEBSITE,
    get_request,
    list_requests,
    process_request,
    submit_request,
)
from camp_spine.ops.requests import ListCampRequestsRequest, SubmitCampRequest
from camp_spine.ops.sqlite_conn import SqliteConnection


@pytest.fixture()
def family_ctx(ctx):
    return replace(ctx, user="fam_1")


def _submit(ctx, url="https://www.sunnycamp.org/summer", city="city_portland", **kw):
    result = submit_request(
        ctx,
        SubmitCampRequest(city_id=city, camp_name=kw.pop("camp_name", "Sunny Camp"), website_url=url, **kw),
    )
    assert result.success, result.error
    return result.data["id"]


class TestSubmit:
    def test_stores_pending_with_family(self, family_ctx):
        request_id = _submit(family_ctx, notes="  two kids ")
        detail = get_request(family_ctx, request_id).data
        assert detail.status == "pending"
        assert detail.family_id == "fam_1"
        assert detail.notes == "two kids"

    def test_blank_camp_name(self, ctx):
        result = submit_request(ctx, SubmitCampRequest(city_id="city_portland", camp_name="  "))
        assert result.error.code == "VALIDATION_FAILED"

    def test_dry_run(self, dry_ctx):
        result = submit_request(dry_ctx, SubmitCampRequest(city_id="city_portland", camp_name="Sunny"))
        assert result.data == {"dry_run": True, "would_submit": "Sunny"}
        assert list_requests(dry_ctx, ListCampRequestsRequest()).total == 0


class TestProcess:
    def test_new_domain_creates_source_org_and_job(self, family_ctx):
        request_id = _submit(family_ctx, organization_name="Sunny Camps Inc")

        result = process_request(family_ctx, request_id)

        assert result.success
        detail = result.data
        assert detail.status == "completed"
        assert detail.processed_at == family_ctx.now_iso()
        assert detail.error_message is None

        source = SourceRepository(family_ctx.conn).get(detail.scrape_source_id)
        assert source["domain"] == "sunnycamp.org"
        assert source["url"] == "https://www.sunnycamp.org/summer"
        assert source["requested_by"] == "fam_1"
        assert source["organization_id"] == detail.organization_id

        org = OrganizationRepository(family_ctx.conn).get(detail.organization_id)
        assert org["slug"] == "sunnycamp-org"
        assert org["name"] == "Sunny Camps Inc"

        job = JobRepository(family_ctx.conn).get(result.metadata["job_id"])
        assert job["status"] == "queued"
        assert job["triggered_by"] == f"request:{request_id}"

    def test_city_slug_is_accepted(self, ctx):
        request_id = _submit(ctx, city="portland")
        assert process_request(ctx, request_id).data.status == "completed"

    def test_unknown_city(self, ctx):
        request_id = _submit(ctx, city="city_atlantis")
        detail = process_request(ctx, request_id).data
        assert detail.status == "failed"
        assert detail.error_message == CITY_NOT_FOUND

    def test_missing_website(self, ctx):
        request_id = _submit(ctx, url=None)
        detail = process_request(ctx, request_id).data
        assert detail.status == "failed"
        assert detail.error_message == MISSING_WEBSITE

    def test_invalid_url(self, ctx):
        request_id = _submit(ctx, url="not a url")
        detail = process_request(ctx, request_id).data
        assert detail.status == "failed"
        assert detail.error_message.startswith("Invalid URL")
        assert SourceRepository(ctx.conn).list_sources()[1] == 0

    def test_existing_domain_is_duplicate(self, ctx, seed):
        existing = seed.source("sunnycamp.org")
        request_id = _submit(ctx, url="http://SunnyCamp.org/register")

        detail = process_request(ctx, request_id).data

        assert detail.status == "duplicate"
        assert detail.scrape_source_id == existing["id"]
        assert JobRepository(ctx.conn).list_jobs(source_id=existing["id"])[1] == 0

    def test_terminal_request_returned_unchanged(self, ctx, clock):
        request_id = _submit(ctx)
        first = process_request(ctx, request_id).data
        clock.advance(hours=1)

        again = process_request(ctx, request_id)

        assert again.success
        assert again.data == first
        assert SourceRepository(ctx.conn).list_sources()[1] == 1

    def test_unknown_request(self, ctx):
        assert process_request(ctx, "req_missing").error.code == "NOT_FOUND"

    def test_each_domain_gets_its_own_organization(self, ctx):
        first = process_request(ctx, _submit(ctx, url="https://sunnycamp.org")).data
        other = process_request(ctx, _submit(ctx, url="https://other.org")).data
        assert first.organization_id != other.organization_id

    def test_domains_with_the_same_base_slug_get_separate_organizations(self, ctx):
        dashed = process_request(ctx, _submit(ctx, url="https://a-b.org")).data
        dotted = process_request(ctx, _submit(ctx, url="https://a.b.org")).data

        assert (dashed.status, dotted.status) == ("completed", "completed")
        assert dashed.organization_id != dotted.organization_id
        orgs = OrganizationRepository(ctx.conn)
        assert orgs.get(dashed.organization_id)["slug"] == "a-b-org"
        assert orgs.get(dotted.organization_id)["slug"] == "a-b-org-2"


class TestCreationRace:
    def test_unique_violation_resolves_to_winner(self, ctx, seed, monkeypatch):
        """The domain check passes, then another writer wins the insert."""
        winner = seed.source("sunnycamp.org")
        request_id = _submit(ctx)

        real_lookup = SourceRepository.get_by_domain
        calls = {"n": 0}

        def stale_first_lookup(self, domain):
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return real_lookup(self, domain)

        monkeypatch.setattr(SourceRepository, "get_by_domain", stale_first_lookup)

        detail = process_request(ctx, request_id).data

        assert detail.status == "duplicate"
        assert detail.scrape_source_id == winner["id"]
        # The loser's organization insert rolled back with the source insert.
        assert OrganizationRepository(ctx.conn).get_by_slug("sunnycamp-org") is None

    @pytest.mark.slow
    def test_concurrent_processing_creates_one_source(self, tmp_path, settings, clock):
        db = tmp_path / "race.db"
        setup = SqliteConnection(db)
        create_core_tables(setup)
        setup_ctx = OperationContext(conn=setup, settings=settings, clock=clock)
        ids = [_submit(setup_ctx, url="https://sunnycamp.org"), _submit(setup_ctx, url="sunnycamp.org/x")]

        barrier = threading.Barrier(len(ids))
        outcomes: dict[str, str] = {}

        def worker(request_id: str) -> None:
            conn = SqliteConnection(db)
            try:
                wctx = OperationContext(conn=conn, settings=settings, clock=clock)
                barrier.wait()
                outcomes[request_id] = process_request(wctx, request_id).data.status
            finally:
                conn.close()

        threads = [threading.Thread(target=worker, args=(rid,)) for rid in ids]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes.values()) == ["completed", "duplicate"]
        rows, total = SourceRepository(setup).list_sources()
        assert total == 1
        details = [get_request(setup_ctx, rid).data for rid in ids]
        assert {d.scrape_source_id for d in details} == {rows[0]["id"]}
        setup.close()


def test_list_requests_filters(ctx):
    _submit(ctx)
    _submit(ctx, city="city_boston")
    process_request(ctx, _submit(ctx, url=None))

    assert list_requests(ctx, ListCampRequestsRequest(status="pending")).total == 2
    assert list_requests(ctx, ListCampRequestsRequest(city_id="city_boston")).total == 1
    failed = list_requests(ctx, ListCampRequestsRequest(status="failed"))
    assert [r.error_message for r in failed.data] == [MISSING_WEBSITE]
