from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import httpx
import pytest

from judgesync.models_sqlalchemy.directory import Case, Court, Judge
from judgesync.services.courtlistener_client import CourtListenerClient
from judgesync.services.sync_normalization import NormalizedCase
from judgesync.services.sync_workers import SyncQueueManager
from judgesync.services.sync_workers.decision_sync import _add_case, _case_exists

API = "/api/rest/v4"
BASE = "https://www.courtlistener.com" + API

PEOPLE = {
    "77": {
        "id": 77,
        "name_full": "Jane Q. Doe",
        "positions": [
            {
                "position_type": "Judge",
                "court": {"full_name": "Superior Court of California, County of Los Angeles"},
                "date_start": "2015-01-05",
            }
        ],
        "educations": [{"school": {"name": "Stanford"}, "degree": "JD"}],
    },
}

COURTS = [
    {"id": "cal", "short_name": "Cal.", "full_name": "California Supreme Court", "jurisdiction": "S", "in_use": True},
    {"id": "ca9", "short_name": "9th Cir.", "full_name": "Court of Appeals for the Ninth Circuit", "jurisdiction": "F", "in_use": True},
]

OPINIONS = [
    {
        "id": 11,
        "cluster": {
            "id": 501,
            "case_name": "People v. Smith",
            "docket_number": "B301234",
            "date_filed": "2026-10-01",
            "precedential_status": "Published",
            "absolute_url": "/opinion/501/people-v-smith/",
        },
    },
    {"id": 12, "cluster": f"{BASE}/clusters/502/"},
    {"id": 13, "cluster": {"id": 501, "case_name": "People v. Smith"}},
]

CLUSTERS = {
    "502": {"id": 502, "case_name": "Doe v. Roe", "docket_number": "B309999", "date_filed": "2026-10-05"},
}


class FakeCourtListener:
    """Minimal routing of the CourtListener endpoints the sync routines use."""

    def __init__(self):
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path[len(API):]
        if path == "/courts/":
            return httpx.Response(200, json={"next": None, "results": COURTS})
        if path == "/opinions/":
            return httpx.Response(200, json={"next": None, "results": OPINIONS})
        if path == "/dockets/":
            return httpx.Response(200, json={"next": None, "results": []})
        if path.startswith("/people/"):
            person = PEOPLE.get(path.strip("/").split("/")[-1])
            return httpx.Response(200, json=person) if person else httpx.Response(404, json={"detail": "Not found."})
        if path.startswith("/clusters/"):
            cluster = CLUSTERS.get(path.strip("/").split("/")[-1])
            return httpx.Response(200, json=cluster) if cluster else httpx.Response(404)
        return httpx.Response(500, text=f"unexpected {path}")

    def paths(self):
        return [r.url.path[len(API):] for r in self.requests]


@pytest.fixture
def upstream():
    return FakeCourtListener()


@pytest.fixture
def sync_manager(session_factory, clock, upstream):
    def client_factory():
        return CourtListenerClient(
            "test-token",
            base_url=BASE,
            request_delay_seconds=0,
            transport=httpx.MockTransport(upstream),
        )

    return SyncQueueManager(
        session_factory,
        client_factory=client_factory,
        clock=clock,
        max_retries=0,
        retry_backoff_seconds=0,
    )


def _add_judge(db, judge_id, courtlistener_id, **kwargs):
    db.add(Judge(id=judge_id, name=kwargs.pop("name", "Judge " + judge_id), courtlistener_id=courtlistener_id, jurisdiction="CA", **kwargs))
    db.commit()


@pytest.mark.asyncio
async def test_court_sync_creates_then_leaves_courts_unchanged(sync_manager, session_factory):
    first = sync_manager.add_job("court", {"jurisdiction": "CA"})
    await sync_manager.run_until_idle()

    result = sync_manager.get_job(first)["result"]
    assert result["courts_fetched"] == 2
    assert result["courts_processed"] == 1
    assert result["courts_created"] == 1
    with session_factory() as db:
        court = db.query(Court).one()
        assert court.courtlistener_id == "cal"
        assert court.jurisdiction == "CA"
        assert court.in_use is True

    second = sync_manager.add_job("court", {"jurisdiction": "CA"})
    await sync_manager.run_until_idle()
    assert sync_manager.get_job(second)["result"]["courts_unchanged"] == 1


@pytest.mark.asyncio
async def test_judge_sync_refreshes_profiles(sync_manager, session_factory, upstream):
    with session_factory() as db:
        _add_judge(db, "j1", "77")
        _add_judge(db, "j2", "404")

    job_id = sync_manager.add_job("judge", {"batchSize": 10})
    await sync_manager.run_until_idle()

    job = sync_manager.get_job(job_id)
    assert job["status"] == "completed"
    assert job["result"] == {
        "judges_selected": 2,
        "judges_updated": 1,
        "profiles_enhanced": 1,
        "judges_not_found": 1,
    }
    with session_factory() as db:
        judge = db.get(Judge, "j1")
        assert judge.name == "Jane Q. Doe"
        assert judge.education == "Stanford (JD)"
        assert judge.appointed_date.isoformat() == "2015-01-05"
        assert judge.last_synced_at is not None
        assert db.get(Judge, "j2").last_synced_at is None
    assert sorted(upstream.paths()) == ["/people/404/", "/people/77/"]


@pytest.mark.asyncio
async def test_judge_sync_skips_fresh_profiles(sync_manager, session_factory, clock, upstream):
    with session_factory() as db:
        _add_judge(db, "j1", "77", last_synced_at=clock.current - timedelta(days=1))

    job_id = sync_manager.add_job("judge", {})
    await sync_manager.run_until_idle()

    assert sync_manager.get_job(job_id)["result"]["judges_selected"] == 0
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_decision_sync_records_one_case_per_cluster(sync_manager, session_factory, upstream):
    with session_factory() as db:
        _add_judge(db, "j1", "77")

    job_id = sync_manager.add_job("decision", {"daysSinceLast": 30, "maxDecisionsPerJudge": 50})
    await sync_manager.run_until_idle()

    job = sync_manager.get_job(job_id)
    assert job["status"] == "completed"
    assert job["result"] == {
        "judges_processed": 1,
        "opinions_fetched": 3,
        "dockets_fetched": 0,
        "cases_created": 2,
        "cases_skipped": 1,
    }
    with session_factory() as db:
        cases = {c.courtlistener_id: c for c in db.query(Case).all()}
        judge = db.get(Judge, "j1")
        assert judge.total_cases == 2
        assert judge.decisions_synced_at is not None
    assert set(cases) == {"cluster_501", "cluster_502"}
    assert cases["cluster_502"].case_name == "Doe v. Roe"
    assert cases["cluster_501"].jurisdiction == "CA"

    opinions_request = upstream.requests[0]
    assert opinions_request.url.params["author"] == "77"
    assert opinions_request.url.params["cluster__date_filed__gte"] == "2026-09-18"
    assert opinions_request.url.params["page_size"] == "50"
    assert upstream.paths().count("/clusters/502/") == 1


@pytest.mark.asyncio
async def test_decision_sync_is_idempotent(sync_manager, session_factory):
    with session_factory() as db:
        _add_judge(db, "j1", "77")

    sync_manager.add_job("decision", {"daysSinceLast": 30})
    await sync_manager.run_until_idle()
    again = sync_manager.add_job("decision", {"daysSinceLast": 30, "includeDockets": True})
    await sync_manager.run_until_idle()

    result = sync_manager.get_job(again)["result"]
    assert result["cases_created"] == 0
    assert result["cases_skipped"] == 3
    with session_factory() as db:
        assert db.query(Case).count() == 2


@pytest.mark.asyncio
async def test_upstream_failure_fails_job_and_rolls_back(sync_manager, session_factory, monkeypatch):
    with session_factory() as db:
        _add_judge(db, "j1", "77")
    original = FakeCourtListener.__call__

    def broken_clusters(self, request):
        if "/clusters/" in request.url.path:
            return httpx.Response(503, text="maintenance")
        return original(self, request)

    monkeypatch.setattr(FakeCourtListener, "__call__", broken_clusters)

    job_id = sync_manager.add_job("decision", {"daysSinceLast": 30})
    await sync_manager.run_until_idle()

    job = sync_manager.get_job(job_id)
    assert job["status"] == "failed"
    assert "503" in job["error_message"]
    with session_factory() as db:
        assert db.query(Case).count() == 0
        assert db.get(Judge, "j1").decisions_synced_at is None


@pytest.mark.asyncio
async def test_full_sync_runs_every_stage(sync_manager, session_factory):
    with session_factory() as db:
        _add_judge(db, "j1", "77")

    job_id = sync_manager.add_job("full", {"court": {"jurisdiction": "CA"}, "decision": {"daysSinceLast": 30}})
    await sync_manager.run_until_idle()

    result = sync_manager.get_job(job_id)["result"]
    assert result["court"]["courts_created"] == 1
    assert result["judge"]["judges_updated"] == 1
    assert result["decision"]["cases_created"] == 2


@pytest.mark.asyncio
async def test_request_delay_holds_between_back_to_back_jobs(session_factory, clock, upstream):
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    def client_factory():
        return CourtListenerClient(
            "test-token",
            base_url=BASE,
            request_delay_seconds=1.0,
            transport=httpx.MockTransport(upstream),
            sleep=record_sleep,
            clock=lambda: 10.0,
        )

    manager = SyncQueueManager(session_factory, client_factory=client_factory, clock=clock, max_retries=0)
    manager.add_job("court", {"jurisdiction": "CA"})
    manager.add_job("court", {"jurisdiction": "CA"})

    assert await manager.run_until_idle() == 2

    assert upstream.paths() == ["/courts/", "/courts/"]
    assert sleeps == [1.0]


def test_unflushed_case_with_same_docket_hash_is_a_duplicate(db):
    _add_judge(db, "j1", "77")
    judge = db.query(Judge).one()
    ctx = SimpleNamespace(now=datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc))
    first = NormalizedCase("docket_1", "A v. B", "B1", "Civil", "pending", docket_hash="abc123")
    twin = NormalizedCase("docket_2", "A v. B", "B1", "Civil", "pending", docket_hash="abc123")
    seen_ids, seen_hashes = set(), set()

    assert not _case_exists(db, first, seen_ids, seen_hashes)
    _add_case(db, judge, first, ctx)
    seen_ids.add(first.courtlistener_id)
    seen_hashes.add(first.docket_hash)

    assert _case_exists(db, twin, seen_ids, seen_hashes)
