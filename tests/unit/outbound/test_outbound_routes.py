import pytest
from fastapi.testclient import TestClient

from app.core.backoff import BackoffPolicy
from app.features.outbound.api import router as router_module
from app.features.outbound.services.job_service import OutboundJobService
from app.features.outbound.services.runner import OutboundJobRunner
from app.main import app
from app.utils import audit_helpers

ADMIN = {"x-user-role": "admin"}
SUPERVISOR = {"x-user-role": "supervisor"}


@pytest.fixture
def client(monkeypatch, job_repo, providers, outbox, audit, fixed_rng):
    service = OutboundJobService(repository=job_repo, audit=audit)
    runner = OutboundJobRunner(
        repository=job_repo,
        providers=providers,
        outbox=outbox,
        audit=audit,
        backoff=BackoffPolicy(rng=fixed_rng),
    )
    monkeypatch.setattr(router_module, "outbound_job_service", service)
    monkeypatch.setattr(router_module, "outbound_runner", runner)
    monkeypatch.setattr(audit_helpers, "audit_logger", audit)
    return TestClient(app)


def test_create_job_with_inline_campaign(client, job_repo):
    response = client.post(
        "/outbound/jobs",
        headers=ADMIN,
        json={
            "channel": "sms",
            "targetAddress": "+34 600 111 218",
            "campaign": {"name": "Card shipped", "purpose": "service_notice"},
            "payloadJson": {"text": "Your card was shipped."},
        },
    )

    assert response.status_code == 201
    job = response.json()["job"]
    assert job["status"] == "queued"
    assert job["max_attempts"] == 3
    assert job["to_hint"] == "+34•••18"
    assert job_repo.stored(job["id"]).target_address == "+34600111218"


def test_create_job_validation_error_is_400(client):
    response = client.post(
        "/outbound/jobs",
        headers=ADMIN,
        json={"channel": "sms", "targetAddress": "+34600111218", "campaignId": "missing"},
    )

    assert response.status_code == 400
    assert response.json() == {
        "error": "validation_error",
        "message": "Unknown campaign: missing",
        "field": "campaignId",
    }


def test_routes_require_a_privileged_role(client):
    assert client.get("/outbound/jobs").status_code == 401
    assert client.get("/outbound/jobs", headers={"x-user-role": "agent"}).status_code == 403
    assert client.post("/outbound/jobs/run", headers=SUPERVISOR).status_code == 200
    assert client.get("/outbound/health", headers=SUPERVISOR).status_code == 403


def test_list_and_detail_are_audited(client, job_repo, audit):
    job = job_repo.add_job()

    listing = client.get("/outbound/jobs", headers=ADMIN, params={"status": "queued"})
    detail = client.get(f"/outbound/jobs/{job.id}", headers=ADMIN)

    assert listing.status_code == 200
    assert [item["id"] for item in listing.json()["items"]] == [job.id]
    assert detail.status_code == 200
    assert detail.json()["job"]["id"] == job.id
    assert audit.types() == ["outbound_jobs_listed", "outbound_job_viewed"]


def test_unknown_job_is_404(client):
    assert client.get("/outbound/jobs/missing", headers=ADMIN).status_code == 404
    assert client.post("/outbound/jobs/missing/cancel", headers=ADMIN).status_code == 404


def test_cancel_and_run(client, job_repo, providers):
    cancelled = job_repo.add_job()
    due = job_repo.add_job()

    cancel = client.post(
        f"/outbound/jobs/{cancelled.id}/cancel",
        headers=SUPERVISOR,
        json={"reasonCode": "customer_request"},
    )
    run = client.post("/outbound/jobs/run", headers=SUPERVISOR, json={"limit": 10})

    assert cancel.status_code == 200
    assert cancel.json()["job"]["status"] == "cancelled"
    assert cancel.json()["job"]["cancel_reason_code"] == "customer_request"
    assert run.status_code == 200
    assert run.json()["sent"] == 1
    assert [s["job_id"] for s in providers.sent] == [due.id]


def test_campaigns_and_health(client, job_repo):
    job_repo.add_job()

    campaigns = client.get("/outbound/campaigns", headers=ADMIN)
    health = client.get("/outbound/health", headers=ADMIN)

    assert len(campaigns.json()["campaigns"]) == 1
    assert health.json()["counts"]["queued"] == 1
