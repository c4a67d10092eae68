import pytest
from httpx import ASGITransport, AsyncClient

from app.core.cache import CacheManager
from app.core.security import create_access_token
from app.main import create_app
from app.models import Report


def bearer(identity, role):
    return {"Authorization": f"Bearer {create_access_token({'sub': identity, 'role': role})}"}


ADMIN = bearer("admin-1", "admin")


@pytest.fixture
async def client(workers, session_factory, test_settings):
    app = create_app(
        registry=workers,
        session_factory=session_factory,
        cache=CacheManager(test_settings),
        run_scheduler=False,
    )
    # ASGITransport does not run the lifespan
    app.state.registry = workers
    app.state.session_factory = session_factory
    app.state.cache = CacheManager(test_settings)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


async def test_health_reports_queue_counts(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["cache"]["enabled"] is False
    assert {queue["key"] for queue in body["queues"]} >= {"email", "notification", "report"}


async def test_queue_endpoints_are_admin_only(client):
    assert (await client.get("/api/v1/queues")).status_code in (401, 403)
    assert (await client.get("/api/v1/queues", headers=bearer("s-1", "student"))).status_code == 403
    assert (await client.get("/api/v1/queues", headers={"Authorization": "Bearer junk"})).status_code == 401

    response = await client.get("/api/v1/queues", headers=ADMIN)
    assert response.status_code == 200
    email = next(queue for queue in response.json()["queues"] if queue["key"] == "email")
    assert email["counts"] == {"waiting": 0, "active": 0, "delayed": 0, "completed": 0, "failed": 0}


async def test_list_and_inspect_jobs(client, workers):
    job = await workers.enqueue("email", "send-email", {"to": "a@b.test", "subject": "Hi", "text": "Hello"})

    response = await client.get("/api/v1/queues/email/jobs", params={"states": "waiting"}, headers=ADMIN)
    assert response.status_code == 200
    [listed] = response.json()["jobs"]
    assert listed["id"] == job.id
    assert "lock_token" not in listed

    response = await client.get(f"/api/v1/queues/email/jobs/{job.id}", headers=ADMIN)
    assert response.json()["payload"]["subject"] == "Hi"

    assert (await client.get("/api/v1/queues/email/jobs/999", headers=ADMIN)).status_code == 404
    response = await client.get("/api/v1/queues/nope", headers=ADMIN)
    assert response.status_code == 404
    assert response.json()["error"] == "QueueNotRegisteredError"


async def test_promote_retry_and_remove(client, workers):
    delayed = await workers.enqueue("email", "send-email", {"to": "a@b.test"}, delay_ms=60_000)
    response = await client.post(f"/api/v1/queues/email/jobs/{delayed.id}/promote", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["status"] == "waiting"

    # Waiting jobs cannot be promoted
    response = await client.post(f"/api/v1/queues/email/jobs/{delayed.id}/promote", headers=ADMIN)
    assert response.status_code == 409

    await workers.enqueue(
        "notification", "notify-student", {"studentId": "s-1", "title": "Hi", "message": "x", "priority": "urgent"}
    )
    [failed] = await workers.drain("notification")
    response = await client.post(f"/api/v1/queues/notification/jobs/{failed.id}/retry", headers=ADMIN)
    assert response.status_code == 200
    assert (response.json()["status"], response.json()["attempts_made"]) == ("waiting", 0)

    response = await client.delete(f"/api/v1/queues/notification/jobs/{failed.id}", headers=ADMIN)
    assert response.status_code == 204
    assert await workers.get_queue("notification").get_job(failed.id) is None


async def test_report_status_visibility(client, session_factory, seed):
    student = await seed.student()
    async with session_factory() as session:
        session.add(
            Report(
                report_code="RPT-VISIBLE",
                type="nep",
                status="pending",
                student_id=str(student.id),
                internship_id="i-1",
                requested_by=str(student.id),
            )
        )
        await session.commit()

    response = await client.get("/api/v1/reports/RPT-VISIBLE", headers=bearer(str(student.id), "student"))
    assert response.status_code == 200
    assert response.json()["reportId"] == "RPT-VISIBLE"
    assert response.json()["fileUrl"] is None

    assert (await client.get("/api/v1/reports/RPT-VISIBLE", headers=ADMIN)).status_code == 200
    response = await client.get("/api/v1/reports/RPT-VISIBLE", headers=bearer("someone-else", "student"))
    assert response.status_code == 403
    assert (await client.get("/api/v1/reports/RPT-MISSING", headers=ADMIN)).status_code == 404
