"""HTTP tests for the packet admin and client routes."""
import pytest
from werkzeug.security import generate_password_hash

from app.portal import create_app
from app.portal.db import session_scope
from app.portal.models import Base, Permission, Role, User
from app.portal.modules.packets.notifications import Notifier


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.calls = []

    def notify_client_packet_published(self, user_id, packet_id):
        self.calls.append((user_id, packet_id))


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
        monkeypatch.delenv(k, raising=False)
    # Local artifact storage lives under the working directory.
    monkeypatch.chdir(tmp_path)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    app.extensions["portal_notifier"] = RecordingNotifier()

    with session_scope(app) as s:
        p_packets = Permission(key="packets.view", name="Packets: review and edit")
        p_population = Permission(key="population.view", name="Populations: view and assign")
        admin = Role(key="admin", name="Administrator")
        admin.permissions.extend([p_packets, p_population])
        client_role = Role(key="client", name="Client")
        coach = User(email="coach@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        coach.roles.append(admin)
        athlete = User(email="athlete@example.com", password_hash=generate_password_hash("pw"), is_active=True)
        athlete.roles.append(client_role)
        s.add_all([p_packets, p_population, admin, client_role, coach, athlete])
        s.flush()
        app.config["TEST_CLIENT_ID"] = athlete.id
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _login(client, email):
    r = client.post("/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200
    return r


def _create(client, user_id, content=None, packet_type="GENERAL"):
    r = client.post(
        "/admin/packets/",
        json={
            "user_id": user_id,
            "packet_type": packet_type,
            "content": content
            if content is not None
            else {"exercises": [{"id": "ex-1", "name": "Push-up", "sets": 3, "reps": "12"}]},
        },
    )
    return r


def test_anonymous_is_rejected(client):
    r = client.get("/admin/packets/")
    assert r.status_code == 401
    assert r.json["error"] == "unauthenticated"
    assert client.get("/packets/").status_code == 401


def test_bad_login(client):
    r = client.post("/auth/login", json={"email": "coach@example.com", "password": "nope"})
    assert r.status_code == 401
    assert r.json["ok"] is False


def test_client_cannot_reach_admin_routes(app, client):
    _login(client, "athlete@example.com")
    assert client.get("/admin/packets/").status_code == 403
    r = _create(client, app.config["TEST_CLIENT_ID"])
    assert r.status_code == 403


def test_full_packet_flow(app, client):
    client_id = app.config["TEST_CLIENT_ID"]
    _login(client, "coach@example.com")

    r = _create(client, client_id)
    assert r.status_code == 201
    packet = r.json["data"]
    pid = packet["id"]
    assert (packet["status"], packet["version"]) == ("DRAFT", 1)

    r = client.get("/admin/packets/")
    assert [row["id"] for row in r.json["data"]] == [pid]
    assert "content" not in r.json["data"][0]

    r = client.post(f"/admin/packets/{pid}/exercises/0", json={"expected_version": 1, "updates": {"sets": 4}})
    assert r.status_code == 200
    assert r.json["data"]["version"] == 2
    assert r.json["data"]["content"]["exercises"][0]["sets"] == 4

    # stale version
    r = client.post(f"/admin/packets/{pid}/exercises/0", json={"expected_version": 1, "updates": {"sets": 5}})
    assert r.status_code == 409
    assert r.json["error"] == "conflict"

    r = client.post(f"/admin/packets/{pid}/coach-notes", json={"expected_version": 2, "notes": "Nice form"})
    assert r.json["data"]["coach_notes"] == "Nice form"

    r = client.post(f"/admin/packets/{pid}/status/publish", json={"expected_version": 3})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "PUBLISHED"
    assert r.json["data"]["rendered_artifact_ref"].endswith(".json")
    assert app.extensions["portal_notifier"].calls == [(client_id, pid)]

    # review queue only lists drafts/unpublished by default
    assert client.get("/admin/packets/").json["data"] == []
    assert [row["id"] for row in client.get("/admin/packets/?status=PUBLISHED").json["data"]] == [pid]

    r = client.get(f"/admin/packets/{pid}/versions")
    assert [v["version"] for v in r.json["data"]] == [3, 2, 1]

    r = client.post(f"/admin/packets/{pid}/versions/1/restore", json={"expected_version": 3})
    assert r.status_code == 201
    assert (r.json["data"]["version"], r.json["data"]["restore_of"]) == (4, 1)

    r = client.get(f"/admin/packets/{pid}")
    assert r.json["data"]["content"]["exercises"][0]["sets"] == 3
    assert r.json["data"]["status"] == "PUBLISHED"

    r = client.post(f"/admin/packets/{pid}/render")
    assert r.status_code == 200


def test_client_sees_only_published_packets(app, client):
    client_id = app.config["TEST_CLIENT_ID"]
    _login(client, "coach@example.com")
    published = _create(client, client_id).json["data"]["id"]
    draft = _create(client, client_id).json["data"]["id"]
    client.post(f"/admin/packets/{published}/status/publish", json={"expected_version": 1})
    client.post("/auth/logout")

    _login(client, "athlete@example.com")
    r = client.get("/packets/")
    assert [row["id"] for row in r.json["data"]] == [published]
    assert client.get(f"/packets/{published}").status_code == 200
    assert client.get(f"/packets/{draft}").status_code == 404

    r = client.get(f"/packets/{published}/artifact")
    assert r.status_code == 200
    assert r.mimetype == "application/json"


def test_client_list_refreshes_after_unpublish(app):
    client_id = app.config["TEST_CLIENT_ID"]
    coach = app.test_client()
    athlete = app.test_client()
    _login(coach, "coach@example.com")
    _login(athlete, "athlete@example.com")

    pid = _create(coach, client_id).json["data"]["id"]
    coach.post(f"/admin/packets/{pid}/status/publish", json={"expected_version": 1})
    assert len(athlete.get("/packets/").json["data"]) == 1

    coach.post(f"/admin/packets/{pid}/status/unpublish", json={"expected_version": 1})
    assert athlete.get("/packets/").json["data"] == []


def test_error_mapping(app, client):
    client_id = app.config["TEST_CLIENT_ID"]
    _login(client, "coach@example.com")

    r = _create(client, client_id, content={"meal_plan": []}, packet_type="RECOVERY")
    assert r.status_code == 422
    assert r.json["error"] == "content_shape_mismatch"

    pid = _create(client, client_id).json["data"]["id"]
    r = client.post(f"/admin/packets/{pid}/status/unpublish", json={"expected_version": 1})
    assert r.status_code == 409
    assert r.json["error"] == "invalid_transition"

    r = client.post(f"/admin/packets/{pid}/status/launch", json={"expected_version": 1})
    assert r.status_code == 400

    r = client.post(f"/admin/packets/{pid}/coach-notes", json={"notes": "missing version"})
    assert r.status_code == 400

    r = client.get("/admin/packets/99999")
    assert r.status_code == 404
    r = client.post("/admin/packets/99999/status/publish", json={"expected_version": 1})
    assert r.status_code == 404

    assert client.get("/admin/packets/?status=BOGUS").status_code == 400


def test_status_change_accepts_non_string_reason(app, client):
    _login(client, "coach@example.com")
    pid = _create(client, app.config["TEST_CLIENT_ID"]).json["data"]["id"]

    r = client.post(f"/admin/packets/{pid}/status/publish", json={"expected_version": 1, "reason": 123})
    assert r.status_code == 200
    r = client.post(f"/admin/packets/{pid}/status/unpublish", json={"expected_version": 1, "reason": {"why": "typo"}})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "UNPUBLISHED"


def test_exercise_listing(app, client):
    client_id = app.config["TEST_CLIENT_ID"]
    _login(client, "coach@example.com")
    pid = _create(client, client_id).json["data"]["id"]

    r = client.get(f"/admin/packets/{pid}/exercises")
    assert r.status_code == 200
    assert [(x["id"], x["name"], x["sets"]) for x in r.json["data"]] == [("ex-1", "Push-up", 3)]

    r = client.get(f"/admin/packets/{pid}/exercises?phase=1")
    assert r.status_code == 422
    assert r.json["error"] == "content_shape_mismatch"

    assert client.get("/admin/packets/99999/exercises").status_code == 404


def test_clear_artifact_route(app, client):
    client_id = app.config["TEST_CLIENT_ID"]
    _login(client, "coach@example.com")
    pid = _create(client, client_id).json["data"]["id"]
    client.post(f"/admin/packets/{pid}/status/publish", json={"expected_version": 1})

    r = client.post(f"/admin/packets/{pid}/artifact/clear", json={"reason": "re-layout"})
    assert r.status_code == 200
    assert r.json["data"]["rendered_artifact_ref"] is None
    assert r.json["data"]["status"] == "PUBLISHED"

    r = client.post(f"/admin/packets/{pid}/artifact/clear")
    assert r.status_code == 404
    client.post("/auth/logout")

    _login(client, "athlete@example.com")
    assert client.get(f"/packets/{pid}/artifact").status_code == 404
    assert client.post(f"/admin/packets/{pid}/artifact/clear").status_code == 403
