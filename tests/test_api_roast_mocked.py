import httpx
import respx
from fastapi.testclient import TestClient

from roaster.main import app
from roaster.github import GitHubNotFound, GitHubRateLimited, GitHubSchemaError
from roaster.roast import RoastError
from conftest import GEMINI_HOST, GITHUB_HOST, gemini_call, gemini_text, sse


def _fail_with(exc):
    async def fake_roast_user(*args, **kwargs):
        raise exc

    return fake_roast_user


def test_health():
    client = TestClient(app)
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/health/live").json() == {"status": "alive"}
    assert client.get("/health/ready").json() == {"status": "ready"}


def test_roast_happy_path_mocked(monkeypatch):
    async def fake_roast_user(username, on_chunk=None):
        return f"{username} writes commit messages like ransom notes."

    monkeypatch.setattr("roaster.main.roast_user", fake_roast_user)

    client = TestClient(app)
    resp = client.post("/roast", json={"username": "octocat"})

    assert resp.status_code == 200, resp.text
    assert resp.json() == {"username": "octocat", "roast": "octocat writes commit messages like ransom notes."}


def test_roast_end_to_end_mocked(octocat_repo):
    with respx.mock(assert_all_called=False) as rs:
        rs.get(host=GITHUB_HOST, path="/users/octocat/repos").respond(200, json=[octocat_repo])
        rs.post(host=GEMINI_HOST, path__startswith="/v1beta/models/").respond(
            200, content=sse(gemini_text("1500 stars "), gemini_text("for Hello-World. Peak."))
        )

        client = TestClient(app)
        resp = client.post("/roast", json={"username": "octocat"})

    assert resp.status_code == 200, resp.text
    assert resp.json()["roast"] == "1500 stars for Hello-World. Peak."


def test_roast_bad_username():
    client = TestClient(app)
    resp = client.post("/roast", json={"username": "no spaces allowed"})
    assert resp.status_code == 400
    assert resp.json()["status"] == "error"


def test_roast_missing_username():
    client = TestClient(app)
    assert client.post("/roast", json={}).status_code == 422


def test_roast_error_mapping(monkeypatch):
    client = TestClient(app)
    cases = [
        (GitHubNotFound("GitHub user not found (404)."), 404),
        (GitHubRateLimited("GitHub API rate limit exceeded."), 429),
        (GitHubSchemaError("repository list", ["0.name"]), 502),
        (RoastError("Model returned an empty roast."), 502),
    ]
    for exc, status in cases:
        monkeypatch.setattr("roaster.main.roast_user", _fail_with(exc))
        resp = client.post("/roast", json={"username": "octocat"})
        assert resp.status_code == status, resp.text
        assert resp.json() == {"status": "error", "message": str(exc)}


def test_roast_unexpected_error_hides_detail_outside_dev(monkeypatch):
    monkeypatch.setenv("ENV", "prod")
    monkeypatch.setattr("roaster.main.roast_user", _fail_with(RuntimeError("secret internals")))

    resp = TestClient(app).post("/roast", json={"username": "octocat"})

    assert resp.status_code == 500
    assert "secret internals" not in resp.text


def test_roast_stream(monkeypatch):
    async def fake_stream_roast(username):
        for chunk in ["Hey ", "there, ", "coder."]:
            yield chunk

    monkeypatch.setattr("roaster.main.stream_roast", fake_stream_roast)

    resp = TestClient(app).post("/roast/stream", json={"username": "octocat"})

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert resp.text == "Hey there, coder."


def test_roast_stream_bad_username():
    resp = TestClient(app).post("/roast/stream", json={"username": "-"})
    assert resp.status_code == 400


def test_roast_stream_unknown_user_is_404():
    with respx.mock() as rs:
        rs.get(host=GITHUB_HOST, path="/users/ghost/events").respond(404, json={"message": "Not Found"})
        rs.post(host=GEMINI_HOST, path__startswith="/v1beta/models/").respond(
            200, content=sse(gemini_call("get_github_commits", username="ghost"))
        )

        resp = TestClient(app, raise_server_exceptions=False).post("/roast/stream", json={"username": "ghost"})

    assert resp.status_code == 404
    assert resp.json() == {"status": "error", "message": "GitHub user not found (404)."}


def test_roast_stream_model_failure_is_502():
    with respx.mock() as rs:
        rs.post(host=GEMINI_HOST, path__startswith="/v1beta/models/").respond(500, text="backend exploded")

        resp = TestClient(app, raise_server_exceptions=False).post("/roast/stream", json={"username": "octocat"})

    assert resp.status_code == 502
    assert resp.json()["status"] == "error"


def test_roast_stream_rate_limited_is_429(monkeypatch):
    async def fake_stream_roast(username):
        raise GitHubRateLimited("GitHub API rate limit exceeded.")
        yield  # pragma: no cover

    monkeypatch.setattr("roaster.main.stream_roast", fake_stream_roast)

    resp = TestClient(app).post("/roast/stream", json={"username": "octocat"})

    assert resp.status_code == 429


def test_roast_stream_empty_roast_is_502(monkeypatch):
    async def fake_stream_roast(username):
        return
        yield  # pragma: no cover

    monkeypatch.setattr("roaster.main.stream_roast", fake_stream_roast)

    resp = TestClient(app).post("/roast/stream", json={"username": "octocat"})

    assert resp.status_code == 502
    assert resp.json()["message"] == "Model returned an empty roast."


def test_roast_httpx_request_error_is_502():
    with respx.mock() as rs:
        rs.post(host=GEMINI_HOST, path__startswith="/v1beta/models/").mock(side_effect=httpx.TooManyRedirects("loop"))

        resp = TestClient(app).post("/roast", json={"username": "octocat"})

    assert resp.status_code == 502
