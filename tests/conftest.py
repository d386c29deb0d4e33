import json
import pytest

import sys
from pathlib import Path

# Ensure repo root is on sys.path so `import roaster` works in tests.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


GITHUB_HOST = "api.github.com"
GEMINI_HOST = "generativelanguage.googleapis.com"


def sse(*events) -> bytes:
    """Encode events the way streaming model APIs send them."""
    return "".join(f"data: {json.dumps(e)}\r\n\r\n" for e in events).encode()


def gemini_text(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def gemini_call(name: str, **args) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"functionCall": {"name": name, "args": args}}]}}]}


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in (
        "GITHUB_TOKEN", "GITHUB_API_URL", "GITHUB_TIMEOUT", "LLM_PROVIDER", "LLM_TIMEOUT",
        "GEMINI_BASE_URL", "GEMINI_MODEL", "GOOGLE_API_KEY", "OPENAI_BASE_URL", "OPENAI_MODEL",
        "NEBIUS_BASE_URL", "NEBIUS_MODEL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "test")


@pytest.fixture()
def octocat_repo() -> dict:
    """A repository object as GitHub returns it (trimmed, extra fields kept)."""
    return {
        "id": 1296269,
        "name": "Hello-World",
        "full_name": "octocat/Hello-World",
        "private": False,
        "html_url": "https://github.com/octocat/Hello-World",
        "description": "This your first repo!",
        "fork": False,
        "language": "C",
        "pushed_at": "2011-01-26T19:01:12Z",
        "created_at": "2011-01-26T19:01:12Z",
        "stargazers_count": 1500,
        "watchers_count": 1500,
        "forks_count": 1200,
        "forks": 1200,
    }


def push_event(event_id: str, *messages, with_commits: bool = True) -> dict:
    payload = {"push_id": 1, "size": len(messages)}
    if with_commits:
        payload["commits"] = [
            {
                "sha": f"{event_id}{i:038d}",
                "author": {"email": "octocat@github.com", "name": "The Octocat"},
                "message": m,
                "distinct": True,
                "url": f"https://api.github.com/repos/octocat/Hello-World/commits/{i}",
            }
            for i, m in enumerate(messages)
        ]
    return {
        "id": event_id,
        "type": "PushEvent",
        "actor": {"id": 583231, "login": "octocat"},
        "repo": {"id": 1296269, "name": "octocat/Hello-World", "url": "https://api.github.com/repos/octocat/Hello-World"},
        "payload": payload,
        "public": True,
        "created_at": "2024-01-01T00:00:00Z",
    }


def watch_event(event_id: str) -> dict:
    return {
        "id": event_id,
        "type": "WatchEvent",
        "repo": {"id": 42, "name": "someone/else", "url": "https://api.github.com/repos/someone/else"},
        "payload": {"action": "started"},
    }
