import os, re, logging
from typing import Dict, List, Optional

import httpx
from pydantic import ValidationError

from .schemas import error_paths, parse_events, parse_repositories

logger = logging.getLogger(__name__)

# 1-39 chars, alphanumerics and single hyphens, no hyphen at either end.
GITHUB_LOGIN_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9]|-(?=[A-Za-z0-9])){0,38}$")

REPOS_PER_PAGE = 15
EVENTS_PER_PAGE = 100
RATE_LIMIT_WARN_BELOW = 10


class GitHubError(Exception):
    pass


class GitHubNotFound(GitHubError):
    pass


class GitHubRateLimited(GitHubError):
    pass


class GitHubBadUsername(GitHubError):
    pass


class GitHubSchemaError(GitHubError):
    def __init__(self, what: str, paths: List[str]):
        self.paths = paths
        super().__init__(f"GitHub returned malformed {what} (invalid fields: {', '.join(paths)}).")


def validate_username(username: str) -> str:
    name = (username or "").strip()
    if not GITHUB_LOGIN_RE.match(name):
        raise GitHubBadUsername(f"{username!r} is not a valid GitHub username.")
    return name


def _github_cfg() -> tuple[str, Optional[str], float]:
    base_url = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
    token = os.getenv("GITHUB_TOKEN") or None
    timeout = float(os.getenv("GITHUB_TIMEOUT", "15"))
    return base_url, token, timeout


def _github_headers(token: Optional[str]) -> Dict[str, str]:
    headers = {
        "Accept": "application/vnd.github.v3+json",
        "User-Agent": "github-roaster",
    }
    # Optional; unauthenticated calls are limited to 60/hour per IP.
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def _github_api_get(path: str, params: Dict[str, object]) -> httpx.Response:
    base_url, token, timeout = _github_cfg()
    url = f"{base_url}{path}"
    headers = _github_headers(token)

    async with httpx.AsyncClient() as client:
        # One retry on network failures only; HTTP error statuses are final.
        for attempt in (1, 2):
            try:
                r = await client.get(url, params=params, headers=headers, follow_redirects=True, timeout=timeout)
                break
            except httpx.TransportError as e:
                if attempt == 2:
                    raise GitHubError(f"GitHub request failed: {e.__class__.__name__}: {e}") from e
                logger.warning("GitHub request to %s failed (%s), retrying once", path, e.__class__.__name__)
            except httpx.RequestError as e:
                # Decoding errors, redirect loops: retrying won't help.
                raise GitHubError(f"GitHub request failed: {e.__class__.__name__}: {e}") from e

    _check_rate_limit(r)
    _raise_for_status(r)
    return r


def _check_rate_limit(r: httpx.Response) -> None:
    remaining = r.headers.get("X-RateLimit-Remaining")
    if remaining is not None and remaining.isdigit() and int(remaining) < RATE_LIMIT_WARN_BELOW:
        logger.warning("GitHub rate limit nearly exhausted: %s requests remaining", remaining)


def _raise_for_status(r: httpx.Response) -> None:
    if r.status_code < 400:
        return
    if r.status_code == 404:
        raise GitHubNotFound("GitHub user not found (404).")
    if r.status_code in (403, 429):
        if r.headers.get("X-RateLimit-Remaining") == "0" or r.status_code == 429:
            raise GitHubRateLimited("GitHub API rate limit exceeded. Try again later.")
    raise GitHubError(f"GitHub API error ({r.status_code} {r.reason_phrase}).")


def _json_body(r: httpx.Response):
    try:
        return r.json()
    except ValueError as e:
        raise GitHubError("GitHub returned a non-JSON response.") from e


async def fetch_user_repos(username: str) -> List[dict]:
    """Most recently pushed repositories of `username`, reduced to five fields."""
    name = validate_username(username)
    r = await _github_api_get(
        f"/users/{name}/repos",
        {"sort": "pushed", "per_page": REPOS_PER_PAGE},
    )
    try:
        repos = parse_repositories(_json_body(r))
    except ValidationError as e:
        raise GitHubSchemaError("repository list", error_paths(e)) from e

    logger.info("Fetched %d repositories for %s", len(repos), name)
    return [repo.model_dump() for repo in repos[:REPOS_PER_PAGE]]


async def fetch_user_commits(username: str) -> List[str]:
    """Commit messages from the user's recent public push events, newest event first."""
    name = validate_username(username)
    r = await _github_api_get(
        f"/users/{name}/events",
        {"per_page": EVENTS_PER_PAGE},
    )
    try:
        events = parse_events(_json_body(r))
    except ValidationError as e:
        raise GitHubSchemaError("event list", error_paths(e)) from e

    messages: List[str] = []
    for event in events:
        if event.type != "PushEvent":
            continue
        # PushEvents may omit the commit list entirely.
        messages.extend(c.message for c in event.payload.commits or [])

    logger.info("Fetched %d commit messages from %d events for %s", len(messages), len(events), name)
    return messages
