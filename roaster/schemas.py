from typing import Any, List, Optional

from pydantic import BaseModel, Field, StrictBool, StrictInt, StrictStr, TypeAdapter, ValidationError


# --- GitHub payloads ---
# Strict types: GitHub never sends numbers as text, so "1500" is a schema error.

class RepositorySummary(BaseModel):
    name: StrictStr
    language: Optional[StrictStr]
    pushed_at: StrictStr = Field(..., description="ISO-8601 timestamp of the last push")
    stargazers_count: StrictInt = Field(..., ge=0)
    forks: StrictInt = Field(..., ge=0)


class CommitAuthor(BaseModel):
    email: StrictStr
    name: StrictStr


class Commit(BaseModel):
    sha: StrictStr
    author: CommitAuthor
    message: StrictStr
    distinct: StrictBool
    url: StrictStr


class EventRepo(BaseModel):
    id: StrictInt
    name: StrictStr
    url: StrictStr


class EventPayload(BaseModel):
    commits: Optional[List[Commit]] = None


class GitHubEvent(BaseModel):
    id: StrictStr
    type: StrictStr
    repo: EventRepo
    payload: EventPayload


_REPOS = TypeAdapter(List[RepositorySummary])
_EVENTS = TypeAdapter(List[GitHubEvent])


def error_paths(exc: ValidationError) -> List[str]:
    """Dotted field paths of every error, e.g. ``0.stargazers_count``."""
    return [".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors()]


def parse_repositories(data: Any) -> List[RepositorySummary]:
    return _REPOS.validate_python(data)


def parse_events(data: Any) -> List[GitHubEvent]:
    return _EVENTS.validate_python(data)


# --- Tool inputs ---

class UsernameInput(BaseModel):
    username: StrictStr = Field(..., min_length=1, description="GitHub login of the user to inspect")


# --- HTTP API ---

class RoastRequest(BaseModel):
    username: str = Field(..., min_length=1, description="GitHub username to roast")


class RoastResponse(BaseModel):
    username: str
    roast: str


class ErrorResponse(BaseModel):
    status: str = "error"
    message: str
