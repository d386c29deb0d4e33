import os
import logging

# Load .env only for local development.
# Set ENV=prod (or anything other than "dev") to disable.
if os.getenv("ENV", "dev").lower() == "dev":
    from dotenv import load_dotenv
    load_dotenv()

from .log import setup_logging

setup_logging()
logger = logging.getLogger(__name__)
logger.info("Starting GitHub Roaster API")

from fastapi import FastAPI
from fastapi.responses import JSONResponse, StreamingResponse

from .schemas import RoastRequest, RoastResponse, ErrorResponse
from .github import (
    validate_username,
    GitHubBadUsername,
    GitHubNotFound,
    GitHubRateLimited,
    GitHubError,
)
from .llm import LLMError
from .tools import ToolError
from .roast import roast_user, stream_roast, RoastError


app = FastAPI(title="GitHub Roaster API", version="1.0.0")


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": "error", "message": message, **extra})


@app.get("/")
async def root():
    return {"message": "GitHub Roaster API"}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "service": "github-roaster",
    }

@app.get("/health/live")
async def live():
    return {"status": "alive"}

@app.get("/health/ready")
async def ready():
    return {"status": "ready"}


def _roast_failure(username: str, e: Exception) -> JSONResponse:
    if isinstance(e, GitHubNotFound):
        return _error(404, str(e))
    if isinstance(e, GitHubRateLimited):
        return _error(429, str(e))
    if isinstance(e, (GitHubError, RoastError, LLMError, ToolError)):
        logger.warning("Roast for %s failed: %s", username, e)
        return _error(502, str(e))

    # last resort: log full stack trace
    logger.error("Unhandled error roasting %s", username, exc_info=e)

    env = os.getenv("ENV", "prod").lower().strip()
    if env == "dev":
        return _error(500, "Unexpected server error.", detail=str(e))

    # In non-dev environments, avoid leaking internals
    return _error(500, "Unexpected server error.")


@app.post("/roast", response_model=RoastResponse, responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def roast(req: RoastRequest):
    try:
        username = validate_username(req.username)
    except GitHubBadUsername as e:
        return _error(400, str(e))

    try:
        text = await roast_user(username)
    except Exception as e:
        return _roast_failure(username, e)
    return RoastResponse(username=username, roast=text)


@app.post("/roast/stream", responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
async def roast_stream(req: RoastRequest):
    try:
        username = validate_username(req.username)
    except GitHubBadUsername as e:
        return _error(400, str(e))

    # Run up to the first chunk before the status line goes out, so tool and
    # model failures still map to a proper error status.
    chunks = stream_roast(username)
    try:
        first = await chunks.__anext__()
    except StopAsyncIteration:
        return _roast_failure(username, RoastError("Model returned an empty roast."))
    except Exception as e:
        return _roast_failure(username, e)

    async def body():
        yield first
        try:
            async for chunk in chunks:
                yield chunk
        except Exception:
            # Status line is already sent; cut the stream short.
            logger.exception("Streaming roast for %s failed", username)
            raise

    return StreamingResponse(body(), media_type="text/plain; charset=utf-8")
