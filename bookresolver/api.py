"""HTTP endpoints for the resolution handlers."""
import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictStr

from bookresolver import handlers
from bookresolver.auth import verify_bearer
from bookresolver.config import Config
from bookresolver.database import AsyncStore, Database
from bookresolver.errors import ResolverError
from bookresolver.models import BookIdentifier
from bookresolver.request_log import RequestLog

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

# Routes whose error bodies also carry ``success: false``
AUDIOBOOK_ROUTES = {"/get-audiobook", "/search-audiobooks", "/get-audiobook-audible"}


# ─── request bodies ─────────────────────────────────────────────────────────

class BookDataRequest(BaseModel):
    api_id: Optional[StrictStr] = None
    isbn: Optional[StrictStr] = None
    google_volume_id: Optional[StrictStr] = None


class BookSearchRequest(BaseModel):
    query: Optional[StrictStr] = None


class AudiobookRequest(BaseModel):
    audiobookId: Optional[StrictStr] = None
    bookId: Optional[StrictStr] = None
    title: Optional[StrictStr] = None
    author: Optional[StrictStr] = None


class AudiobookSearchRequest(BaseModel):
    query: Optional[StrictStr] = None
    limit: int = 10


class AudibleRequest(BaseModel):
    title: Optional[StrictStr] = None
    author: Optional[StrictStr] = None


# ─── dependencies ───────────────────────────────────────────────────────────

@lru_cache()
def get_config() -> Config:
    return Config()


@lru_cache()
def _database() -> Database:
    return Database(get_config().DATABASE_URL)


def get_store() -> AsyncStore:
    config = get_config()
    return AsyncStore(_database(), audiobook_ttl=config.AUDIOBOOK_CACHE_TTL)


async def get_http_client(config: Config = Depends(get_config)):
    """One outbound client per request, closed when the response is done."""
    async with httpx.AsyncClient(timeout=config.DEFAULT_TIMEOUT, follow_redirects=True) as client:
        yield client


def get_request_log(request: Request) -> RequestLog:
    log = RequestLog()
    request.state.log = log
    return log


async def get_current_user_id(
    authorization: Optional[str] = Header(None),
    http: httpx.AsyncClient = Depends(get_http_client),
    config: Config = Depends(get_config),
) -> str:
    return await verify_bearer(authorization, http, config)


# ─── app ────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting book resolver API")
    yield
    if _database.cache_info().currsize:
        _database().close()
    logger.info("Stopped book resolver API")


app = FastAPI(
    title="Book Resolver API",
    version="0.1.0",
    description="Resolves book and audiobook metadata from a cache and external catalogs.",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)


def _error_body(request: Request, message: str) -> dict:
    log = getattr(request.state, "log", None)
    body = {"error": message, "logs": log.get_logs() if log else []}
    if request.url.path in AUDIOBOOK_ROUTES:
        body = {"success": False, **body}
    return body


@app.exception_handler(ResolverError)
async def resolver_error_handler(request: Request, exc: ResolverError):
    return JSONResponse(status_code=exc.status_code, content=_error_body(request, exc.message))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if any(error.get("type") == "json_invalid" for error in errors):
        message = "Invalid JSON in request body"
    elif request.url.path == "/book-data" and errors and all(e.get("type") == "string_type" for e in errors):
        message = "Identifiers must be strings"
    else:
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request body: {field} {first.get('msg', '')}".strip()
    return JSONResponse(status_code=400, content=_error_body(request, message))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=_error_body(request, str(exc) or "Unknown error"))


@app.post("/book-data")
async def book_data(
    body: BookDataRequest,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
    config: Config = Depends(get_config),
    log: RequestLog = Depends(get_request_log),
):
    identifier = BookIdentifier(api_id=body.api_id, isbn=body.isbn, google_volume_id=body.google_volume_id)
    return await handlers.resolve_book(identifier, store, http, config, log)


@app.post("/book-search")
async def book_search(
    body: BookSearchRequest,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
    config: Config = Depends(get_config),
    log: RequestLog = Depends(get_request_log),
):
    return await handlers.search_books(body.query, user_id, store, http, config, log)


@app.post("/get-audiobook")
async def get_audiobook(
    body: AudiobookRequest,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
    config: Config = Depends(get_config),
    log: RequestLog = Depends(get_request_log),
):
    return await handlers.resolve_audiobook(
        store, http, config, log,
        audiobook_id=body.audiobookId,
        book_id=body.bookId,
        title=body.title,
        author=body.author,
    )


@app.post("/search-audiobooks")
async def search_audiobooks(
    body: AudiobookSearchRequest,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
    http: httpx.AsyncClient = Depends(get_http_client),
    config: Config = Depends(get_config),
    log: RequestLog = Depends(get_request_log),
):
    return await handlers.search_audiobooks(store, http, config, log, query=body.query, limit=body.limit)


@app.post("/get-audiobook-audible")
async def get_audiobook_audible(
    body: AudibleRequest,
    user_id: str = Depends(get_current_user_id),
    http: httpx.AsyncClient = Depends(get_http_client),
    config: Config = Depends(get_config),
    log: RequestLog = Depends(get_request_log),
):
    return await handlers.resolve_audible_audiobook(http, config, log, title=body.title, author=body.author)
