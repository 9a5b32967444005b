from contextlib import asynccontextmanager
from datetime import datetime, timezone
import time
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Form, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

import config
from accounts import ManagerRepository, authenticate, change_password, ensure_default_manager, to_public
from catalog import MAX_LIMIT, CatalogQuery, catalog_stats
from database import Store, create_store
from errors import (
    AUTH_ERROR,
    NOT_FOUND,
    STORAGE_ERROR,
    VALIDATION_ERROR,
    StorageError,
    attempt,
)
from guards import (
    ADMIN_HOME,
    LOGIN_PATH,
    NOTICE_ERROR,
    NOTICE_SUCCESS,
    PUBLIC_HOME,
    SESSION_PRINCIPAL,
    GuardRedirect,
    RequestContext,
    bind_principal,
    flash,
    guarded,
    pop_notices,
    pop_return_to,
    require_admin,
    require_authenticated,
    require_guest,
    require_superadmin,
    session_principal,
)
from logs import configure_logging, get_logger
from movies import MovieRepository

logger = get_logger(__name__)

STARTED_AT = time.monotonic()

TRY_AGAIN = "The service is temporarily unavailable. Please try again later."
SERVER_ERROR = "A server error has occurred. Please try again later."


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    store = getattr(app.state, "store", None) or create_store()
    app.state.store = store
    accounts = ManagerRepository(store)
    await accounts.ensure_indexes()
    await ensure_default_manager(accounts)
    logger.info("movie system started", environment=config.ENVIRONMENT)
    yield
    await store.close()


# App and middleware
app = FastAPI(title="Movie System", lifespan=lifespan)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    raw = request.session.get(SESSION_PRINCIPAL)
    username = raw.get("username") if isinstance(raw, dict) else None
    logger.info("request", method=request.method, path=request.url.path, username=username or "anonymous")
    return await call_next(request)


app.add_middleware(
    SessionMiddleware,
    secret_key=config.SESSION_SECRET,
    session_cookie=config.SESSION_COOKIE,
    max_age=config.SESSION_MAX_AGE,
    same_site="lax",
    https_only=not config.is_development(),
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Dependencies

def get_store(request: Request) -> Store:
    return request.app.state.store


def get_movies(store: Store = Depends(get_store)) -> MovieRepository:
    return MovieRepository(store)


def get_accounts(store: Store = Depends(get_store)) -> ManagerRepository:
    return ManagerRepository(store)


current_context = guarded()
guest_only = guarded(require_guest)
manager_only = guarded(require_authenticated, require_admin)
superadmin_only = guarded(require_authenticated, require_superadmin)

# Responses

def redirect(target: str) -> RedirectResponse:
    return RedirectResponse(target, status_code=303)


def view(ctx: RequestContext, template: str, status_code: int = 200, **data: Any) -> JSONResponse:
    """Hand a template name and its data to the presentation layer."""
    notices = pop_notices(ctx.session)
    payload = {
        "template": template,
        "user": ctx.principal.model_dump(by_alias=True) if ctx.principal else None,
        "success": data.pop("success", None) or notices[NOTICE_SUCCESS],
        "error": data.pop("error", None) or notices[NOTICE_ERROR],
        **data,
    }
    return JSONResponse(jsonable_encoder(payload, by_alias=True), status_code=status_code)


def api_error(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        {"success": False, "message": message, "error": error or message},
        status_code=status_code,
    )


def account_gone(ctx: RequestContext, message: str) -> RedirectResponse:
    """The session points at a manager that no longer exists."""
    ctx.session.clear()
    flash(ctx.session, NOTICE_ERROR, message)
    return redirect(LOGIN_PATH)


def is_api(request: Request) -> bool:
    return request.url.path.startswith("/api/")


async def form_payload(request: Request) -> Dict[str, Any]:
    form = await request.form()
    payload: Dict[str, Any] = {}
    for key in form.keys():
        values = form.getlist(key)
        payload[key] = values if len(values) > 1 else values[0]
    return payload


# Error handlers

@app.exception_handler(GuardRedirect)
async def guard_redirect_handler(request: Request, exc: GuardRedirect):
    return redirect(exc.target)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("storage error", path=request.url.path, error=exc.message, exc_info=exc)
    detail = exc.message if config.is_development() else None
    if is_api(request):
        return api_error(503, TRY_AGAIN, detail)
    ctx = RequestContext(session=request.session, path=request.url.path)
    return view(ctx, "error", 503, message=TRY_AGAIN, detail={"status": 503, "stack": detail} if detail else {})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if is_api(request):
        return api_error(exc.status_code, str(exc.detail))
    ctx = RequestContext(session=request.session, path=request.url.path)
    if exc.status_code == 404:
        return view(ctx, "error", 404, message="Sorry, the page you requested does not exist.")
    return view(ctx, "error", exc.status_code, message=str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled error", path=request.url.path, exc_info=exc)
    detail = repr(exc) if config.is_development() else None
    if is_api(request):
        return api_error(500, SERVER_ERROR, detail)
    # responses from here bypass the session middleware, so work on a copy
    ctx = RequestContext(session=dict(request.scope.get("session") or {}), path=request.url.path)
    return view(ctx, "error", 500, message=SERVER_ERROR, detail={"status": 500, "stack": detail} if detail else {})


# Public pages

@app.get("/")
async def home(ctx: RequestContext = Depends(current_context), movies: MovieRepository = Depends(get_movies)):
    page = await movies.find_many(CatalogQuery(coming_soon=False, limit=MAX_LIMIT))
    return view(ctx, "index", movies=page.items)


@app.get("/movies")
async def all_movies(ctx: RequestContext = Depends(current_context), movies: MovieRepository = Depends(get_movies)):
    page = await movies.find_many(CatalogQuery(coming_soon=False, limit=MAX_LIMIT))
    return view(ctx, "movies/filtered", movies=page.items, rating="All")


@app.get("/movies/rating/{rating}")
async def movies_by_rating(
    rating: str,
    ctx: RequestContext = Depends(current_context),
    movies: MovieRepository = Depends(get_movies),
):
    page = await movies.find_many(CatalogQuery(rating=rating, coming_soon=False, limit=MAX_LIMIT))
    return view(ctx, "movies/filtered", movies=page.items, rating=rating)


@app.get("/movies/{movie_id}")
async def movie_detail(
    movie_id: str,
    ctx: RequestContext = Depends(current_context),
    movies: MovieRepository = Depends(get_movies),
):
    outcome = await attempt(movies.find_by_id(movie_id))
    if outcome.kind == NOT_FOUND:
        flash(ctx.session, NOTICE_ERROR, outcome.message)
        return redirect(PUBLIC_HOME)
    return view(ctx, "movies/detail", movie=outcome.data)


# Public API

@app.get("/api/movies")
async def api_list_movies(request: Request, movies: MovieRepository = Depends(get_movies)):
    query = CatalogQuery.model_validate(dict(request.query_params))
    outcome = await attempt(movies.find_many(query), reraise_storage=False)
    if outcome.kind == STORAGE_ERROR:
        return api_error(503, "Failed to fetch movies", outcome.message)
    page = outcome.data
    return {
        "success": True,
        "data": jsonable_encoder(page.items, by_alias=True),
        "pagination": page.pagination.model_dump(),
    }


@app.get("/api/movies/{movie_id}")
async def api_get_movie(movie_id: str, movies: MovieRepository = Depends(get_movies)):
    outcome = await attempt(movies.find_by_id(movie_id), reraise_storage=False)
    if outcome.kind == NOT_FOUND:
        return api_error(404, outcome.message)
    if outcome.kind == STORAGE_ERROR:
        return api_error(503, "Failed to fetch movie details", outcome.message)
    return {"success": True, "data": jsonable_encoder(outcome.data, by_alias=True)}


@app.get("/api/stats/movies")
async def api_stats(store: Store = Depends(get_store)):
    outcome = await attempt(catalog_stats(store), reraise_storage=False)
    if outcome.kind == STORAGE_ERROR:
        return api_error(503, "Failed to fetch stats", outcome.message)
    return {"success": True, "data": outcome.data.model_dump(by_alias=True)}


# Auth Routes

@app.get("/auth/login")
async def login_page(ctx: RequestContext = Depends(guest_only)):
    return view(ctx, "auth/login")


@app.post("/auth/login")
async def login(
    username: str = Form(""),
    password: str = Form(""),
    ctx: RequestContext = Depends(guest_only),
    accounts: ManagerRepository = Depends(get_accounts),
):
    outcome = await attempt(authenticate(accounts, username, password))
    if outcome.kind == AUTH_ERROR:
        return view(ctx, "auth/login", 401, error=outcome.message, formData={"username": username})

    principal = outcome.data
    target = pop_return_to(ctx.session)
    bind_principal(ctx.session, principal)
    flash(ctx.session, NOTICE_SUCCESS, f"Welcome back, {principal.display_name}!")
    return redirect(target)


@app.api_route("/auth/logout", methods=["GET", "POST"])
async def logout(request: Request):
    principal = session_principal(request.session)
    try:
        request.session.clear()
    except Exception as e:
        logger.error("logout failed", error=str(e))
        flash(request.session, NOTICE_ERROR, "Logout failed, please try again.")
        return redirect(ADMIN_HOME)
    logger.info("logged out", username=principal.username if principal else "unknown")
    return redirect(PUBLIC_HOME)


@app.get("/auth/profile")
async def profile(
    ctx: RequestContext = Depends(guarded(require_authenticated)),
    accounts: ManagerRepository = Depends(get_accounts),
):
    outcome = await attempt(accounts.get(ctx.principal.id))
    if outcome.kind == NOT_FOUND:
        return account_gone(ctx, outcome.message)
    return view(ctx, "auth/profile", account=to_public(outcome.data))


@app.post("/auth/password")
async def update_password(
    new_password: str = Form(...),
    old_password: Optional[str] = Form(None),
    ctx: RequestContext = Depends(guarded(require_authenticated)),
    accounts: ManagerRepository = Depends(get_accounts),
):
    outcome = await attempt(change_password(accounts, ctx.principal.id, new_password, old_password))
    if outcome.kind == VALIDATION_ERROR:
        return view(ctx, "auth/profile", 422, error=outcome.message, errors=outcome.errors)
    if outcome.kind == NOT_FOUND:
        return account_gone(ctx, outcome.message)
    flash(ctx.session, NOTICE_SUCCESS, "Password updated")
    return redirect("/auth/profile")


# Admin Routes

@app.get("/admin")
async def dashboard(
    ctx: RequestContext = Depends(manager_only),
    movies: MovieRepository = Depends(get_movies),
    store: Store = Depends(get_store),
):
    page = await movies.find_many(CatalogQuery(sort="-createdAt", limit=MAX_LIMIT))
    stats = await catalog_stats(store)
    return view(ctx, "admin/dashboard", movies=page.items, stats=stats, pagination=page.pagination)


@app.get("/admin/movies/create")
async def create_movie_page(ctx: RequestContext = Depends(manager_only)):
    return view(ctx, "admin/create-movie", formData=None)


@app.post("/admin/movies")
async def create_movie(
    request: Request,
    ctx: RequestContext = Depends(manager_only),
    movies: MovieRepository = Depends(get_movies),
):
    payload = await form_payload(request)
    outcome = await attempt(movies.create(payload))
    if outcome.kind == VALIDATION_ERROR:
        return view(
            ctx,
            "admin/create-movie",
            422,
            formData=payload,
            error=f"Creation failed: {outcome.message}",
            errors=outcome.errors,
        )
    flash(ctx.session, NOTICE_SUCCESS, f'Movie "{outcome.data.title}" created successfully!')
    return redirect(ADMIN_HOME)


@app.get("/admin/movies/{movie_id}/edit")
async def edit_movie_page(
    movie_id: str,
    ctx: RequestContext = Depends(manager_only),
    movies: MovieRepository = Depends(get_movies),
):
    outcome = await attempt(movies.find_by_id(movie_id))
    if outcome.kind == NOT_FOUND:
        flash(ctx.session, NOTICE_ERROR, "The movie does not exist.")
        return redirect(ADMIN_HOME)
    return view(ctx, "admin/edit-movie", movie=outcome.data)


@app.api_route("/admin/movies/{movie_id}", methods=["POST", "PUT"])
async def update_movie(
    movie_id: str,
    request: Request,
    ctx: RequestContext = Depends(manager_only),
    movies: MovieRepository = Depends(get_movies),
):
    payload = await form_payload(request)
    # unchecked checkboxes are not submitted
    payload.setdefault("isFull", "off")
    outcome = await attempt(movies.update(movie_id, payload))
    if outcome.kind == NOT_FOUND:
        flash(ctx.session, NOTICE_ERROR, "The movie does not exist.")
        return redirect(ADMIN_HOME)
    if outcome.kind == VALIDATION_ERROR:
        return view(
            ctx,
            "admin/edit-movie",
            422,
            movie={"id": movie_id, **payload},
            error=f"Update failed: {outcome.message}",
            errors=outcome.errors,
        )
    flash(ctx.session, NOTICE_SUCCESS, f'Movie "{outcome.data.title}" updated successfully!')
    return redirect(ADMIN_HOME)


@app.post("/admin/movies/{movie_id}/delete")
@app.delete("/admin/movies/{movie_id}")
async def delete_movie(
    movie_id: str,
    ctx: RequestContext = Depends(manager_only),
    movies: MovieRepository = Depends(get_movies),
):
    outcome = await attempt(movies.delete(movie_id))
    if outcome.kind == NOT_FOUND:
        flash(ctx.session, NOTICE_ERROR, "The movie does not exist.")
    else:
        flash(ctx.session, NOTICE_SUCCESS, "Movie successfully deleted!")
    return redirect(ADMIN_HOME)


@app.post("/admin/movies/{movie_id}/toggle-full")
async def toggle_full(
    movie_id: str,
    ctx: RequestContext = Depends(manager_only),
    movies: MovieRepository = Depends(get_movies),
):
    outcome = await attempt(movies.toggle_full(movie_id))
    if outcome.kind == NOT_FOUND:
        flash(ctx.session, NOTICE_ERROR, "The movie does not exist.")
    else:
        label = "Full" if outcome.data.is_full else "Seats Available"
        flash(ctx.session, NOTICE_SUCCESS, f"The movie has been marked as {label}")
    return redirect(ADMIN_HOME)


@app.post("/admin/managers")
async def create_manager(
    username: str = Form(""),
    email: str = Form(""),
    password: str = Form(""),
    role: str = Form("admin"),
    display_name: Optional[str] = Form(None, alias="displayName"),
    ctx: RequestContext = Depends(superadmin_only),
    accounts: ManagerRepository = Depends(get_accounts),
):
    outcome = await attempt(
        accounts.create(username=username, email=email, password=password, role=role, display_name=display_name)
    )
    if outcome.kind == VALIDATION_ERROR:
        return view(
            ctx,
            "admin/create-manager",
            422,
            formData={"username": username, "email": email, "role": role, "displayName": display_name},
            error=outcome.message,
            errors=outcome.errors,
        )
    flash(ctx.session, NOTICE_SUCCESS, f'Manager "{outcome.data["username"]}" created')
    return redirect(ADMIN_HOME)


# Utility endpoints

@app.get("/health")
async def health(store: Store = Depends(get_store)):
    try:
        database = "connected" if await store.ping() else "disconnected"
    except StorageError as e:
        logger.warning("health check ping failed", error=e.message)
        database = "disconnected"
    return {
        "status": "OK" if database == "connected" else "DEGRADED",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - STARTED_AT, 3),
        "environment": config.ENVIRONMENT,
        "database": database,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
