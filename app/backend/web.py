import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Callable, List

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Request, Response
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .auth import (
    ACCESS_TOKEN_COOKIE,
    AuthClient,
    AuthIdentity,
    AuthProviderError,
    AuthRejected,
    AuthUnavailable,
    build_auth_client,
    extract_access_token,
    get_auth_client,
    is_authenticated,
    require_user,
)
from .constants import MAX_ERROR_CHARS, MAX_REQUEST_BYTES, STATUS_ANALYZED
from .dashboard import build_dashboard
from .evaluation import EvaluationOk, EvaluationResult, evaluate_profile
from .form_input import FormValueError, parse_form_fields
from .models import (
    CreateSubmissionResponse,
    Credentials,
    DashboardResponse,
    FieldError,
    SessionResponse,
    StartupProfile,
    StartupResponse,
    UserResponse,
    startup_to_response,
)
from .schema import profile_columns, validate_profile
from .storage import StartupStore, build_startup_store


logger = logging.getLogger("uvicorn.error")

Evaluator = Callable[[StartupProfile], EvaluationResult]


def _truncate(text: str, max_chars: int = MAX_ERROR_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def get_startup_store(request: Request) -> StartupStore:
    return request.app.state.startup_store


def get_evaluator() -> Evaluator:
    return evaluate_profile


def _cookie_secure() -> bool:
    return os.getenv("SESSION_COOKIE_SECURE", "").strip().lower() in {"1", "true", "yes", "on"}


def _set_session_cookie(response: Response, access_token: str) -> None:
    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        access_token,
        httponly=True,
        samesite="lax",
        secure=_cookie_secure(),
    )


router = APIRouter(prefix="/api")


@router.post("/startups/create", response_model=CreateSubmissionResponse)
def create_submission(
    identity: AuthIdentity = Depends(require_user),
    store: StartupStore = Depends(get_startup_store),
) -> CreateSubmissionResponse:
    submission_key = store.create_submission()
    logger.info("submission_key=%s submission_created owner=%s", submission_key, identity.user_id)
    return CreateSubmissionResponse(key=submission_key)


@router.get("/startups", response_model=List[StartupResponse])
def list_startups(
    request: Request,
    store: StartupStore = Depends(get_startup_store),
    auth_client: AuthClient = Depends(get_auth_client),
) -> List[StartupResponse]:
    if not is_authenticated(request, auth_client):
        raise HTTPException(status_code=401, detail="Not authenticated.")
    # Every signed-in account sees every submission; rows carry no owner.
    return [startup_to_response(record) for record in store.list_startups()]


@router.get("/startups/{submission_key}", response_model=StartupResponse)
def get_startup(
    submission_key: str,
    store: StartupStore = Depends(get_startup_store),
) -> StartupResponse:
    record = store.get_by_key(submission_key)
    if not record:
        raise HTTPException(status_code=404, detail="Startup not found.")
    return startup_to_response(record)


def _record_evaluation_failure(store: StartupStore, submission_key: str, message: str) -> None:
    try:
        store.update_startup(submission_key, analysis_error=message)
    except Exception:
        logger.exception("submission_key=%s evaluation_failure_not_recorded", submission_key)


def _reject_profile(submission_key: str, errors: List[FieldError]) -> HTTPException:
    logger.info("submission_key=%s profile_rejected errors=%s", submission_key, len(errors))
    return HTTPException(status_code=400, detail=[error.model_dump() for error in errors])


def _fill_submission(
    submission_key: str,
    payload: Any,
    store: StartupStore,
    evaluator: Evaluator,
) -> StartupResponse:
    validation = validate_profile(payload)
    if not validation.ok:
        raise _reject_profile(submission_key, validation.errors)

    profile = validation.profile
    try:
        store.update_startup(submission_key, profile=profile_columns(profile))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Startup not found.") from exc

    # The profile is committed on its own; a failed evaluation leaves the
    # row pending with analysis_error set.
    try:
        result = evaluator(profile)
    except Exception as exc:
        message = _truncate(str(exc) or exc.__class__.__name__)
        _record_evaluation_failure(store, submission_key, message)
        logger.warning("submission_key=%s evaluation_failed error=%s", submission_key, message)
        raise HTTPException(status_code=500, detail=f"Evaluation failed: {message}") from exc

    if not isinstance(result, EvaluationOk):
        message = _truncate(result.reason)
        _record_evaluation_failure(store, submission_key, message)
        logger.warning("submission_key=%s evaluation_unparseable reason=%s", submission_key, message)
        raise HTTPException(status_code=500, detail=f"Evaluation failed: {message}")

    record = store.update_startup(
        submission_key,
        ai_analysis=result.evaluation,
        status=STATUS_ANALYZED,
        analysis_error=None,
    )
    logger.info("submission_key=%s submission_analyzed", submission_key)
    return startup_to_response(record)


@router.post("/startups/{submission_key}", response_model=StartupResponse)
def submit_startup(
    submission_key: str,
    payload: Any = Body(default=None),
    store: StartupStore = Depends(get_startup_store),
    evaluator: Evaluator = Depends(get_evaluator),
) -> StartupResponse:
    return _fill_submission(submission_key, payload, store, evaluator)


@router.post("/startups/{submission_key}/form", response_model=StartupResponse)
async def submit_startup_form(
    submission_key: str,
    request: Request,
    store: StartupStore = Depends(get_startup_store),
    evaluator: Evaluator = Depends(get_evaluator),
) -> StartupResponse:
    """Fill a submission from the raw text inputs of the submission form."""
    form = await request.form()
    try:
        payload = parse_form_fields({key: value for key, value in form.items() if isinstance(value, str)})
    except FormValueError as exc:
        raise _reject_profile(
            submission_key,
            [FieldError(path=exc.field, message=str(exc), type="form_value")],
        ) from exc
    return await run_in_threadpool(_fill_submission, submission_key, payload, store, evaluator)


@router.get("/startups/{submission_key}/dashboard", response_model=DashboardResponse)
def get_dashboard(
    submission_key: str,
    store: StartupStore = Depends(get_startup_store),
) -> DashboardResponse:
    record = store.get_by_key(submission_key)
    if not record:
        raise HTTPException(status_code=404, detail="Startup not found.")
    try:
        return build_dashboard(record)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _auth_failure(exc: Exception, rejected_status: int) -> HTTPException:
    if isinstance(exc, AuthRejected):
        return HTTPException(status_code=rejected_status, detail=str(exc))
    if isinstance(exc, AuthUnavailable):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


@router.post("/register", response_model=SessionResponse, status_code=201)
def register(
    credentials: Credentials,
    response: Response,
    store: StartupStore = Depends(get_startup_store),
    auth_client: AuthClient = Depends(get_auth_client),
) -> SessionResponse:
    if store.get_user_by_username(credentials.username):
        raise HTTPException(status_code=400, detail="Username already exists.")

    try:
        identity = auth_client.sign_up(credentials.username, credentials.password)
    except (AuthRejected, AuthProviderError) as exc:
        logger.warning("register_failed username=%s error=%s", credentials.username, exc)
        raise _auth_failure(exc, rejected_status=400) from exc

    try:
        user = store.create_user(identity.user_id, credentials.username)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if identity.access_token:
        _set_session_cookie(response, identity.access_token)
    logger.info("user_id=%s registered", user.id)
    return SessionResponse(
        user=UserResponse(id=user.id, username=user.username),
        access_token=identity.access_token,
    )


@router.post("/login", response_model=SessionResponse)
def login(
    credentials: Credentials,
    response: Response,
    store: StartupStore = Depends(get_startup_store),
    auth_client: AuthClient = Depends(get_auth_client),
) -> SessionResponse:
    try:
        identity = auth_client.sign_in(credentials.username, credentials.password)
    except (AuthRejected, AuthProviderError) as exc:
        logger.info("login_failed username=%s", credentials.username)
        raise _auth_failure(exc, rejected_status=401) from exc

    user = store.get_user(identity.user_id)
    if user is None:
        user = store.create_user(identity.user_id, credentials.username)

    if identity.access_token:
        _set_session_cookie(response, identity.access_token)
    return SessionResponse(
        user=UserResponse(id=user.id, username=user.username),
        access_token=identity.access_token,
    )


@router.post("/logout", status_code=204)
def logout(
    request: Request,
    auth_client: AuthClient = Depends(get_auth_client),
) -> Response:
    access_token = extract_access_token(request)
    if access_token:
        try:
            auth_client.sign_out(access_token)
        except AuthProviderError as exc:
            raise _auth_failure(exc, rejected_status=400) from exc
    response = Response(status_code=204)
    response.delete_cookie(ACCESS_TOKEN_COOKIE)
    return response


@router.get("/user", response_model=UserResponse)
def current_user(
    identity: AuthIdentity = Depends(require_user),
    store: StartupStore = Depends(get_startup_store),
) -> UserResponse:
    user = store.get_user(identity.user_id)
    if user is None:
        return UserResponse(id=identity.user_id, username=identity.email)
    return UserResponse(id=user.id, username=user.username)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.startup_store = build_startup_store()
    app.state.auth_client = build_auth_client()
    logger.info(
        "service_started storage=%s auth=%s",
        app.state.startup_store.storage_name,
        app.state.auth_client.provider_name,
    )
    yield


def create_app() -> FastAPI:
    app = FastAPI(title="Startup Evaluator Backend", lifespan=lifespan)

    frontend_origins = os.getenv(
        "FRONTEND_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in frontend_origins.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def enforce_request_size(request, call_next):
        if request.method in ("POST", "PUT") and request.url.path.startswith("/api/"):
            content_length = request.headers.get("content-length")
            if content_length:
                try:
                    if int(content_length) > MAX_REQUEST_BYTES:
                        return JSONResponse(
                            status_code=413,
                            content={"detail": f"Request too large. Max size is {MAX_REQUEST_BYTES} bytes."},
                        )
                except ValueError:
                    pass
        return await call_next(request)

    @app.exception_handler(RequestValidationError)
    async def malformed_json_body(request: Request, exc: RequestValidationError):
        malformed = [error for error in exc.errors() if error.get("type") == "json_invalid"]
        if not malformed:
            return await request_validation_exception_handler(request, exc)
        errors = []
        for error in malformed:
            message = error.get("msg") or "JSON decode error"
            reason = (error.get("ctx") or {}).get("error")
            if reason:
                message = f"{message}: {reason}"
            errors.append(FieldError(path="body", message=message, type="json_invalid"))
        logger.info("path=%s malformed_json_body", request.url.path)
        return JSONResponse(status_code=400, content={"detail": [error.model_dump() for error in errors]})

    @app.get("/health")
    def health(request: Request) -> dict:
        return {
            "status": "ok",
            "storage": request.app.state.startup_store.storage_name,
            "auth": request.app.state.auth_client.provider_name,
        }

    app.include_router(router)
    return app


app = create_app()
