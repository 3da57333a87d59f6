import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from tracker.db import init_db
from tracker.dependencies import (
    get_due_date_store,
    get_indicator_store,
    get_report_store,
    get_user_store,
)
from tracker.errors import NotFound, ValidationFailed
from tracker.models import (
    Action,
    CreateProgressReportRequest,
    DueDateRequest,
    IndicatorRequest,
    UpdateProgressReportRequest,
)
from tracker.policies.authorization import (
    CurrentUser,
    authorize,
    authorize_manager_resource,
    enforce,
    get_current_actor,
    report_draft_filter,
    require_user,
)
from tracker.serializers import collection, document
from tracker.settings import get_settings
from tracker.store import (
    MAX_ID,
    MIN_ID,
    DueDateStore,
    IndicatorStore,
    ProgressReportStore,
    UserStore,
)

# Initialize logger
logging.basicConfig(
    level=get_settings()["log_level"],
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

REPORT_TYPE = "progress-reports"
INDICATOR_TYPE = "indicators"
DUE_DATE_TYPE = "due-dates"
USER_TYPE = "users"

PayloadT = TypeVar("PayloadT", bound=BaseModel)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the database schema on startup"""
    settings = get_settings()
    init_db(settings["database_path"])
    logger.info(f"Starting progress tracker API ({settings['app_env']})")

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title="Progress Tracker API",
    description="Indicators, due dates and progress reports with role-based access control",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings()["cors_allow_origins"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


async def _read_body(request: Request, envelope: str) -> Dict[str, Any]:
    """
    Return the request's attribute dict, unwrapping ``{envelope: {...}}``.

    A missing or malformed body yields an empty dict; field validation
    happens later, after authorization.
    """
    try:
        body = await request.json()
    except ValueError:
        return {}
    if not isinstance(body, dict):
        return {}
    attrs = body.get(envelope, body)
    return attrs if isinstance(attrs, dict) else {}


def _parse(model: Type[PayloadT], attrs: Dict[str, Any]) -> PayloadT:
    try:
        return model.model_validate(attrs)
    except ValidationError as exc:
        errors: Dict[str, list] = {}
        for error in exc.errors():
            field = ".".join(str(part) for part in error["loc"]) or "base"
            errors.setdefault(field, []).append(error["msg"])
        raise ValidationFailed(errors)


def _coerce_id(value: Any) -> Optional[int]:
    # Authorization looks at the indicator id before the payload is validated
    if isinstance(value, bool):
        return None
    try:
        value = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return value if MIN_ID <= value <= MAX_ID else None


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)},
    )


@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed):
    logger.info(f"Validation failed on {request.method} {request.url.path}: {exc.errors}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Validation Error", "detail": exc.errors},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation error: {exc}")

    if get_settings()["verbose_errors"]:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "Validation Error",
                "detail": str(exc.errors()),
                "path": str(request.url.path),
                "method": request.method,
            },
        )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "Validation Error", "detail": "Invalid request format"},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Generic 500; internal details only with verbose errors in development."""
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)

    if get_settings()["verbose_errors"]:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc),
                "exception_type": type(exc).__name__,
                "traceback": traceback.format_exc(),
            },
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "detail": "An unexpected error occurred"},
    )


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "ok",
        "message": "Progress Tracker API is running",
        "endpoints": {
            "progress_reports": "/progress_reports",
            "indicators": "/indicators",
            "due_dates": "/due_dates",
        },
    }


@app.get("/users/me")
async def get_me(
    user: CurrentUser = Depends(require_user),
    users: UserStore = Depends(get_user_store),
):
    """Return the authenticated user's record."""
    return document(users.find(user.id), USER_TYPE)


# Progress reports


@app.get("/progress_reports")
async def list_progress_reports(
    indicator_id: Optional[int] = None,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    reports: ProgressReportStore = Depends(get_report_store),
):
    """
    List progress reports visible to the actor.

    Guests and unauthenticated actors only see published (non-draft) reports.
    """
    records = reports.list(draft=report_draft_filter(actor), indicator_id=indicator_id)
    return collection(records, REPORT_TYPE)


@app.get("/progress_reports/{report_id}")
async def get_progress_report(
    report_id: int,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    reports: ProgressReportStore = Depends(get_report_store),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    """Return a single progress report; hidden drafts are reported as 404."""
    report = reports.find(report_id)
    decision = authorize(actor, Action.READ, report, indicators)
    enforce(decision, actor, Action.READ, f"ProgressReport {report_id}", hide_as_not_found=True)
    return document(report, REPORT_TYPE)


@app.post("/progress_reports", status_code=status.HTTP_201_CREATED)
async def create_progress_report(
    request: Request,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    reports: ProgressReportStore = Depends(get_report_store),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    """
    Create a progress report.

    Authorization is decided against the indicator named in the payload and
    runs before field validation, so a denial always wins over a 422.
    """
    attrs = await _read_body(request, "progress_report")
    indicator_id = _coerce_id(attrs.get("indicator_id"))

    decision = authorize(actor, Action.CREATE, indicator_id, indicators)
    enforce(decision, actor, Action.CREATE, f"Indicator {indicator_id} progress reports")

    payload = _parse(CreateProgressReportRequest, attrs)
    report = reports.create(payload, actor_id=actor.id)
    logger.info(f"User {actor.id} created progress report {report.id}")
    return document(report, REPORT_TYPE)


async def _update_progress_report(
    report_id: int,
    request: Request,
    actor: Optional[CurrentUser],
    reports: ProgressReportStore,
    indicators: IndicatorStore,
):
    if actor is None:
        enforce(authorize(None, Action.UPDATE, None, indicators), None, Action.UPDATE,
                f"ProgressReport {report_id}")

    report = reports.find(report_id)
    decision = authorize(actor, Action.UPDATE, report, indicators)
    enforce(decision, actor, Action.UPDATE, f"ProgressReport {report_id}")

    attrs = await _read_body(request, "progress_report")
    if "indicator_id" in attrs:
        # Moving a report requires update rights on the destination indicator too
        destination = _coerce_id(attrs.get("indicator_id"))
        if destination != report.indicator_id:
            decision = authorize(actor, Action.UPDATE, destination, indicators)
            enforce(decision, actor, Action.UPDATE, f"Indicator {destination} progress reports")

    payload = _parse(UpdateProgressReportRequest, attrs)
    report = reports.update(report_id, payload, actor_id=actor.id)
    logger.info(f"User {actor.id} updated progress report {report_id}")
    return document(report, REPORT_TYPE)


@app.put("/progress_reports/{report_id}")
async def replace_progress_report(
    report_id: int,
    request: Request,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    reports: ProgressReportStore = Depends(get_report_store),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    return await _update_progress_report(report_id, request, actor, reports, indicators)


@app.patch("/progress_reports/{report_id}")
async def patch_progress_report(
    report_id: int,
    request: Request,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    reports: ProgressReportStore = Depends(get_report_store),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    return await _update_progress_report(report_id, request, actor, reports, indicators)


@app.delete("/progress_reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_progress_report(
    report_id: int,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    reports: ProgressReportStore = Depends(get_report_store),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    """Delete a progress report (managers only)."""
    if actor is None:
        enforce(authorize(None, Action.DELETE, None, indicators), None, Action.DELETE,
                f"ProgressReport {report_id}")

    report = reports.find(report_id)
    decision = authorize(actor, Action.DELETE, report, indicators)
    enforce(decision, actor, Action.DELETE, f"ProgressReport {report_id}")

    reports.delete(report_id)
    logger.info(f"User {actor.id} deleted progress report {report_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Indicators


@app.get("/indicators")
async def list_indicators(indicators: IndicatorStore = Depends(get_indicator_store)):
    return collection(indicators.list(), INDICATOR_TYPE)


@app.get("/indicators/{indicator_id}")
async def get_indicator(
    indicator_id: int,
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    return document(indicators.find(indicator_id), INDICATOR_TYPE)


@app.post("/indicators", status_code=status.HTTP_201_CREATED)
async def create_indicator(
    request: Request,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    enforce(authorize_manager_resource(actor, Action.CREATE), actor, Action.CREATE, "Indicators")

    payload = _parse(IndicatorRequest, await _read_body(request, "indicator"))
    indicator = indicators.create(payload)
    logger.info(f"User {actor.id} created indicator {indicator.id}")
    return document(indicator, INDICATOR_TYPE)


async def _update_indicator(
    indicator_id: int,
    request: Request,
    actor: Optional[CurrentUser],
    indicators: IndicatorStore,
):
    enforce(authorize_manager_resource(actor, Action.UPDATE), actor, Action.UPDATE,
            f"Indicator {indicator_id}")

    payload = _parse(IndicatorRequest, await _read_body(request, "indicator"))
    indicator = indicators.update(indicator_id, payload)
    logger.info(f"User {actor.id} updated indicator {indicator_id}")
    return document(indicator, INDICATOR_TYPE)


@app.put("/indicators/{indicator_id}")
async def replace_indicator(
    indicator_id: int,
    request: Request,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    return await _update_indicator(indicator_id, request, actor, indicators)


@app.patch("/indicators/{indicator_id}")
async def patch_indicator(
    indicator_id: int,
    request: Request,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    return await _update_indicator(indicator_id, request, actor, indicators)


@app.delete("/indicators/{indicator_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_indicator(
    indicator_id: int,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    indicators: IndicatorStore = Depends(get_indicator_store),
):
    enforce(authorize_manager_resource(actor, Action.DELETE), actor, Action.DELETE,
            f"Indicator {indicator_id}")

    indicators.delete(indicator_id)
    logger.info(f"User {actor.id} deleted indicator {indicator_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Due dates


@app.get("/due_dates")
async def list_due_dates(
    indicator_id: Optional[int] = None,
    due_dates: DueDateStore = Depends(get_due_date_store),
):
    return collection(due_dates.list(indicator_id=indicator_id), DUE_DATE_TYPE)


@app.get("/due_dates/{due_date_id}")
async def get_due_date(
    due_date_id: int,
    due_dates: DueDateStore = Depends(get_due_date_store),
):
    return document(due_dates.find(due_date_id), DUE_DATE_TYPE)


@app.post("/due_dates", status_code=status.HTTP_201_CREATED)
async def create_due_date(
    request: Request,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    due_dates: DueDateStore = Depends(get_due_date_store),
):
    enforce(authorize_manager_resource(actor, Action.CREATE), actor, Action.CREATE, "DueDates")

    payload = _parse(DueDateRequest, await _read_body(request, "due_date"))
    due_date = due_dates.create(payload)
    logger.info(f"User {actor.id} created due date {due_date.id}")
    return document(due_date, DUE_DATE_TYPE)


@app.delete("/due_dates/{due_date_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_due_date(
    due_date_id: int,
    actor: Optional[CurrentUser] = Depends(get_current_actor),
    due_dates: DueDateStore = Depends(get_due_date_store),
):
    enforce(authorize_manager_resource(actor, Action.DELETE), actor, Action.DELETE,
            f"DueDate {due_date_id}")

    due_dates.delete(due_date_id)
    logger.info(f"User {actor.id} deleted due date {due_date_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tracker.main:app", host="0.0.0.0", port=8000, reload=True)
