import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from judgesync import __version__
from judgesync.config import settings
from judgesync.models.sync import SyncValidationError
from judgesync.routers import sync_admin, sync_cron
from judgesync.services.sync_workers import get_queue_manager
from judgesync.utils.logger import logger, mask_secret

app = FastAPI(title="JudgeSync API", version=__version__)

origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


# Request logging middleware with request ID
@app.middleware("http")
async def request_logger(request: Request, call_next):
    rid = uuid.uuid4().hex[:8]
    request.state.rid = rid
    logging.info("→ %s %s rid=%s", request.method, request.url.path, rid)
    try:
        resp = await call_next(request)
        logging.info("← %s status=%s rid=%s", request.url.path, resp.status_code, rid)
        resp.headers["X-Request-ID"] = rid
        return resp
    except Exception as e:
        logging.exception("Unhandled error rid=%s: %s", rid, str(e))
        error_resp = JSONResponse(
            {"success": False, "error": "internal_error", "rid": rid, "message": "Internal server error"},
            status_code=500,
        )
        error_resp.headers["X-Request-ID"] = rid
        return error_resp


def _rid(request: Request):
    return getattr(request.state, "rid", None)


@app.exception_handler(SyncValidationError)
async def sync_validation_error_handler(request: Request, exc: SyncValidationError):
    return JSONResponse(
        {"success": False, "error": "validation_error", "message": str(exc), "rid": _rid(request)},
        status_code=400,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ())) or 'body'}: {err.get('msg')}" for err in exc.errors()
    )
    return JSONResponse(
        {"success": False, "error": "validation_error", "message": problems, "rid": _rid(request)},
        status_code=400,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"success": False, "error": exc.detail, "rid": _rid(request)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


app.include_router(sync_admin.router)
app.include_router(sync_cron.router)


@app.on_event("startup")
async def startup_event():
    logger.info("🚀 Starting JudgeSync API %s", __version__)
    logger.info("CourtListener token: %s", mask_secret(settings.courtlistener_api_token))
    if settings.SYNC_PROCESS_IN_APP:
        manager = get_queue_manager()
        manager.requeue_stale_jobs()
        manager.start_processing()
    else:
        logger.info("⏭️  Queue processing runs in the separate worker (SYNC_PROCESS_IN_APP=false)")


@app.on_event("shutdown")
async def shutdown_event():
    if settings.SYNC_PROCESS_IN_APP:
        get_queue_manager().stop_processing()


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}
