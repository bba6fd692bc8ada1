import logging
import time
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .blob_store import BlobStore, LocalBlobStore, build_blob_store
from .db import Database
from .errors import PortalError, Unexpected, ValidationError
from .lifecycle import CriteriaLifecycle
from .mailer import Mailer, build_mailer
from .password_reset import PasswordReset
from .reporting import ReportingEngine
from .routers import admin, auth, criteria, files, health
from .settings import Settings, settings as default_settings
from .store import CriteriaStore
from .users import UserDirectory

logger = logging.getLogger("portal")


def configure_logging(level: str) -> None:
	logging.basicConfig(
		level=getattr(logging, (level or "INFO").upper(), logging.INFO),
		format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
	)


def _error_body(kind: str, message: str) -> dict:
	return {"success": False, "message": message, "error": kind}


def create_app(
	app_settings: Optional[Settings] = None,
	*,
	blob_store: Optional[BlobStore] = None,
	mailer: Optional[Mailer] = None,
) -> FastAPI:
	cfg = app_settings or default_settings
	configure_logging(cfg.log_level)

	database = Database(cfg.database_url)
	users = UserDirectory(database)
	store = CriteriaStore(database)
	blobs = blob_store or build_blob_store(cfg)

	app = FastAPI(title="Criteria Portal API")
	app.state.settings = cfg
	app.state.database = database
	app.state.users = users
	app.state.store = store
	app.state.lifecycle = CriteriaLifecycle(store, users)
	app.state.reporting = ReportingEngine(store, users)
	app.state.blob_store = blobs
	app.state.password_reset = PasswordReset(users, mailer or build_mailer(cfg), cfg)

	app.add_middleware(
		CORSMiddleware,
		allow_origins=cfg.cors_origin_list,
		allow_credentials=True,
		allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
		allow_headers=["Content-Type", "Authorization"],
	)

	app.include_router(health.router)
	app.include_router(auth.router)
	app.include_router(criteria.router)
	app.include_router(files.router)
	app.include_router(admin.router)

	if isinstance(blobs, LocalBlobStore):
		app.mount("/uploads", StaticFiles(directory=Path(blobs.root), check_dir=False), name="uploads")

	@app.middleware("http")
	async def log_requests(request: Request, call_next):
		started = time.perf_counter()
		response = await call_next(request)
		elapsed_ms = (time.perf_counter() - started) * 1000
		logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, elapsed_ms)
		return response

	@app.exception_handler(PortalError)
	async def portal_error_handler(request: Request, exc: PortalError):
		if exc.status_code >= 500:
			logger.error("%s on %s %s: %s", exc.kind, request.method, request.url.path, exc.message)
		return JSONResponse(status_code=exc.status_code, content=_error_body(exc.kind, exc.message))

	@app.exception_handler(RequestValidationError)
	async def validation_error_handler(request: Request, exc: RequestValidationError):
		problems = []
		for err in exc.errors():
			loc = ".".join(str(x) for x in err.get("loc", ()) if x != "body")
			problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
		message = "Validation error: " + "; ".join(problems)
		return JSONResponse(status_code=ValidationError.status_code, content=_error_body(ValidationError.kind, message))

	@app.exception_handler(StarletteHTTPException)
	async def http_error_handler(request: Request, exc: StarletteHTTPException):
		kind = "NotFound" if exc.status_code == 404 else "HTTPError"
		return JSONResponse(status_code=exc.status_code, content=_error_body(kind, str(exc.detail)))

	@app.exception_handler(Exception)
	async def unexpected_error_handler(request: Request, exc: Exception):
		logger.exception("Unhandled error on %s %s", request.method, request.url.path)
		body = _error_body(Unexpected.kind, Unexpected.default_message)
		if cfg.debug_errors:
			body["detail"] = {"name": type(exc).__name__, "message": str(exc)}
		return JSONResponse(status_code=Unexpected.status_code, content=body)

	@app.on_event("startup")
	async def startup_event():
		database.open()
		seeded = users.ensure_seed_admin(cfg)
		if seeded is not None:
			logger.info("Seed admin account ready: %s", seeded.email)
		logger.info("Criteria portal started (database=%s, blobs=%s)", cfg.database_url.split("://")[0], type(blobs).__name__)

	@app.on_event("shutdown")
	async def shutdown_event():
		await blobs.aclose()
		database.close()
		logger.info("Criteria portal stopped")

	return app


app = create_app()
