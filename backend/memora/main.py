import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cleanup import run_housekeeping
from .db import Base, engine, SessionLocal, ensure_schema
from .errors import MemoraError
from .settings import settings
from .uploads import upload_root
from .routers import auth, users, quiz, tutor, dashboard, progress

logging.basicConfig(
	level=settings.log_level.upper(),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("memora")

app = FastAPI(title="Memora API")
app.add_middleware(
	CORSMiddleware,
	allow_origins=settings.cors_origin_list,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

for r in (auth, users, quiz, tutor, dashboard, progress):
	app.include_router(r.router, prefix="/api")


@app.exception_handler(MemoraError)
async def memora_error_handler(request: Request, exc: MemoraError):
	logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
	return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.get("/api/health")
def health():
	return {"status": "OK", "message": "Memora API is running"}


@app.get("/info")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}


def _housekeeping_pass() -> None:
	db = SessionLocal()
	try:
		run_housekeeping(db)
	except Exception:
		logger.exception("Housekeeping pass failed")
		db.rollback()
	finally:
		db.close()


async def _cleanup_watcher(interval: int):
	while True:
		await asyncio.sleep(interval)
		_housekeeping_pass()


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	upload_root()
	# Close out sessions whose timer ran out while the server was down
	_housekeeping_pass()
	app.state.cleanup_task = None
	if settings.cleanup_interval_seconds > 0:
		app.state.cleanup_task = asyncio.create_task(_cleanup_watcher(settings.cleanup_interval_seconds))
	logger.info("Memora API started (gemini configured: %s)", bool(settings.gemini_api_key))


@app.on_event("shutdown")
async def shutdown_event():
	task = getattr(app.state, "cleanup_task", None)
	if task is not None:
		task.cancel()
