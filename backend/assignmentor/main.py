import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import Base, engine, get_db, ensure_schema
from .cleanup import purge_stale_sessions
from .settings import settings
from .routers import health, ai
from .routers import auth
from .routers import assignments
from .routers import document

logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
# Pillow and fpdf2 are chatty at DEBUG
logging.getLogger("PIL").setLevel(logging.WARNING)
logging.getLogger("fpdf").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

app = FastAPI(title="Assignmentor API")
app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_methods=["*"],
	allow_headers=["*"],
	expose_headers=["Content-Disposition", "X-Export-Pages", "X-Export-Skipped"],
)
app.include_router(health.router)
app.include_router(auth.router)
app.include_router(assignments.router)
app.include_router(document.router)
app.include_router(ai.router)


@app.get("/")
def root():
	return {"status": "ok", "service": "Assignmentor API", "llm_configured": bool(settings.llm_api_key)}


def _run_cleanup() -> None:
	db = next(get_db())
	try:
		purge_stale_sessions(db)
	finally:
		db.close()


async def _cleanup_watcher():
	while True:
		await asyncio.sleep(24 * 60 * 60)
		try:
			_run_cleanup()
		except Exception:
			logger.exception("Session cleanup failed")


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	try:
		_run_cleanup()
	except Exception:
		logger.exception("Session cleanup failed")
	# Start periodic cleanup loop
	asyncio.create_task(_cleanup_watcher())
