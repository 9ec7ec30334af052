import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.database import Base, SessionLocal, engine
from app.config import settings

# Import models so SQLAlchemy registers tables
from app.models import (
    user,
    arbre,
    persona,
    relacio,
    import_source,
    import_job,
    integracio,
    integracio_log,
    municipi,
    llibre,
    registre,
    registre_persona,
    search_doc,
    coincidencia,
    coincidencia_decision,
    grup,
    grup_membre,
    grup_arbre,
    grup_conflicte,
    grup_canvi,
    notification,
    notification_pref,
    municipi_historia,
    historia_general_version,
    historia_fet,
    historia_fet_version,
    event_historic,
    event_historic_version,
    municipi_mapa,
    mapa_version,
    credit_ledger,
    media_album,
    media_item,
    media_access_grant,
    media_access_log,
    maintenance_window,
)

# Routers
from app.routers import (
    auth_router,
    tree_router,
    import_router,
    gramps_router,
    match_router,
    group_router,
    notification_router,
    content_router,
    media_router,
    maintenance_router,
    search_router,
)

from app.core.gramps_sync import SyncScheduler
from app.core.import_worker import ImportWorker

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# -----------------------
# BACKGROUND WORKERS
# -----------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    worker = None
    scheduler = None
    if settings.BACKGROUND_WORKERS_ENABLED:
        worker = ImportWorker(SessionLocal)
        scheduler = SyncScheduler(SessionLocal)
        worker.start()
        scheduler.start()
        logger.info("background workers started")
    yield
    if worker is not None:
        worker.stop()
    if scheduler is not None:
        scheduler.stop()


# -----------------------
# CREATE APP
# -----------------------
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Genealogy research workspace: trees, imports, record matching and moderated content.",
    version="1.0.0",
    lifespan=lifespan,
)

# -----------------------
# CORS
# -----------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # allow all during development
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------
# DATABASE TABLES
# -----------------------
Base.metadata.create_all(bind=engine)

# -----------------------
# ROUTES
# -----------------------
app.include_router(auth_router.router)
app.include_router(tree_router.router)
app.include_router(import_router.router)
app.include_router(gramps_router.router)
app.include_router(match_router.router)
app.include_router(group_router.router)
app.include_router(notification_router.router)
app.include_router(content_router.router)
app.include_router(media_router.router)
app.include_router(maintenance_router.router)
app.include_router(search_router.router)


# -----------------------
# HEALTH CHECK
# -----------------------
@app.get("/")
def root():
    return {"message": "Espai Genealogic API is running!"}
