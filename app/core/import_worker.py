import logging
import threading
from typing import Callable, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from app.config import settings
from app.core.errors import EspaiError, ImportFailedError
from app.core.gramps_sync import sync_integration
from app.core.ingest import run_gedcom_job, set_job_status
from app.models.import_job import ImportJob
from app.models.integracio import IntegracioGramps

logger = logging.getLogger(__name__)


# --------------------------------------------------
# PER-OWNER GATE
# --------------------------------------------------
class OwnerGate:
    def __init__(self):
        self._mu = threading.Lock()
        self._active: Dict[int, int] = {}
        self._busy: Set[int] = set()

    def try_start(self, owner_id: int, job_id: int, limit: int) -> bool:
        """A limit of zero or less lets an owner run any number of jobs."""
        with self._mu:
            if job_id in self._busy:
                return False
            if limit > 0 and self._active.get(owner_id, 0) >= limit:
                return False
            self._active[owner_id] = self._active.get(owner_id, 0) + 1
            self._busy.add(job_id)
            return True

    def finish(self, owner_id: int, job_id: int):
        with self._mu:
            self._busy.discard(job_id)
            count = self._active.get(owner_id, 0) - 1
            if count > 0:
                self._active[owner_id] = count
            else:
                self._active.pop(owner_id, None)

    def active(self, owner_id: int) -> int:
        with self._mu:
            return self._active.get(owner_id, 0)


def _spawn_thread(target: Callable[[], None]):
    threading.Thread(target=target, daemon=True).start()


# --------------------------------------------------
# WORKER
# --------------------------------------------------
class ImportWorker:
    """
    Polls queued import jobs and runs each on its own thread, never more
    than max_per_owner at a time for one user (0 means no cap).
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        poll_seconds: Optional[int] = None,
        batch_size: Optional[int] = None,
        max_per_owner: Optional[int] = None,
        spawn: Callable[[Callable[[], None]], None] = _spawn_thread,
    ):
        self.session_factory = session_factory
        self.poll_seconds = poll_seconds or settings.ESP_IMPORT_WORKER_POLL_SECONDS
        self.batch_size = batch_size or settings.ESP_IMPORT_WORKER_BATCH
        self.max_per_owner = settings.ESP_IMPORT_MAX_PER_OWNER if max_per_owner is None else max_per_owner
        self.spawn = spawn
        self.gate = OwnerGate()
        self.stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ---------- one tick ----------
    def dispatch_once(self) -> List[int]:
        db = self.session_factory()
        try:
            jobs = db.query(ImportJob).filter(
                ImportJob.status == "queued"
            ).order_by(ImportJob.created_at, ImportJob.id).limit(self.batch_size).all()
            claims = [(job.id, job.owner_user_id) for job in jobs]
        finally:
            db.close()

        started = []
        for job_id, owner_id in claims:
            if not self.gate.try_start(owner_id, job_id, self.max_per_owner):
                continue
            started.append(job_id)
            self.spawn(lambda job_id=job_id, owner_id=owner_id: self.run_job(job_id, owner_id))
        if started:
            logger.info("import worker: started jobs %s", started)
        return started

    def run_job(self, job_id: int, owner_id: int):
        db = self.session_factory()
        try:
            job = db.query(ImportJob).filter(ImportJob.id == job_id).first()
            if job is None:
                return
            try:
                self.execute(db, job)
            except Exception as e:
                db.rollback()
                message = e.message if isinstance(e, EspaiError) else str(e) or e.__class__.__name__
                if isinstance(e, EspaiError):
                    logger.warning("import worker: job %s failed: %s", job_id, message)
                else:
                    logger.exception("import worker: job %s crashed", job_id)
                set_job_status(db, job, "error", error=message)
        finally:
            db.close()
            self.gate.finish(owner_id, job_id)

    def execute(self, db: Session, job: ImportJob):
        import_type = (job.import_type or "").strip()
        if import_type == "gedcom":
            run_gedcom_job(db, job, self.stop_event)
        elif import_type == "gramps":
            self.execute_gramps(db, job)
        else:
            raise ImportFailedError(f"unsupported import type: {import_type}")

    def execute_gramps(self, db: Session, job: ImportJob):
        integ = db.query(IntegracioGramps).filter(
            IntegracioGramps.owner_user_id == job.owner_user_id,
            IntegracioGramps.arbre_id == job.arbre_id,
        ).first()
        if integ is None:
            raise ImportFailedError("gramps integration not found")

        set_job_status(db, job, "parsing")
        result = sync_integration(db, integ, force=True, cancel_event=self.stop_event)
        if result.error:
            raise ImportFailedError(result.error)
        set_job_status(db, job, "done", summary={
            "persons": result.persons_created,
            "updated": result.persons_updated,
            "relations": result.relations_created,
            "skipped": result.skipped,
        })

    # ---------- loop ----------
    def _loop(self):
        logger.info(
            "import worker: poll %ss, batch %s, max %s per owner",
            self.poll_seconds, self.batch_size, self.max_per_owner,
        )
        while not self.stop_event.is_set():
            try:
                self.dispatch_once()
            except Exception:
                logger.exception("import worker: dispatch failed")
            self.stop_event.wait(self.poll_seconds)

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="import-worker", daemon=True)
        self._thread.start()

    def stop(self):
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
