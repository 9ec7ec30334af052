import io

from fastapi import UploadFile

from app.core import ingest
from app.core.import_worker import ImportWorker, OwnerGate
from app.models.import_job import ImportJob
from app.models.persona import Persona


GEDCOM = b"0 HEAD\n0 @I1@ INDI\n1 NAME Anna /Vila/\n0 TRLR\n"


def queue_upload(db, owner, data=GEDCOM):
    job, _ = ingest.queue_gedcom_upload(db, owner.id, UploadFile(file=io.BytesIO(data), filename="a.ged"))
    return job


def reload(db, job_id):
    db.expire_all()
    return db.query(ImportJob).filter(ImportJob.id == job_id).one()


def test_owner_gate_limits_concurrency():
    gate = OwnerGate()
    assert gate.try_start(1, 10, 1)
    assert not gate.try_start(1, 11, 1)
    assert not gate.try_start(2, 10, 2)  # job already running
    assert gate.try_start(2, 12, 0)
    assert gate.try_start(2, 13, 0)      # no cap
    assert gate.try_start(2, 14, -1)
    assert gate.active(2) == 3
    gate.finish(1, 10)
    assert gate.active(1) == 0
    assert gate.try_start(1, 11, 1)


def test_dispatch_runs_queued_job(db, session_factory, make_user):
    owner = make_user()
    job = queue_upload(db, owner)
    worker = ImportWorker(session_factory, spawn=lambda fn: fn())

    assert worker.dispatch_once() == [job.id]

    done = reload(db, job.id)
    assert done.status == "done"
    assert done.started_at is not None and done.finished_at is not None
    assert db.query(Persona).filter(Persona.arbre_id == job.arbre_id).count() == 1
    assert worker.dispatch_once() == []


def test_one_running_job_per_owner(db, session_factory, make_user):
    owner, other = make_user(), make_user()
    first = queue_upload(db, owner)
    second = queue_upload(db, owner, GEDCOM + b"\n")
    third = queue_upload(db, other)

    pending = []
    worker = ImportWorker(session_factory, max_per_owner=1, spawn=pending.append)

    assert worker.dispatch_once() == [first.id, third.id]
    for run in pending:
        run()
    pending.clear()

    assert worker.dispatch_once() == [second.id]
    assert worker.gate.active(owner.id) == 1


def test_failures_end_in_error_status(db, session_factory, make_user, make_tree):
    owner = make_user()
    tree = make_tree(owner)
    bad = ingest.queue_job(db, owner.id, tree.id, None, "csv", "replace")
    orphan = ingest.queue_job(db, owner.id, tree.id, None, "gramps", "sync")
    worker = ImportWorker(session_factory, max_per_owner=2, spawn=lambda fn: fn())

    worker.dispatch_once()

    assert reload(db, bad.id).error_text == "unsupported import type: csv"
    assert reload(db, bad.id).status == "error"
    assert reload(db, orphan.id).error_text == "gramps integration not found"


def test_stopped_worker_cancels_running_import(db, session_factory, make_user):
    owner = make_user()
    job = queue_upload(db, owner)
    worker = ImportWorker(session_factory, spawn=lambda fn: fn())
    worker.stop_event.set()

    worker.dispatch_once()

    cancelled = reload(db, job.id)
    assert (cancelled.status, cancelled.error_text) == ("error", "cancelled")
    assert db.query(Persona).count() == 0
