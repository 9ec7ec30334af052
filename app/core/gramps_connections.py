import logging
from datetime import datetime
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, ValidationError
from app.core.gramps_client import GrampsClient
from app.core.gramps_sync import KEEP_LOGS, append_log
from app.core.ingest import create_tree, get_owned_tree, queue_job
from app.core.secret_box import encrypt_token
from app.models.import_job import ImportJob
from app.models.integracio import IntegracioGramps
from app.models.integracio_log import IntegracioGrampsLog

logger = logging.getLogger(__name__)


def is_valid_base_url(raw: str) -> bool:
    try:
        u = urlparse((raw or "").strip())
    except ValueError:
        return False
    return u.scheme in ("http", "https") and bool(u.netloc)


def connect(
    db: Session,
    owner_id: int,
    base_url: str,
    token: str,
    username: str = "",
    arbre_id: Optional[int] = None,
    tree_name: str = "",
    session=None,
) -> IntegracioGramps:
    """
    Validates and pings the server before anything is stored. The token is
    kept encrypted; a connection to the same server reuses its tree.
    """
    base_url = (base_url or "").strip().rstrip("/")
    token = (token or "").strip()
    username = (username or "").strip()
    if not is_valid_base_url(base_url):
        raise ValidationError("base url must be http or https", field="base_url")
    if not token:
        raise ValidationError("token is required", field="token")

    token_enc = encrypt_token(token)
    GrampsClient(base_url, username=username, token=token, session=session).ping()

    integ = db.query(IntegracioGramps).filter(
        IntegracioGramps.owner_user_id == owner_id,
        IntegracioGramps.base_url == base_url,
    ).first()

    if arbre_id:
        tree = get_owned_tree(db, owner_id, arbre_id)
    elif integ is not None:
        tree = get_owned_tree(db, owner_id, integ.arbre_id)
    else:
        name = (tree_name or "").strip() or f"Gramps {datetime.utcnow().strftime('%Y-%m-%d %H:%M')}"
        tree = create_tree(db, owner_id, name)

    if integ is None:
        integ = IntegracioGramps(owner_user_id=owner_id, base_url=base_url)
        db.add(integ)
    integ.arbre_id = tree.id
    integ.username = username or None
    integ.token_enc = token_enc
    integ.status = "connected"
    integ.last_error = None
    db.flush()
    append_log(db, integ, "ok", "Connected")
    db.commit()
    db.refresh(integ)
    logger.info("gramps: owner %s connected %s to tree %s", owner_id, base_url, tree.id)
    return integ


def get_owned(db: Session, owner_id: int, integ_id: int) -> IntegracioGramps:
    integ = db.query(IntegracioGramps).filter(IntegracioGramps.id == integ_id).first()
    if integ is None or integ.owner_user_id != owner_id:
        raise NotFoundError("connection not found")
    return integ


def recent_logs(db: Session, integ_id: int) -> List[IntegracioGrampsLog]:
    return db.query(IntegracioGrampsLog).filter(
        IntegracioGrampsLog.integracio_id == integ_id
    ).order_by(IntegracioGrampsLog.id.desc()).limit(KEEP_LOGS).all()


def list_connections(db: Session, owner_id: int) -> List[Tuple[IntegracioGramps, List[IntegracioGrampsLog]]]:
    rows = db.query(IntegracioGramps).filter(
        IntegracioGramps.owner_user_id == owner_id
    ).order_by(IntegracioGramps.id).all()
    return [(integ, recent_logs(db, integ.id)) for integ in rows]


def set_enabled(db: Session, owner_id: int, integ_id: int, enabled: bool) -> IntegracioGramps:
    integ = get_owned(db, owner_id, integ_id)
    if enabled:
        if integ.status == "disabled":
            integ.status = "connected"
    else:
        integ.status = "disabled"
    db.commit()
    return integ


def queue_sync(db: Session, owner_id: int, integ_id: int) -> ImportJob:
    integ = get_owned(db, owner_id, integ_id)
    if integ.status == "disabled":
        raise ValidationError("connection is disabled")
    return queue_job(db, owner_id, integ.arbre_id, None, "gramps", "sync")
