from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.database import get_db
from app.auth import get_current_user, require_admin
from app.core.normalize import normalize_text, normalize_tokens
from app.core.search_index import (
    ENTITY_REGISTRE,
    SearchFilter,
    delete_search_doc,
    rebuild_search_index,
    search,
    upsert_registre_doc,
)

router = APIRouter(prefix="/search", tags=["Search"])


@router.get("/")
def search_records(
    q: str = "",
    nom: str = "",
    cognoms: str = "",
    any_from: int = 0,
    any_to: int = 0,
    municipi_id: int = 0,
    page: int = 1,
    page_size: int = 25,
    db: Session = Depends(get_db),
    current_user=Depends(get_current_user),
):
    f = SearchFilter(
        entity=ENTITY_REGISTRE,
        query_norm=normalize_text(q),
        query_tokens=normalize_tokens(q),
        name_norm=normalize_text(nom),
        surname_norm=normalize_text(cognoms),
        name_tokens=normalize_tokens(nom),
        surname_tokens=normalize_tokens(cognoms),
        any_from=any_from,
        any_to=any_to,
        municipi_id=municipi_id,
        page=page,
        page_size=min(max(page_size, 1), 100),
    )
    rows, total, facets = search(db, f)
    return {
        "total": total,
        "page": f.page,
        "items": [
            {
                "entity_type": doc.entity_type,
                "entity_id": doc.entity_id,
                "name": doc.person_nom_norm,
                "surnames": doc.cognoms_norm,
                "municipi_id": doc.municipi_id,
                "llibre_id": doc.llibre_id,
                "data_acte": doc.data_acte,
                "any_acte": doc.any_acte,
            }
            for doc in rows
        ],
        "facets": facets,
    }


# --------------------------------------------------
# INDEX MAINTENANCE
# --------------------------------------------------
@router.post("/rebuild")
def rebuild(
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    return {"indexed": rebuild_search_index(db)}


@router.post("/registres/{registre_id}")
def reindex_registre(
    registre_id: int,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    doc = upsert_registre_doc(db, registre_id)
    db.commit()
    return {"indexed": doc is not None}


@router.delete("/registres/{registre_id}")
def unindex_registre(
    registre_id: int,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    delete_search_doc(db, ENTITY_REGISTRE, registre_id)
    db.commit()
    return {"message": "Document removed"}
