from app.core.normalize import (
    cognom_key,
    extract_year,
    normalize_role,
    normalize_text,
    normalize_tokens,
    phonetic_tokens,
    soundex,
)


def test_normalize_text_folds_accents_and_punctuation():
    assert normalize_text("Maria-Àngels  d'Oms") == "maria angels d oms"
    assert normalize_text("  ") == ""
    assert normalize_text(None) == ""


def test_normalize_tokens_deduplicates_in_order():
    assert normalize_tokens("Joan Puig", "puig", "Ferrer") == ["joan", "puig", "ferrer"]


def test_cognom_key_collapses_variants():
    assert cognom_key("d'Oms") == cognom_key("Doms") == "DOMS"
    assert cognom_key("Puig-Ferrer") == "PUIGFERRER"
    assert cognom_key("") == ""


def test_extract_year():
    assert extract_year("12 JAN 1850") == 1850
    assert extract_year("ABT 1790") == 1790
    assert extract_year("sense data") == 0


def test_normalize_role():
    assert normalize_role("Pare Novi") == "parenovi"
    assert normalize_role("pare_novia") == "parenovia"


def test_soundex_groups_similar_names():
    assert soundex("Robert") == "R163"
    assert soundex("Rupert") == "R163"
    assert soundex("") == ""
    assert phonetic_tokens(["robert", "rupert", "puig"]) == ["R163", "P200"]
