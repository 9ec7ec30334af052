import io

import pytest

from app.core.errors import ImportFailedError
from app.core.gedcom import HEADER_ERROR, MAX_WARNINGS, parse, parse_name, trim_id


SAMPLE = b"""0 HEAD
1 CHAR UTF-8
0 @I1@ INDI
1 NAME Joan /Puig/
1 SEX M
1 BIRT
2 DATE 12 JAN 1850
2 PLAC Girona
1 DEAT
2 DATE 1910
0 @I2@ INDI
1 NAME Maria /Ferrer/
1 SEX F
0 @I3@ INDI
1 NAME Pere /Puig/
1 SEX X
0 @F1@ FAM
1 HUSB @I1@
1 WIFE @I2@
1 CHIL @I3@
0 TRLR
"""


def test_parse_persons_and_families():
    result = parse(SAMPLE)

    assert result.errors == []
    assert [p.id for p in result.persons] == ["I1", "I2", "I3"]

    joan = result.persons[0]
    assert joan.given_name == "Joan"
    assert joan.surname == "Puig"
    assert joan.full_name == "Joan Puig"
    assert joan.sex == "male"
    assert joan.birth_date == "12 JAN 1850"
    assert joan.death_date == "1910"
    assert (joan.birth_place, joan.death_place) == ("Girona", "")

    assert result.persons[2].sex == "unknown"

    fam = result.families[0]
    assert (fam.husband, fam.wife, fam.children) == ("I1", "I2", ["I3"])


def test_same_bytes_parse_identically():
    noisy = SAMPLE.replace(b"0 TRLR\n", b"stray line\n1 CHIL @I9@\n0 TRLR\n")
    first, second = parse(noisy), parse(io.BytesIO(noisy))

    assert first.persons == second.persons
    assert first.families == second.families
    assert (first.warnings, first.warnings_total) == (second.warnings, second.warnings_total)
    assert first.warnings


def test_missing_header_is_an_error():
    result = parse(b"0 @I1@ INDI\n1 NAME Joan /Puig/\n")
    assert result.errors == [HEADER_ERROR]
    assert result.persons == []


def test_bom_before_header_is_accepted():
    result = parse("\ufeff0 HEAD\n0 @I1@ INDI\n1 NAME Anna\n".encode("utf-8"))
    assert result.errors == []
    assert result.persons[0].given_name == "Anna"
    assert result.persons[0].surname == ""


def test_malformed_lines_are_warnings_and_capped():
    body = b"0 HEAD\n" + b"garbage line\n" * (MAX_WARNINGS + 5)
    result = parse(io.BytesIO(body))
    assert result.errors == []
    assert len(result.warnings) == MAX_WARNINGS
    assert result.warnings_total == MAX_WARNINGS + 5


def test_unknown_tags_are_ignored():
    result = parse(b"0 HEAD\n0 @S1@ SOUR\n1 TITL Parish book\n0 @I1@ INDI\n1 NOTE hello\n")
    assert len(result.persons) == 1
    assert result.warnings == []


def test_overlong_line_fails():
    body = b"0 HEAD\n1 NOTE " + b"x" * (1024 * 1024 + 10)
    with pytest.raises(ImportFailedError):
        parse(body)


def test_helpers():
    assert trim_id("@I12@") == "I12"
    assert parse_name("Joan /Puig/") == ("Joan", "Puig")
    assert parse_name("Joan") == ("Joan", "")
