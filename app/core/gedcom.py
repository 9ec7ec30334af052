"""
Minimal GEDCOM reader.

Only the tags the tree workspace needs are understood (INDI names, sex,
birth/death dates and places, FAM links). Everything else is ignored, never
rejected.
"""
import io
from dataclasses import dataclass, field
from typing import BinaryIO, List, Tuple, Union

from app.core.errors import ImportFailedError

MAX_WARNINGS = 20
MAX_LINE_BYTES = 1024 * 1024

HEADER_ERROR = "Missing GEDCOM header"


@dataclass
class GedcomPerson:
    id: str
    given_name: str = ""
    surname: str = ""
    full_name: str = ""
    sex: str = ""
    birth_date: str = ""
    death_date: str = ""
    birth_place: str = ""
    death_place: str = ""


@dataclass
class GedcomFamily:
    id: str
    husband: str = ""
    wife: str = ""
    children: List[str] = field(default_factory=list)


@dataclass
class GedcomParseResult:
    persons: List[GedcomPerson] = field(default_factory=list)
    families: List[GedcomFamily] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings_total: int = 0

    def warn(self, message: str):
        if not message:
            return
        self.warnings_total += 1
        append_warning(self.warnings, message)


def append_warning(warnings: List[str], message: str) -> List[str]:
    if message and len(warnings) < MAX_WARNINGS:
        warnings.append(message)
    return warnings


def trim_id(raw: str) -> str:
    raw = (raw or "").strip()
    if raw.startswith("@"):
        raw = raw[1:]
    if raw.endswith("@"):
        raw = raw[:-1]
    return raw


def parse_name(name: str) -> Tuple[str, str]:
    """
    "Joan /Puig/" -> ("Joan", "Puig"). Without slashes the whole value is
    the given name.
    """
    name = (name or "").strip()
    if not name:
        return "", ""
    if "/" in name:
        parts = name.split("/")
        given = parts[0].strip()
        surname = parts[1].strip() if len(parts) > 1 else ""
        return given, surname
    return name, ""


def _iter_lines(stream: BinaryIO):
    # readline with a limit keeps a single hostile line from eating memory
    while True:
        raw = stream.readline(MAX_LINE_BYTES + 1)
        if not raw:
            return
        if len(raw) > MAX_LINE_BYTES and not raw.endswith(b"\n"):
            raise ImportFailedError("GEDCOM line too long")
        yield raw.decode("utf-8", errors="replace")


def _value_after(line: str, tag: str) -> str:
    return line[len(tag):].strip()


def parse(source: Union[bytes, BinaryIO]) -> GedcomParseResult:
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)

    result = GedcomParseResult()
    person = None
    family = None
    event = ""
    seen_first = False

    def close_open():
        nonlocal person, family
        if person is not None:
            result.persons.append(person)
            person = None
        if family is not None:
            result.families.append(family)
            family = None

    for line_no, raw in enumerate(_iter_lines(source), start=1):
        line = raw.strip()
        if not seen_first:
            line = line.lstrip("\ufeff").strip()
        if not line:
            continue

        if not seen_first:
            seen_first = True
            if not line.startswith("0 HEAD"):
                result.errors.append(HEADER_ERROR)
                return result

        level = line.split(" ", 1)[0]
        if not level.isdigit():
            result.warn(f"Line {line_no}: malformed line ignored")
            continue

        if line.startswith("0 "):
            close_open()
            event = ""
            fields = line.split()
            if len(fields) >= 3 and fields[2] == "INDI":
                person = GedcomPerson(id=trim_id(fields[1]))
            elif len(fields) >= 3 and fields[2] == "FAM":
                family = GedcomFamily(id=trim_id(fields[1]))
            continue

        if person is not None:
            if line.startswith("1 NAME"):
                given, surname = parse_name(_value_after(line, "1 NAME"))
                person.given_name = given
                person.surname = surname
                person.full_name = " ".join([given, surname]).strip()
            elif line.startswith("1 SEX"):
                sex = _value_after(line, "1 SEX").upper()
                person.sex = {"M": "male", "F": "female"}.get(sex, "unknown")
            elif line.startswith("1 BIRT"):
                event = "BIRT"
            elif line.startswith("1 DEAT"):
                event = "DEAT"
            elif line.startswith("1 "):
                event = ""
            elif line.startswith("2 DATE") and event:
                value = _value_after(line, "2 DATE")
                if event == "BIRT":
                    person.birth_date = value
                else:
                    person.death_date = value
            elif line.startswith("2 PLAC") and event:
                value = _value_after(line, "2 PLAC")
                if event == "BIRT":
                    person.birth_place = value
                else:
                    person.death_place = value
            continue

        if family is not None:
            if line.startswith("1 HUSB"):
                family.husband = trim_id(_value_after(line, "1 HUSB"))
            elif line.startswith("1 WIFE"):
                family.wife = trim_id(_value_after(line, "1 WIFE"))
            elif line.startswith("1 CHIL"):
                child = trim_id(_value_after(line, "1 CHIL"))
                if child:
                    family.children.append(child)

    close_open()
    return result


def parse_file(path: str) -> GedcomParseResult:
    with open(path, "rb") as fh:
        return parse(fh)
