"""
HTTP client for a Gramps Web server.

The client knows a handful of endpoint spellings used by different Gramps
Web versions and tries them in order. Responses are mapped to
GrampsPerson / GrampsFamily / GrampsEvent records; everything else in the payload is
ignored.
"""
import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests
from requests.auth import HTTPBasicAuth

from app.config import settings
from app.core.errors import (
    AuthInvalidError,
    BadFormatError,
    CancelledError,
    UnreachableError,
)
from app.core.normalize import strip_diacritics

logger = logging.getLogger(__name__)

HEALTH_ENDPOINTS = ["/api/health", "/api/v1/health"]
PING_ENDPOINTS = ["/api/people", "/api/people/", "/api/v1/people", "/api/v1/people/"]


def _list_endpoints(resource: str) -> List[str]:
    plain = [
        f"/api/{resource}",
        f"/api/{resource}/",
        f"/api/v1/{resource}",
        f"/api/v1/{resource}/",
    ]
    return [f"{ep}?pagesize=1000&extend=all" for ep in plain] + plain


PEOPLE_ENDPOINTS = _list_endpoints("people")
FAMILY_ENDPOINTS = _list_endpoints("families")


def _item_endpoints(resource: str, handle: str, extend: bool = False) -> List[str]:
    h = quote(handle, safe="")
    plain = [
        f"/api/{resource}/{h}",
        f"/api/{resource}/{h}/",
        f"/api/v1/{resource}/{h}",
        f"/api/v1/{resource}/{h}/",
    ]
    if extend:
        return [f"{ep}?extend=all" for ep in plain] + plain
    return plain


@dataclass
class GrampsPerson:
    handle: str = ""
    gramps_id: str = ""
    given: str = ""
    surname: str = ""
    surname_parts: List[str] = field(default_factory=list)
    surname_full: str = ""
    sex: str = ""
    birth_date: str = ""
    death_date: str = ""
    birth_place: str = ""
    death_place: str = ""
    notes: str = ""
    note_handles: List[str] = field(default_factory=list)
    # (event handle, role)
    event_refs: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def external_id(self) -> str:
        return self.gramps_id or self.handle

    def keys(self) -> List[str]:
        out = []
        if self.handle:
            out.append("gramps:" + self.handle)
        if self.gramps_id:
            out.append("gramps:" + self.gramps_id)
        return out


@dataclass
class GrampsEvent:
    handle: str = ""
    type: str = ""
    date: str = ""
    description: str = ""
    place: str = ""
    place_ref: str = ""


@dataclass
class GrampsFamily:
    father_id: str = ""
    mother_id: str = ""
    children: List[str] = field(default_factory=list)


# --------------------------------------------------
# CLIENT
# --------------------------------------------------
class GrampsClient:
    def __init__(
        self,
        base_url: str,
        username: str = "",
        token: str = "",
        timeout: Optional[int] = None,
        session=None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.base_url = (base_url or "").strip().rstrip("/")
        self.username = (username or "").strip()
        self._token = (token or "").strip()
        self.timeout = timeout or settings.ESP_GRAMPS_HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.cancel_event = cancel_event

    # ---------- plumbing ----------
    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise CancelledError()

    def _auth_kwargs(self) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self.username:
            return {"headers": headers, "auth": HTTPBasicAuth(self.username, self._token)}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return {"headers": headers}

    def url_for(self, endpoint: str) -> str:
        return self.base_url + normalize_endpoint(self.base_url, endpoint)

    def _get(self, endpoint: str):
        self._check_cancelled()
        url = self.url_for(endpoint)
        try:
            return self.session.get(url, timeout=self.timeout, **self._auth_kwargs())
        except requests.RequestException as e:
            logger.info("gramps: %s unreachable (%s)", url, e.__class__.__name__)
            raise UnreachableError(f"{endpoint}: {e.__class__.__name__}")

    # ---------- operations ----------
    def ping(self):
        last_error = None
        for endpoint in HEALTH_ENDPOINTS + PING_ENDPOINTS:
            try:
                resp = self._get(endpoint)
            except UnreachableError as e:
                last_error = e
                continue
            if 200 <= resp.status_code < 300:
                return
            if resp.status_code in (401, 403):
                raise AuthInvalidError("auth invalid per Gramps")
            last_error = UnreachableError(f"Gramps response {resp.status_code} for {endpoint}")

        raise last_error or UnreachableError("could not validate the Gramps connection")

    def _fetch_list(self, endpoints: List[str]) -> List[Dict[str, Any]]:
        saw_response = False
        for endpoint in endpoints:
            try:
                resp = self._get(endpoint)
            except UnreachableError:
                continue
            if resp.status_code in (401, 403):
                raise AuthInvalidError("auth invalid per Gramps")
            if not 200 <= resp.status_code < 300:
                continue
            saw_response = True
            try:
                items = parse_list(resp.json())
            except (ValueError, BadFormatError):
                continue
            if items:
                return items

        if saw_response:
            raise BadFormatError("could not load data from Gramps")
        raise UnreachableError("could not load data from Gramps")

    def fetch_people(self) -> List[GrampsPerson]:
        out = []
        for item in self._fetch_list(PEOPLE_ENDPOINTS):
            person = parse_person(item)
            if person.handle or person.gramps_id:
                out.append(person)
        return out

    def fetch_families(self) -> List[GrampsFamily]:
        out = []
        for item in self._fetch_list(FAMILY_ENDPOINTS):
            family = parse_family(item)
            if family.father_id or family.mother_id or family.children:
                out.append(family)
        return out

    def _fetch_item(self, endpoints: List[str]) -> Dict[str, Any]:
        for endpoint in endpoints:
            try:
                resp = self._get(endpoint)
            except UnreachableError:
                continue
            if resp.status_code in (401, 403):
                raise AuthInvalidError("auth invalid per Gramps")
            if not 200 <= resp.status_code < 300:
                continue
            try:
                return parse_item(resp.json())
            except (ValueError, BadFormatError):
                continue
        raise UnreachableError("could not load data from Gramps")

    def fetch_person(self, handle: str) -> GrampsPerson:
        return parse_person(self._fetch_item(_item_endpoints("people", handle, extend=True)))

    def fetch_event(self, handle: str) -> GrampsEvent:
        return parse_event(self._fetch_item(_item_endpoints("events", handle)))

    def fetch_place_name(self, handle: str) -> str:
        item = self._fetch_item(_item_endpoints("places", handle))
        name_map = lookup_map(item, "name")
        name = lookup_string(name_map, "value", "name", "text")
        return name or lookup_string(item, "title", "name", "value")

    def fetch_note(self, handle: str) -> str:
        item = self._fetch_item(_item_endpoints("notes", handle))
        text = lookup_string(lookup_map(item, "text"), "string", "value", "text")
        return text or lookup_string(item, "text", "value")


def normalize_endpoint(base_url: str, endpoint: str) -> str:
    """
    Avoid doubled prefixes when the configured base URL already points at
    the API root, e.g. "https://host/api" + "/api/people".
    """
    base_url = (base_url or "").rstrip("/")
    endpoint = (endpoint or "").strip()
    if not endpoint:
        return "/"

    if base_url.endswith("/api/v1"):
        if endpoint.startswith("/api/v1"):
            endpoint = endpoint[len("/api/v1"):]
        elif endpoint.startswith("/api/"):
            endpoint = endpoint[len("/api"):]
    elif base_url.endswith("/api"):
        if endpoint.startswith("/api/"):
            endpoint = endpoint[len("/api"):]

    if not endpoint:
        return "/"
    if not endpoint.startswith("/"):
        endpoint = "/" + endpoint
    return endpoint


# --------------------------------------------------
# PAYLOAD PARSING
# --------------------------------------------------
def parse_list(payload) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]
    if isinstance(payload, dict):
        for key in ("data", "items", "results"):
            if isinstance(payload.get(key), list):
                return [item for item in payload[key] if isinstance(item, dict)]
    raise BadFormatError("unknown JSON layout")


def parse_item(payload) -> Dict[str, Any]:
    if isinstance(payload, dict):
        for key in ("data", "item", "result"):
            if isinstance(payload.get(key), dict):
                return payload[key]
        return payload
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        return payload[0]
    raise BadFormatError("unknown JSON layout")


def lookup_string(m: Optional[Dict[str, Any]], *keys: str) -> str:
    if not m:
        return ""
    for key in keys:
        if key in m and isinstance(m[key], str):
            return m[key].strip()
    return ""


def lookup_int(m: Dict[str, Any], *keys: str) -> int:
    for key in keys:
        if key not in m:
            continue
        value = m[key]
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                continue
    return 0


def lookup_map(m: Dict[str, Any], *keys: str) -> Optional[Dict[str, Any]]:
    for key in keys:
        if isinstance(m.get(key), dict):
            return m[key]
    return None


def parse_name_parts(name: str):
    name = (name or "").strip()
    if not name:
        return "", ""
    if "/" in name:
        parts = name.split("/")
        return parts[0].strip(), parts[1].strip() if len(parts) > 1 else ""
    fields = name.split()
    if len(fields) <= 1:
        return name, ""
    return " ".join(fields[:-1]), fields[-1]


def extract_surname_parts(name_map: Optional[Dict[str, Any]], root: Dict[str, Any]) -> List[str]:
    parts: List[str] = []

    def parse_surname_list(value):
        if not isinstance(value, list):
            return
        for entry in value:
            if isinstance(entry, dict):
                s = lookup_string(entry, "surname", "value", "name")
                if s:
                    parts.append(s)
            elif isinstance(entry, str) and entry.strip():
                parts.append(entry.strip())

    if name_map:
        parse_surname_list(name_map.get("surname_list"))
    if not parts:
        parse_surname_list(root.get("surname_list"))
    if not parts and name_map:
        s = lookup_string(name_map, "surname", "last_name", "family_name")
        if s:
            parts.append(s)
    return parts


# ---------- sex ----------
UNKNOWN_SEX = {
    "0", "u", "unknown", "unk", "desconegut", "desconeguda", "desconocido",
    "desconocida", "inconnu", "inconnue", "ignot", "ignota", "na", "n/a",
}
MALE_HINTS = [
    "masc", "mascul", "hombre", "home", "homme", "uomo", "maschio",
    "varon", "varo", "mann", "mannlich", "erkek",
]
FEMALE_HINTS = ["fem", "femen", "mujer", "dona", "donna", "femme", "frau", "kadin"]


def extract_gender_value(value) -> str:
    if isinstance(value, bool):
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(int(value))
    if isinstance(value, dict):
        s = lookup_string(value, "string", "value", "name", "gender", "sex", "type", "text", "code")
        if s:
            return s
        for key in ("value", "code", "type"):
            if key in value:
                s = extract_gender_value(value[key])
                if s:
                    return s
    return ""


def normalize_sex(raw: str) -> str:
    value = strip_diacritics((raw or "").strip().lower())
    if not value:
        return ""
    if value in ("1", "m", "male"):
        return "male"
    if value in ("2", "f", "female"):
        return "female"
    if value in UNKNOWN_SEX:
        return ""
    for hint in MALE_HINTS:
        if hint in value:
            return "male"
    for hint in FEMALE_HINTS:
        if hint in value:
            return "female"
    return ""


# ---------- dates ----------
APPROX_PREFIXES = ["ABT ", "ABOUT ", "CIRCA ", "CA ", "CAL ", "EST ", "ESTIMATED "]
BEFORE_PREFIXES = ["BEF ", "BEFORE "]
AFTER_PREFIXES = ["AFT ", "AFTER "]

APPROX_MODIFIERS = {
    "about", "abt", "approx", "approximate", "estimated", "est",
    "calc", "calculated", "circa", "c", "ca",
}
BEFORE_MODIFIERS = {"before", "bef", "lt", "<"}
AFTER_MODIFIERS = {"after", "aft", "gt", ">"}


def _strip_prefix(raw: str, prefixes: List[str]) -> Optional[str]:
    upper = raw.upper()
    for prefix in prefixes:
        if upper.startswith(prefix):
            rest = raw[len(prefix):].strip()
            return rest or None
    return None


def normalize_date_string(raw: str) -> str:
    value = (raw or "").strip()
    if not value:
        return ""
    for marker, prefixes in (("~", APPROX_PREFIXES), ("<", BEFORE_PREFIXES), (">", AFTER_PREFIXES)):
        rest = _strip_prefix(value, prefixes)
        if rest:
            return marker + rest
    return value


def format_date_parts(day: int, month: int, year: int) -> str:
    if year <= 0:
        return ""
    day_str = f"{day:02d}" if day > 0 else "??"
    month_str = f"{month:02d}" if month > 0 else "??"
    if day_str == "??" and month_str == "??":
        return str(year)
    return f"{day_str}/{month_str}/{year}"


def apply_date_modifier(base: str, modifier: str) -> str:
    if not base:
        return ""
    for marker, modifiers in (("~", APPROX_MODIFIERS), ("<", BEFORE_MODIFIERS), (">", AFTER_MODIFIERS)):
        if modifier in modifiers:
            return base if base.startswith(marker) else marker + base
    return base


def normalize_date_value(value) -> str:
    if isinstance(value, str):
        return normalize_date_string(value)
    if isinstance(value, dict):
        s = lookup_string(value, "text", "date", "dateval", "date_val", "value", "date_text")
        if s:
            return normalize_date_string(s)
        year = lookup_int(value, "year", "y")
        month = lookup_int(value, "month", "m")
        day = lookup_int(value, "day", "d")
        if not (year or month or day):
            return ""
        modifier = lookup_string(value, "modifier", "mod", "qualifier", "quality").lower()
        return apply_date_modifier(format_date_parts(day, month, year), modifier)
    return ""


def lookup_date(m: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        if key in m:
            s = normalize_date_value(m[key])
            if s:
                return s
    return ""


# ---------- references ----------
def extract_reference_id(value) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        return lookup_string(value, "gramps_id", "id", "handle", "ref", "person")
    return ""


def extract_reference_ids(value) -> List[str]:
    if not isinstance(value, list):
        return []
    out = []
    for entry in value:
        ref = extract_reference_id(entry)
        if ref:
            out.append(ref)
    return out


def extract_event_refs(value) -> List[Tuple[str, str]]:
    if not isinstance(value, list):
        return []
    out = []
    for entry in value:
        if isinstance(entry, dict):
            ref = lookup_string(entry, "ref", "handle", "gramps_id", "id") or extract_reference_id(entry.get("ref"))
            if ref:
                out.append((ref, lookup_string(entry, "role")))
        elif isinstance(entry, str) and entry.strip():
            out.append((entry.strip(), ""))
    return out


EVENT_REF_KEYS = (
    ("birth_ref", "birth"),
    ("death_ref", "death"),
    ("baptism_ref", "baptism"),
    ("christening_ref", "baptism"),
    ("burial_ref", "burial"),
    ("confirmation_ref", "confirmation"),
    ("primary_event_ref", "primary"),
)

# first hint contained in the type wins
EVENT_TYPE_HINTS = (
    ("marriage", "matrimoni"),
    ("birth", "naixement"),
    ("bapt", "baptisme"),
    ("death", "defuncio"),
    ("burial", "enterrament"),
    ("confirm", "confirmacio"),
    ("resid", "residencia"),
    ("occup", "feina"),
)
EVENT_TYPE_ALIASES = {
    "naixement": "naixement", "naixament": "naixement",
    "bateig": "baptisme", "baptisme": "baptisme",
    "defuncio": "defuncio", "obit": "defuncio",
    "enterrament": "enterrament", "sepultura": "enterrament",
    "matrimoni": "matrimoni", "wedding": "matrimoni",
    "confirmacio": "confirmacio",
    "residencia": "residencia",
    "ocupacio": "feina", "feina": "feina", "treball": "feina",
}


def normalize_event_type(raw: str) -> str:
    value = (raw or "").strip().lower().replace("_", " ").replace("-", " ").strip()
    for hint, kind in EVENT_TYPE_HINTS:
        if hint in value:
            return kind
    return EVENT_TYPE_ALIASES.get(value, "altre")


NOTE_URL_RE = re.compile(r"#\s*[^\n]*https?://\S+", re.IGNORECASE)


def normalize_note(text: str) -> str:
    text = NOTE_URL_RE.sub(" ", (text or "").replace("\n", " "))
    return " ".join(text.split())


# ---------- records ----------
def parse_person(m: Dict[str, Any]) -> GrampsPerson:
    person = GrampsPerson()
    person.gramps_id = lookup_string(m, "gramps_id", "grampsId")
    person.handle = lookup_string(m, "handle", "id", "person_id") or person.gramps_id

    name_map = lookup_map(m, "primary_name", "name")
    given = lookup_string(m, "first_name", "given", "given_name")
    surname = lookup_string(m, "surname", "last_name", "family_name")
    if name_map:
        given = given or lookup_string(name_map, "first", "given", "first_name")
        surname = surname or lookup_string(name_map, "surname", "last_name", "family_name")
        full = lookup_string(name_map, "name", "full")
        if (not given or not surname) and full:
            given, surname = parse_name_parts(full)
    if (not given or not surname) and lookup_string(m, "name"):
        given, surname = parse_name_parts(lookup_string(m, "name"))

    person.given = given
    person.surname = surname
    parts = extract_surname_parts(name_map, m)
    if not parts and surname:
        parts = [surname]
    person.surname_parts = parts
    if parts:
        person.surname = parts[0]
        person.surname_full = " ".join(parts).strip()
    else:
        person.surname_full = surname.strip()

    sex = lookup_string(m, "gender", "sex", "gender_type", "sex_type", "genderType", "sexType")
    if not sex:
        if "gender" in m:
            sex = extract_gender_value(m["gender"])
        elif "sex" in m:
            sex = extract_gender_value(m["sex"])
    person.sex = normalize_sex(sex)

    person.birth_date = lookup_date(m, "birth_date", "birth", "birth_event", "birthDate")
    person.death_date = lookup_date(m, "death_date", "death", "death_event", "deathDate")
    person.note_handles = extract_reference_ids(m.get("note_list"))
    for key in ("event_ref_list", "event_ref", "event_list"):
        if m.get(key) is not None:
            person.event_refs = extract_event_refs(m[key])
            break
    for key, role in EVENT_REF_KEYS:
        ref = extract_reference_id(m.get(key))
        if ref:
            person.event_refs.append((ref, role))
    return person


def parse_family(m: Dict[str, Any]) -> GrampsFamily:
    family = GrampsFamily()
    family.father_id = lookup_string(m, "father_handle", "father_id", "father") or extract_reference_id(m.get("father"))
    family.mother_id = lookup_string(m, "mother_handle", "mother_id", "mother") or extract_reference_id(m.get("mother"))
    for key in ("child_ref_list", "children", "child_list"):
        if key in m:
            family.children = extract_reference_ids(m[key])
            break
    return family


def parse_event(m: Dict[str, Any]) -> GrampsEvent:
    event = GrampsEvent()
    event.handle = lookup_string(m, "handle", "id", "gramps_id")
    event.type = lookup_string(m, "type", "event_type") or lookup_string(lookup_map(m, "type"), "string", "value", "name")
    event.date = lookup_date(m, "date", "dateval", "date_text", "date_val", "value", "text")
    event.description = lookup_string(m, "description", "desc", "note")

    place = m.get("place")
    if isinstance(place, dict):
        event.place = lookup_string(lookup_map(place, "name"), "value", "name", "text")
        event.place = event.place or lookup_string(place, "name", "value", "text")
        event.place_ref = lookup_string(place, "gramps_id", "id", "handle", "ref")
    elif isinstance(place, str):
        event.place_ref = place.strip()
    return event


def merge_person_detail(base: GrampsPerson, detail: GrampsPerson) -> GrampsPerson:
    """Fills the empty fields of a listed person from its detail record."""
    for name in ("sex", "given", "surname", "surname_full", "birth_date", "death_date"):
        if not getattr(base, name):
            setattr(base, name, getattr(detail, name))
    for name in ("surname_parts", "note_handles", "event_refs"):
        if not getattr(base, name):
            setattr(base, name, list(getattr(detail, name)))
    return base


def resolve_person_id(ext_map: Dict[str, int], ref: str) -> int:
    ref = (ref or "").strip()
    if not ref or not ext_map:
        return 0
    if ref.startswith("gramps:"):
        if ref in ext_map:
            return ext_map[ref]
        ref = ref[len("gramps:"):]
    return ext_map.get("gramps:" + ref, 0)
