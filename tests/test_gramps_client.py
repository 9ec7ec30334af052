import pytest
from requests.auth import HTTPBasicAuth

from app.core.errors import AuthInvalidError, BadFormatError, CancelledError, UnreachableError
from app.core.gramps_client import (
    GrampsClient,
    normalize_date_value,
    normalize_endpoint,
    normalize_sex,
    parse_family,
    parse_list,
    parse_person,
    resolve_person_id,
)


def test_normalize_endpoint_avoids_double_prefix():
    assert normalize_endpoint("https://h/api", "/api/people") == "/people"
    assert normalize_endpoint("https://h/api/v1", "/api/v1/people") == "/people"
    assert normalize_endpoint("https://h/api/v1", "/api/people") == "/people"
    assert normalize_endpoint("https://h", "/api/people") == "/api/people"
    assert normalize_endpoint("https://h", "people") == "/people"


def test_client_builds_urls_against_api_root():
    client = GrampsClient("https://tree.example.org/api/", token="t")
    assert client.url_for("/api/people") == "https://tree.example.org/api/people"


def test_ping_ok_and_bearer_auth(gramps_server):
    session = gramps_server()
    GrampsClient("https://h", token="secret", session=session).ping()
    first = session.calls[0]
    assert first["url"] == "https://h/api/health"
    assert first["headers"]["Authorization"] == "Bearer secret"
    assert first["auth"] is None


def test_username_switches_to_basic_auth(gramps_server):
    session = gramps_server()
    GrampsClient("https://h", username="anna", token="pw", session=session).ping()
    call = session.calls[0]
    assert isinstance(call["auth"], HTTPBasicAuth)
    assert "Authorization" not in call["headers"]


def test_ping_rejected_credentials(gramps_server):
    with pytest.raises(AuthInvalidError):
        GrampsClient("https://h", token="bad", session=gramps_server(status_code=401)).ping()


def test_ping_unreachable(gramps_server):
    with pytest.raises(UnreachableError):
        GrampsClient("https://h", token="t", session=gramps_server(unreachable=True)).ping()


def test_ping_with_server_errors_is_unreachable(gramps_server):
    with pytest.raises(UnreachableError):
        GrampsClient("https://h", token="t", session=gramps_server(status_code=500)).ping()


def test_fetch_people_prefers_extended_listing(gramps_server, family_payload):
    people, _ = family_payload
    session = gramps_server(people=people)
    out = GrampsClient("https://h", token="t", session=session).fetch_people()

    assert session.calls[0]["url"] == "https://h/api/people?pagesize=1000&extend=all"
    assert [p.handle for p in out] == ["h1", "h2", "h3"]
    assert out[0].keys() == ["gramps:h1", "gramps:I0001"]


def test_empty_people_listing_is_bad_format(gramps_server):
    with pytest.raises(BadFormatError):
        GrampsClient("https://h", token="t", session=gramps_server(people=[])).fetch_people()


def test_cancelled_client_stops_before_requesting(gramps_server):
    import threading

    event = threading.Event()
    event.set()
    session = gramps_server()
    with pytest.raises(CancelledError):
        GrampsClient("https://h", token="t", session=session, cancel_event=event).ping()
    assert session.calls == []


# ---------------------- payload parsing ----------------------

def test_parse_list_layouts():
    assert parse_list([{"a": 1}, "skip"]) == [{"a": 1}]
    assert parse_list({"items": [{"b": 2}]}) == [{"b": 2}]
    assert parse_list({"results": []}) == []
    with pytest.raises(BadFormatError):
        parse_list({"people": []})


def test_normalize_sex_variants():
    assert normalize_sex("1") == "male"
    assert normalize_sex("F") == "female"
    assert normalize_sex("Dona") == "female"
    assert normalize_sex("Home") == "male"
    assert normalize_sex("desconegut") == ""
    assert normalize_sex("") == ""


def test_normalize_date_value_variants():
    assert normalize_date_value({"year": 1850, "month": 3}) == "??/03/1850"
    assert normalize_date_value({"year": 1850}) == "1850"
    assert normalize_date_value({"year": 1850, "month": 3, "day": 4, "modifier": "about"}) == "~04/03/1850"
    assert normalize_date_value({"year": 1900, "modifier": "before"}) == "<1900"
    assert normalize_date_value("ABT 1850") == "~1850"
    assert normalize_date_value("AFT 1900") == ">1900"
    assert normalize_date_value({}) == ""


def test_parse_person_shapes():
    person = parse_person({
        "handle": "abc",
        "gramps_id": "I0007",
        "primary_name": {
            "first_name": "Maria",
            "surname_list": [{"surname": "Ferrer"}, {"surname": "Oms"}],
        },
        "gender": {"string": "Female"},
        "birth_date": {"year": 1870, "month": 5, "day": 2},
    })
    assert person.given == "Maria"
    assert person.surname == "Ferrer"
    assert person.surname_parts == ["Ferrer", "Oms"]
    assert person.surname_full == "Ferrer Oms"
    assert person.sex == "female"
    assert person.birth_date == "02/05/1870"

    flat = parse_person({"id": "x1", "name": "Pere /Vila/", "sex": "M"})
    assert (flat.handle, flat.given, flat.surname, flat.sex) == ("x1", "Pere", "Vila", "male")


def test_parse_family_and_resolution():
    fam = parse_family({
        "father_handle": "h1",
        "mother": {"handle": "h2"},
        "child_ref_list": [{"ref": "h3"}, "h4", {}],
    })
    assert (fam.father_id, fam.mother_id, fam.children) == ("h1", "h2", ["h3", "h4"])

    ext_map = {"gramps:h1": 10, "gramps:I0001": 10}
    assert resolve_person_id(ext_map, "h1") == 10
    assert resolve_person_id(ext_map, "gramps:I0001") == 10
    assert resolve_person_id(ext_map, "missing") == 0
    assert resolve_person_id({}, "h1") == 0
