import re
import unicodedata
from typing import Iterable, List


# --------------------------------------------------
# TEXT
# --------------------------------------------------
_PUNCTUATION = "’'-.,;:·()[]{}/\\"
_PUNCT_TABLE = {ord(ch): " " for ch in _PUNCTUATION}

_YEAR_RE = re.compile(r"\b(\d{4})\b")


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(value: str | None) -> str:
    """
    Lowercase, strip accents, turn punctuation into spaces and collapse
    whitespace. "Maria-Àngels  d'Oms" -> "maria angels d oms".
    """
    value = (value or "").strip().lower()
    if not value:
        return ""
    value = strip_diacritics(value)
    value = value.translate(_PUNCT_TABLE)
    return " ".join(value.split())


def normalize_tokens(*parts: str | None) -> List[str]:
    seen = set()
    out = []
    for part in parts:
        for token in normalize_text(part).split():
            if token in seen:
                continue
            seen.add(token)
            out.append(token)
    return out


def tokens_from_norm(value: str | None) -> set:
    return set(normalize_text(value).split())


def cognom_key(value: str | None) -> str:
    value = (value or "").strip()
    if not value:
        return ""
    value = strip_diacritics(value.lower())
    for ch in ("’", "'"):
        value = value.replace(ch, "")
    for ch in ("-", ".", ","):
        value = value.replace(ch, " ")
    return "".join(value.split()).upper()


def normalize_role(role: str | None) -> str:
    role = (role or "").strip().lower()
    for ch in ("_", " ", "-"):
        role = role.replace(ch, "")
    return role


def normalize_group_token(value: str | None) -> str:
    value = value or ""
    for ch in ("_", "-", ".", ","):
        value = value.replace(ch, "")
    return value


def extract_year(value: str | None) -> int:
    value = (value or "").strip()
    if not value:
        return 0
    match = _YEAR_RE.search(value)
    if not match:
        return 0
    return int(match.group(1))


# --------------------------------------------------
# PHONETIC
# --------------------------------------------------
_SOUNDEX_DIGITS = {}
for _letters, _digit in (
    ("BFPV", "1"),
    ("CGJKQSXZ", "2"),
    ("DT", "3"),
    ("L", "4"),
    ("MN", "5"),
    ("R", "6"),
):
    for _ch in _letters:
        _SOUNDEX_DIGITS[_ch] = _digit


def soundex(token: str) -> str:
    letters = "".join(ch for ch in strip_diacritics(token or "") if ch.isalpha()).upper()
    if not letters:
        return ""

    code = letters[0]
    last = ""
    for ch in letters[1:]:
        digit = _SOUNDEX_DIGITS.get(ch, "")
        if not digit:
            last = ""
            continue
        if digit == last:
            continue
        code += digit
        last = digit
        if len(code) >= 4:
            break

    return code.ljust(4, "0")


def phonetic_tokens(tokens: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for token in tokens:
        code = soundex(token)
        if not code or code in seen:
            continue
        seen.add(code)
        out.append(code)
    return out
