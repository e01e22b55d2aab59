"""
Code resolution - prefix matching of user-entered HS codes against the
current code table, with the sanctions / SANEPID overlay attached.

resolve() is pure: it never touches the store and never mutates the table
or the lists it is given.
"""

import re
from typing import Optional, Tuple

from .schema import (
    FULL_CODE_LENGTH,
    CodeTable,
    MatchKind,
    MatchResult,
    Restriction,
    StatusList,
)
from util.logging import logger

MIN_CODE_LENGTH = 4
MAX_CODE_LENGTH = FULL_CODE_LENGTH
SUBCODE_PREVIEW_LIMIT = 10

SANCTION_MESSAGE = "Goods covered by sanctions - import/export restricted"
SANEPID_MESSAGE = "Goods subject to sanitary (SANEPID) inspection"

_NON_DIGITS = re.compile(r"\D")


class QueryError(ValueError):
    """Base class for query-shape errors; always reported, never retried."""
    pass


class InvalidLength(QueryError):
    pass


class InvalidChars(QueryError):
    pass


def normalize_query(raw_query: str) -> str:
    """Strip separators and validate the digit count.

    Raises:
        InvalidLength: fewer than 4 or more than 10 digits remain
        InvalidChars: anything other than ASCII digits remains
    """
    cleaned = _NON_DIGITS.sub("", raw_query or "")

    if len(cleaned) < MIN_CODE_LENGTH:
        raise InvalidLength(f"HS code must have at least {MIN_CODE_LENGTH} digits (got {len(cleaned)})")
    if len(cleaned) > MAX_CODE_LENGTH:
        raise InvalidLength(f"HS code can have at most {MAX_CODE_LENGTH} digits (got {len(cleaned)})")

    # \D leaves non-ASCII decimal digits (e.g. Arabic-Indic) in place
    if not (cleaned.isascii() and cleaned.isdigit()):
        raise InvalidChars("HS code may contain digits only")

    return cleaned


def pad_code(code: str) -> str:
    return code.ljust(FULL_CODE_LENGTH, "0")


def check_restrictions(code: str, sanctions: Optional[StatusList], sanepid: Optional[StatusList]) -> Tuple[bool, bool]:
    """Return (sanctioned, sanepid) flags. Failures degrade to no restriction."""
    try:
        is_sanctioned = bool(sanctions and sanctions.matches(code))
    except Exception as e:
        logger.warning(f"Sanctions check failed for '{code}', assuming unrestricted: {e}")
        is_sanctioned = False

    try:
        is_sanepid = bool(sanepid and sanepid.matches(code))
    except Exception as e:
        logger.warning(f"SANEPID check failed for '{code}', assuming unrestricted: {e}")
        is_sanepid = False

    return is_sanctioned, is_sanepid


def _overlay(code: str, sanctions: Optional[StatusList], sanepid: Optional[StatusList]) -> dict:
    is_sanctioned, is_sanepid = check_restrictions(code, sanctions, sanepid)

    # Sanction takes precedence; both flags stay visible to the caller
    if is_sanctioned:
        restriction, message = Restriction.SANCTION, SANCTION_MESSAGE
    elif is_sanepid:
        restriction, message = Restriction.SANEPID, SANEPID_MESSAGE
    else:
        restriction, message = Restriction.NONE, None

    return {
        "sanctioned": is_sanctioned,
        "sanepid": is_sanepid,
        "restriction": restriction,
        "restriction_message": message,
    }


def _general_prefix(code: str, table: CodeTable) -> Optional[str]:
    """Longest table code that is a strict prefix of `code`, if it has no siblings under it."""
    candidates = [c for c in table if len(c) < len(code) and code.startswith(c)]
    if not candidates:
        return None

    prefix = max(candidates, key=len)
    if len(table.codes_with_prefix(prefix)) != 1:
        return None
    return prefix


def _match(code: str, table: CodeTable) -> dict:
    all_matches = table.codes_with_prefix(code)
    exact_match = code in table
    sub_codes = sorted(c for c in all_matches if c != code)

    if not all_matches:
        prefix = _general_prefix(code, table)
        if prefix is None:
            return {"kind": MatchKind.NOT_FOUND, "code": code}

        padded = pad_code(code)
        return {
            "kind": MatchKind.PREFIX_EXTENSION,
            "code": padded,
            "original_code": code if padded != code else None,
            "labels": table.get(prefix),
            "matched_prefix": prefix,
        }

    if exact_match and not sub_codes:
        return {
            "kind": MatchKind.EXACT_FINAL,
            "code": code,
            "labels": table.get(code),
            "exact_match": True,
        }

    if len(sub_codes) == 1 and not exact_match:
        padded = pad_code(sub_codes[0])
        return {
            "kind": MatchKind.SINGLE_SUBCODE_EXTENSION,
            "code": padded,
            "original_code": code,
            "labels": table.get(sub_codes[0]),
            "subcodes": (sub_codes[0],),
            "subcode_count": 1,
        }

    return {
        "kind": MatchKind.EXACT_GENERAL_WITH_SUBCODES,
        "code": code,
        "labels": table.get(code) or (),
        "exact_match": exact_match,
        "subcodes": tuple(sub_codes[:SUBCODE_PREVIEW_LIMIT]),
        "subcode_count": len(sub_codes),
        "placeholder": None if exact_match else f"General code, {len(sub_codes)} subcodes",
    }


def resolve(raw_query: str, table: CodeTable, sanctions: Optional[StatusList] = None,
            sanepid: Optional[StatusList] = None) -> MatchResult:
    """Classify a free-form code string against a code table snapshot.

    Query-shape errors come back as an INVALID_INPUT result carrying the
    message; everything else is a match kind with the restriction overlay.
    """
    try:
        code = normalize_query(raw_query)
    except QueryError as e:
        return MatchResult(kind=MatchKind.INVALID_INPUT, query=raw_query or "", error=str(e))

    fields = _match(code, table)
    result = MatchResult(query=raw_query, **fields, **_overlay(code, sanctions, sanepid))

    logger.log_resolution(raw_query, result.code, result.kind.value, result.restriction.value)
    return result
