"""
Code resolution - match kinds, normalization and the restriction overlay.
"""

import pytest
from unittest.mock import MagicMock

from src.core.resolver import (
    InvalidChars,
    InvalidLength,
    SANCTION_MESSAGE,
    SANEPID_MESSAGE,
    check_restrictions,
    normalize_query,
    pad_code,
    resolve,
)
from src.core.schema import CodeTable, MatchKind, Restriction, StatusList


def make_table(entries):
    return CodeTable({code: tuple(desc.split(" → ")) for code, desc in entries.items()})


def status_list(name, *codes):
    return StatusList(name=name, prefixes=frozenset(codes))


class TestNormalization:
    """Test query cleaning and shape validation."""

    @pytest.mark.parametrize("raw,expected", [
        ("0101", "0101"),
        ("0101 21", "010121"),
        ("0101-21-00", "01012100"),
        (" 0101.21.00.00 ", "0101210000"),
    ])
    def test_separators_are_stripped(self, raw, expected):
        assert normalize_query(raw) == expected

    @pytest.mark.parametrize("raw", ["", "123", "12-3", "abc", "01012100001", "0101 2100 0099"])
    def test_invalid_length(self, raw):
        with pytest.raises(InvalidLength):
            normalize_query(raw)

    def test_non_ascii_digits_rejected(self):
        """Unicode decimal digits survive stripping and must be rejected."""
        with pytest.raises(InvalidChars):
            normalize_query("٠١٠١")

    @pytest.mark.parametrize("raw", ["123", "12345678901"])
    def test_resolve_reports_invalid_length(self, raw):
        result = resolve(raw, CodeTable.empty())
        assert result.kind is MatchKind.INVALID_INPUT
        assert "digits" in result.error
        assert result.is_valid is False

    def test_resolve_reports_invalid_chars(self):
        result = resolve("٠١٠١٢", CodeTable.empty())
        assert result.kind is MatchKind.INVALID_INPUT
        assert result.error == "HS code may contain digits only"

    def test_pad_code(self):
        assert pad_code("0101") == "0101000000"
        assert pad_code("0101210000") == "0101210000"


class TestMatchKinds:
    """Test the match-kind branches in order."""

    def test_single_subcode_extension(self):
        table = make_table({"010121": "A"})
        result = resolve("0101", table)

        assert result.kind is MatchKind.SINGLE_SUBCODE_EXTENSION
        assert result.code == "0101210000"
        assert result.original_code == "0101"
        assert result.description == "A"
        assert result.is_single_subcode
        assert result.is_valid

    def test_exact_general_with_subcodes(self):
        table = make_table({"0101": "A", "010110": "B", "010130": "C"})
        result = resolve("0101", table)

        assert result.kind is MatchKind.EXACT_GENERAL_WITH_SUBCODES
        assert result.exact_match is True
        assert result.subcode_count == 2
        assert result.subcodes == ("010110", "010130")
        assert result.description == "A"
        assert result.is_general_code
        assert result.is_valid is False

    def test_exact_plus_one_subcode_is_general(self):
        table = make_table({"0101": "A", "010110": "B"})
        result = resolve("0101", table)

        assert result.kind is MatchKind.EXACT_GENERAL_WITH_SUBCODES
        assert result.exact_match is True
        assert result.subcode_count == 1

    def test_general_without_exact_uses_placeholder(self):
        table = make_table({"010110": "B", "010130": "C"})
        result = resolve("0101", table)

        assert result.kind is MatchKind.EXACT_GENERAL_WITH_SUBCODES
        assert result.exact_match is False
        assert result.labels == ()
        assert result.description == "General code, 2 subcodes"

    def test_subcode_preview_limited_and_sorted(self):
        table = make_table({f"0101{i:02d}": f"D{i}" for i in range(25, 0, -1)})
        result = resolve("0101", table)

        assert result.subcode_count == 25
        assert len(result.subcodes) == 10
        assert list(result.subcodes) == sorted(result.subcodes)
        assert result.subcodes[0] == "010101"

    def test_prefix_extension(self):
        table = make_table({"010110": "B"})
        result = resolve("01011099", table)

        assert result.kind is MatchKind.PREFIX_EXTENSION
        assert result.code == "0101109900"
        assert result.original_code == "01011099"
        assert result.matched_prefix == "010110"
        assert result.description == "B"
        assert result.is_extended_from_prefix
        assert result.is_valid

    def test_prefix_extension_uses_longest_prefix(self):
        table = make_table({"0101": "A", "010110": "A → B"})
        # "0101" has a sibling under it, the longer prefix is unique
        result = resolve("0101109912", table)

        assert result.kind is MatchKind.PREFIX_EXTENSION
        assert result.matched_prefix == "010110"
        assert result.code == "0101109912"
        assert result.original_code is None
        assert result.labels == ("A", "B")

    def test_prefix_with_siblings_is_not_found(self):
        table = make_table({"010110": "B", "01011011": "C"})
        result = resolve("01011099", table)

        assert result.kind is MatchKind.NOT_FOUND
        assert result.is_valid is False

    def test_exact_final(self):
        table = make_table({"0101210000": "Horses → Pure-bred"})
        result = resolve("0101 21 00 00", table)

        assert result.kind is MatchKind.EXACT_FINAL
        assert result.code == "0101210000"
        assert result.query == "0101 21 00 00"
        assert result.original_code is None
        assert result.description == "Horses → Pure-bred"
        assert result.is_valid

    def test_not_found(self):
        result = resolve("9999", make_table({"0101": "A"}))

        assert result.kind is MatchKind.NOT_FOUND
        assert result.code == "9999"
        assert result.found is False
        assert result.is_valid is False
        assert result.description is None

    def test_table_is_not_mutated(self):
        table = make_table({"010121": "A"})
        resolve("0101", table)
        assert dict(table.entries) == {"010121": ("A",)}


class TestRestrictionOverlay:
    """Test sanctions / SANEPID flags and precedence."""

    def test_sanctioned_exact_final_is_not_valid(self):
        table = make_table({"010199": "X"})
        result = resolve("010199", table, status_list("sanctions", "0101"), status_list("sanepid"))

        assert result.kind is MatchKind.EXACT_FINAL
        assert result.sanctioned is True
        assert result.is_valid is False
        assert result.restriction is Restriction.SANCTION
        assert result.restriction_message == SANCTION_MESSAGE

    def test_sanction_takes_precedence_over_sanepid(self):
        table = make_table({"0201100000": "Beef"})
        result = resolve("0201100000", table, status_list("sanctions", "0201"), status_list("sanepid", "0201"))

        assert result.sanctioned is True
        assert result.sanepid is True
        assert result.restriction is Restriction.SANCTION
        assert result.restriction_message == SANCTION_MESSAGE

    def test_sanepid_only(self):
        table = make_table({"0201100000": "Beef"})
        result = resolve("0201100000", table, status_list("sanctions", "7208"), status_list("sanepid", "0201"))

        assert result.sanctioned is False
        assert result.restriction is Restriction.SANEPID
        assert result.restriction_message == SANEPID_MESSAGE
        assert result.is_valid is False

    def test_overlay_on_not_found(self):
        result = resolve("72089999", CodeTable.empty(), status_list("sanctions", "7208"), None)

        assert result.kind is MatchKind.NOT_FOUND
        assert result.sanctioned is True
        assert result.restriction is Restriction.SANCTION

    def test_overlay_uses_cleaned_query(self):
        table = make_table({"010121": "A"})
        # Resolved code is the padded subcode but the list is checked against the query
        result = resolve("0101", table, status_list("sanctions", "0101"), None)
        assert result.sanctioned is True
        assert result.kind is MatchKind.SINGLE_SUBCODE_EXTENSION
        assert result.is_valid is False

    def test_failing_list_degrades_to_unrestricted(self):
        broken = MagicMock()
        broken.matches.side_effect = RuntimeError("storage unavailable")

        assert check_restrictions("0101", broken, None) == (False, False)

        result = resolve("0101210000", make_table({"0101210000": "A"}), broken, broken)
        assert result.restriction is Restriction.NONE
        assert result.is_valid is True
