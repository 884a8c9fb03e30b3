"""Tests for strata.migrations.semver."""

import pytest

from strata.migrations.semver import Version, compare, is_valid, normalize, parse


class TestParse:
    def test_full(self):
        assert parse("1.2.3-rc.1+build.5") == Version(1, 2, 3, ("rc", "1"))

    def test_leading_v(self):
        assert parse("v2.0.0") == Version(2, 0, 0)

    @pytest.mark.parametrize(("text", "expected"), [("1", "1.0.0"), ("1.2", "1.2.0"), ("v3", "3.0.0")])
    def test_shorthand(self, text, expected):
        assert normalize(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["", "x", "1.", "01.0.0", "1.02.0", "1.0.0-01", "1.2-beta", "1.0.0-", "1.0.0+", "R", "1.0.0.0"],
    )
    def test_invalid(self, text):
        assert parse(text) is None
        assert is_valid(text) is False


class TestNormalize:
    def test_drops_build_metadata(self):
        assert normalize("1.0.0+20260101") == "1.0.0"

    def test_keeps_prerelease(self):
        assert normalize("v1.0.0-alpha.1") == "1.0.0-alpha.1"

    def test_invalid_raises(self):
        with pytest.raises(ValueError, match="invalid semantic version"):
            normalize("one")


class TestCompare:
    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("1.0.0", "1.0.0", 0),
            ("1.0.0", "1.0.1", -1),
            ("1.10.0", "1.9.0", 1),
            ("1.0.0-rc.1", "1.0.0", -1),
            ("1.0.0-alpha", "1.0.0-alpha.1", -1),
            ("1.0.0-alpha.2", "1.0.0-alpha.10", -1),
            ("1.0.0-2", "1.0.0-alpha", -1),
            ("1.0.0+a", "1.0.0+b", 0),
            ("v1", "1.0.0", 0),
        ],
    )
    def test_precedence(self, a, b, expected):
        assert compare(a, b) == expected

    def test_missing_and_invalid_sort_first(self):
        assert compare(None, "0.0.1") == -1
        assert compare("0.0.1", "") == 1
        assert compare(None, "garbage") == 0

    def test_sorting_versions(self):
        versions = [parse(v) for v in ["1.0.0", "0.9.0", "1.0.0-beta", "1.0.0-alpha"]]
        assert [str(v) for v in sorted(versions)] == ["0.9.0", "1.0.0-alpha", "1.0.0-beta", "1.0.0"]
