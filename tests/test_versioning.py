#!/usr/bin/env python3
"""
Version comparison tests, including property-based ordering checks.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from modelkeeper.models.versioning import (
    UpdateType,
    VersionComparator,
    classify_update,
    compare,
    is_breaking,
    parse_version,
    satisfies,
    sort_versions,
)

component = st.integers(min_value=0, max_value=10_000)
version_strategy = st.lists(component, min_size=1, max_size=4).map(lambda parts: ".".join(map(str, parts)))


class TestCompare:
    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ("1.0.0", "1.0.0", 0),
            ("1.0.1", "1.0.0", 1),
            ("1.0.0", "1.1.0", -1),
            ("2.0.0", "1.99.99", 1),
            ("1.10.0", "1.9.0", 1),
            ("1.0", "1.0.0", 0),
            ("1", "1.0.1", -1),
        ],
    )
    def test_numeric_ordering(self, a, b, expected):
        assert compare(a, b) == expected

    def test_non_numeric_components_read_as_zero(self):
        assert parse_version("1.x.3") == (1, 0, 3)
        assert compare("1.x", "1.0") == 0
        assert compare("2.0-beta", "2.0") == 0
        assert compare("", "0.0.0") == 0

    def test_sort_is_numeric_not_lexicographic(self):
        assert sort_versions(["1.10.0", "1.2.0", "1.9.1"]) == ["1.2.0", "1.9.1", "1.10.0"]
        assert sort_versions(["1.2.0", "1.10.0"], reverse=True) == ["1.10.0", "1.2.0"]


class TestSatisfies:
    def test_wildcard(self):
        assert satisfies("0.0.1", ["*"])

    def test_minimum(self):
        assert satisfies("1.5.0", [">=1.5.0"])
        assert satisfies("2.0.0", [">=1.5.0"])
        assert not satisfies("1.4.9", [">=1.5.0"])

    def test_any_constraint_suffices(self):
        assert satisfies("1.0.0", [">=3.0.0", ">=1.0.0"])

    def test_empty_list_fails_closed(self):
        assert not satisfies("9.9.9", [])

    def test_unknown_forms_never_match(self):
        assert not satisfies("1.0.0", ["<=2.0.0", "~1.0", "1.0.0"])


class TestClassify:
    def test_levels(self):
        assert classify_update("1.0.0", "1.0.1") == UpdateType.PATCH
        assert classify_update("1.0.0", "1.1.0") == UpdateType.MINOR
        assert classify_update("1.9.3", "2.0.0") == UpdateType.MAJOR

    def test_short_versions(self):
        assert classify_update("1", "1.1") == UpdateType.MINOR

    def test_breaking_is_major(self):
        assert is_breaking("1.0.0", "2.0.0")
        assert not is_breaking("1.0.0", "1.9.0")


class TestComparator:
    def test_bound_app_version(self):
        comparator = VersionComparator("1.2.0")
        assert comparator.satisfies([">=1.0.0"])
        assert not comparator.satisfies([">=1.3.0"])

    def test_previous_version(self):
        comparator = VersionComparator("1.0.0")
        versions = ["1.0.0", "1.2.0", "1.10.0", "1.9.0"]
        assert comparator.previous_version(versions, "1.10.0") == "1.9.0"
        assert comparator.previous_version(versions, "1.0.0") is None


class TestOrderingProperties:
    @given(version_strategy)
    @settings(max_examples=100)
    def test_reflexive(self, v):
        assert compare(v, v) == 0

    @given(version_strategy, version_strategy)
    @settings(max_examples=200)
    def test_antisymmetric(self, a, b):
        assert compare(a, b) == -compare(b, a)

    @given(version_strategy, version_strategy, version_strategy)
    @settings(max_examples=200)
    def test_transitive(self, a, b, c):
        if compare(a, b) <= 0 and compare(b, c) <= 0:
            assert compare(a, c) <= 0

    @given(version_strategy, st.integers(min_value=1, max_value=3))
    @settings(max_examples=100)
    def test_trailing_zeros_do_not_matter(self, v, zeros):
        assert compare(v, v + ".0" * zeros) == 0

    @given(st.lists(version_strategy, min_size=1, max_size=10))
    @settings(max_examples=100)
    def test_sorted_versions_are_ordered(self, versions):
        ordered = sort_versions(versions)
        for earlier, later in zip(ordered, ordered[1:]):
            assert compare(earlier, later) <= 0

    @given(version_strategy, version_strategy)
    @settings(max_examples=100)
    def test_major_iff_leading_component_differs(self, a, b):
        differs = parse_version(a)[0] != parse_version(b)[0]
        assert is_breaking(a, b) == differs
        if compare(a, b) == 0:
            assert classify_update(a, b) == UpdateType.PATCH
