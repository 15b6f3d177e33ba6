"""
Search, filter and sort pipeline tests.
"""

from __future__ import annotations

import unittest
from dataclasses import dataclass

from collection_sync.query import (
    CollectionSearch,
    QueryEngine,
    filter_items,
    search,
    search_filter_sort,
    sort_items,
)
from collection_sync.records import FilterCriteria, FilterOperator, SortCriteria, SortDirection

VIDEOS = [
    {"id": "1", "title": "Hello World", "views": 120, "tag": "News"},
    {"id": "2", "title": "Cooking basics", "views": "45", "tag": "food"},
    {"id": "3", "title": "World Cup recap", "views": "n/a", "tag": None},
    {"id": "4", "title": "", "views": 7, "tag": "newsletter"},
]


def ids(items) -> list[str]:
    return [item["id"] for item in items]


class SearchTest(unittest.TestCase):
    """
    Validates case-insensitive substring search.
    """

    def test_blank_query_returns_input_unchanged(self) -> None:
        self.assertIs(VIDEOS, search(VIDEOS, "", ["title"]))
        self.assertIs(VIDEOS, search(VIDEOS, "   ", ["title"]))
        self.assertIs(VIDEOS, search(VIDEOS, None, ["title"]))

    def test_matches_any_field_case_insensitively(self) -> None:
        self.assertEqual(["1", "3"], ids(search(VIDEOS, "WORLD", ["title"])))
        self.assertEqual(["1", "4"], ids(search(VIDEOS, "news", ["title", "tag"])))

    def test_missing_and_empty_values_never_match(self) -> None:
        self.assertEqual([], ids(search(VIDEOS, "none", ["tag"])))
        self.assertEqual([], ids(search(VIDEOS, "x", ["missing"])))

    def test_numbers_are_searched_as_text(self) -> None:
        self.assertEqual(["1"], ids(search(VIDEOS, "12", ["views"])))


class FilterTest(unittest.TestCase):
    """
    Validates structured filters and their AND combination.
    """

    def test_string_operators(self) -> None:
        cases = [
            (FilterOperator.EQUALS, "news", ["1"]),
            (FilterOperator.CONTAINS, "NEWS", ["1", "4"]),
            (FilterOperator.STARTS_WITH, "fo", ["2"]),
            (FilterOperator.ENDS_WITH, "letter", ["4"]),
        ]
        for operator, value, expected in cases:
            with self.subTest(operator=operator):
                result = filter_items(VIDEOS, [FilterCriteria("tag", operator, value)])
                self.assertEqual(expected, ids(result))

    def test_numeric_operators_coerce_and_skip_nan(self) -> None:
        cases = [
            ("gt", 45, ["1"]),
            ("gte", 45, ["1", "2"]),
            ("lt", 45, ["4"]),
            ("lte", "45", ["2", "4"]),
        ]
        for operator, value, expected in cases:
            with self.subTest(operator=operator):
                result = filter_items(VIDEOS, [FilterCriteria("views", operator, value)])
                self.assertEqual(expected, ids(result))

    def test_non_numeric_filter_value_never_matches(self) -> None:
        self.assertEqual([], ids(filter_items(VIDEOS, [FilterCriteria("views", "gt", "lots")])))

    def test_missing_field_never_matches(self) -> None:
        self.assertEqual([], ids(filter_items(VIDEOS, [FilterCriteria("rating", "equals", "")])))

    def test_filters_are_and_combined(self) -> None:
        result = filter_items(
            VIDEOS,
            [
                {"field": "tag", "operator": "contains", "value": "news"},
                {"field": "views", "operator": "gt", "value": 100},
            ],
        )
        self.assertEqual(["1"], ids(result))

    def test_age_threshold_excludes_missing_ages(self) -> None:
        people = [
            {"id": "a", "age": 17},
            {"id": "b", "age": 18},
            {"id": "c", "age": None},
            {"id": "d", "age": 40},
        ]
        result = filter_items(people, [FilterCriteria("age", "gte", 18)])
        self.assertEqual(["b", "d"], ids(result))

    def test_no_filters_returns_input(self) -> None:
        self.assertIs(VIDEOS, filter_items(VIDEOS, []))

    def test_unknown_operator_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            FilterCriteria("tag", "like", "x")


class SortTest(unittest.TestCase):
    """
    Validates stable sorting with missing values last.
    """

    def test_nulls_last_in_both_directions(self) -> None:
        items = [{"id": "b", "n": "b"}, {"id": "none", "n": None}, {"id": "a", "n": "a"}]
        self.assertEqual(["a", "b", "none"], ids(sort_items(items, "n", SortDirection.ASC)))
        self.assertEqual(["b", "a", "none"], ids(sort_items(items, "n", "desc")))

    def test_numbers_compare_numerically(self) -> None:
        items = [{"id": "x", "n": 10}, {"id": "y", "n": 2}, {"id": "z", "n": 33}]
        self.assertEqual(["y", "x", "z"], ids(sort_items(items, "n")))

    def test_sort_is_stable(self) -> None:
        items = [{"id": str(index), "group": index % 2} for index in range(6)]
        self.assertEqual(["0", "2", "4", "1", "3", "5"], ids(sort_items(items, "group")))

    def test_sort_returns_new_list(self) -> None:
        items = [{"id": "b", "n": 2}, {"id": "a", "n": 1}]
        result = sort_items(items, "n")
        self.assertEqual(["b", "a"], ids(items))
        self.assertEqual(["a", "b"], ids(result))

    def test_strings_compare_case_insensitively(self) -> None:
        items = [{"id": "c", "n": "cherry"}, {"id": "b", "n": "Banana"}, {"id": "a", "n": "apple"}]
        self.assertEqual(["a", "b", "c"], ids(sort_items(items, "n")))


class PipelineTest(unittest.TestCase):
    """
    Validates the combined search, filter and sort pipeline.
    """

    def test_search_then_filter_then_sort(self) -> None:
        result = search_filter_sort(
            VIDEOS,
            "o",
            ["title"],
            [FilterCriteria("views", "gte", 0)],
            SortCriteria("title", "asc"),
        )
        self.assertEqual(["2", "1"], ids(result))

    def test_custom_accessor(self) -> None:
        @dataclass
        class Video:
            id: str
            author: dict

        items = [Video("1", {"name": "Zoe"}), Video("2", {"name": "adam"})]

        def accessor(item, field_name):
            if field_name == "author":
                return item.author["name"]
            return getattr(item, field_name, None)

        engine = QueryEngine(accessor)
        self.assertEqual(["2"], [item.id for item in engine.search(items, "ADA", ["author"])])
        self.assertEqual(["2", "1"], [item.id for item in engine.sort(items, "author")])


class CollectionSearchTest(unittest.TestCase):
    """
    Validates the stateful search holder and its memo.
    """

    def test_results_are_memoized_per_snapshot(self) -> None:
        state = CollectionSearch(["title"])
        state.set_query("world")
        first = state.results(VIDEOS)
        self.assertIs(first, state.results(VIDEOS))
        self.assertEqual(["1", "3"], ids(first))

        snapshot = list(VIDEOS)
        self.assertIsNot(first, state.results(snapshot))

    def test_state_changes_recompute(self) -> None:
        state = CollectionSearch(["title"])
        state.set_query("world")
        self.assertEqual(["1", "3"], ids(state.results(VIDEOS)))
        state.set_filters([FilterCriteria("views", "gt", 100)])
        self.assertEqual(["1"], ids(state.results(VIDEOS)))
        state.set_sort(SortCriteria("id", "desc"))
        state.set_filters([])
        self.assertEqual(["3", "1"], ids(state.results(VIDEOS)))

    def test_clear_all_and_missing_data(self) -> None:
        state = CollectionSearch(["title"])
        state.set_query("cup")
        state.clear_all()
        self.assertEqual("", state.query)
        self.assertIsNone(state.sort)
        self.assertIs(VIDEOS, state.results(VIDEOS))
        self.assertEqual([], state.results(None))


if __name__ == "__main__":
    unittest.main()
