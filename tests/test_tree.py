"""Tests for record path and structural comparison helpers."""

import pytest

from treemirror.tree import diff_paths, get_in, join_path, normalize_tree, set_in, split_path, trees_equal


class TestPaths:
    def test_split_and_join(self):
        assert split_path("") == []
        assert split_path("/projects/p1/") == ["projects", "p1"]
        assert join_path("projects", "", "/p1/", "sections") == "projects/p1/sections"

    def test_empty_segment_rejected(self):
        with pytest.raises(ValueError):
            split_path("projects//p1")

    def test_get_in(self):
        tree = {"projects": {"p1": {"sections": [{"type": "File"}]}}}

        assert get_in(tree, ["projects", "p1", "sections", "0", "type"]) == "File"
        assert get_in(tree, ["projects", "p2"]) is None
        assert get_in(tree, ["projects", "p1", "sections", "5"]) is None

    def test_set_in_is_copy_on_write(self):
        tree = {"a": {"b": 1}}

        updated = set_in(tree, ["a", "c", "d"], 2)

        assert tree == {"a": {"b": 1}}
        assert updated == {"a": {"b": 1, "c": {"d": 2}}}

    def test_set_in_lists(self):
        tree = {"items": [1, 2]}

        assert set_in(tree, ["items", "2"], 3) == {"items": [1, 2, 3]}
        assert set_in(tree, ["items", "0"], None) == {"items": [2]}
        with pytest.raises(ValueError):
            set_in(tree, ["items", "9"], 3)


class TestComparison:
    def test_array_like_dicts_equal_lists(self):
        assert trees_equal({"s": {"0": "a", "1": "b"}}, {"s": ["a", "b"]})
        assert not trees_equal({"s": {"0": "a", "2": "b"}}, {"s": ["a", "b"]})

    def test_nulls_and_empty_containers_ignored(self):
        assert trees_equal({"a": 1, "b": None, "c": {}}, {"a": 1})
        assert normalize_tree({"a": {"b": None}}) == {}

    def test_order_insensitive_for_mappings(self):
        assert trees_equal({"a": 1, "b": 2}, {"b": 2, "a": 1})
        assert not trees_equal([1, 2], [2, 1])

    def test_diff_paths(self):
        left = {"p": {"title": "x", "tags": ["a", "b"]}}
        right = {"p": {"title": "y", "tags": ["a", "c"], "extra": 1}}

        assert diff_paths(left, right, prefix="projects") == [
            "projects/p/extra",
            "projects/p/tags/1",
            "projects/p/title",
        ]
        assert diff_paths(left, right, limit=1) == ["p/extra"]
