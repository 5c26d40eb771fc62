import json

import pytest
from flash_record import Collection, collect

from .models import Book


def _books():
    return collect(
        [
            Book({"id": 1, "title": "B", "pages": 340, "author_id": 1}),
            Book({"id": 2, "title": "A", "pages": 120, "author_id": 1}),
            Book({"id": 3, "title": "C", "pages": None, "author_id": 2}),
        ]
    )


class TestCollectionAccess:
    """Tests for reading items out of a Collection."""

    def test_first_last_and_get_fall_back_on_empty(self):
        """Should return defaults instead of raising on an empty collection."""
        empty = Collection()
        assert empty.first() is None
        assert empty.last("x") == "x"
        assert empty.get(5) is None
        assert empty.is_empty()
        assert not empty.is_not_empty()

    def test_sequence_protocol(self):
        """Should support len, iteration, indexing, slicing and membership."""
        items = collect([1, 2, 3])
        assert len(items) == 3
        assert list(items) == [1, 2, 3]
        assert items[1] == 2
        assert isinstance(items[1:], Collection)
        assert items[1:] == [2, 3]
        assert 3 in items

    def test_all_returns_a_copy(self):
        """Should not let the returned list change the collection."""
        items = collect([1, 2])
        items.all().append(3)
        assert items.count() == 2
        items.push(3)
        assert items.all() == [1, 2, 3]

    def test_find_and_find_index(self):
        """Should locate the first item matching a predicate."""
        items = collect([5, 8, 11])
        assert items.find(lambda n: n > 6) == 8
        assert items.find_index(lambda n: n > 6) == 1
        assert items.find_index(lambda n: n > 100) == -1
        assert items.contains(lambda n: n == 11)


class TestCollectionTransformations:
    """Tests for transformations returning new collections."""

    def test_transformations_do_not_mutate_receiver(self):
        """Should leave the original items untouched."""
        items = collect([3, 1, 2])
        items.sort()
        items.reverse()
        items.filter(lambda n: n > 1)
        items.map(lambda n: n * 2)
        assert items == [3, 1, 2]

    def test_push_and_each_act_in_place(self):
        """Should mutate only through push and stop each on False."""
        items = collect([1, 2])
        items.push(3, 4)
        seen = []
        items.each(lambda item, index: seen.append(item) if index < 2 else False)
        assert items == [1, 2, 3, 4]
        assert seen == [1, 2]

    def test_filter_without_callback_drops_falsy_items(self):
        """Should keep only truthy items."""
        assert collect([0, 1, "", "a", None]).filter() == [1, "a"]

    def test_reduce_and_concat(self):
        """Should fold items and append others."""
        items = collect([1, 2, 3])
        assert items.reduce(lambda total, n: total + n, 10) == 16
        assert items.concat([4]) == [1, 2, 3, 4]

    def test_sort_by_places_missing_values_last(self):
        """Should sort by a key in both directions with None values last."""
        books = _books()
        assert books.sort_by("pages").pluck("title") == ["A", "B", "C"]
        assert books.sort_by("pages", "desc").pluck("title") == ["B", "A", "C"]

    def test_take_and_take_last(self):
        """Should take from the front, or from the back for negative counts."""
        items = collect([1, 2, 3, 4])
        assert items.take(2) == [1, 2]
        assert items.take(-2) == [3, 4]
        assert items.take_last(0) == []
        assert items.slice(1, 3) == [2, 3]

    def test_chunk_splits_into_pages(self):
        """Should split into collections of the given size."""
        chunks = collect([1, 2, 3, 4, 5]).chunk(2)
        assert [chunk.all() for chunk in chunks] == [[1, 2], [3, 4], [5]]

    def test_chunk_rejects_non_positive_size(self):
        """Should raise ValueError for sizes below 1."""
        with pytest.raises(ValueError):
            collect([1]).chunk(0)

    def test_flatten_one_level(self):
        """Should flatten nested lists and collections by one level only."""
        nested = collect([[1, 2], collect([3]), 4, [[5]]])
        assert nested.flatten() == [1, 2, 3, 4, [5]]

    def test_unique_keeps_first_occurrences(self):
        """Should drop duplicates, by value or by projected key."""
        assert collect([1, 2, 1, 3, 2]).unique() == [1, 2, 3]
        assert _books().unique("author_id") == [1, 2]
        assert collect([[1], [1], [2]]).unique() == [[1], [2]]

    def test_shuffle_with_seed_is_reproducible(self):
        """Should produce the same permutation for the same seed."""
        items = collect(range(10))
        assert items.shuffle(seed=7) == items.shuffle(seed=7)
        assert sorted(items.shuffle(seed=7)) == list(range(10))


class TestCollectionGrouping:
    """Tests for keyed views over a collection."""

    def test_group_by_returns_collections(self):
        """Should group models by a projected attribute."""
        groups = _books().group_by("author_id")
        assert set(groups) == {1, 2}
        assert groups[1].pluck("title") == ["B", "A"]
        assert isinstance(groups[2], Collection)

    def test_key_by_with_value_projection(self):
        """Should key items and optionally project their values."""
        assert _books().key_by("id", "title") == {1: "B", 2: "A", 3: "C"}
        assert _books().key_by(lambda b: b.title)["A"].id == 2

    def test_pluck_supports_mappings_and_callables(self):
        """Should read keys from dicts and apply callables."""
        rows = collect([{"n": 1}, {"n": 2}, {}])
        assert rows.pluck("n") == [1, 2, None]
        assert rows.pluck(lambda r: len(r)) == [1, 1, 0]

    def test_model_keys(self):
        """Should list the primary keys of model items."""
        assert _books().model_keys() == [1, 2, 3]


class TestCollectionAggregates:
    """Tests for numeric aggregates."""

    def test_sum_ignores_non_numeric_values(self):
        """Should treat None and strings as absent."""
        assert _books().sum("pages") == 460
        assert collect([1, "2", None, 3.5, True]).sum() == 4.5

    def test_avg_divides_by_item_count(self):
        """Should average over every item and return 0 when empty."""
        assert collect([2, 4]).avg() == 3
        assert Collection().avg() == 0

    def test_min_and_max(self):
        """Should return extremes of numeric values, or None."""
        assert _books().min("pages") == 120
        assert _books().max("pages") == 340
        assert collect(["a", None]).max() is None


class TestCollectionConversion:
    """Tests for plain data conversion."""

    def test_to_list_returns_copy(self):
        """Should hand out a copy that does not affect the collection."""
        items = collect([1, 2])
        copy = items.to_list()
        copy.append(3)
        assert items == [1, 2]

    def test_to_dicts_and_to_json(self):
        """Should serialize models through their to_dict."""
        books = _books().take(1)
        assert books.to_dicts() == [
            {"id": 1, "title": "B", "pages": 340, "author_id": 1}
        ]
        assert json.loads(books.to_json())[0]["title"] == "B"
