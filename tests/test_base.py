import pytest

from storesql.base import StorageBackend, apply_pagination, normalize_root
from storesql.types import FileMetadata, QueryConfig


class _Static(StorageBackend):
    def __init__(self, files):
        self.files = files

    def list_files(self, config):
        return apply_pagination(iter(self.files), config)

    def backend_name(self):
        return "static"


@pytest.mark.parametrize("root", ["", "/"])
def test_normalize_root_of_root_is_empty(root):
    assert normalize_root(root) == ""


def test_normalize_root_trims_slashes():
    assert normalize_root("/docs/") == "docs"
    assert normalize_root("///") == ""
    assert normalize_root("/a/b") == "a/b"


def test_storage_backend_is_abstract():
    with pytest.raises(TypeError):
        StorageBackend()


def test_subclass_lists_through_interface():
    files = [FileMetadata(name=f"f{i}", path=f"/f{i}") for i in range(4)]
    backend = _Static(files)
    assert backend.backend_name() == "static"
    assert backend.list_files(QueryConfig()) == files


def test_pagination_without_limit_keeps_everything():
    assert apply_pagination(range(10), QueryConfig()) == list(range(10))


@pytest.mark.parametrize("limit, offset", [(1, 0), (3, 0), (2, 1), (4, 3), (5, 5)])
def test_pagination_matches_slice(limit, offset):
    items = list(range(20))
    result = apply_pagination(items, QueryConfig(limit=limit, offset=offset))
    assert result == items[offset : offset + limit]


def test_pagination_stops_consuming_early():
    source = iter(range(100))
    result = apply_pagination(source, QueryConfig(limit=3, offset=2))
    assert result == [2, 3, 4]
    assert next(source) == 5


def test_offset_beyond_entries_leaves_all():
    assert apply_pagination(range(3), QueryConfig(offset=5)) == [0, 1, 2]


def test_offset_equal_to_entries_leaves_all():
    assert apply_pagination(["a", "b"], QueryConfig(offset=2)) == ["a", "b"]


def test_zero_limit_still_takes_first_entry():
    assert apply_pagination(["a", "b", "c"], QueryConfig(limit=0)) == ["a"]