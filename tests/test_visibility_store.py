# tests/test_visibility_store.py

import numpy as np
import pytest

from pvs_baker.core.errors import ConfigurationError
from pvs_baker.core.visibility_store import VisibilityStore


def test_word_count_rounds_up():
    assert VisibilityStore(1, 32).words.size == 1
    assert VisibilityStore(1, 33).words.size == 2
    assert VisibilityStore(3, 18).words.size == 2


def test_starts_cleared():
    store = VisibilityStore(2, 18)
    assert store.count_visible() == 0
    assert not store.get(1, 17)


def test_bit_layout():
    store = VisibilityStore(2, 18)
    store.set(1, 14, True)
    # bit 1 * 18 + 14 = 32 -> word 1, offset 0
    assert store.words.tolist() == [0, 1]

    # bit 1 * 18 + 13 = 31 -> word 0, offset 31
    store.set(1, 13, True)
    assert store.words[0] == 1 << 31


def test_set_and_clear_leave_neighbours_alone():
    store = VisibilityStore(4, 10)
    for cell in range(10):
        store.set(2, cell, True)
    store.set(2, 5, False)

    assert store.object_row(2).tolist() == [True] * 5 + [False] + [True] * 4
    assert not store.object_row(1).any()
    assert not store.object_row(3).any()
    assert store.count_visible() == 9
    assert store.count_visible(2, 3) == 9
    assert store.count_visible(0, 2) == 0


@pytest.mark.parametrize("objects, cells", [(0, 10), (3, 0), (-1, 5)])
def test_rejects_empty_tables(objects, cells):
    with pytest.raises(ConfigurationError):
        VisibilityStore(objects, cells)


def test_words_view_is_read_only():
    store = VisibilityStore(1, 8)
    with pytest.raises(ValueError):
        store.words[0] = 1


def test_from_words_checks_length():
    store = VisibilityStore(2, 20)
    store.set(1, 19, True)
    copy = VisibilityStore.from_words(2, 20, np.array(store.words))
    assert copy.get(1, 19)

    with pytest.raises(ConfigurationError):
        VisibilityStore.from_words(2, 20, np.zeros(5, dtype=np.uint32))


def _pattern(obj, cell):
    return (obj * 7 + cell * 3) % 5 < 2


@pytest.mark.parametrize("objects, cells", [(1, 1), (3, 11), (5, 7), (4, 32), (7, 33), (2, 45)])
def test_every_key_reads_back(objects, cells):
    store = VisibilityStore(objects, cells)
    for obj in range(objects):
        for cell in range(cells):
            store.set(obj, cell, _pattern(obj, cell))

    expected = 0
    for obj in range(objects):
        for cell in range(cells):
            assert store.get(obj, cell) == _pattern(obj, cell)
            expected += _pattern(obj, cell)
        assert store.object_row(obj).tolist() == [_pattern(obj, c) for c in range(cells)]
    assert store.count_visible() == expected

    # Flipping the last key leaves every other key untouched.
    last = (objects - 1, cells - 1)
    store.set(*last, not _pattern(*last))
    assert store.get(*last) != _pattern(*last)
    for obj in range(objects):
        for cell in range(cells):
            if (obj, cell) != last:
                assert store.get(obj, cell) == _pattern(obj, cell)
