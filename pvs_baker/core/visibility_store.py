"""
Bit-packed visibility table.

One bit per (object, cell) key, packed into a fixed array of 32-bit words:

    bit_index = object_index * total_cell_count + cell_index
    word      = bit_index // 32
    offset    = bit_index %  32

A set bit means the object may be visible from the cell. The table never
grows; its size is fixed at allocation and recomputed from scratch on the
next bake. Index arguments are not range-checked: they always come from
SpatialGrid and the orchestrator's object loop.
"""

import math

import numpy as np

from pvs_baker.core.errors import ConfigurationError


WORD_BITS = 32


class VisibilityStore:
    """
    Fixed-size bit array addressed by (object_index, cell_index).

    All bits start cleared (nothing visible). A store is only trustworthy
    once a bake run over every object has completed.
    """

    def __init__(self, object_count: int, total_cell_count: int):
        if object_count <= 0 or total_cell_count <= 0:
            raise ConfigurationError(
                f"Cannot allocate visibility flags for {object_count} objects "
                f"and {total_cell_count} cells; both counts must be positive."
            )
        self.object_count = int(object_count)
        self.total_cell_count = int(total_cell_count)
        word_count = math.ceil(self.object_count * self.total_cell_count / WORD_BITS)
        self._words = np.zeros(word_count, dtype=np.uint32)

    @classmethod
    def from_words(cls, object_count: int, total_cell_count: int, words) -> "VisibilityStore":
        """Rebuild a store from a saved word array (see bake_io)."""
        store = cls(object_count, total_cell_count)
        words = np.asarray(words, dtype=np.uint32)
        if words.shape != store._words.shape:
            raise ConfigurationError(
                f"Expected {store._words.size} visibility words, got {words.size}"
            )
        store._words[:] = words
        return store

    @property
    def words(self) -> np.ndarray:
        """Read-only view of the packed words."""
        view = self._words.view()
        view.flags.writeable = False
        return view

    @property
    def nbytes(self) -> int:
        return int(self._words.nbytes)

    def _locate(self, object_index: int, cell_index: int) -> tuple[int, int]:
        bit_index = object_index * self.total_cell_count + cell_index
        return bit_index // WORD_BITS, bit_index % WORD_BITS

    def set(self, object_index: int, cell_index: int, visible: bool) -> None:
        word, offset = self._locate(object_index, cell_index)
        mask = np.uint32(1 << offset)
        if visible:
            self._words[word] |= mask
        else:
            self._words[word] &= ~mask

    def get(self, object_index: int, cell_index: int) -> bool:
        word, offset = self._locate(object_index, cell_index)
        return bool((int(self._words[word]) >> offset) & 1)

    def object_row(self, object_index: int) -> np.ndarray:
        """Visibility of one object from every cell, as a bool array of length total_cell_count."""
        bits = np.unpackbits(self._words.astype("<u4").view(np.uint8), bitorder="little")
        start = object_index * self.total_cell_count
        return bits[start:start + self.total_cell_count].astype(bool)

    def count_visible(self, first_object: int = 0, stop_object: int | None = None) -> int:
        """Number of set bits, optionally limited to objects [first_object, stop_object)."""
        bits = np.unpackbits(self._words.astype("<u4").view(np.uint8), bitorder="little")
        if stop_object is None:
            stop_object = self.object_count
        return int(bits[first_object * self.total_cell_count:stop_object * self.total_cell_count].sum())

    def clear(self) -> None:
        self._words[:] = 0

    def __repr__(self) -> str:
        return (f"VisibilityStore(objects={self.object_count}, cells={self.total_cell_count}, "
                f"bytes={self.nbytes})")
