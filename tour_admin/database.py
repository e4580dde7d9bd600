from collections.abc import MutableMapping
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class InMemoryIndexRegistry(Generic[K, V]):
    """
    Holds the current value per key, tagged with the generation of the
    fetch that produced it.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, tuple[int, V]] = {}
        self._generations: MutableMapping[K, int] = {}

    def next_generation(self, key: K) -> int:
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        return generation

    def get(self, key: K) -> V | None:
        entry = self._store.get(key)
        return entry[1] if entry is not None else None

    def generation(self, key: K) -> int:
        entry = self._store.get(key)
        return entry[0] if entry is not None else 0

    def replace_if_newer(self, key: K, generation: int, value: V) -> bool:
        """
        Install ``value`` unless a result from a later-started fetch is
        already installed. Returns True if the value was installed.
        """
        installed = self.generation(key)
        if generation < installed:
            return False
        # single assignment: readers see the old value or the new one
        self._store[key] = (generation, value)
        return True
