from __future__ import annotations

from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")


def narrow(pool: Sequence[T], predicate: Callable[[T], bool]) -> List[T]:
    """Filter ``pool`` by ``predicate``, widening back to the whole pool when nothing matches."""
    matched = [item for item in pool if predicate(item)]
    if matched:
        return matched
    return list(pool)
