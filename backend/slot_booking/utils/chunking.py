from typing import Iterable, Iterator, List, Sequence, TypeVar

T = TypeVar("T")


def unique_in_order(values: Iterable[T]) -> List[T]:
    """Drop repeats, keeping first occurrence order."""
    seen = set()
    out: List[T] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def chunked(values: Sequence[T], size: int) -> Iterator[List[T]]:
    """Yield consecutive slices of at most ``size`` items (23 ids, size 10 -> 10, 10, 3)."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(values), size):
        yield list(values[start:start + size])
