import heapq
import itertools
import threading
from typing import Any, Hashable, Iterable, List, NamedTuple, Optional, Tuple


class ExpirationMarker(NamedTuple):
    """
    Heap record pointing at a key that should be checked at `expiration`.
    Tuple order is (expiration, sequence); sequence is unique, so keys are
    never compared.
    """
    expiration: float
    sequence: int
    key: Any


class MarkerQueue:
    """
    Delay-ordered queue of expiration markers backed by a binary heap.

    Markers are hints only: a key may be refreshed after its marker was
    pushed, so consumers must revalidate every drained marker against the
    live store.
    """
    def __init__(self):
        self._heap: List[ExpirationMarker] = []
        self._seq = itertools.count(1)
        self._lock = threading.Lock()

    def push(self, key: Hashable, expiration: float) -> ExpirationMarker:
        marker = ExpirationMarker(expiration, next(self._seq), key)
        with self._lock:
            heapq.heappush(self._heap, marker)
        return marker

    def push_all(self, pairs: Iterable[Tuple[Hashable, float]]) -> List[ExpirationMarker]:
        markers = [ExpirationMarker(exp, next(self._seq), key) for key, exp in pairs]
        if not markers:
            return markers
        with self._lock:
            if len(markers) > len(self._heap):
                self._heap.extend(markers)
                heapq.heapify(self._heap)
            else:
                for m in markers:
                    heapq.heappush(self._heap, m)
        return markers

    def drain_due(self, now: float) -> List[ExpirationMarker]:
        due = []
        with self._lock:
            heap = self._heap
            while heap and heap[0].expiration <= now:
                due.append(heapq.heappop(heap))
        return due

    def peek(self) -> Optional[ExpirationMarker]:
        with self._lock:
            return self._heap[0] if self._heap else None

    def clear(self) -> List[ExpirationMarker]:
        with self._lock:
            drained, self._heap = self._heap, []
        return drained

    def __len__(self) -> int:
        return len(self._heap)
