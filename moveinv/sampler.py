# moveinv/sampler.py
from __future__ import annotations
import hashlib
import random
from typing import Iterable, List, Optional, Sequence


def content_seed(ids: Iterable[str]) -> int:
    """Seed derived from the identifier list itself: same list -> same seed."""
    h = hashlib.sha256()
    for pid in ids:
        h.update(pid.encode("utf-8"))
        h.update(b"\n")
    return int.from_bytes(h.digest()[:8], "big")


def sample_indices(count: int, size: int, seed: int) -> List[int]:
    """Uniform selection of ``size`` positions out of ``count``, returned ascending."""
    if size >= count:
        return list(range(count))
    if size <= 0:
        return []
    rng = random.Random(seed)
    return sorted(rng.sample(range(count), size))


def sample_ids(ids: Sequence[str], size: Optional[int]) -> List[str]:
    """
    Deterministic sample of ``min(size, len(ids))`` identifiers, kept in input order.

    ``size=None`` or ``size >= len(ids)`` returns the full list unchanged.
    The seed comes from the content, so the sample only changes when the
    input list does.
    """
    if size is None or size >= len(ids):
        return list(ids)
    picked = sample_indices(len(ids), size, content_seed(ids))
    return [ids[i] for i in picked]
