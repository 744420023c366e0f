"""Stratified sampling over groups of column IDs."""

from __future__ import annotations

import random
import struct
from collections.abc import Iterable


def _as_float32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", value))[0]


def perform_stratified_sampling(
    bitmaps: Iterable[Iterable[int]],
    sample_pct: float,
    rng: random.Random | None = None,
) -> list[set[int]]:
    """Sample ``sample_pct`` percent of all members, proportionally per group.

    Each input collection is one stratum (for example one value of an
    enumerated attribute).  The result holds one set per input, each a random
    subset of its stratum sized in proportion to the stratum's share of the
    total.  A percentage above 100 raises ValueError.
    """
    groups = [sorted(set(bitmap)) for bitmap in bitmaps]
    results: list[set[int]] = [set() for _ in groups]
    total = sum(len(members) for members in groups)
    sample_count = int(float(total) * _as_float32(sample_pct) / 100)
    if total == 0 or sample_count <= 0:
        return results

    rng = rng if rng is not None else random.Random()
    for members, result in zip(groups, results):
        share = len(members) / total
        size = int(sample_count * share)
        result.update(rng.sample(members, size))
    return results