"""Alphabetical shard planning for large collections."""

from __future__ import annotations

import math
import os
from pathlib import Path
from typing import List, Sequence

from docatlas.models import CollectionShard


def _range_label(first: Path, last: Path) -> str:
    start = (first.name[:1] or "#").upper()
    end = (last.name[:1] or "#").upper()
    return start if start == end else f"{start}-{end}"


def plan_shards(paths: Sequence[Path], threshold: int) -> List[CollectionShard]:
    """Split documents into contiguous alphabetical shards of at most ``threshold``.

    Returns an empty list when the documents fit in a single shard.
    """
    if threshold <= 0 or len(paths) <= threshold:
        return []

    ordered = sorted(paths, key=lambda p: (p.name.lower(), str(p)))
    shard_count = math.ceil(len(ordered) / threshold)
    size = math.ceil(len(ordered) / shard_count)

    shards: List[CollectionShard] = []
    for index in range(shard_count):
        group = ordered[index * size : (index + 1) * size]
        if not group:
            break
        common = os.path.commonpath([str(p.parent) for p in group])
        shards.append(
            CollectionShard(
                name=f"shard-{index + 1}",
                range=_range_label(group[0], group[-1]),
                count=len(group),
                path=common,
            )
        )
    return shards


def upsert_shard(
    shards: Sequence[CollectionShard], shard: CollectionShard
) -> List[CollectionShard]:
    """Replace the shard with the same name, or append it."""
    updated = [existing for existing in shards if existing.name != shard.name]
    updated.append(shard)
    return sorted(updated, key=lambda s: s.name)
