"""Deterministic partitioning of test files across workers."""

from collections.abc import Sequence
from dataclasses import dataclass


@dataclass(frozen=True, kw_only=True)
class ShardAssignment:
    """Subset of the sorted file list assigned to one worker."""

    shard_index: int
    shard_count: int
    files: Sequence[str]


def select_shard(
    files: Sequence[str], shard_index: int, shard_count: int
) -> ShardAssignment:
    """Select the files of one shard by index-modulo partitioning.

    The file at sorted position ``i`` belongs to shard ``i % shard_count``.
    Sorting happens here, so the assignment depends only on the set of files
    and the shard parameters.

    Raises:
        ValueError: If shard_count < 1 or shard_index is out of range

    """
    if shard_count < 1:
        raise ValueError(f"Shard count must be at least 1, got {shard_count}")
    if not 0 <= shard_index < shard_count:
        raise ValueError(
            f"Shard index {shard_index} out of range for {shard_count} shard(s)"
        )

    ordered = sorted(files)
    return ShardAssignment(
        shard_index=shard_index,
        shard_count=shard_count,
        files=tuple(ordered[shard_index::shard_count]),
    )


def split_into_shards(
    files: Sequence[str], shard_count: int
) -> Sequence[ShardAssignment]:
    """Partition files into ``shard_count`` disjoint shards covering all files."""
    return [select_shard(files, index, shard_count) for index in range(shard_count)]
