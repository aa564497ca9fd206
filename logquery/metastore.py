"""Block metadata held by the metastore and the query that lists blocks for a tenant."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterable


class InvalidArgumentError(ValueError):
    """Raised when a request carries an invalid argument."""


@dataclass
class DataRef:
    """Location of a section inside a block object."""

    offset: int = 0
    length: int = 0


@dataclass
class TenantStreams:
    """Time range of a tenant's streams inside a block."""

    tenant_id: str = ""
    min_time: int = 0
    max_time: int = 0


@dataclass
class BlockMeta:
    """Metadata describing one stored block."""

    id: str = ""
    min_time: int = 0
    max_time: int = 0
    compaction_level: int = 0
    format_version: int = 0
    index_ref: DataRef = field(default_factory=DataRef)
    tenant_streams: list[TenantStreams] = field(default_factory=list)


@dataclass
class ListBlocksForQueryRequest:
    """Which tenant's blocks to list, and the inclusive time range they must overlap."""

    tenant_id: str = ""
    start_time: int = 0
    end_time: int = 0


def in_range(block_start: int, block_end: int, query_start: int, query_end: int) -> bool:
    """Whether the block's time range overlaps the query's (both inclusive)."""
    return block_start <= query_end and block_end >= query_start


def _clone_block_for_query(block: BlockMeta) -> BlockMeta:
    return BlockMeta(
        id=block.id,
        min_time=block.min_time,
        max_time=block.max_time,
        compaction_level=block.compaction_level,
        format_version=block.format_version,
        index_ref=DataRef(offset=block.index_ref.offset, length=block.index_ref.length),
        tenant_streams=[
            TenantStreams(tenant_id=ts.tenant_id, min_time=ts.min_time, max_time=ts.max_time)
            for ts in block.tenant_streams
        ],
    )


class MetastoreState:
    """The set of known blocks, keyed by block id."""

    def __init__(self, blocks: Iterable[BlockMeta] = ()) -> None:
        self._lock = threading.Lock()
        self._segments: dict[str, BlockMeta] = {}
        for block in blocks:
            self.add_block(block)

    def add_block(self, block: BlockMeta) -> None:
        """Add a block, replacing any block with the same id."""
        with self._lock:
            self._segments[block.id] = block

    def list_blocks_for_query(self, request: ListBlocksForQueryRequest) -> list[BlockMeta]:
        """Copies of the tenant's blocks overlapping the request's range, sorted by id."""
        if not request.tenant_id:
            raise InvalidArgumentError("tenant_id is required")
        if request.start_time > request.end_time:
            raise InvalidArgumentError("start_time must be less than or equal to end_time")
        with self._lock:
            blocks = [
                _clone_block_for_query(segment)
                for segment in self._segments.values()
                if in_range(segment.min_time, segment.max_time, request.start_time, request.end_time)
                and any(ts.tenant_id == request.tenant_id for ts in segment.tenant_streams)
            ]
        blocks.sort(key=lambda b: b.id)
        return blocks