"""Query statistics: counters gathered along the query path and their summary.

Durations are integers of nanoseconds, except ``Summary.exec_time`` and
``Summary.queue_time`` which are float seconds.
"""

from __future__ import annotations

import copy
import enum
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

_STATS_KEY = object()
_SECOND = 1_000_000_000


class CacheType(str, enum.Enum):
    """Kinds of caches that statistics are recorded for."""

    CHUNK = "chunk"
    INDEX = "index"
    RESULT = "result"
    STATS_RESULT = "stats-result"
    VOLUME_RESULT = "volume-result"
    INSTANT_METRIC_RESULT = "instant-metric-result"
    WRITE_DEDUPE = "write-dedupe"
    SERIES_RESULT = "series-result"
    LABEL_RESULT = "label-result"
    BLOOM_FILTER = "bloom-filter"
    BLOOM_BLOCKS = "bloom-blocks"
    BLOOM_METAS = "bloom-metas"


_CACHE_ATTRS = {
    CacheType.CHUNK: "chunk",
    CacheType.INDEX: "index",
    CacheType.RESULT: "result",
    CacheType.STATS_RESULT: "stats_result",
    CacheType.VOLUME_RESULT: "volume_result",
    CacheType.SERIES_RESULT: "series_result",
    CacheType.LABEL_RESULT: "label_result",
    CacheType.INSTANT_METRIC_RESULT: "instant_metric_result",
}


def _seconds(ns: int) -> float:
    """Nanoseconds to float seconds, computed as whole seconds plus a fraction."""
    sign = -1 if ns < 0 else 1
    whole, frac = divmod(abs(ns), _SECOND)
    return sign * (float(whole) + float(frac) / 1e9)


def convert_seconds_to_nanoseconds(seconds: float) -> int:
    """Convert float seconds to integer nanoseconds, truncating toward zero."""
    return int(seconds * float(_SECOND))


def _humanize_bytes(size: int) -> str:
    if size < 10:
        return f"{size} B"
    suffixes = ["B", "kB", "MB", "GB", "TB", "PB", "EB"]
    exp = int(math.floor(math.log(size) / math.log(1000)))
    exp = min(exp, len(suffixes) - 1)
    val = math.floor(size / (1000 ** exp) * 10 + 0.5) / 10
    if val < 10:
        return f"{val:.1f} {suffixes[exp]}"
    return f"{val:.0f} {suffixes[exp]}"


def _fraction(value: int, precision: int) -> str:
    whole, frac = divmod(value, 10 ** precision)
    digits = str(frac).rjust(precision, "0").rstrip("0")
    return f"{whole}.{digits}" if digits else str(whole)


def _format_duration(ns: int) -> str:
    if ns == 0:
        return "0s"
    sign = "-" if ns < 0 else ""
    u = abs(ns)
    if u < 1_000:
        return f"{sign}{u}ns"
    if u < 1_000_000:
        return f"{sign}{_fraction(u, 3)}µs"
    if u < _SECOND:
        return f"{sign}{_fraction(u, 6)}ms"
    total_seconds = u // _SECOND
    frac_ns = u % _SECOND
    secs = total_seconds % 60
    minutes = (total_seconds // 60) % 60
    hours = total_seconds // 3600
    out = f"{_fraction(secs * _SECOND + frac_ns, 9)}s"
    if minutes or hours:
        out = f"{minutes}m{out}"
    if hours:
        out = f"{hours}h{out}"
    return sign + out


@dataclass
class Chunk:
    """Chunk-level counters."""

    head_chunk_bytes: int = 0
    head_chunk_lines: int = 0
    head_chunk_structured_metadata_bytes: int = 0
    decompressed_bytes: int = 0
    decompressed_lines: int = 0
    decompressed_structured_metadata_bytes: int = 0
    compressed_bytes: int = 0
    total_duplicates: int = 0
    post_filter_lines: int = 0


@dataclass
class Store:
    """Store statistics."""

    total_chunks_ref: int = 0
    total_chunks_downloaded: int = 0
    chunks_download_time: int = 0
    chunk_refs_fetch_time: int = 0
    congestion_control_latency: int = 0
    pipeline_wrapper_filtered_lines: int = 0
    query_referenced_structured: bool = False
    chunk: Chunk = field(default_factory=Chunk)

    def merge(self, m: Store) -> None:
        self.total_chunks_ref += m.total_chunks_ref
        self.total_chunks_downloaded += m.total_chunks_downloaded
        self.congestion_control_latency += m.congestion_control_latency
        self.pipeline_wrapper_filtered_lines += m.pipeline_wrapper_filtered_lines
        self.chunks_download_time += m.chunks_download_time
        self.chunk_refs_fetch_time += m.chunk_refs_fetch_time
        c, o = self.chunk, m.chunk
        c.head_chunk_bytes += o.head_chunk_bytes
        c.head_chunk_structured_metadata_bytes += o.head_chunk_structured_metadata_bytes
        c.head_chunk_lines += o.head_chunk_lines
        c.decompressed_bytes += o.decompressed_bytes
        c.decompressed_structured_metadata_bytes += o.decompressed_structured_metadata_bytes
        c.decompressed_lines += o.decompressed_lines
        c.compressed_bytes += o.compressed_bytes
        c.total_duplicates += o.total_duplicates
        c.post_filter_lines += o.post_filter_lines
        if m.query_referenced_structured:
            self.query_referenced_structured = True


@dataclass
class Ingester:
    """Ingester statistics."""

    total_reached: int = 0
    total_chunks_matched: int = 0
    total_batches: int = 0
    total_lines_sent: int = 0
    store: Store = field(default_factory=Store)

    def merge(self, m: Ingester) -> None:
        self.store.merge(m.store)
        self.total_batches += m.total_batches
        self.total_lines_sent += m.total_lines_sent
        self.total_chunks_matched += m.total_chunks_matched
        self.total_reached += m.total_reached


@dataclass
class Querier:
    """Querier statistics."""

    store: Store = field(default_factory=Store)

    def merge(self, m: Querier) -> None:
        self.store.merge(m.store)


@dataclass
class Index:
    """Index statistics."""

    total_chunks: int = 0
    post_filter_chunks: int = 0
    shards_duration: int = 0

    def merge(self, m: Index) -> None:
        self.total_chunks += m.total_chunks
        self.post_filter_chunks += m.post_filter_chunks
        self.shards_duration += m.shards_duration


@dataclass
class Cache:
    """Statistics of one cache."""

    entries_found: int = 0
    entries_requested: int = 0
    entries_stored: int = 0
    requests: int = 0
    bytes_received: int = 0
    bytes_sent: int = 0
    download_time: int = 0
    query_length_served: int = 0

    def merge(self, m: Cache) -> None:
        self.entries_found += m.entries_found
        self.entries_requested += m.entries_requested
        self.entries_stored += m.entries_stored
        self.requests += m.requests
        self.bytes_sent += m.bytes_sent
        self.bytes_received += m.bytes_received
        self.download_time += m.download_time
        self.query_length_served += m.query_length_served


@dataclass
class Caches:
    """Statistics of all caches."""

    chunk: Cache = field(default_factory=Cache)
    index: Cache = field(default_factory=Cache)
    result: Cache = field(default_factory=Cache)
    stats_result: Cache = field(default_factory=Cache)
    volume_result: Cache = field(default_factory=Cache)
    series_result: Cache = field(default_factory=Cache)
    label_result: Cache = field(default_factory=Cache)
    instant_metric_result: Cache = field(default_factory=Cache)

    def merge(self, m: Caches) -> None:
        for name in _CACHE_ATTRS.values():
            getattr(self, name).merge(getattr(m, name))

    def _kv_list(self) -> list[Any]:
        out: list[Any] = []

        def counters(label: str, c: Cache) -> None:
            out.extend([
                f"Cache.{label}.Requests", c.requests,
                f"Cache.{label}.EntriesRequested", c.entries_requested,
                f"Cache.{label}.EntriesFound", c.entries_found,
                f"Cache.{label}.EntriesStored", c.entries_stored,
                f"Cache.{label}.BytesSent", _humanize_bytes(c.bytes_sent),
                f"Cache.{label}.BytesReceived", _humanize_bytes(c.bytes_received),
            ])

        counters("Chunk", self.chunk)
        out.extend(["Cache.Chunk.DownloadTime", _format_duration(self.chunk.download_time)])
        counters("Index", self.index)
        out.extend(["Cache.Index.DownloadTime", _format_duration(self.index.download_time)])
        counters("StatsResult", self.stats_result)
        counters("VolumeResult", self.volume_result)
        counters("SeriesResult", self.series_result)
        counters("LabelResult", self.label_result)
        out.extend(["Cache.Result.DownloadTime", _format_duration(self.result.download_time)])
        counters("Result", self.result)
        counters("InstantMetricResult", self.instant_metric_result)
        out.extend([
            "Cache.InstantMetricResult.DownloadTime",
            _format_duration(self.instant_metric_result.download_time),
        ])
        return out


@dataclass
class Summary:
    """Summary of a query's statistics."""

    bytes_processed_per_second: int = 0
    lines_processed_per_second: int = 0
    total_bytes_processed: int = 0
    total_lines_processed: int = 0
    total_structured_metadata_bytes_processed: int = 0
    total_post_filter_lines: int = 0
    exec_time: float = 0.0
    queue_time: float = 0.0
    subqueries: int = 0
    total_entries_returned: int = 0
    splits: int = 0
    shards: int = 0

    def merge(self, m: Summary) -> None:
        self.splits += m.splits
        self.shards += m.shards

    def _kv_list(self) -> list[Any]:
        return [
            "Summary.BytesProcessedPerSecond", _humanize_bytes(self.bytes_processed_per_second),
            "Summary.LinesProcessedPerSecond", self.lines_processed_per_second,
            "Summary.TotalBytesProcessed", _humanize_bytes(self.total_bytes_processed),
            "Summary.TotalLinesProcessed", self.total_lines_processed,
            "Summary.PostFilterLines", self.total_post_filter_lines,
            "Summary.ExecTime", _format_duration(convert_seconds_to_nanoseconds(self.exec_time)),
            "Summary.QueueTime", _format_duration(convert_seconds_to_nanoseconds(self.queue_time)),
        ]


@dataclass
class Result:
    """Full statistics of a query."""

    summary: Summary = field(default_factory=Summary)
    querier: Querier = field(default_factory=Querier)
    ingester: Ingester = field(default_factory=Ingester)
    caches: Caches = field(default_factory=Caches)
    index: Index = field(default_factory=Index)

    def compute_summary(self, exec_time: int, queue_time: int, total_entries_returned: int) -> None:
        """Fill the summary from the counters; times are nanoseconds."""
        q, i = self.querier.store.chunk, self.ingester.store.chunk
        s = self.summary
        s.total_bytes_processed = (
            q.decompressed_bytes + q.head_chunk_bytes + i.decompressed_bytes + i.head_chunk_bytes
        )
        s.total_structured_metadata_bytes_processed = (
            q.decompressed_structured_metadata_bytes + q.head_chunk_structured_metadata_bytes
            + i.decompressed_structured_metadata_bytes + i.head_chunk_structured_metadata_bytes
        )
        s.total_lines_processed = (
            q.decompressed_lines + q.head_chunk_lines + i.decompressed_lines + i.head_chunk_lines
        )
        s.total_post_filter_lines = q.post_filter_lines + i.post_filter_lines
        s.exec_time = _seconds(exec_time)
        if exec_time != 0:
            s.bytes_processed_per_second = int(float(s.total_bytes_processed) / _seconds(exec_time))
            s.lines_processed_per_second = int(float(s.total_lines_processed) / _seconds(exec_time))
        if queue_time != 0:
            s.queue_time = _seconds(queue_time)
        s.total_entries_returned = int(total_entries_returned)

    def merge(self, m: Result) -> None:
        if m is self:
            m = copy.deepcopy(m)
        self.querier.merge(m.querier)
        self.ingester.merge(m.ingester)
        self.caches.merge(m.caches)
        self.summary.merge(m.summary)
        self.index.merge(m.index)
        self.compute_summary(
            convert_seconds_to_nanoseconds(self.summary.exec_time + m.summary.exec_time),
            convert_seconds_to_nanoseconds(self.summary.queue_time + m.summary.queue_time),
            self.summary.total_entries_returned,
        )

    def merge_split(self, m: Result) -> None:
        """Merge the result of one split query, counting it as one split."""
        m = copy.deepcopy(m)
        m.summary.splits = 1
        self.merge(m)

    def chunks_download_time(self) -> int:
        return self.querier.store.chunks_download_time + self.ingester.store.chunks_download_time

    def chunk_refs_fetch_time(self) -> int:
        return self.querier.store.chunk_refs_fetch_time + self.ingester.store.chunk_refs_fetch_time

    def congestion_control_latency(self) -> int:
        return self.querier.store.congestion_control_latency

    def pipeline_wrapper_filtered_lines(self) -> int:
        return (self.querier.store.pipeline_wrapper_filtered_lines
                + self.ingester.store.pipeline_wrapper_filtered_lines)

    def total_duplicates(self) -> int:
        return self.querier.store.chunk.total_duplicates + self.ingester.store.chunk.total_duplicates

    def total_chunks_downloaded(self) -> int:
        return self.querier.store.total_chunks_downloaded + self.ingester.store.total_chunks_downloaded

    def total_chunks_ref(self) -> int:
        return self.querier.store.total_chunks_ref + self.ingester.store.total_chunks_ref

    def total_decompressed_bytes(self) -> int:
        return self.querier.store.chunk.decompressed_bytes + self.ingester.store.chunk.decompressed_bytes

    def total_decompressed_lines(self) -> int:
        return self.querier.store.chunk.decompressed_lines + self.ingester.store.chunk.decompressed_lines

    def query_referenced_structured_metadata(self) -> bool:
        return (self.querier.store.query_referenced_structured
                or self.ingester.store.query_referenced_structured)

    def kv_list(self) -> list[Any]:
        """Alternating keys and values describing these statistics, for logging."""
        ing, qs = self.ingester, self.querier.store
        out: list[Any] = [
            "Ingester.TotalReached", ing.total_reached,
            "Ingester.TotalChunksMatched", ing.total_chunks_matched,
            "Ingester.TotalBatches", ing.total_batches,
            "Ingester.TotalLinesSent", ing.total_lines_sent,
        ]
        for prefix, store in (("Ingester", ing.store), ("Querier", qs)):
            c = store.chunk
            out.extend([
                f"{prefix}.TotalChunksRef", store.total_chunks_ref,
                f"{prefix}.TotalChunksDownloaded", store.total_chunks_downloaded,
                f"{prefix}.ChunksDownloadTime", _format_duration(store.chunks_download_time),
                f"{prefix}.ChunkRefsFetchTime", _format_duration(store.chunk_refs_fetch_time),
                f"{prefix}.HeadChunkBytes", _humanize_bytes(c.head_chunk_bytes),
                f"{prefix}.HeadChunkLines", c.head_chunk_lines,
                f"{prefix}.DecompressedBytes", _humanize_bytes(c.decompressed_bytes),
                f"{prefix}.DecompressedLines", c.decompressed_lines,
                f"{prefix}.PostFilterLInes", c.post_filter_lines,
                f"{prefix}.CompressedBytes", _humanize_bytes(c.compressed_bytes),
                f"{prefix}.TotalDuplicates", c.total_duplicates,
            ])
        out.extend(["Querier.QueryReferencedStructuredMetadata", qs.query_referenced_structured])
        out.extend(self.caches._kv_list())
        out.extend(self.summary._kv_list())
        return out


class Context:
    """Statistics accumulated along the query path; safe to update from many threads."""

    def __init__(self) -> None:
        self._querier = Querier()
        self._ingester = Ingester()
        self._caches = Caches()
        self._index = Index()
        self._store = Store()
        self._result = Result()
        self._lock = threading.Lock()

    def ingester(self) -> Ingester:
        """Ingester statistics so far, with this context's store statistics."""
        with self._lock:
            return Ingester(
                total_reached=self._ingester.total_reached,
                total_chunks_matched=self._ingester.total_chunks_matched,
                total_batches=self._ingester.total_batches,
                total_lines_sent=self._ingester.total_lines_sent,
                store=copy.deepcopy(self._store),
            )

    def store(self) -> Store:
        with self._lock:
            return copy.deepcopy(self._store)

    def caches(self) -> Caches:
        with self._lock:
            return copy.deepcopy(self._caches)

    def reset(self) -> None:
        with self._lock:
            self._store = Store()
            self._querier = Querier()
            self._ingester = Ingester()
            self._result = Result()
            self._caches = Caches()
            self._index = Index()

    def result(self, exec_time: int, queue_time: int, total_entries_returned: int) -> Result:
        """Summarise the statistics; times are nanoseconds."""
        with self._lock:
            r = copy.deepcopy(self._result)
            r.merge(Result(
                querier=Querier(store=copy.deepcopy(self._store)),
                ingester=copy.deepcopy(self._ingester),
                caches=copy.deepcopy(self._caches),
                index=copy.deepcopy(self._index),
            ))
        r.compute_summary(exec_time, queue_time, total_entries_returned)
        return r

    def _join_result(self, res: Result) -> None:
        with self._lock:
            self._result.merge(res)

    def _join_ingester(self, inc: Ingester) -> None:
        with self._lock:
            self._ingester.merge(inc)

    def add_ingester_batch(self, size: int) -> None:
        with self._lock:
            self._ingester.total_batches += 1
            self._ingester.total_lines_sent += size

    def add_ingester_total_chunk_matched(self, i: int) -> None:
        with self._lock:
            self._ingester.total_chunks_matched += i

    def add_ingester_reached(self, i: int) -> None:
        with self._lock:
            self._ingester.total_reached += i

    def add_head_chunk_lines(self, i: int) -> None:
        with self._lock:
            self._store.chunk.head_chunk_lines += i

    def add_head_chunk_bytes(self, i: int) -> None:
        with self._lock:
            self._store.chunk.head_chunk_bytes += i

    def add_head_chunk_structured_metadata_bytes(self, i: int) -> None:
        with self._lock:
            self._store.chunk.head_chunk_structured_metadata_bytes += i

    def add_compressed_bytes(self, i: int) -> None:
        with self._lock:
            self._store.chunk.compressed_bytes += i

    def add_decompressed_bytes(self, i: int) -> None:
        with self._lock:
            self._store.chunk.decompressed_bytes += i

    def add_decompressed_structured_metadata_bytes(self, i: int) -> None:
        with self._lock:
            self._store.chunk.decompressed_structured_metadata_bytes += i

    def add_decompressed_lines(self, i: int) -> None:
        with self._lock:
            self._store.chunk.decompressed_lines += i

    def add_post_filter_lines(self, i: int) -> None:
        with self._lock:
            self._store.chunk.post_filter_lines += i

    def add_duplicates(self, i: int) -> None:
        with self._lock:
            self._store.chunk.total_duplicates += i

    def add_chunks_download_time(self, i: int) -> None:
        with self._lock:
            self._store.chunks_download_time += i

    def add_chunk_refs_fetch_time(self, i: int) -> None:
        with self._lock:
            self._store.chunk_refs_fetch_time += i

    def add_congestion_control_latency(self, i: int) -> None:
        with self._lock:
            self._store.congestion_control_latency += i

    def add_pipeline_wrapper_filtered_lines(self, i: int) -> None:
        with self._lock:
            self._store.pipeline_wrapper_filtered_lines += i

    def add_chunks_downloaded(self, i: int) -> None:
        with self._lock:
            self._store.total_chunks_downloaded += i

    def add_chunks_ref(self, i: int) -> None:
        with self._lock:
            self._store.total_chunks_ref += i

    def _add_cache(self, t: CacheType | str, attr: str, i: int) -> None:
        try:
            name = _CACHE_ATTRS.get(CacheType(t))
        except ValueError:
            return
        if name is None:
            return
        with self._lock:
            cache = getattr(self._caches, name)
            setattr(cache, attr, getattr(cache, attr) + int(i))

    def add_cache_entries_found(self, t: CacheType | str, i: int) -> None:
        self._add_cache(t, "entries_found", i)

    def add_cache_entries_requested(self, t: CacheType | str, i: int) -> None:
        self._add_cache(t, "entries_requested", i)

    def add_cache_entries_stored(self, t: CacheType | str, i: int) -> None:
        self._add_cache(t, "entries_stored", i)

    def add_cache_bytes_retrieved(self, t: CacheType | str, i: int) -> None:
        self._add_cache(t, "bytes_received", i)

    def add_cache_bytes_sent(self, t: CacheType | str, i: int) -> None:
        self._add_cache(t, "bytes_sent", i)

    def add_cache_download_time(self, t: CacheType | str, i: int) -> None:
        self._add_cache(t, "download_time", i)

    def add_cache_request(self, t: CacheType | str, i: int) -> None:
        self._add_cache(t, "requests", i)

    def add_cache_query_length_served(self, t: CacheType | str, i: int) -> None:
        self._add_cache(t, "query_length_served", i)

    def add_split_queries(self, num: int) -> None:
        with self._lock:
            self._result.summary.splits += num

    def set_query_referenced_structured_metadata(self) -> None:
        with self._lock:
            self._store.query_referenced_structured = True


def new_context(ctx: Optional[Mapping[Any, Any]] = None) -> tuple[Context, dict[Any, Any]]:
    """Create a statistics context and a copy of ``ctx`` that carries it."""
    stats = Context()
    derived = dict(ctx or {})
    derived[_STATS_KEY] = stats
    return stats, derived


def from_context(ctx: Optional[Mapping[Any, Any]]) -> Context:
    """Return the statistics context carried by ``ctx``, or a fresh one."""
    stats = (ctx or {}).get(_STATS_KEY)
    if isinstance(stats, Context):
        return stats
    return Context()


def join_results(ctx: Optional[Mapping[Any, Any]], res: Result) -> None:
    """Merge ``res`` into the result held by the context's statistics."""
    from_context(ctx)._join_result(res)


def join_ingesters(ctx: Optional[Mapping[Any, Any]], inc: Ingester) -> None:
    """Merge ingester statistics into the context's statistics."""
    from_context(ctx)._join_ingester(inc)