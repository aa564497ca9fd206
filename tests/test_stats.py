import copy

from logquery.stats import (
    Cache,
    Caches,
    CacheType,
    Chunk,
    Ingester,
    Querier,
    Result,
    Store,
    Summary,
    convert_seconds_to_nanoseconds,
    from_context,
    join_ingesters,
    join_results,
    new_context,
)

SECOND = 1_000_000_000
NANOSECOND = 1
HOUR = 3600 * SECOND


def fake_ingester_query(ctx):
    from_context(ctx).add_ingester_reached(1)
    join_ingesters(ctx, Ingester(
        total_chunks_matched=100,
        total_batches=25,
        total_lines_sent=30,
        store=Store(
            pipeline_wrapper_filtered_lines=1,
            chunk=Chunk(
                head_chunk_bytes=5,
                head_chunk_lines=10,
                decompressed_bytes=12,
                decompressed_lines=20,
                compressed_bytes=30,
                total_duplicates=1,
            ),
        ),
    ))


def test_result():
    stats, ctx = new_context(None)
    stats.add_head_chunk_bytes(10)
    stats.add_head_chunk_lines(20)
    stats.add_decompressed_bytes(40)
    stats.add_decompressed_lines(20)
    stats.add_compressed_bytes(30)
    stats.add_duplicates(10)
    stats.add_chunks_ref(50)
    stats.add_chunks_downloaded(60)
    stats.add_chunks_download_time(SECOND)
    stats.add_cache_request(CacheType.CHUNK, 3)
    stats.add_cache_request(CacheType.INDEX, 4)
    stats.add_cache_request(CacheType.RESULT, 1)
    stats.set_query_referenced_structured_metadata()
    stats.add_pipeline_wrapper_filtered_lines(1)

    fake_ingester_query(ctx)
    fake_ingester_query(ctx)

    res = stats.result(2 * SECOND, 2 * NANOSECOND, 10)
    expected = Result(
        ingester=Ingester(
            total_chunks_matched=200,
            total_batches=50,
            total_lines_sent=60,
            total_reached=2,
            store=Store(
                pipeline_wrapper_filtered_lines=2,
                chunk=Chunk(
                    head_chunk_bytes=10,
                    head_chunk_lines=20,
                    decompressed_bytes=24,
                    decompressed_lines=40,
                    compressed_bytes=60,
                    total_duplicates=2,
                ),
            ),
        ),
        querier=Querier(store=Store(
            total_chunks_ref=50,
            total_chunks_downloaded=60,
            chunks_download_time=SECOND,
            query_referenced_structured=True,
            pipeline_wrapper_filtered_lines=1,
            chunk=Chunk(
                head_chunk_bytes=10,
                head_chunk_lines=20,
                decompressed_bytes=40,
                decompressed_lines=20,
                compressed_bytes=30,
                total_duplicates=10,
            ),
        )),
        caches=Caches(
            chunk=Cache(requests=3),
            index=Cache(requests=4),
            result=Cache(requests=1),
        ),
        summary=Summary(
            exec_time=2 * 1.0,
            queue_time=2 * 1e-9,
            bytes_processed_per_second=42,
            lines_processed_per_second=50,
            total_bytes_processed=84,
            total_lines_processed=100,
            total_entries_returned=10,
        ),
    )
    assert res == expected


def test_snapshot_join_results():
    stats_ctx, ctx = new_context({})
    expected = Result(
        ingester=Ingester(
            total_chunks_matched=200,
            total_batches=50,
            total_lines_sent=60,
            total_reached=2,
            store=Store(
                query_referenced_structured=True,
                chunk=Chunk(
                    head_chunk_bytes=10,
                    head_chunk_lines=20,
                    decompressed_bytes=24,
                    decompressed_lines=40,
                    compressed_bytes=60,
                    total_duplicates=2,
                ),
            ),
        ),
        querier=Querier(store=Store(
            total_chunks_ref=50,
            total_chunks_downloaded=60,
            chunks_download_time=SECOND,
            query_referenced_structured=True,
            chunk=Chunk(
                head_chunk_bytes=10,
                head_chunk_lines=20,
                decompressed_bytes=40,
                decompressed_lines=20,
                compressed_bytes=30,
                total_duplicates=10,
            ),
        )),
        summary=Summary(
            exec_time=2 * 1.0,
            queue_time=2 * 1e-9,
            bytes_processed_per_second=42,
            lines_processed_per_second=50,
            total_bytes_processed=84,
            total_lines_processed=100,
            total_entries_returned=10,
        ),
    )
    join_results(ctx, expected)
    res = stats_ctx.result(2 * SECOND, 2 * NANOSECOND, 10)
    assert res == expected


def _to_merge():
    return Result(
        ingester=Ingester(
            total_chunks_matched=200,
            total_batches=50,
            total_lines_sent=60,
            total_reached=2,
            store=Store(
                pipeline_wrapper_filtered_lines=4,
                chunk=Chunk(
                    head_chunk_bytes=10,
                    head_chunk_lines=20,
                    decompressed_bytes=24,
                    decompressed_lines=40,
                    compressed_bytes=60,
                    total_duplicates=2,
                ),
            ),
        ),
        querier=Querier(store=Store(
            total_chunks_ref=50,
            total_chunks_downloaded=60,
            chunks_download_time=SECOND,
            query_referenced_structured=True,
            pipeline_wrapper_filtered_lines=2,
            chunk=Chunk(
                head_chunk_bytes=10,
                head_chunk_lines=20,
                decompressed_bytes=40,
                decompressed_lines=20,
                compressed_bytes=30,
                total_duplicates=10,
            ),
        )),
        caches=Caches(
            chunk=Cache(requests=5, bytes_received=1024, bytes_sent=512),
            index=Cache(entries_requested=22, entries_found=2),
            result=Cache(entries_stored=3, query_length_served=3 * HOUR),
        ),
        summary=Summary(
            exec_time=2 * 1.0,
            queue_time=2 * 1e-9,
            bytes_processed_per_second=42,
            lines_processed_per_second=50,
            total_bytes_processed=84,
            total_lines_processed=100,
        ),
    )


def test_result_merge():
    res = Result()
    res.merge(res)
    assert res == Result()

    to_merge = _to_merge()
    res.merge(to_merge)
    assert res == to_merge

    res.merge(to_merge)
    assert res == Result(
        ingester=Ingester(
            total_chunks_matched=2 * 200,
            total_batches=2 * 50,
            total_lines_sent=2 * 60,
            store=Store(
                pipeline_wrapper_filtered_lines=8,
                chunk=Chunk(
                    head_chunk_bytes=2 * 10,
                    head_chunk_lines=2 * 20,
                    decompressed_bytes=2 * 24,
                    decompressed_lines=2 * 40,
                    compressed_bytes=2 * 60,
                    total_duplicates=2 * 2,
                ),
            ),
            total_reached=2 * 2,
        ),
        querier=Querier(store=Store(
            total_chunks_ref=2 * 50,
            total_chunks_downloaded=2 * 60,
            chunks_download_time=2 * SECOND,
            query_referenced_structured=True,
            pipeline_wrapper_filtered_lines=4,
            chunk=Chunk(
                head_chunk_bytes=2 * 10,
                head_chunk_lines=2 * 20,
                decompressed_bytes=2 * 40,
                decompressed_lines=2 * 20,
                compressed_bytes=2 * 30,
                total_duplicates=2 * 10,
            ),
        )),
        caches=Caches(
            chunk=Cache(requests=2 * 5, bytes_received=2 * 1024, bytes_sent=2 * 512),
            index=Cache(entries_requested=2 * 22, entries_found=2 * 2),
            result=Cache(entries_stored=2 * 3, query_length_served=2 * 3 * HOUR),
        ),
        summary=Summary(
            exec_time=2 * 2 * 1.0,
            queue_time=2 * 2 * 1e-9,
            bytes_processed_per_second=42,
            lines_processed_per_second=50,
            total_bytes_processed=2 * 84,
            total_lines_processed=2 * 100,
        ),
    )


def test_merge_does_not_modify_argument():
    to_merge = _to_merge()
    snapshot = copy.deepcopy(to_merge)
    res = Result()
    res.merge(to_merge)
    res.merge(to_merge)
    assert to_merge == snapshot


def test_merge_split_counts_one_split():
    part = _to_merge()
    res = Result()
    res.merge_split(part)
    res.merge_split(part)
    assert res.summary.splits == 2
    assert part.summary.splits == 0


def test_reset():
    stats_ctx, ctx = new_context(None)
    fake_ingester_query(ctx)
    res = stats_ctx.result(2 * SECOND, 2 * 1_000_000, 10)
    assert res != Result()
    assert res.ingester.total_reached == 1
    stats_ctx.reset()
    res = stats_ctx.result(0, 0, 0)
    res.summary.subqueries = 0
    assert res == Result()


def test_ingester():
    stats_ctx, ctx = new_context(None)
    fake_ingester_query(ctx)
    stats_ctx.add_compressed_bytes(100)
    stats_ctx.add_duplicates(10)
    stats_ctx.add_head_chunk_bytes(200)
    stats_ctx.set_query_referenced_structured_metadata()
    stats_ctx.add_pipeline_wrapper_filtered_lines(1)
    assert stats_ctx.ingester() == Ingester(
        total_reached=1,
        total_chunks_matched=100,
        total_batches=25,
        total_lines_sent=30,
        store=Store(
            query_referenced_structured=True,
            pipeline_wrapper_filtered_lines=1,
            chunk=Chunk(head_chunk_bytes=200, compressed_bytes=100, total_duplicates=10),
        ),
    )


def test_caches():
    stats_ctx, _ = new_context(None)
    stats_ctx.add_cache_request(CacheType.CHUNK, 5)
    stats_ctx.add_cache_entries_stored(CacheType.RESULT, 3)
    stats_ctx.add_cache_query_length_served(CacheType.RESULT, 3 * HOUR)
    stats_ctx.add_cache_entries_requested(CacheType.INDEX, 22)
    stats_ctx.add_cache_bytes_retrieved(CacheType.CHUNK, 1024)
    stats_ctx.add_cache_bytes_sent(CacheType.CHUNK, 512)
    stats_ctx.add_cache_entries_found(CacheType.INDEX, 2)
    assert stats_ctx.caches() == Caches(
        chunk=Cache(requests=5, bytes_received=1024, bytes_sent=512),
        index=Cache(entries_requested=22, entries_found=2),
        result=Cache(entries_stored=3, query_length_served=3 * HOUR),
    )


def test_untracked_cache_type_is_ignored():
    stats_ctx, _ = new_context(None)
    stats_ctx.add_cache_request(CacheType.BLOOM_FILTER, 3)
    stats_ctx.add_cache_bytes_sent(CacheType.WRITE_DEDUPE, 7)
    stats_ctx.add_cache_request("unknown", 1)
    assert stats_ctx.caches() == Caches()


def test_from_context_without_stats_is_fresh():
    stats = from_context({})
    stats.add_chunks_ref(5)
    assert from_context({}).store() == Store()
    assert stats.store().total_chunks_ref == 5


def test_new_context_keeps_existing_values():
    stats, ctx = new_context({"tenant": "team-a"})
    assert ctx["tenant"] == "team-a"
    assert from_context(ctx) is stats


def test_ingester_batch_and_split_counters():
    stats_ctx, _ = new_context(None)
    stats_ctx.add_ingester_batch(7)
    stats_ctx.add_ingester_batch(3)
    stats_ctx.add_ingester_total_chunk_matched(4)
    stats_ctx.add_split_queries(2)
    res = stats_ctx.result(0, 0, 0)
    assert res.ingester.total_batches == 2
    assert res.ingester.total_lines_sent == 10
    assert res.ingester.total_chunks_matched == 4
    assert res.summary.splits == 2


def test_post_filter_lines_in_summary():
    stats_ctx, _ = new_context(None)
    stats_ctx.add_post_filter_lines(6)
    stats_ctx.add_decompressed_lines(12)
    res = stats_ctx.result(SECOND, 0, 3)
    assert res.summary.total_post_filter_lines == 6
    assert res.summary.total_lines_processed == 12
    assert res.summary.lines_processed_per_second == 12
    assert res.summary.total_entries_returned == 3


def test_convert_seconds_to_nanoseconds():
    assert convert_seconds_to_nanoseconds(1.5) == 1_500_000_000
    assert convert_seconds_to_nanoseconds(2e-9) == 2
    assert convert_seconds_to_nanoseconds(0.0) == 0


def test_kv_list_formats_values():
    res = Result()
    res.ingester.store.chunk.head_chunk_bytes = 10
    res.querier.store.chunks_download_time = SECOND
    res.caches.chunk.bytes_received = 1024
    res.caches.chunk.download_time = 1_500_000
    res.caches.result.download_time = 3 * HOUR
    res.summary.exec_time = 2.0
    res.summary.total_bytes_processed = 84
    kv = res.kv_list()
    assert len(kv) % 2 == 0
    values = dict(zip(kv[::2], kv[1::2]))
    assert values["Ingester.HeadChunkBytes"] == "10 B"
    assert values["Ingester.ChunksDownloadTime"] == "0s"
    assert values["Querier.ChunksDownloadTime"] == "1s"
    assert values["Cache.Chunk.BytesReceived"] == "1.0 kB"
    assert values["Cache.Chunk.DownloadTime"] == "1.5ms"
    assert values["Cache.Result.DownloadTime"] == "3h0m0s"
    assert values["Summary.ExecTime"] == "2s"
    assert values["Summary.TotalBytesProcessed"] == "84 B"
    assert values["Querier.QueryReferencedStructuredMetadata"] is False
    assert kv[-2] == "Summary.QueueTime"


def test_result_totals():
    res = _to_merge()
    assert res.total_chunks_ref() == 50
    assert res.total_duplicates() == 12
    assert res.total_decompressed_bytes() == 64
    assert res.total_decompressed_lines() == 60
    assert res.pipeline_wrapper_filtered_lines() == 6
    assert res.chunks_download_time() == SECOND
    assert res.query_referenced_structured_metadata() is True