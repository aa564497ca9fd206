# logquery

Pure-Python building blocks for working with labelled log streams and the
queries run against them. The package has no runtime dependencies.

Timestamps and durations are plain integers of nanoseconds throughout, unless
stated otherwise.

## Installation

```
pip install logquery
```

To run the tests:

```
pip install "logquery[test]"
pytest
```

## Modules

- `logquery.stats`: query statistics. `new_context(ctx)` takes a plain
  dictionary context and returns a `Context` together with a copy of the
  dictionary that carries it. `from_context(ctx)` gets it back, or a fresh
  `Context` if none is attached. Counters are added with methods such as
  `add_decompressed_bytes`, `add_ingester_batch` or
  `add_cache_request(CacheType.CHUNK, 3)`. `Context.result(exec_time,
  queue_time, total_entries_returned)` returns a `Result` with a computed
  `Summary`. Results of sub-queries combine with `Result.merge`,
  `Result.merge_split`, `join_results` and `join_ingesters`.
  `Result.kv_list()` gives alternating keys and human-readable values for
  logging.
- `logquery.stages`: line processing. `Matcher` (`=`, `!=`, `=~`, `!~`, with
  regular expressions anchored at both ends) and `LabelsBuilder` handle labels.
  `StageFunc` wraps a function `fn(ts, line, lbs) -> (line, ok)`, and
  `reduce_stages` chains stages. `new_pipeline(stages)`, `new_noop_pipeline()`
  and `new_filtering_pipeline(filters, pipeline)` build a `Pipeline`.
  `Pipeline.for_stream(labels)` returns a cached `StreamPipeline` whose
  `process(ts, line, structured_metadata)` returns `(line, labels, kept)`.
  The line is returned as `str` if a `str` was given and as `bytes` otherwise.
- `logquery.ip_filter`: `IPLineFilter` and `IPLabelFilter` find IPv4 and IPv6
  addresses in text. They match them against a single address, a CIDR prefix
  or a `start-end` range. An invalid pattern raises `IPFilterError` for a line
  filter. A label filter keeps the error for `pattern_error()` and then keeps
  no line.
- `logquery.label_filter`: filters on labels. They compare a label's value as
  a byte size (`BytesLabelFilter`), a duration (`DurationLabelFilter`), a
  number (`NumericLabelFilter`) or a string (`StringLabelFilter`). Filters
  combine with `new_and_label_filter`, `new_or_label_filter` and
  `reduce_and_label_filter`. A value that cannot be converted sets an error on
  the labels builder and keeps the line. Helpers: `parse_bytes`,
  `format_bytes`, `parse_duration`, `format_duration`.
- `logquery.extraction`: turns lines into samples.
  - `new_line_sample_extractor` measures lines with `count_extractor` or
    `bytes_extractor`.
  - `label_extractor_with_stages` reads a label converted as `"float"`,
    `"duration"` (in seconds) or `"bytes"`. Any other conversion raises
    `ValueError`.
  - `new_filtering_sample_extractor` drops entries caught by `PipelineFilter`s.
- `logquery.fingerprint`: `FpMapper.map_fp(fp, metric)` maps colliding series
  fingerprints to unique ones from a reserved range. It raises `RuntimeError`
  once that range is used up.
- `logquery.pattern_ast`: `Capture`, `Literals` and `Expr` nodes of a line
  pattern. `Expr.validate()` raises `PatternError` in three cases: the
  expression has no named capture, two captures are adjacent, or a capture
  name repeats.
- `logquery.metastore`: `MetastoreState` holds `BlockMeta` records.
  `list_blocks_for_query` returns copies of the blocks of one tenant that
  overlap a time range, sorted by id. A bad request raises
  `InvalidArgumentError`.
- `logquery.jsonl`: `JSONLOutput` writes entries as JSON Lines. Each object
  holds `timestamp`, `line` and, unless `no_labels` is set in
  `LogOutputOptions`, `labels`.
- `logquery.engine`:
  - `read_streams` groups `(labels, Entry)` pairs into `Stream`s sorted by
    labels. It takes a limit, a `Direction` and an optional interval between
    the entries it keeps.
  - `populate_matrix_from_scalar` expands a scalar over a range, giving one
    `Series` of `FPoint`s with times in milliseconds.
  - `EngineOpts.apply_default()` fills in a 30 second look-back period.

## Examples

```python
from logquery.stats import CacheType, new_context

stats, ctx = new_context({})
stats.add_decompressed_bytes(40)
stats.add_cache_request(CacheType.CHUNK, 3)
result = stats.result(2_000_000_000, 0, 10)
print(result.summary.total_bytes_processed)  # 40
```

```python
from logquery.stages import StageFunc, new_pipeline

def drop_debug(ts, line, lbs):
    return line, b"debug" not in line

stream = new_pipeline([StageFunc(drop_debug)]).for_stream({"app": "web"})
stream.process(0, "level=info msg=ok")  # ('level=info msg=ok', {'app': 'web'}, True)
```

```python
from logquery.ip_filter import IPLineFilter, LineMatchType

f = IPLineFilter("192.168.0.0/16", LineMatchType.EQUAL)
f.filter(b"client 192.168.4.5 connected")  # True
```

```python
from logquery.label_filter import NumericLabelFilter
from logquery.stages import LabelFilterType, LabelsBuilder

f = NumericLabelFilter(LabelFilterType.GREATER_THAN, "status", 400)
f.process(0, b"", LabelsBuilder({"status": "500"}))  # (b'', True)
str(f)  # 'status>400'
```

## What this package does not do

The package provides no query language parser. Pipelines, filters and
extractors are built in code, not from query text. It has no query execution
engine: `logquery.engine` holds result types and helpers only. It does not
store or fetch log data, has no server or HTTP client, and installs no command.