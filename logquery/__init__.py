"""Building blocks for log query engines: statistics, pipelines, label and IP filters, sample extraction and stream reading."""

__version__ = "0.1.0"

__all__ = [
    "engine",
    "extraction",
    "fingerprint",
    "ip_filter",
    "jsonl",
    "label_filter",
    "metastore",
    "pattern_ast",
    "stages",
    "stats",
]