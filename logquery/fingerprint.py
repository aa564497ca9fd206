"""Maps colliding series fingerprints to unique ones from a reserved range."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, Mapping, Optional, Union

MAX_MAPPED_FP = 1 << 20
SEPARATOR = "\xff"

_log = logging.getLogger(__name__)

LabelsLike = Union[Mapping[str, str], Iterable[tuple]]


def _as_dict(labels: LabelsLike) -> dict[str, str]:
    return dict(labels.items() if isinstance(labels, Mapping) else labels)


def metric_to_unique_string(metric: LabelsLike) -> str:
    """A reproducible string that is unique for each distinct label set."""
    parts = sorted(f"{name}{SEPARATOR}{value}" for name, value in _as_dict(metric).items())
    return SEPARATOR.join(parts)


class FpMapper:
    """Maps raw fingerprints to truly unique ones, working around collisions.

    ``fp_to_labels`` returns the labels of the series held in memory for a
    fingerprint, or None.
    """

    def __init__(self, fp_to_labels: Callable[[int], Optional[LabelsLike]]) -> None:
        if fp_to_labels is None:
            raise ValueError("nil fpToLabels")
        self._fp_to_labels = fp_to_labels
        self._mappings: dict[int, dict[str, int]] = {}
        self._highest_mapped_fp = 0
        self._lock = threading.Lock()

    def map_fp(self, fp: int, metric: LabelsLike) -> int:
        """Return the unique fingerprint for ``metric`` whose raw fingerprint is ``fp``."""
        if fp <= MAX_MAPPED_FP:
            return self._maybe_add_mapping(fp, metric)
        existing = self._fp_to_labels(fp)
        if existing is not None:
            if _as_dict(existing) == _as_dict(metric):
                return fp
            return self._maybe_add_mapping(fp, metric)
        with self._lock:
            mapped = self._mappings.get(fp)
        if mapped is not None:
            found = mapped.get(metric_to_unique_string(metric))
            if found is not None:
                return found
        return fp

    def _maybe_add_mapping(self, fp: int, metric: LabelsLike) -> int:
        ms = metric_to_unique_string(metric)
        with self._lock:
            mapped = self._mappings.setdefault(fp, {})
            found = mapped.get(ms)
            if found is not None:
                return found
            new_fp = self._next_mapped_fp()
            mapped[ms] = new_fp
        _log.info(
            "fingerprint collision detected, mapping to new fingerprint old_fp=%s new_fp=%s metric=%r",
            fp, new_fp, ms,
        )
        return new_fp

    def _next_mapped_fp(self) -> int:
        self._highest_mapped_fp += 1
        if self._highest_mapped_fp > MAX_MAPPED_FP:
            raise RuntimeError(
                f"more than {MAX_MAPPED_FP} fingerprints mapped in collision detection"
            )
        return self._highest_mapped_fp