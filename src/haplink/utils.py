from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Iterable, Mapping, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def phred_to_error_prob(q: float) -> float:
    """Convert a PHRED-scaled quality into the expected fractional error of a basecall."""
    # Guard against negative values (can occur if qualities are missing).
    if q <= 0:
        return 1.0
    return 10 ** (-q / 10)


def error_prob_to_phred(p: float, *, cap: float = 99.0) -> float:
    if p <= 0:
        return cap
    return clamp(-10.0 * math.log10(p), 0.0, cap)


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def scalar_info(info: Mapping[str, Any]) -> dict:
    """Flatten annotation values to str/int/float/bool scalars."""
    out = {}
    for key, value in info.items():
        if isinstance(value, (list, tuple)) and len(value) == 1:
            out[key] = value[0]
        elif isinstance(value, (list, tuple)):
            out[key] = ",".join(str(x) for x in value)
        elif value is None:
            out[key] = True  # VCF flag
        elif isinstance(value, (str, int, float, bool)):
            out[key] = value
        else:
            out[key] = str(value)
    return out


def chunked(iterable: Iterable[T], n: int) -> Iterable[list[T]]:
    chunk: list[T] = []
    for item in iterable:
        chunk.append(item)
        if len(chunk) >= n:
            yield chunk
            chunk = []
    if chunk:
        yield chunk
