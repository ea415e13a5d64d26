"""
Derived grid indices for query results.

Operators read positions as MGRS strings; downstream tooling buckets by H3 cell. Both are
derived on output only and never influence containment or distance decisions.
A conversion failure (e.g. MGRS is undefined in the polar UPS zones for some inputs)
yields `None` instead of failing the whole query.
"""

from __future__ import annotations

import logging
from functools import lru_cache

import h3
import mgrs

logger = logging.getLogger(__name__)


@lru_cache
def _mgrs_converter() -> mgrs.MGRS:
    return mgrs.MGRS()


def to_mgrs(lat: float, lon: float, precision: int = 5) -> str | None:
    try:
        value = _mgrs_converter().toMGRS(float(lat), float(lon), MGRSPrecision=int(precision))
    except Exception as e:
        logger.debug("MGRS conversion failed for lat=%.6f lon=%.6f: %s", lat, lon, e)
        return None
    if isinstance(value, bytes):
        value = value.decode("ascii")
    return str(value)


def to_h3(lat: float, lon: float, resolution: int = 9) -> str | None:
    try:
        return h3.latlng_to_cell(float(lat), float(lon), int(resolution))
    except Exception as e:
        logger.debug("H3 conversion failed for lat=%.6f lon=%.6f: %s", lat, lon, e)
        return None
