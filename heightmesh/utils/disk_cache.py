"""Simple JSON disk cache for generated chunk meshes."""

import hashlib
import json
import logging
import os
import time

import numpy as np

from .app_config import get_cache_dir, get_cache_max_age_seconds
from .mesh_generator import HeightMeshBuffer, check_heights, check_region, generate

logger = logging.getLogger(__name__)

CHUNK_NAMESPACE = "chunk"


def chunk_cache_key(heights, shape, min_corner, max_corner):
    """
    Build a cache key payload identifying one meshing call.

    Heights are digested rather than embedded, so the key stays small.
    """
    samples = np.ascontiguousarray(check_heights(heights, shape), dtype=np.float64)
    return {
        "shape": type(shape).__name__,
        "dims": list(shape.dims),
        "min": [int(v) for v in min_corner],
        "max": [int(v) for v in max_corner],
        "heights": hashlib.sha256(samples.tobytes()).hexdigest(),
    }


def _cache_file_path(namespace, key_payload, cache_dir=None):
    cache_dir = cache_dir or get_cache_dir()
    os.makedirs(cache_dir, exist_ok=True)
    serialized = json.dumps(key_payload, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(serialized.encode("utf-8")).hexdigest()
    return os.path.join(cache_dir, f"{namespace}_{digest}.json")


def load_json_cache(namespace, key_payload, max_age_seconds=None, cache_dir=None):
    """Load a cached JSON object if present and not expired."""
    path = _cache_file_path(namespace, key_payload, cache_dir=cache_dir)
    if not os.path.exists(path):
        return None

    if max_age_seconds is not None:
        age_seconds = time.time() - os.path.getmtime(path)
        if age_seconds > max_age_seconds:
            return None

    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable cache file {path}: {e}")
        return None


def save_json_cache(namespace, key_payload, value, cache_dir=None):
    """Persist a JSON-serializable value in the disk cache."""
    path = _cache_file_path(namespace, key_payload, cache_dir=cache_dir)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(value, f)
    return path


def cached_mesh_data(heights, shape, min_corner, max_corner, buffer=None, cache_dir=None, max_age_seconds=None):
    """
    Return mesh data for a region, meshing it only on a cache miss.

    Args:
        heights: Flat sequence of height samples addressed by `shape`
        shape: Shape2 describing the layout of `heights`
        min_corner: Inclusive lower corner (x, y)
        max_corner: Inclusive upper corner (x, y)
        buffer: HeightMeshBuffer to mesh into on a miss (None = allocate one)
        cache_dir: Cache directory (None = configured default)
        max_age_seconds: Expiry for cached entries (None = configured default)

    Returns:
        dict: Mesh data as produced by HeightMeshBuffer.to_mesh_data()
    """
    if max_age_seconds is None:
        max_age_seconds = get_cache_max_age_seconds()

    heights = check_heights(heights, shape)
    min_corner, max_corner = check_region(shape, min_corner, max_corner)
    key_payload = chunk_cache_key(heights, shape, min_corner, max_corner)
    cached = load_json_cache(CHUNK_NAMESPACE, key_payload, max_age_seconds=max_age_seconds, cache_dir=cache_dir)
    if cached is not None:
        logger.debug(f"Cache hit for chunk {key_payload['min']}..{key_payload['max']}")
        return cached

    if buffer is None:
        buffer = HeightMeshBuffer()
    generate(heights, shape, min_corner, max_corner, buffer)
    mesh_data = buffer.to_mesh_data()
    save_json_cache(CHUNK_NAMESPACE, key_payload, mesh_data, cache_dir=cache_dir)
    return mesh_data
