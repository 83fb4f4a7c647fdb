"""Height field sampling helpers."""

import math

import numpy as np


def sample_height_field(shape, func, dtype=np.float32):
    """
    Fill a flat height array by evaluating `func` at every grid sample.

    Args:
        shape: Shape2 addressing the output array
        func: Callable taking an (x, y) grid coordinate and returning a height
        dtype: Output dtype

    Returns:
        numpy array: Heights in the layout described by `shape`
    """
    heights = np.empty(shape.total_elements(), dtype=dtype)
    for i in range(len(heights)):
        heights[i] = func(shape.delinearize(i))
    return heights


def paraboloid(coord):
    """Distance from the grid origin, sqrt(x^2 + y^2)."""
    x, y = coord
    return math.sqrt(x * x + y * y)


def into_domain(array_dim, coord):
    """Map a grid coordinate in [0, array_dim] onto [-1, 1]."""
    x, y = coord
    return (
        2.0 * x / array_dim - 1.0,
        2.0 * y / array_dim - 1.0,
    )


def sine2d(n, point):
    """Sum of two sine waves with `n` half-periods across [-1, 1]."""
    x, y = point
    return math.sin((x / 2.0) * n * math.pi) + math.sin((y / 2.0) * n * math.pi)


def sine_terrain(array_dim, n=5.0, amplitude=10.0):
    """
    Build a rolling test terrain for an `array_dim`-cell chunk.

    Returns:
        callable: (x, y) grid coordinate -> height
    """
    def height_at(coord):
        return amplitude * sine2d(n, into_domain(array_dim, coord))

    return height_at
