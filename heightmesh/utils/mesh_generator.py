"""Height field mesh generation utilities."""

import logging
import math
import operator
import time

import numpy as np
from stl import mesh

from .app_config import get_default_chunk_size, get_export_format, get_validate_chunks
from .mesh_validator import MeshValidator

logger = logging.getLogger(__name__)

UP_NORMAL = (0.0, 0.0, 1.0)

# Dedup table marker for grid samples that have no vertex yet.
_UNASSIGNED = -1
_MIN_CAPACITY = 64
_MAX_HEIGHT = float(np.finfo(np.float32).max)


class InvalidInput(ValueError):
    """Heights, shape or region violate the meshing contract."""


class HeightMeshBuffer:
    """
    Reusable output storage for generate().

    Positions and normals are (N, 3) float32, indices are a flat uint32
    sequence grouped in triangles. The stride_to_index table maps a linear
    grid offset to the vertex emitted for it (-1 when none was emitted).

    Backing arrays survive reset() and only grow, so meshing many chunks
    of the same size through one buffer stops allocating after the first
    call. A buffer must not be shared by concurrent generate() calls.
    """

    def __init__(self):
        self._positions = np.zeros((0, 3), dtype=np.float32)
        self._normals = np.zeros((0, 3), dtype=np.float32)
        self._indices = np.zeros(0, dtype=np.uint32)
        self._stride_to_index = np.zeros(0, dtype=np.int64)
        # Grid offset each vertex was emitted for, so reset() only clears those table entries
        self._vertex_strides = np.zeros(0, dtype=np.int64)
        self._table_size = 0
        self._num_vertices = 0
        self._num_indices = 0

    @property
    def positions(self):
        return self._positions[:self._num_vertices]

    @property
    def normals(self):
        return self._normals[:self._num_vertices]

    @property
    def indices(self):
        return self._indices[:self._num_indices]

    @property
    def stride_to_index(self):
        return self._stride_to_index[:self._table_size]

    @property
    def num_vertices(self):
        return self._num_vertices

    @property
    def num_triangles(self):
        return self._num_indices // 3

    @property
    def capacity(self):
        """Allocated sizes of the backing arrays."""
        return {
            'vertices': len(self._positions),
            'indices': len(self._indices),
            'stride_to_index': len(self._stride_to_index),
        }

    def reset(self, array_size=None):
        """
        Clear all outputs but keep the memory allocated for reuse.

        Args:
            array_size: Number of grid samples the dedup table must cover.
                None keeps the current table size.
        """
        # Every table entry outside _vertex_strides[:num_vertices] is already unassigned
        self._stride_to_index[self._vertex_strides[:self._num_vertices]] = _UNASSIGNED
        self._num_vertices = 0
        self._num_indices = 0

        if array_size is not None:
            array_size = int(array_size)
            if array_size > len(self._stride_to_index):
                self._stride_to_index = np.full(array_size, _UNASSIGNED, dtype=np.int64)
            self._table_size = array_size

    def reserve(self, num_vertices, num_indices):
        """Grow the backing arrays to hold at least the given counts."""
        if num_vertices > len(self._positions):
            capacity = max(num_vertices, 2 * len(self._positions), _MIN_CAPACITY)
            self._positions = _grow(self._positions, capacity, self._num_vertices)
            self._normals = _grow(self._normals, capacity, self._num_vertices)
            self._vertex_strides = _grow(self._vertex_strides, capacity, self._num_vertices)
        if num_indices > len(self._indices):
            capacity = max(num_indices, 2 * len(self._indices), _MIN_CAPACITY)
            self._indices = _grow(self._indices, capacity, self._num_indices)

    def to_mesh_data(self):
        """
        Copy the current mesh into plain lists.

        Returns:
            dict: Mesh data with vertices, normals, faces, bounds and metadata
        """
        positions = self.positions
        faces = self.indices.reshape(-1, 3)

        if len(positions) > 0:
            bounds = {
                'min': positions.min(axis=0).tolist(),
                'max': positions.max(axis=0).tolist()
            }
        else:
            bounds = {'min': None, 'max': None}

        return {
            'vertices': positions.tolist(),
            'normals': self.normals.tolist(),
            'faces': faces.tolist(),
            'bounds': bounds,
            'metadata': {
                'vertices_count': len(positions),
                'faces_count': len(faces)
            }
        }


def _grow(array, capacity, used):
    grown = np.zeros((capacity,) + array.shape[1:], dtype=array.dtype)
    grown[:used] = array[:used]
    return grown


def check_heights(heights, shape):
    """
    Validate a height array against a shape.

    Heights must be a flat, finite sequence whose values fit in float32,
    the precision of the emitted positions.

    Returns:
        numpy array: The heights as float64
    """
    try:
        values = np.asarray(heights, dtype=np.float64)
    except (TypeError, ValueError, OverflowError) as e:
        raise InvalidInput(f"Heights must be numeric: {e}") from e

    if values.ndim != 1:
        raise InvalidInput(f"Heights must be a flat sequence, got array of shape {values.shape}")

    expected = shape.total_elements()
    if len(values) != expected:
        raise InvalidInput(f"Expected {expected} height samples for {shape!r}, got {len(values)}")

    if not np.all(np.isfinite(values)):
        raise InvalidInput("Heights contain NaN or infinite samples")

    if len(values) > 0 and np.max(np.abs(values)) > _MAX_HEIGHT:
        raise InvalidInput(f"Heights exceed the float32 range of +/-{_MAX_HEIGHT:.6g}")

    return values


def _as_corner(corner, name):
    try:
        x, y = corner
        if isinstance(x, (bool, np.bool_)) or isinstance(y, (bool, np.bool_)):
            raise TypeError("booleans are not coordinates")
        return operator.index(x), operator.index(y)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{name} must be an (x, y) pair of integers, got {corner!r}") from e


def check_region(shape, min_corner, max_corner):
    """
    Validate an inclusive meshing region against a shape.

    Returns:
        tuple: ((min_x, min_y), (max_x, max_y)) as ints
    """
    minx, miny = _as_corner(min_corner, "min")
    maxx, maxy = _as_corner(max_corner, "max")
    width, height = shape.dims

    if minx < 0 or miny < 0:
        raise InvalidInput(f"Region min {(minx, miny)} has negative components")
    if minx > maxx or miny > maxy:
        raise InvalidInput(f"Region min {(minx, miny)} exceeds max {(maxx, maxy)}")
    if maxx >= width or maxy >= height:
        raise InvalidInput(f"Region max {(maxx, maxy)} outside {width}x{height} grid")

    return (minx, miny), (maxx, maxy)


def estimate_normal(heights, shape, x, y):
    """
    Estimate the unit surface normal at a grid sample.

    Uses central differences of the axis neighbours. Neighbours outside the
    grid are clamped to the edge, giving a one-sided difference there.

    The surface z = h(x, y) is the zero level set of f = z - h(x, y), whose
    gradient (-dh/dx, -dh/dy, 1) is orthogonal to it.

    Returns:
        tuple: (nx, ny, nz); exactly UP_NORMAL where the gradient is zero
    """
    width, height = shape.dims
    linearize = shape.linearize

    lx, rx = max(x - 1, 0), min(x + 1, width - 1)
    by, ty = max(y - 1, 0), min(y + 1, height - 1)

    dh_dx = 0.0
    if rx != lx:
        dh_dx = (heights[linearize((rx, y))] - heights[linearize((lx, y))]) / (rx - lx)
    dh_dy = 0.0
    if ty != by:
        dh_dy = (heights[linearize((x, ty))] - heights[linearize((x, by))]) / (ty - by)

    if dh_dx == 0.0 and dh_dy == 0.0:
        return UP_NORMAL

    # hypot scales internally, so steep gradients do not overflow
    length = math.hypot(dh_dx, dh_dy, 1.0)
    return (-dh_dx / length, -dh_dy / length, 1.0 / length)


def generate(heights, shape, min_corner, max_corner, buffer):
    """
    Generate a triangle mesh over the inclusive grid region [min, max].

    Every cell whose lower corner lies in [min, max) becomes two triangles,
    wound counter-clockwise when viewed from +Z. Vertices are (x, y, h)
    and are emitted once per grid sample, in order of first use.

    Args:
        heights: Flat sequence of height samples addressed by `shape`
        shape: Shape2 describing the layout of `heights`
        min_corner: Inclusive lower corner (x, y)
        max_corner: Inclusive upper corner (x, y)
        buffer: HeightMeshBuffer receiving the output

    Returns:
        HeightMeshBuffer: The buffer that was filled

    Raises:
        InvalidInput: If the inputs are malformed. The buffer is untouched.
    """
    heights = check_heights(heights, shape)
    min_corner, max_corner = check_region(shape, min_corner, max_corner)
    return _mesh_region(heights, shape, min_corner, max_corner, buffer)


def _mesh_region(heights, shape, min_corner, max_corner, buffer):
    # Inputs must already have passed check_heights() and check_region()
    (minx, miny), (maxx, maxy) = min_corner, max_corner

    t_start = time.perf_counter()
    buffer.reset(len(heights))

    cells_x = maxx - minx
    cells_y = maxy - miny
    if cells_x == 0 or cells_y == 0:
        logger.debug(f"Empty region {(minx, miny)}..{(maxx, maxy)}, no triangles generated")
        return buffer

    buffer.reserve((cells_x + 1) * (cells_y + 1), 6 * cells_x * cells_y)

    table = buffer._stride_to_index
    positions = buffer._positions
    normals = buffer._normals
    indices = buffer._indices
    vertex_strides = buffer._vertex_strides
    linearize = shape.linearize

    def vertex_index(x, y):
        stride = linearize((x, y))
        index = int(table[stride])
        if index != _UNASSIGNED:
            return index

        index = buffer._num_vertices
        positions[index] = (x, y, heights[stride])
        normals[index] = estimate_normal(heights, shape, x, y)
        table[stride] = index
        vertex_strides[index] = stride
        buffer._num_vertices = index + 1
        return index

    cursor = 0
    for y in range(miny, maxy):
        for x in range(minx, maxx):
            bl = vertex_index(x, y)
            br = vertex_index(x + 1, y)
            tl = vertex_index(x, y + 1)
            tr = vertex_index(x + 1, y + 1)

            # Two triangles per quad, CCW from above
            indices[cursor:cursor + 6] = (bl, br, tr, bl, tr, tl)
            cursor += 6

    buffer._num_indices = cursor

    logger.debug(
        f"Meshed {cells_x * cells_y} cells into {buffer.num_vertices} vertices "
        f"and {buffer.num_triangles} triangles in {time.perf_counter() - t_start:.4f}s"
    )
    return buffer


def iter_chunk_regions(dims, chunk_size):
    """
    Tile a grid with inclusive meshing regions.

    Adjacent regions share their border row or column, so the chunk meshes
    meet without gaps.

    Args:
        dims: Grid extent (width, height)
        chunk_size: Maximum number of cells along each axis per region

    Yields:
        tuple: ((min_x, min_y), (max_x, max_y))
    """
    chunk_size = int(chunk_size)
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")

    width, height = dims
    for y0 in range(0, max(height - 1, 1), chunk_size):
        y1 = min(y0 + chunk_size, height - 1)
        for x0 in range(0, max(width - 1, 1), chunk_size):
            x1 = min(x0 + chunk_size, width - 1)
            yield (x0, y0), (x1, y1)


def mesh_chunks(heights, shape, chunk_size=None, buffer=None, validate=None):
    """
    Mesh a whole height field chunk by chunk through a single buffer.

    Each chunk reads its normal neighbours from the full grid, so vertices
    on a shared border have identical positions and normals in both chunks.

    Args:
        heights: Flat sequence of height samples addressed by `shape`
        shape: Shape2 describing the layout of `heights`
        chunk_size: Cells per chunk side (None = configured default)
        buffer: HeightMeshBuffer to reuse (None = allocate one)
        validate: Run MeshValidator on each chunk (None = configured default)

    Yields:
        tuple: (min_corner, max_corner, mesh_data)
    """
    if chunk_size is None:
        chunk_size = get_default_chunk_size()
    if buffer is None:
        buffer = HeightMeshBuffer()
    if validate is None:
        validate = get_validate_chunks()

    heights = check_heights(heights, shape)
    validator = MeshValidator() if validate else None

    for min_corner, max_corner in iter_chunk_regions(shape.dims, chunk_size):
        _mesh_region(heights, shape, min_corner, max_corner, buffer)
        mesh_data = buffer.to_mesh_data()

        if validator:
            cells = (max_corner[0] - min_corner[0]) * (max_corner[1] - min_corner[1])
            report = validator.validate(mesh_data, expected_cells=cells)
            for message in report['errors'] + report['warnings']:
                logger.warning(f"Chunk {min_corner}..{max_corner}: {message}")

        yield min_corner, max_corner, mesh_data


def _mesh_arrays(mesh_data):
    vertices = np.array(mesh_data.get('vertices', []), dtype=np.float64).reshape(-1, 3)
    faces = np.array(mesh_data.get('faces', []), dtype=np.int64).reshape(-1, 3)
    if len(vertices) == 0 or len(faces) == 0:
        raise ValueError("No mesh data to export")
    return vertices, faces


def export_to_stl(mesh_data, filepath):
    """
    Export mesh to binary STL format.

    Args:
        mesh_data: Dict with 'vertices' and 'faces'
        filepath: Output STL file path
    """
    try:
        vertices, faces = _mesh_arrays(mesh_data)

        stl_mesh = mesh.Mesh(np.zeros(faces.shape[0], dtype=mesh.Mesh.dtype))
        stl_mesh.vectors[:] = vertices[faces]
        stl_mesh.save(filepath)

        return {
            'success': True,
            'filepath': filepath,
            'vertices': len(vertices),
            'faces': len(faces)
        }

    except Exception as e:
        raise Exception(f"Error exporting to STL: {str(e)}") from e


def export_to_obj(mesh_data, filepath):
    """
    Export mesh to Wavefront OBJ format.

    Writes one `v` and, when normals are present, one `vn` record per vertex.
    Faces reference both with 1-based indices.

    Args:
        mesh_data: Dict with 'vertices', 'faces' and optional 'normals'
        filepath: Output OBJ file path
    """
    try:
        vertices, faces = _mesh_arrays(mesh_data)
        normals = mesh_data.get('normals')
        if normals is None or len(normals) != len(vertices):
            normals = []

        with open(filepath, "w", encoding="utf-8") as f:
            f.write("o heightmesh\n")
            for x, y, z in vertices:
                f.write(f"v {x:.6f} {y:.6f} {z:.6f}\n")
            for nx, ny, nz in normals:
                f.write(f"vn {nx:.6f} {ny:.6f} {nz:.6f}\n")

            for a, b, c in faces + 1:
                if len(normals) > 0:
                    f.write(f"f {a}//{a} {b}//{b} {c}//{c}\n")
                else:
                    f.write(f"f {a} {b} {c}\n")

        return {
            'success': True,
            'filepath': filepath,
            'vertices': len(vertices),
            'faces': len(faces)
        }

    except Exception as e:
        raise Exception(f"Error exporting to OBJ: {str(e)}") from e


def export_mesh(mesh_data, filepath, fmt=None):
    """Export mesh in the given format ('stl' or 'obj', None = configured default)."""
    fmt = (fmt or get_export_format()).lower()
    if fmt == 'obj':
        return export_to_obj(mesh_data, filepath)
    if fmt == 'stl':
        return export_to_stl(mesh_data, filepath)
    raise ValueError(f"Unsupported export format: {fmt}")
