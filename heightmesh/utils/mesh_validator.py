"""Mesh validation for generated height field surfaces."""

import logging
import time

import numpy as np
from scipy.spatial import cKDTree

logger = logging.getLogger(__name__)


class MeshValidator:
    """
    Validate mesh geometry produced from a height field.

    Checks for common issues:
    - Face indices outside the vertex range
    - Face count not matching the meshed cell count
    - Duplicate vertices
    - Normals that are non-finite or not unit length
    - Degenerate faces (zero-area triangles)
    - Faces wound away from +Z
    - Edges shared by more than two faces

    Index and normal problems are errors; the rest are warnings.
    """

    def __init__(self, normal_tolerance=1e-4, duplicate_tolerance=1e-6):
        """
        Initialize mesh validator.

        Args:
            normal_tolerance: Allowed deviation of a normal's length from 1
            duplicate_tolerance: Distance under which two vertices count as duplicates
        """
        self.normal_tolerance = normal_tolerance
        self.duplicate_tolerance = duplicate_tolerance
        self.warnings = []
        self.errors = []

    def validate(self, mesh_data, expected_cells=None):
        """
        Validate mesh data.

        Args:
            mesh_data: Dict with 'vertices', 'faces' and optional 'normals'
            expected_cells: Number of grid cells meshed, if known

        Returns:
            dict: {
                'is_valid': bool,
                'warnings': list of warning messages,
                'errors': list of error messages,
                'stats': dict of counts found by the checks
            }
        """
        t_start = time.perf_counter()
        self.warnings = []
        self.errors = []

        vertices = np.array(mesh_data.get('vertices', []), dtype=np.float64).reshape(-1, 3)
        faces = np.array(mesh_data.get('faces', []), dtype=np.int64).reshape(-1, 3)
        normals = mesh_data.get('normals')

        stats = {
            'vertices': len(vertices),
            'faces': len(faces),
            'out_of_range_indices': self._check_index_range(vertices, faces),
        }

        if expected_cells is not None and len(faces) != 2 * expected_cells:
            self.errors.append(f"Expected {2 * expected_cells} faces for {expected_cells} cells, found {len(faces)}")

        if not np.all(np.isfinite(vertices)):
            self.errors.append("Vertex positions contain NaN or infinite values")

        if normals is not None:
            normals = np.array(normals, dtype=np.float64).reshape(-1, 3)
            stats['bad_normals'] = self._check_normals(vertices, normals)

        stats['duplicate_vertices'] = self._count_duplicate_vertices(vertices)
        if stats['duplicate_vertices'] > 0:
            self.warnings.append(f"{stats['duplicate_vertices']} duplicate vertices")

        # Geometry checks need valid indices
        if stats['out_of_range_indices'] == 0:
            stats['degenerate_faces'] = self._count_degenerate_faces(vertices, faces)
            if stats['degenerate_faces'] > 0:
                self.warnings.append(f"{stats['degenerate_faces']} degenerate face(s)")

            stats['downward_faces'] = self._check_face_winding(vertices, faces)
            if stats['downward_faces'] > 0:
                self.warnings.append(f"{stats['downward_faces']} face(s) wound away from +Z")

        stats['non_manifold_edges'] = self._check_manifold_edges(faces)
        if stats['non_manifold_edges'] > 0:
            self.warnings.append(f"{stats['non_manifold_edges']} edge(s) shared by more than two faces")

        logger.debug(f"Validated mesh with {len(faces)} faces in {time.perf_counter() - t_start:.3f}s")

        return {
            'is_valid': not self.errors,
            'warnings': self.warnings,
            'errors': self.errors,
            'stats': stats
        }

    def _check_index_range(self, vertices, faces):
        """Count face indices that do not refer to a vertex."""
        if len(faces) == 0:
            return 0

        bad = int(np.count_nonzero((faces < 0) | (faces >= len(vertices))))
        if bad > 0:
            self.errors.append(f"{bad} face index(es) outside vertex range 0..{len(vertices) - 1}")
        return bad

    def _check_normals(self, vertices, normals):
        """
        Check that there is one finite unit normal per vertex.

        Returns:
            int: Number of normals failing the check
        """
        if len(normals) != len(vertices):
            self.errors.append(f"{len(normals)} normals for {len(vertices)} vertices")
            return abs(len(normals) - len(vertices))

        if len(normals) == 0:
            return 0

        finite = np.all(np.isfinite(normals), axis=1)
        lengths = np.linalg.norm(normals, axis=1)
        bad = int(np.count_nonzero(~finite | (np.abs(lengths - 1.0) > self.normal_tolerance)))
        if bad > 0:
            self.errors.append(f"{bad} normal(s) are not finite unit vectors")
        return bad

    def _count_duplicate_vertices(self, vertices):
        """
        Count vertices lying on top of an earlier vertex, using a KD-tree.

        Returns:
            int: Number of vertices that duplicate another
        """
        if len(vertices) < 2:
            return 0

        tree = cKDTree(vertices)
        pairs = tree.query_pairs(self.duplicate_tolerance, output_type='ndarray')
        if len(pairs) == 0:
            return 0

        # Each duplicate is counted once, however many partners it has
        return len(np.unique(pairs.max(axis=1)))

    def _count_degenerate_faces(self, vertices, faces):
        """Count faces with zero area."""
        if len(faces) == 0:
            return 0

        v0 = vertices[faces[:, 0]]
        v1 = vertices[faces[:, 1]]
        v2 = vertices[faces[:, 2]]
        areas = np.linalg.norm(np.cross(v1 - v0, v2 - v0), axis=1) / 2.0
        return int(np.count_nonzero(areas <= 1e-10))

    def _check_manifold_edges(self, faces):
        """
        Count edges shared by more than two faces.

        Edges on the outline of a height field surface belong to a single
        face, so only over-shared edges are reported.

        Args:
            faces: numpy array of face indices (M, 3)

        Returns:
            int: Number of non-manifold edges
        """
        if len(faces) == 0:
            return 0

        # Each triangle has 3 edges: (v0,v1), (v1,v2), (v2,v0)
        edges = np.vstack([
            np.sort(faces[:, [0, 1]], axis=1),
            np.sort(faces[:, [1, 2]], axis=1),
            np.sort(faces[:, [2, 0]], axis=1)
        ])
        _, counts = np.unique(edges, axis=0, return_counts=True)
        return int(np.count_nonzero(counts > 2))

    def _check_face_winding(self, vertices, faces):
        """
        Check face winding consistency (all faces should be CCW from +Z).

        A height field surface never folds over, so every non-degenerate
        face normal must have a positive Z component.

        Args:
            vertices: numpy array of vertices (N, 3)
            faces: numpy array of face indices (M, 3)

        Returns:
            int: Number of faces with incorrect winding
        """
        if len(faces) == 0 or len(vertices) == 0:
            return 0

        v0 = vertices[faces[:, 0]]
        v1 = vertices[faces[:, 1]]
        v2 = vertices[faces[:, 2]]
        normals = np.cross(v1 - v0, v2 - v0)
        lengths = np.linalg.norm(normals, axis=1)

        # Degenerate faces are reported separately
        return int(np.count_nonzero((lengths >= 1e-10) & (normals[:, 2] <= 0)))
