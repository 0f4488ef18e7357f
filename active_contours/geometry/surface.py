"""
Closed 3D triangle-mesh boundary.

Vertices live in an arena: slot indices stay valid across steps, removed
vertices are tombstoned (``_alive`` False, ``_neighbors`` None) and their
slots go to a free list for re-use. Faces removed by an edge collapse are
set to None. :meth:`Surface.compact` packs everything back and returns the
old -> new index map.
"""

import logging
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.spatial.distance import pdist, squareform
from skimage import measure

from ..errors import ShapeSourceError, UnsupportedDimensionError
from ..forces.terms import (
    axis_constraint_scale,
    balloon_force,
    volume_constraint_scale
)
from .boundary import (
    BaseBoundary,
    BoundaryConfig,
    TopologyResult,
    TopologyStatus
)
from .convergence import SlidingWindow

logger = logging.getLogger(__name__)

MAX_RESAMPLE_PASSES = 100
"""Safety cap on the pass-until-stable resampling loop."""

MIN_VERTICES = 4
"""Edge collapses stop once a surface is down to a tetrahedron."""

RAY_EPSILON = 1e-9

# Sub-pixel offset of the z-rays used for rasterisation, so that rays do not
# run exactly along shared triangle edges
RAY_JITTER = np.array([1.234e-7, 2.345e-7])


class Surface(BaseBoundary):
    """
    Deformable closed triangle mesh.

    Positions are in world units; image sampling divides them by
    ``pixel_size`` (x, y, z) first.

    Example:
        >>> surface = Surface.from_mask(mask, BoundaryConfig(resolution=2.0))
        >>> surface.resample()
        >>> surface.dimension(2)  # enclosed volume
    """

    dim = 3
    feedback_gain = 1.0

    def __init__(
        self,
        config: BoundaryConfig,
        vertices: Optional[np.ndarray] = None,
        faces: Optional[np.ndarray] = None,
        window: Optional[SlidingWindow] = None,
        pixel_size: Sequence[float] = (1.0, 1.0, 1.0)
    ):
        """
        Args:
            config: Shared boundary configuration
            vertices: Vertex positions (N, 3); copied
            faces: Triangles (F, 3) of vertex indices
            window: Convergence window (fresh one if None)
            pixel_size: World size of a voxel along x, y, z
        """
        super().__init__(config, window)
        self.pixel_size = np.asarray(pixel_size, dtype=np.float64)
        if self.pixel_size.shape != (3,) or np.any(self.pixel_size <= 0):
            raise ValueError(f"pixel_size must be 3 positive values, got {pixel_size}")

        self._alive = np.zeros(0, dtype=bool)
        self._free: List[int] = []
        self._neighbors: List[Optional[Set[int]]] = []
        self._faces: List[Optional[List[int]]] = []
        self._vertex_faces: List[Set[int]] = []

        if vertices is not None:
            self._build(vertices, faces)

    def _build(self, vertices: np.ndarray, faces: np.ndarray):
        self._allocate(vertices)
        n = len(self._positions)
        self._alive = np.ones(n, dtype=bool)
        self._free = []
        self._neighbors = [set() for _ in range(n)]
        self._faces = []
        self._vertex_faces = [set() for _ in range(n)]
        for face in np.asarray(faces, dtype=np.int64):
            self._add_face([int(v) for v in face])

    # ------------------------------------------------------------------
    # Shape sources
    # ------------------------------------------------------------------

    @classmethod
    def from_mesh(
        cls,
        vertices: np.ndarray,
        faces: np.ndarray,
        config: BoundaryConfig,
        window: Optional[SlidingWindow] = None,
        pixel_size: Sequence[float] = (1.0, 1.0, 1.0)
    ) -> 'Surface':
        """
        Seed a surface from an explicit closed triangle mesh.

        Raises:
            ShapeSourceError: On malformed arrays, fewer than 4 vertices or
                faces, or faces referring to missing vertices
        """
        if vertices is None or faces is None:
            raise ShapeSourceError("A mesh needs both vertices and faces")
        vertices = np.asarray(vertices, dtype=np.float64)
        faces = np.asarray(faces)

        if vertices.ndim != 2 or vertices.shape[1] != 3:
            raise ShapeSourceError(f"Vertices must be an (N, 3) array, got shape {vertices.shape}")
        if faces.ndim != 2 or faces.shape[1] != 3:
            raise ShapeSourceError(f"Faces must be an (F, 3) array, got shape {faces.shape}")
        if not np.issubdtype(faces.dtype, np.integer):
            raise ShapeSourceError(f"Faces must hold integer indices, got {faces.dtype}")
        if len(vertices) < MIN_VERTICES or len(faces) < MIN_VERTICES:
            raise ShapeSourceError(
                f"A closed mesh needs at least {MIN_VERTICES} vertices and faces, "
                f"got {len(vertices)} and {len(faces)}"
            )
        if faces.min() < 0 or faces.max() >= len(vertices):
            raise ShapeSourceError("Faces refer to vertices that do not exist")
        if not np.all(np.isfinite(vertices)):
            raise ShapeSourceError("Vertices contain non-finite coordinates")

        return cls(config, vertices, faces, window=window, pixel_size=pixel_size)

    @classmethod
    def from_mask(
        cls,
        mask: np.ndarray,
        config: BoundaryConfig,
        window: Optional[SlidingWindow] = None,
        pixel_size: Sequence[float] = (1.0, 1.0, 1.0)
    ) -> 'Surface':
        """
        Seed a surface from a 3D binary mask with marching cubes.

        The mask is padded by one voxel so that objects touching the volume
        border still give a closed surface.

        Args:
            mask: Boolean volume (D, H, W), indexed [z, y, x]
            config: Boundary configuration
            window: Convergence window (fresh one if None)
            pixel_size: World size of a voxel along x, y, z

        Raises:
            ShapeSourceError: If the mask is not 3D or is empty
        """
        if mask is None:
            raise ShapeSourceError("No mask given")
        mask = np.asarray(mask, dtype=bool)
        if mask.ndim != 3:
            raise ShapeSourceError(f"Surface masks must be 3D, got shape {mask.shape}")
        if not mask.any():
            raise ShapeSourceError("Mask is empty")

        padded = np.pad(mask.astype(np.float64), 1)
        verts, faces, _, _ = measure.marching_cubes(padded, level=0.5)

        # (z, y, x) voxel coordinates -> (x, y, z) world coordinates
        verts = (verts - 1.0)[:, ::-1] * np.asarray(pixel_size, dtype=np.float64)
        logger.debug("[Surface] Marching cubes: %d vertices, %d faces", len(verts), len(faces))
        return cls.from_mesh(verts, faces, config, window=window, pixel_size=pixel_size)

    def mesh(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Packed copy of the live mesh.

        Returns:
            (vertices, faces): (N, 3) positions and (F, 3) indices into them
        """
        live = self._active_indices()
        remap = np.full(len(self._positions), -1, dtype=np.int64)
        remap[live] = np.arange(len(live))
        faces = self._face_array()
        return self._positions[live].copy(), remap[faces] if len(faces) else faces

    def clone(self) -> 'Surface':
        vertices, faces = self.mesh()
        return Surface(
            self.config, vertices, faces,
            window=self._new_window(), pixel_size=self.pixel_size
        )

    # ------------------------------------------------------------------
    # Arena
    # ------------------------------------------------------------------

    def _active_indices(self) -> np.ndarray:
        return np.flatnonzero(self._alive)

    def _sampling_coords(self, indices: np.ndarray) -> np.ndarray:
        return self._positions[indices] / self.pixel_size

    def _grow(self):
        old = len(self._positions)
        extra = max(old, 16)

        def pad(array):
            return np.vstack([array, np.zeros((extra, 3))])

        self._positions = pad(self._positions)
        self._driving = pad(self._driving)
        self._feedback = pad(self._feedback)
        self._normals = pad(self._normals)
        self._alive = np.concatenate([self._alive, np.zeros(extra, dtype=bool)])
        self._neighbors.extend([None] * extra)
        self._vertex_faces.extend(set() for _ in range(extra))
        # pop() hands out the lowest new slot first
        self._free.extend(range(old + extra - 1, old - 1, -1))

    def _add_vertex(self, position: np.ndarray) -> int:
        if not self._free:
            self._grow()
        index = self._free.pop()
        self._positions[index] = position
        self._driving[index] = 0.0
        self._feedback[index] = 0.0
        self._normals[index] = 0.0
        self._alive[index] = True
        self._neighbors[index] = set()
        self._vertex_faces[index] = set()
        return index

    def _remove_vertex(self, index: int):
        self._alive[index] = False
        self._neighbors[index] = None
        self._vertex_faces[index] = set()
        self._positions[index] = 0.0
        self._driving[index] = 0.0
        self._feedback[index] = 0.0
        self._normals[index] = 0.0
        self._free.append(index)

    def _add_face(self, face: List[int]) -> int:
        index = len(self._faces)
        self._faces.append(face)
        for k in range(3):
            a, b = face[k], face[(k + 1) % 3]
            self._vertex_faces[a].add(index)
            self._link(a, b)
        return index

    def _link(self, a: int, b: int):
        self._neighbors[a].add(b)
        self._neighbors[b].add(a)

    def _unlink(self, a: int, b: int):
        self._neighbors[a].discard(b)
        self._neighbors[b].discard(a)

    def _face_array(self) -> np.ndarray:
        faces = [face for face in self._faces if face is not None]
        return np.array(faces, dtype=np.int64).reshape(-1, 3)

    def _edge_array(self) -> np.ndarray:
        edges = [
            (i, j)
            for i, neighbors in enumerate(self._neighbors)
            if neighbors is not None
            for j in neighbors
            if i < j
        ]
        return np.array(edges, dtype=np.int64).reshape(-1, 2)

    def neighbors(self, index: int) -> List[int]:
        """Topological neighbours of a live vertex."""
        neighbors = self._neighbors[index]
        if neighbors is None:
            raise IndexError(f"Vertex {index} has been removed")
        return sorted(neighbors)

    @property
    def n_faces(self) -> int:
        return sum(1 for face in self._faces if face is not None)

    def compact(self) -> Dict[int, int]:
        """
        Drop tombstones and renumber vertices and faces contiguously.

        Returns:
            Map from old to new vertex index (live vertices only)
        """
        live = self._active_indices()
        mapping = {int(old): new for new, old in enumerate(live)}
        faces = [[mapping[v] for v in face] for face in self._faces if face is not None]

        driving = self._driving[live].copy()
        feedback = self._feedback[live].copy()
        self._build(self._positions[live], np.array(faces, dtype=np.int64).reshape(-1, 3))
        self._driving = driving
        self._feedback = feedback
        return mapping

    # ------------------------------------------------------------------
    # Shape measures
    # ------------------------------------------------------------------

    def _triangles(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        faces = self._face_array()
        return (
            self._positions[faces[:, 0]],
            self._positions[faces[:, 1]],
            self._positions[faces[:, 2]]
        )

    def signed_volume(self) -> float:
        """Divergence-theorem volume, positive when faces wind outward."""
        v0, v1, v2 = self._triangles()
        if len(v0) == 0:
            return 0.0
        return float(np.einsum('ij,ij->i', v0, np.cross(v1, v2)).sum() / 6.0)

    def dimension(self, order: int) -> float:
        """
        Args:
            order: 0 = number of vertices, 1 = surface area, 2 = enclosed volume

        Raises:
            UnsupportedDimensionError: For any other order
        """
        if order not in (0, 1, 2):
            raise UnsupportedDimensionError(order)
        if order == 0:
            return float(self._alive.sum())
        if order == 1:
            v0, v1, v2 = self._triangles()
            return float(0.5 * np.linalg.norm(np.cross(v1 - v0, v2 - v0), axis=1).sum())
        return abs(self.signed_volume())

    @property
    def volume(self) -> float:
        return self.dimension(2)

    @property
    def convergence_measure(self) -> float:
        return self.dimension(2)

    def _update_normals(self):
        normals = np.zeros_like(self._positions)
        faces = self._face_array()
        if len(faces):
            v0, v1, v2 = self._triangles()
            # cross product length is twice the face area: area weighting
            face_normals = np.cross(v1 - v0, v2 - v0)
            for k in range(3):
                np.add.at(normals, faces[:, k], face_normals)
            lengths = np.linalg.norm(normals, axis=1)
            nonzero = lengths > 0
            normals[nonzero] /= lengths[nonzero][:, None]
            if self.signed_volume() < 0:
                normals = -normals
        self._normals = normals

    def major_axis(self) -> np.ndarray:
        """Unnormalised vector joining the two most distant vertices."""
        points = self._positions[self._active_indices()]
        if len(points) < 2:
            return np.zeros(3)
        distances = squareform(pdist(points))
        i, j = np.unravel_index(np.argmax(distances), distances.shape)
        return points[i] - points[j]

    def curvature(self, index: int) -> float:
        """
        Signed umbrella curvature at a vertex.

        Length of the mean vector from the vertex to its neighbours, positive
        where that vector points along the outward normal.
        """
        neighbors = self.neighbors(index)
        if not neighbors:
            return 0.0
        umbrella = (self._positions[neighbors] - self._positions[index]).mean(axis=0)
        normal = self._fresh_normals()[index]
        return float(np.linalg.norm(umbrella) * np.sign(np.dot(umbrella, normal)))

    def penetration_depth(self, point: np.ndarray, center: Optional[np.ndarray] = None) -> float:
        """
        Ray-parity containment test (Moller-Trumbore against every face).

        The ray starts at ``point`` and leaves away from ``center``.

        Returns:
            Smallest distance from the point to the plane of a crossed
            triangle when inside, 0.0 otherwise
        """
        v0, v1, v2 = self._triangles()
        if len(v0) == 0:
            return 0.0

        p = np.asarray(point, dtype=np.float64)
        c = self.bounding_sphere().center if center is None else np.asarray(center, dtype=np.float64)
        direction = p - c
        norm = np.linalg.norm(direction)
        direction = np.array([1.0, 0.0, 0.0]) if norm == 0 else direction / norm

        e1 = v1 - v0
        e2 = v2 - v0
        h = np.cross(direction, e2)
        det = np.einsum('ij,ij->i', e1, h)
        valid = np.abs(det) > RAY_EPSILON

        with np.errstate(divide='ignore', invalid='ignore'):
            inv = np.where(valid, 1.0 / det, 0.0)
            s = p - v0
            u = inv * np.einsum('ij,ij->i', s, h)
            q = np.cross(s, e1)
            v = inv * (q @ direction)
            t = inv * np.einsum('ij,ij->i', e2, q)

        hits = valid & (u >= 0) & (v >= 0) & (u + v <= 1) & (t > RAY_EPSILON)
        if int(hits.sum()) % 2 == 0:
            return 0.0

        normals = np.cross(e1[hits], e2[hits])
        lengths = np.linalg.norm(normals, axis=1)
        ok = lengths > 0
        if not ok.any():
            return 0.0
        distances = np.abs(np.einsum('ij,ij->i', s[hits][ok], normals[ok])) / lengths[ok]
        return float(distances.min())

    def to_mask(self, shape: Tuple[int, ...]) -> np.ndarray:
        """
        Voxelise the enclosed volume by z-ray parity.

        Args:
            shape: Volume shape (D, H, W), indexed [z, y, x] in voxel units

        Returns:
            mask: Boolean array of ``shape``
        """
        if len(shape) != 3:
            raise ValueError(f"Surface masks are 3D, got shape {shape}")
        depth, height, width = shape
        mask = np.zeros(shape, dtype=bool)

        faces = self._face_array()
        if len(faces) == 0:
            return mask
        voxels = self._positions / self.pixel_size

        rows, cols, heights = [], [], []
        for face in faces:
            a, b, c = voxels[face]
            lo = np.maximum(np.ceil(np.minimum(np.minimum(a, b), c)[:2]), 0).astype(int)
            hi = np.minimum(np.floor(np.maximum(np.maximum(a, b), c)[:2]), [width - 1, height - 1]).astype(int)
            if np.any(hi < lo):
                continue

            xs, ys = np.meshgrid(np.arange(lo[0], hi[0] + 1), np.arange(lo[1], hi[1] + 1))
            px = xs.ravel() + RAY_JITTER[0]
            py = ys.ravel() + RAY_JITTER[1]

            denom = (b[1] - c[1]) * (a[0] - c[0]) + (c[0] - b[0]) * (a[1] - c[1])
            if abs(denom) < RAY_EPSILON:
                continue
            w0 = ((b[1] - c[1]) * (px - c[0]) + (c[0] - b[0]) * (py - c[1])) / denom
            w1 = ((c[1] - a[1]) * (px - c[0]) + (a[0] - c[0]) * (py - c[1])) / denom
            w2 = 1.0 - w0 - w1
            inside = (w0 >= 0) & (w1 >= 0) & (w2 >= 0)
            if not inside.any():
                continue

            rows.append(ys.ravel()[inside])
            cols.append(xs.ravel()[inside])
            heights.append(w0[inside] * a[2] + w1[inside] * b[2] + w2[inside] * c[2])

        if not rows:
            return mask

        rows = np.concatenate(rows)
        cols = np.concatenate(cols)
        heights = np.concatenate(heights)
        order = np.lexsort((heights, cols, rows))
        rows, cols, heights = rows[order], cols[order], heights[order]

        pixel_keys = rows * width + cols
        starts = np.flatnonzero(np.r_[True, pixel_keys[1:] != pixel_keys[:-1]])
        ends = np.r_[starts[1:], len(pixel_keys)]

        for start, end in zip(starts, ends):
            crossings = heights[start:end]
            for z_in, z_out in zip(crossings[0::2], crossings[1::2]):
                z0 = max(int(np.ceil(z_in)), 0)
                z1 = min(int(np.ceil(z_out)), depth)
                if z1 > z0:
                    mask[z0:z1, rows[start], cols[start]] = True
        return mask

    # ------------------------------------------------------------------
    # Topology / resampling
    # ------------------------------------------------------------------

    def _split_edge(self, a: int, b: int) -> int:
        middle = self._add_vertex((self._positions[a] + self._positions[b]) * 0.5)
        for face_index in list(self._vertex_faces[a] & self._vertex_faces[b]):
            face = self._faces[face_index]
            # rotate to (x, y, opposite) with x -> y the split edge, keeping winding
            k = next(k for k in range(3) if {face[k], face[(k + 1) % 3]} == {a, b})
            x, y, opposite = face[k], face[(k + 1) % 3], face[(k + 2) % 3]

            self._faces[face_index] = [x, middle, opposite]
            self._vertex_faces[y].discard(face_index)
            self._vertex_faces[middle].add(face_index)
            self._add_face([middle, y, opposite])

        self._unlink(a, b)
        self._link(a, middle)
        self._link(middle, b)
        return middle

    def _collapse_edge(self, a: int, b: int) -> bool:
        common = self._neighbors[a] & self._neighbors[b]
        shared = self._vertex_faces[a] & self._vertex_faces[b]
        # link condition: exactly the two opposite vertices, which keep degree >= 3
        if len(common) != 2 or len(shared) != 2:
            return False
        if any(len(self._neighbors[c]) < 4 for c in common):
            return False

        self._positions[a] = (self._positions[a] + self._positions[b]) * 0.5

        for face_index in shared:
            for v in self._faces[face_index]:
                self._vertex_faces[v].discard(face_index)
            self._faces[face_index] = None

        for face_index in self._vertex_faces[b]:
            self._faces[face_index] = [a if v == b else v for v in self._faces[face_index]]
            self._vertex_faces[a].add(face_index)

        for n in self._neighbors[b]:
            self._neighbors[n].discard(b)
            if n != a:
                self._link(a, n)
        self._neighbors[a].discard(b)
        self._remove_vertex(b)
        return True

    def resample(
        self,
        min_factor: Optional[float] = None,
        max_factor: Optional[float] = None
    ) -> TopologyResult:
        """
        Split edges longer than ``rho * max_factor`` and collapse edges
        shorter than ``rho * min_factor`` until every edge fits.

        Collapses that would break the manifold (link condition) are
        skipped, and no collapse happens once 4 vertices remain.

        Returns:
            TopologyResult: VANISHED when the volume is below
            config.min_area, UNCHANGED otherwise
        """
        min_factor, max_factor = self._factors(min_factor, max_factor)

        if self.dimension(2) < self.config.min_area:
            logger.info("[Surface] Volume below %.3g, %r vanishes", self.config.min_area, self)
            return TopologyResult(status=TopologyStatus.VANISHED, parent=self)

        min_length = self.config.resolution * min_factor
        max_length = self.config.resolution * max_factor

        passes = 0
        splits = collapses = 0
        changed = True
        while changed:
            changed = False
            passes += 1
            if passes > MAX_RESAMPLE_PASSES:
                logger.warning("[Surface] Resampling did not stabilise after %d passes", MAX_RESAMPLE_PASSES)
                break

            for a, b in self._edge_array().tolist():
                if not (self._alive[a] and self._alive[b]) or b not in self._neighbors[a]:
                    continue
                length = np.linalg.norm(self._positions[a] - self._positions[b])

                if length > max_length:
                    self._split_edge(a, b)
                    splits += 1
                    changed = True
                elif length < min_length and self._alive.sum() > MIN_VERTICES:
                    if self._collapse_edge(a, b):
                        collapses += 1
                        changed = True

        self.invalidate()
        logger.debug(
            "[Surface] Resampled in %d passes: %d splits, %d collapses, %d vertices",
            passes, splits, collapses, self.n_points
        )
        return TopologyResult(status=TopologyStatus.UNCHANGED, parent=self)

    # ------------------------------------------------------------------
    # Forces
    # ------------------------------------------------------------------

    def compute_internal_forces(self, weight: float):
        """Accumulate ``weight * (mean(neighbours) - vertex)`` at every vertex."""
        edges = self._edge_array()
        if len(edges) == 0:
            return
        sums = np.zeros_like(self._positions)
        counts = np.zeros(len(self._positions))
        np.add.at(sums, edges[:, 0], self._positions[edges[:, 1]])
        np.add.at(sums, edges[:, 1], self._positions[edges[:, 0]])
        np.add.at(counts, edges[:, 0], 1)
        np.add.at(counts, edges[:, 1], 1)

        valid = (counts > 0) & self._alive
        self._driving[valid] += weight * (sums[valid] / counts[valid][:, None] - self._positions[valid])

    def compute_balloon_forces(self, weight: float):
        """Inflate (weight > 0) or deflate (weight < 0) along the normals."""
        indices = self._active_indices()
        self._driving[indices] += balloon_force(self._fresh_normals()[indices], weight)

    def compute_volume_constraint(self, target_volume: float):
        """Damp driving forces that move the volume away from ``target_volume``."""
        indices = self._active_indices()
        scale = volume_constraint_scale(
            self._driving[indices],
            self._fresh_normals()[indices],
            self.dimension(2),
            target_volume
        )
        self._driving[indices] *= scale[:, None]

    def compute_axis_forces(self, weight: float):
        """Damp driving forces by ``max(|normal . major_axis|, 1 - weight)``."""
        indices = self._active_indices()
        scale = axis_constraint_scale(self._fresh_normals()[indices], self.major_axis(), weight)
        self._driving[indices] *= scale[:, None]

    def max_displacement(self, time_step: float = 1.0) -> float:
        return self.config.resolution * time_step

    def _force_time_scale(self, time_step: float) -> float:
        return time_step

    def __repr__(self) -> str:
        return f"Surface(n_points={self.n_points}, n_faces={self.n_faces})"
