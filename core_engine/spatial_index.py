"""Spatial index — depth-bounded octree / quadtree over scene AABBs.

Stores flux volumes and occluder boxes for occlusion queries along light
rays. The tree is rebuilt from scratch every simulation pass, so it only
supports insertion and ray queries (no removal, no refit).

Design Notes
------------
- **Arena of nodes**: nodes live in a flat Python list and reference their
  children by integer index. Node 0 is the root.
- **Duplication, not partition**: an object whose AABB overlaps several
  children is inserted into *every* one of them (inclusive overlap, so an
  object lying exactly on a split plane is never dropped). A ray query
  therefore de-duplicates entries before accumulating path length.
- **Leaf → internal is one-way**: a leaf splits once its object count
  exceeds ``max_objects_per_leaf`` and its depth is below ``max_depth``;
  after the split it holds no objects itself.
- **Tagged entries**: each stored object is wrapped in an
  :class:`IndexEntry` whose ``kind`` is a closed enum. Flux volumes add a
  partial path length; occluders are binary blockers that end the query.
- **Quadtree mode** splits X and Z only and keeps the full Y extent, which
  suits flat greenhouse layouts where objects stack little vertically.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from core_engine.flux_volume import FluxVolume
from core_engine.geometry import AABB, Ray, ray_intersects_aabb
from core_engine.occluder import OccluderBox

logger = logging.getLogger(__name__)

_DEFAULT_MAX_DEPTH = 5
_DEFAULT_MAX_OBJECTS = 8


class IndexMode(str, Enum):
    OCTREE = "octree"
    QUADTREE = "quadtree"


class EntryKind(Enum):
    FLUX_VOLUME = "flux_volume"
    OCCLUDER = "occluder"


@dataclass(frozen=True, eq=False)
class IndexEntry:
    """An object stored in the index together with its AABB snapshot.

    Attributes
    ----------
    kind : EntryKind
        Which behaviour the entry has during ray queries.
    obj : FluxVolume or OccluderBox
        The referenced scene object (not owned).
    bounds : AABB
        World AABB captured at insertion time.
    """

    kind: EntryKind
    obj: FluxVolume | OccluderBox
    bounds: AABB

    @classmethod
    def for_volume(cls, volume: FluxVolume) -> IndexEntry:
        return cls(EntryKind.FLUX_VOLUME, volume, volume.bounding_box())

    @classmethod
    def for_occluder(cls, box: OccluderBox) -> IndexEntry:
        return cls(EntryKind.OCCLUDER, box, box.bounding_box())


@dataclass
class _Node:
    bounds: AABB
    depth: int
    objects: list[int] = field(default_factory=list)
    children: list[int] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return not self.children


@dataclass(frozen=True)
class OcclusionResult:
    """Outcome of a ray query.

    Attributes
    ----------
    total_length : float
        Summed path length through flux volumes met before the query ended.
    hard_occluded : bool
        True if an occluder box intersects the ray.
    nodes_visited : int
        Number of nodes whose bounds the ray actually entered.
    """

    total_length: float
    hard_occluded: bool
    nodes_visited: int = 0


class SpatialIndex:
    """Octree (or quadtree) of :class:`IndexEntry` objects.

    Parameters
    ----------
    bounds : AABB
        Root bounds; objects outside it are rejected.
    max_depth : int
        Maximum node depth (root is depth 0).
    max_objects_per_leaf : int
        A leaf splits when it holds more than this many objects.
    mode : IndexMode or str
        ``"octree"`` (8 children) or ``"quadtree"`` (4 children, X/Z split).
    """

    def __init__(
        self,
        bounds: AABB,
        max_depth: int = _DEFAULT_MAX_DEPTH,
        max_objects_per_leaf: int = _DEFAULT_MAX_OBJECTS,
        mode: IndexMode | str = IndexMode.OCTREE,
    ) -> None:
        if max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {max_depth}")
        if max_objects_per_leaf < 1:
            raise ValueError(f"max_objects_per_leaf must be >= 1, got {max_objects_per_leaf}")

        self.max_depth = max_depth
        self.max_objects_per_leaf = max_objects_per_leaf
        self.mode = IndexMode(mode)
        self.split_count = 0

        self._nodes: list[_Node] = [_Node(bounds=bounds, depth=0)]
        self._entries: list[IndexEntry] = []

    # --- Introspection ----------------------------------------------------

    @property
    def bounds(self) -> AABB:
        return self._nodes[0].bounds

    @property
    def entries(self) -> tuple[IndexEntry, ...]:
        return tuple(self._entries)

    def stats(self) -> dict[str, int]:
        """Node/leaf counts, deepest level and stored references."""
        leaves = [n for n in self._nodes if n.is_leaf]
        return {
            "entries": len(self._entries),
            "nodes": len(self._nodes),
            "leaves": len(leaves),
            "splits": self.split_count,
            "max_depth_reached": max(n.depth for n in self._nodes),
            "references": sum(len(n.objects) for n in leaves),
        }

    def leaf_bounds_containing(self, obj: FluxVolume | OccluderBox) -> list[AABB]:
        """Bounds of every leaf that references ``obj``."""
        return [
            node.bounds
            for node in self._nodes
            if node.is_leaf and any(self._entries[i].obj is obj for i in node.objects)
        ]

    def candidates(self, ray: Ray) -> list[FluxVolume | OccluderBox]:
        """Distinct objects stored in the nodes a ray passes through.

        Introspection only: unlike :meth:`intersect_ray` nothing is
        filtered or short-circuited, so the result shows exactly which
        objects the traversal would consider.
        """
        found: dict[int, FluxVolume | OccluderBox] = {}
        stack = [0]
        while stack:
            node = self._nodes[stack.pop()]
            if not ray_intersects_aabb(ray, node.bounds):
                continue
            for entry_id in node.objects:
                found.setdefault(entry_id, self._entries[entry_id].obj)
            stack.extend(node.children)
        return list(found.values())

    # --- Insertion --------------------------------------------------------

    def insert_volume(self, volume: FluxVolume) -> bool:
        return self.insert(IndexEntry.for_volume(volume))

    def insert_occluder(self, box: OccluderBox) -> bool:
        return self.insert(IndexEntry.for_occluder(box))

    def insert(self, entry: IndexEntry) -> bool:
        """Insert an entry into every leaf its AABB overlaps.

        Returns
        -------
        bool
            False if the entry lies entirely outside the root bounds.
        """
        if not self.bounds.intersects(entry.bounds):
            logger.warning(
                "Object '%s' at %s lies outside the index bounds %s; not indexed",
                getattr(entry.obj, "name", ""), entry.bounds, self.bounds,
            )
            return False

        entry_id = len(self._entries)
        self._entries.append(entry)
        self._insert_into(0, entry_id)
        return True

    def _insert_into(self, node_idx: int, entry_id: int) -> None:
        node = self._nodes[node_idx]

        if not node.is_leaf:
            bounds = self._entries[entry_id].bounds
            for child_idx in node.children:
                if self._nodes[child_idx].bounds.intersects(bounds):
                    self._insert_into(child_idx, entry_id)
            return

        node.objects.append(entry_id)
        if len(node.objects) > self.max_objects_per_leaf and node.depth < self.max_depth:
            self._split(node_idx)

    def _split(self, node_idx: int) -> None:
        """Turn a leaf into an internal node with 8 (or 4) equal children."""
        node = self._nodes[node_idx]
        lo = node.bounds.min
        hi = node.bounds.max
        mid = 0.5 * (lo + hi)

        if self.mode is IndexMode.OCTREE:
            y_ranges = [(lo[1], mid[1]), (mid[1], hi[1])]
        else:
            y_ranges = [(lo[1], hi[1])]

        children: list[int] = []
        for z_lo, z_hi in ((lo[2], mid[2]), (mid[2], hi[2])):
            for y_lo, y_hi in y_ranges:
                for x_lo, x_hi in ((lo[0], mid[0]), (mid[0], hi[0])):
                    child = _Node(
                        bounds=AABB(
                            np.array([x_lo, y_lo, z_lo]),
                            np.array([x_hi, y_hi, z_hi]),
                        ),
                        depth=node.depth + 1,
                    )
                    children.append(len(self._nodes))
                    self._nodes.append(child)

        held = node.objects
        node.objects = []
        node.children = children
        self.split_count += 1

        logger.debug(
            "Split node %d (depth %d) into %d children, redistributing %d objects",
            node_idx, node.depth, len(children), len(held),
        )

        for entry_id in held:
            self._insert_into(node_idx, entry_id)

    # --- Queries ----------------------------------------------------------

    def intersect_ray(
        self,
        ray: Ray,
        ignore: FluxVolume | OccluderBox | None = None,
    ) -> OcclusionResult:
        """Aggregate flux-volume path length and detect hard occlusion.

        Parameters
        ----------
        ray : Ray
            Query ray (typically from a sample point toward a light).
        ignore : object, optional
            Object skipped in every node, usually the flux volume that
            issues the query.

        Returns
        -------
        OcclusionResult
            Path length accumulated so far and whether an occluder was hit.
            The query stops at the first occluder hit.
        """
        seen: set[int] = set()
        length, blocked, visited = self._intersect_node(0, ray, ignore, seen)
        return OcclusionResult(total_length=length, hard_occluded=blocked, nodes_visited=visited)

    def _intersect_node(
        self,
        node_idx: int,
        ray: Ray,
        ignore: FluxVolume | OccluderBox | None,
        seen: set[int],
    ) -> tuple[float, bool, int]:
        node = self._nodes[node_idx]
        if not ray_intersects_aabb(ray, node.bounds):
            return 0.0, False, 0

        total_length = 0.0
        visited = 1

        for entry_id in node.objects:
            entry = self._entries[entry_id]
            if entry.obj is ignore or entry_id in seen:
                continue
            seen.add(entry_id)

            if entry.kind is EntryKind.FLUX_VOLUME:
                length = entry.obj.intersect_ray(ray)
                if length is not None and length > 0.0:
                    total_length += length
            elif entry.kind is EntryKind.OCCLUDER:
                if ray_intersects_aabb(ray, entry.bounds):
                    return total_length, True, visited
            else:
                raise AssertionError(f"Unhandled index entry kind: {entry.kind}")

        for child_idx in node.children:
            length, blocked, child_visited = self._intersect_node(child_idx, ray, ignore, seen)
            visited += child_visited
            if blocked:
                return total_length, True, visited
            total_length += length

        return total_length, False, visited
