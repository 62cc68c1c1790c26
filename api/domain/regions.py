# SPDX-License-Identifier: Apache-2.0

"""
Region hierarchy domain logic.

Regions only store a pointer to their parent. Child lookups come from an
index built over those pointers when the hierarchy is loaded.
"""

from typing import Dict, Iterable, List, Optional, Sequence

from models.entities import Region, RegionPath
from models.enums import RegionLevel, REGION_LEVEL_DEPTH
from domain.errors import ConstraintViolation, IntegrityError


def level_depth(level) -> int:
    """Depth of a region level, state being 0."""
    return REGION_LEVEL_DEPTH[RegionLevel(level)]


def validate_region_parent(region: Region, parent: Optional[Region]) -> None:
    """
    Check that a region sits exactly one level below its parent.

    Args:
        region: Region being created or loaded
        parent: Its parent, or None for a root

    Raises:
        ConstraintViolation: If the level does not follow the parent's level
    """
    if parent is None:
        if RegionLevel(region.level) != RegionLevel.STATE:
            raise ConstraintViolation(
                "invalid_region_level",
                f"Region {region.code} must have a parent"
            )
        return

    if level_depth(region.level) != level_depth(parent.level) + 1:
        raise ConstraintViolation(
            "invalid_region_level",
            f"A {region.level} cannot be placed under a {parent.level}",
            {"region_id": region.id, "parent_id": parent.id}
        )


def is_same_or_descendant(region_id: str, scope_region_id: str, ancestor_ids: Sequence[str]) -> bool:
    """
    Check whether ``region_id`` lies inside the subtree rooted at ``scope_region_id``.

    Args:
        region_id: Region being acted on
        scope_region_id: Root of the subtree
        ancestor_ids: Ancestors of ``region_id``

    Returns:
        True when the region equals the scope or the scope is one of its ancestors
    """
    return region_id == scope_region_id or scope_region_id in ancestor_ids


class RegionHierarchy:
    """In-memory index over a set of regions."""

    def __init__(self, regions: Iterable[Region] = ()):
        self._regions: Dict[str, Region] = {}
        self._children: Dict[str, List[str]] = {}
        for region in regions:
            self._regions[region.id] = region

        for region in self._regions.values():
            parent = None
            if region.parent_id:
                parent = self._regions.get(region.parent_id)
                if parent is None:
                    raise IntegrityError("region", region.parent_id)
                self._children.setdefault(region.parent_id, []).append(region.id)
            validate_region_parent(region, parent)

    def __contains__(self, region_id: str) -> bool:
        return region_id in self._regions

    def __len__(self) -> int:
        return len(self._regions)

    def get(self, region_id: str) -> Region:
        """Get a region or raise IntegrityError."""
        region = self._regions.get(region_id)
        if region is None:
            raise IntegrityError("region", region_id)
        return region

    def add(self, region: Region) -> Region:
        """Validate a new region against its parent and index it."""
        if region.id in self._regions:
            raise ConstraintViolation("duplicate_region", f"Region {region.id} already exists")

        parent = self.get(region.parent_id) if region.parent_id else None
        validate_region_parent(region, parent)

        duplicate_code = any(
            r.code == region.code and r.parent_id == region.parent_id
            for r in self._regions.values()
        )
        if duplicate_code:
            raise ConstraintViolation(
                "duplicate_region",
                f"Region code {region.code} already used under the same parent"
            )

        self._regions[region.id] = region
        if region.parent_id:
            self._children.setdefault(region.parent_id, []).append(region.id)
        return region

    def remove(self, region_id: str) -> Region:
        """Drop a leaf region from the index."""
        self.ensure_deletable(region_id)
        region = self._regions.pop(region_id)
        if region.parent_id:
            self._children[region.parent_id].remove(region_id)
        return region

    def ensure_deletable(self, region_id: str) -> None:
        """Regions with children cannot be deleted."""
        self.get(region_id)
        if self._children.get(region_id):
            raise ConstraintViolation(
                "region_has_children",
                f"Region {region_id} still has {len(self._children[region_id])} child regions"
            )

    def children(self, region_id: str) -> List[Region]:
        self.get(region_id)
        return [self._regions[child_id] for child_id in self._children.get(region_id, [])]

    def ancestors(self, region_id: str) -> List[Region]:
        """
        Ancestors of a region, nearest first.

        Raises:
            IntegrityError: If the region or any parent is missing, or the parent chain loops
        """
        result: List[Region] = []
        seen = {region_id}
        current = self.get(region_id)
        while current.parent_id:
            if current.parent_id in seen:
                raise IntegrityError("region", current.parent_id, "Region parent chain contains a cycle")
            seen.add(current.parent_id)
            current = self.get(current.parent_id)
            result.append(current)
        return result

    def ancestor_ids(self, region_id: str) -> List[str]:
        return [region.id for region in self.ancestors(region_id)]

    def descendants(self, region_id: str) -> List[Region]:
        """All regions below ``region_id``, breadth first."""
        self.get(region_id)
        result: List[Region] = []
        queue = list(self._children.get(region_id, []))
        while queue:
            child_id = queue.pop(0)
            result.append(self._regions[child_id])
            queue.extend(self._children.get(child_id, []))
        return result

    def is_within(self, region_id: str, scope_region_id: str) -> bool:
        """Check whether a region equals or descends from ``scope_region_id``."""
        return is_same_or_descendant(region_id, scope_region_id, self.ancestor_ids(region_id))

    def path_for(self, unit_id: str) -> RegionPath:
        """
        Build the full region path of a unit.

        Raises:
            ConstraintViolation: If the region is not a unit
        """
        unit = self.get(unit_id)
        if RegionLevel(unit.level) != RegionLevel.UNIT:
            raise ConstraintViolation(
                "invalid_region_level",
                f"Applications must be filed against a unit, got a {unit.level}"
            )

        by_level = {RegionLevel(r.level): r.id for r in self.ancestors(unit_id)}
        return RegionPath(
            state=by_level[RegionLevel.STATE],
            district=by_level[RegionLevel.DISTRICT],
            area=by_level[RegionLevel.AREA],
            unit=unit.id
        )
