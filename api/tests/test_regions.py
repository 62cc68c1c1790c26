# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for the region hierarchy.
"""

import pytest

from models.entities import Region
from models.enums import RegionLevel
from domain.errors import ConstraintViolation, IntegrityError
from domain.regions import RegionHierarchy, is_same_or_descendant, level_depth, validate_region_parent


class TestRegionRules:
    """Test level and parent rules."""

    def test_level_depth(self):
        assert level_depth(RegionLevel.STATE) == 0
        assert level_depth("unit") == 3

    def test_child_must_be_one_level_below_parent(self, hierarchy):
        area = Region(name="Skipping", code="SKP", level=RegionLevel.AREA, parent_id="kerala")
        with pytest.raises(ConstraintViolation) as exc_info:
            validate_region_parent(area, hierarchy.get("kerala"))
        assert exc_info.value.code == "invalid_region_level"

    def test_is_same_or_descendant(self):
        assert is_same_or_descendant("pettah", "pettah", [])
        assert is_same_or_descendant("pettah", "kollam", ["kollam-city", "kollam", "kerala"])
        assert not is_same_or_descendant("kollam", "pettah", ["kerala"])


class TestRegionHierarchy:
    """Test the in-memory region index."""

    def test_ancestors_nearest_first(self, hierarchy):
        assert hierarchy.ancestor_ids("pettah") == ["kollam-city", "kollam", "kerala"]
        assert hierarchy.ancestors("kerala") == []

    def test_descendants(self, hierarchy):
        ids = {r.id for r in hierarchy.descendants("kollam")}
        assert ids == {"kollam-city", "pettah"}
        assert len(hierarchy.descendants("kerala")) == 6

    def test_is_within_cascades_downwards_only(self, hierarchy):
        assert hierarchy.is_within("pettah", "kollam")
        assert hierarchy.is_within("pettah", "kerala")
        assert not hierarchy.is_within("kollam", "pettah")
        assert not hierarchy.is_within("pettah", "ernakulam")

    def test_path_for_unit(self, hierarchy):
        path = hierarchy.path_for("pettah")
        assert path.as_list() == ["kerala", "kollam", "kollam-city", "pettah"]

    def test_path_requires_unit(self, hierarchy):
        with pytest.raises(ConstraintViolation) as exc_info:
            hierarchy.path_for("kollam")
        assert exc_info.value.code == "invalid_region_level"

    def test_unknown_region(self, hierarchy):
        with pytest.raises(IntegrityError):
            hierarchy.get("thrissur")

    def test_missing_parent_is_integrity_error(self):
        orphan = Region(id="orphan", name="Orphan", code="ORP", level=RegionLevel.DISTRICT, parent_id="gone")
        with pytest.raises(IntegrityError):
            RegionHierarchy([orphan])

    def test_add_region(self, hierarchy):
        unit = Region(id="chinnakada", name="Chinnakada", code="CKD", level=RegionLevel.UNIT,
                      parent_id="kollam-city")
        hierarchy.add(unit)
        assert hierarchy.is_within("chinnakada", "kollam")

    def test_add_rejects_duplicate_code_under_same_parent(self, hierarchy):
        unit = Region(name="Pettah Again", code="pth", level=RegionLevel.UNIT, parent_id="kollam-city")
        with pytest.raises(ConstraintViolation) as exc_info:
            hierarchy.add(unit)
        assert exc_info.value.code == "duplicate_region"

    def test_cannot_remove_region_with_children(self, hierarchy):
        with pytest.raises(ConstraintViolation) as exc_info:
            hierarchy.remove("kollam")
        assert exc_info.value.code == "region_has_children"

        hierarchy.remove("pettah")
        assert "pettah" not in hierarchy
        hierarchy.ensure_deletable("kollam-city")
