# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for role graph rules.
"""

import pytest
from datetime import datetime, timezone

from models.entities import Role, UserRoleBinding
from domain.errors import ConstraintViolation, IntegrityError
from domain.roles import (
    can_grant_role, create_custom_role, effective_level, ensure_role_deletable,
    has_reached_user_limit, inherited_permission_ids, update_role, validate_role_inheritance,
    validate_role_permissions
)


class TestSystemRoles:
    """Test the built-in roles."""

    def test_levels(self, system_roles):
        levels = {role_id: role.level for role_id, role in system_roles.items()}
        assert levels == {
            "super_admin": 0, "state_admin": 1, "district_admin": 2, "area_admin": 3,
            "unit_admin": 4, "scheme_coordinator": 5, "beneficiary": 6,
        }

    def test_super_admin_holds_everything(self, system_roles, catalog):
        assert system_roles["super_admin"].permission_ids == {p.id for p in catalog.all()}

    def test_system_roles_are_locked(self, system_roles):
        for role in system_roles.values():
            assert role.is_system_role()
            assert not role.is_deletable
            assert not role.is_modifiable

    def test_unit_admin_cannot_approve(self, system_roles):
        assert "applications.approve" not in system_roles["unit_admin"].permission_ids
        assert "applications.approve" in system_roles["district_admin"].permission_ids


class TestRoleRules:
    """Test escalation and lifecycle rules."""

    def test_can_grant_only_lower_privilege(self, system_roles):
        assert can_grant_role(2, system_roles["unit_admin"])
        assert not can_grant_role(2, system_roles["district_admin"])
        assert not can_grant_role(2, system_roles["state_admin"])
        assert not can_grant_role(None, system_roles["beneficiary"])

    def test_effective_level_uses_most_privileged_active_binding(self, system_roles, now):
        bindings = [
            UserRoleBinding(user_id="u1", role_id="unit_admin", assigned_by="x",
                            valid_from=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            UserRoleBinding(user_id="u1", role_id="district_admin", assigned_by="x",
                            valid_from=datetime(2024, 1, 1, tzinfo=timezone.utc),
                            valid_until=datetime(2024, 3, 1, tzinfo=timezone.utc)),
        ]
        assert effective_level(bindings, system_roles, now) == 4
        assert effective_level([], system_roles, now) is None

    def test_effective_level_missing_role(self, now):
        binding = UserRoleBinding(user_id="u1", role_id="ghost", assigned_by="x",
                                  valid_from=datetime(2024, 1, 1, tzinfo=timezone.utc))
        with pytest.raises(IntegrityError):
            effective_level([binding], {}, now)

    def test_user_limit(self):
        role = Role(name="auditor", display_name="Auditor", level=5, max_assignable_users=2)
        assert not has_reached_user_limit(role, 1)
        assert has_reached_user_limit(role, 2)
        assert not has_reached_user_limit(Role(name="open", display_name="Open", level=5), 1000)


class TestCustomRoles:
    """Test custom role creation and editing."""

    def test_create_below_own_level(self, catalog):
        role = create_custom_role("field_officer", "Field Officer", 5,
                                  ["applications.read", "applications.verify"],
                                  catalog, created_by="admin", granter_level=2)
        assert role.permission_ids == {"applications.read", "applications.verify"}
        assert not role.is_system_role()

    def test_create_at_own_level_is_escalation(self, catalog):
        with pytest.raises(ConstraintViolation) as exc_info:
            create_custom_role("peer", "Peer", 2, ["applications.read"], catalog,
                               created_by="admin", granter_level=2)
        assert exc_info.value.code == "role_level_too_high"

    def test_create_with_unknown_permission(self, catalog):
        with pytest.raises(ConstraintViolation) as exc_info:
            create_custom_role("odd", "Odd", 5, ["applications.fly"], catalog,
                               created_by="admin", granter_level=2)
        assert exc_info.value.code == "unknown_permission"

    def test_update_role(self, catalog):
        role = create_custom_role("field_officer", "Field Officer", 5, ["applications.read"],
                                  catalog, created_by="admin", granter_level=2)
        updated = update_role(role, {"display_name": "Field Staff", "permission_ids": {"applications.verify"}},
                              "admin", 2, catalog)
        assert updated.display_name == "Field Staff"
        assert updated.permission_ids == {"applications.verify"}
        assert updated.updated_by == "admin"
        assert role.display_name == "Field Officer"

    def test_update_rejects_locked_fields(self, catalog):
        role = create_custom_role("field_officer", "Field Officer", 5, ["applications.read"],
                                  catalog, created_by="admin", granter_level=2)
        with pytest.raises(ConstraintViolation) as exc_info:
            update_role(role, {"kind": "system"}, "admin", 2, catalog)
        assert exc_info.value.code == "invalid_role_update"

    def test_update_cannot_raise_above_editor(self, catalog):
        role = create_custom_role("field_officer", "Field Officer", 5, ["applications.read"],
                                  catalog, created_by="admin", granter_level=2)
        with pytest.raises(ConstraintViolation) as exc_info:
            update_role(role, {"level": 1}, "admin", 2, catalog)
        assert exc_info.value.code == "role_level_too_high"

    def test_update_system_role(self, system_roles, catalog):
        with pytest.raises(ConstraintViolation) as exc_info:
            update_role(system_roles["unit_admin"], {"display_name": "X"}, "root", 0, catalog)
        assert exc_info.value.code == "role_not_modifiable"

    def test_validate_role_permissions(self, catalog):
        role = Role(name="broken", display_name="Broken", level=5, permission_ids={"ghost.permission"})
        with pytest.raises(ConstraintViolation):
            validate_role_permissions(role, catalog)

    def test_delete_rules(self, system_roles, catalog):
        with pytest.raises(ConstraintViolation) as exc_info:
            ensure_role_deletable(system_roles["beneficiary"], 0)
        assert exc_info.value.code == "role_not_deletable"

        role = create_custom_role("temp_staff", "Temp", 6, ["applications.read"], catalog,
                                  created_by="admin", granter_level=2)
        with pytest.raises(ConstraintViolation) as exc_info:
            ensure_role_deletable(role, 3)
        assert exc_info.value.code == "role_in_use"

        with pytest.raises(ConstraintViolation) as exc_info:
            ensure_role_deletable(role, 0, ["senior_temp_staff"])
        assert exc_info.value.code == "role_inherited"

        ensure_role_deletable(role, 0)


def role_graph(*roles):
    graph = {role.id: role for role in roles}
    return graph.get


class TestRoleInheritance:
    """Test permission inheritance between roles."""

    @pytest.fixture
    def readers(self):
        base = Role(id="base", name="base", display_name="Base", level=5,
                    permission_ids={"applications.read"})
        middle = Role(id="middle", name="middle", display_name="Middle", level=5,
                      permission_ids={"applications.verify"}, inherits_from={"base"})
        top = Role(id="top", name="top", display_name="Top", level=4,
                   permission_ids={"applications.review"}, inherits_from={"middle"})
        return base, middle, top

    def test_permissions_are_inherited_transitively(self, readers):
        base, middle, top = readers

        assert inherited_permission_ids(top, role_graph(*readers)) == {
            "applications.read", "applications.verify"
        }
        assert inherited_permission_ids(base, role_graph(*readers)) == set()

    def test_inactive_parent_passes_nothing_on(self, readers):
        base, middle, top = readers
        paused = middle.model_copy(update={"is_active": False})

        assert inherited_permission_ids(top, role_graph(base, paused, top)) == set()

    def test_missing_parent_is_integrity_error(self, readers):
        base, middle, top = readers

        with pytest.raises(IntegrityError):
            inherited_permission_ids(top, role_graph(base, top))

    def test_valid_graph(self, readers):
        base, middle, top = readers
        validate_role_inheritance(top, role_graph(*readers))

    def test_self_inheritance(self, readers):
        base = readers[0].model_copy(update={"inherits_from": {"base"}})

        with pytest.raises(ConstraintViolation) as exc_info:
            validate_role_inheritance(base, role_graph(base))
        assert exc_info.value.code == "circular_inheritance"

    def test_cycle_through_other_roles(self, readers):
        base, middle, top = readers
        looped = base.model_copy(update={"inherits_from": {"middle"}})

        with pytest.raises(ConstraintViolation) as exc_info:
            validate_role_inheritance(looped, role_graph(looped, middle))
        assert exc_info.value.code == "circular_inheritance"

    def test_cannot_inherit_more_privileged_role(self, readers):
        base, middle, top = readers
        climber = base.model_copy(update={"inherits_from": {"top"}})

        with pytest.raises(ConstraintViolation) as exc_info:
            validate_role_inheritance(climber, role_graph(climber, middle, top))
        assert exc_info.value.code == "inherited_role_too_privileged"

    def test_unknown_parent(self, readers):
        orphan = readers[0].model_copy(update={"inherits_from": {"ghost"}})

        with pytest.raises(ConstraintViolation) as exc_info:
            validate_role_inheritance(orphan, role_graph(orphan))
        assert exc_info.value.code == "unknown_role"
