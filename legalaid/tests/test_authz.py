"""
Authorization Tests
===================

Capability table and guard decisions, without HTTP or a database.
"""

from types import SimpleNamespace

import pytest

from legalaid.auth import Principal
from legalaid.authz import (
    CASE_GUARD, JUDICIAL_SERVICE_GUARD, ROLE_CAPABILITIES, SERVICE_REQUEST_GUARD, TASK_GUARD,
    Action, Capability, EntityKind, Scope, authorize, capability_for, has_capability,
)
from legalaid.db.models import Role, UserType
from legalaid.errors import Forbidden, NotFound, ProfileIncomplete, Unauthenticated


# =============================================================================
# Test Fixtures
# =============================================================================

def staff(user_id: str, role: Role) -> Principal:
    return Principal(user_id=user_id, kind=UserType.STAFF, role=role, username=user_id, full_name=user_id)


def beneficiary(user_id: str, beneficiary_id=None) -> Principal:
    return Principal(
        user_id=user_id,
        kind=UserType.BENEFICIARY,
        role=Role.BENEFICIARY,
        username=user_id,
        full_name=user_id,
        beneficiary_id=beneficiary_id,
    )


ADMIN = staff("u-admin", Role.ADMIN)
SUPER = staff("u-super", Role.SUPER_ADMIN)
LAWYER1 = staff("u-lawyer1", Role.LAWYER)
LAWYER2 = staff("u-lawyer2", Role.LAWYER)
VIEWER = staff("u-viewer", Role.VIEWER)
BEN1 = beneficiary("u-ben1", "b-1")
BEN2 = beneficiary("u-ben2", "b-2")
ORPHAN = beneficiary("u-orphan", None)


def case(beneficiary_id="b-1", lawyer_id="u-lawyer1"):
    return SimpleNamespace(id="c-1", beneficiary_id=beneficiary_id, assigned_lawyer_id=lawyer_id)


def task(beneficiary_id="b-1", assigned_to="u-ben1", lawyer_id="u-lawyer1", show_in_portal=True):
    return SimpleNamespace(
        id="t-1",
        beneficiary_id=beneficiary_id,
        assigned_to=assigned_to,
        lawyer_id=lawyer_id,
        show_in_portal=show_in_portal,
    )


# =============================================================================
# Capability Table
# =============================================================================

class TestCapabilities:

    def test_admin_roles_share_capabilities(self):
        assert ROLE_CAPABILITIES[Role.ADMIN] == ROLE_CAPABILITIES[Role.SUPER_ADMIN]

    def test_lawyer_holds_assigned_scope_only_for_cases(self):
        assert has_capability(Role.LAWYER, Capability.CASE_TRANSITION_ASSIGNED)
        assert not has_capability(Role.LAWYER, Capability.CASE_TRANSITION_ALL)
        assert not has_capability(Role.LAWYER, Capability.CASE_APPROVE_ALL)
        assert not has_capability(Role.LAWYER, Capability.CASE_ASSIGN_ALL)

    def test_viewer_and_expert_hold_nothing(self):
        assert ROLE_CAPABILITIES[Role.VIEWER] == frozenset()
        assert ROLE_CAPABILITIES[Role.EXPERT] == frozenset()

    def test_unknown_role_holds_nothing(self):
        assert not has_capability(None, Capability.CASE_READ_ALL)
        assert not has_capability("janitor", Capability.CASE_READ_ALL)

    def test_capability_for_undefined_triple(self):
        assert capability_for(EntityKind.CASE, Action.APPROVE, Scope.OWN) is None
        assert capability_for(EntityKind.CASE, Action.READ, Scope.OWN) == Capability.CASE_READ_OWN


# =============================================================================
# Guard Decisions
# =============================================================================

class TestCaseGuard:

    def test_anonymous_is_denied(self):
        decision = CASE_GUARD.decide(None, Action.READ, case())
        assert not decision
        assert decision.reason == "unauthenticated"
        with pytest.raises(Unauthenticated):
            CASE_GUARD.ensure(None, Action.READ, case())

    def test_admin_bypasses_assignment(self):
        decision = CASE_GUARD.decide(ADMIN, Action.TRANSITION, case(lawyer_id=None))
        assert decision.allowed
        assert decision.scope == Scope.ALL
        assert CASE_GUARD.can(SUPER, Action.ASSIGN, case())

    def test_assigned_lawyer_may_transition(self):
        assert CASE_GUARD.decide(LAWYER1, Action.TRANSITION, case()).scope == Scope.ASSIGNED

    def test_other_lawyer_is_forbidden(self):
        decision = CASE_GUARD.decide(LAWYER2, Action.TRANSITION, case())
        assert decision.reason == "not_assignee"
        with pytest.raises(Forbidden):
            CASE_GUARD.ensure(LAWYER2, Action.TRANSITION, case())

    def test_lawyer_cannot_approve(self):
        with pytest.raises(Forbidden):
            CASE_GUARD.ensure(LAWYER1, Action.APPROVE, case())

    def test_beneficiary_reads_own_case(self):
        assert CASE_GUARD.decide(BEN1, Action.READ, case()).scope == Scope.OWN

    def test_other_beneficiary_gets_not_found(self):
        with pytest.raises(NotFound):
            CASE_GUARD.ensure(BEN2, Action.READ, case())

    def test_beneficiary_missing_capability_is_forbidden(self):
        with pytest.raises(Forbidden):
            CASE_GUARD.ensure(BEN1, Action.TRANSITION, case())

    def test_beneficiary_without_profile(self):
        decision = CASE_GUARD.decide(ORPHAN, Action.CREATE)
        assert decision.reason == "profile_incomplete"
        with pytest.raises(ProfileIncomplete):
            CASE_GUARD.ensure(ORPHAN, Action.READ, case())

    def test_viewer_is_denied(self):
        with pytest.raises(Forbidden):
            CASE_GUARD.ensure(VIEWER, Action.READ)

    def test_inconsistent_principal_fails_closed(self):
        forged = Principal(
            user_id="u-x", kind=UserType.BENEFICIARY, role=Role.ADMIN, username="x", full_name="x",
            beneficiary_id="b-1",
        )
        decision = CASE_GUARD.decide(forged, Action.READ, case())
        assert not decision
        assert decision.reason == "invalid_principal"

    def test_route_level_create_scopes(self):
        assert CASE_GUARD.ensure(ADMIN, Action.CREATE) == Scope.ALL
        assert CASE_GUARD.ensure(BEN1, Action.CREATE) == Scope.OWN
        with pytest.raises(Forbidden):
            CASE_GUARD.ensure(LAWYER1, Action.CREATE)

    def test_authorize_entry_point(self):
        assert authorize(ADMIN, EntityKind.CASE, Action.DELETE, case()).allowed
        assert not authorize(BEN1, EntityKind.CASE, Action.DELETE, case()).allowed

    def test_internal_fields(self):
        assert CASE_GUARD.can(LAWYER1, Action.READ_INTERNAL, case())
        assert not CASE_GUARD.can(BEN1, Action.READ_INTERNAL, case())


class TestOtherGuards:

    def test_judicial_service_status_is_admin_only(self):
        record = case()
        assert JUDICIAL_SERVICE_GUARD.can(ADMIN, Action.TRANSITION, record)
        assert not JUDICIAL_SERVICE_GUARD.can(LAWYER1, Action.TRANSITION, record)
        assert not JUDICIAL_SERVICE_GUARD.can(LAWYER1, Action.ASSIGN, record)
        assert JUDICIAL_SERVICE_GUARD.can(LAWYER1, Action.READ, record)

    def test_task_lawyer_status_only(self):
        record = task()
        assert TASK_GUARD.can(LAWYER1, Action.TRANSITION, record)
        assert not TASK_GUARD.can(LAWYER1, Action.UPDATE, record)
        assert not TASK_GUARD.can(LAWYER2, Action.TRANSITION, record)

    def test_task_assignee_is_the_linked_lawyer(self):
        record = task(assigned_to="u-lawyer2")
        assert not TASK_GUARD.can(LAWYER2, Action.READ, record)
        assert TASK_GUARD.can(LAWYER1, Action.READ, record)
        assert not TASK_GUARD.can(LAWYER1, Action.READ, task(lawyer_id=None))

    def test_hidden_task_is_invisible_to_beneficiary(self):
        assert TASK_GUARD.can(BEN1, Action.READ, task())
        with pytest.raises(NotFound):
            TASK_GUARD.ensure(BEN1, Action.READ, task(show_in_portal=False))

    def test_service_requests(self):
        record = SimpleNamespace(id="sr-1", beneficiary_id="b-1")
        assert SERVICE_REQUEST_GUARD.can(BEN1, Action.READ, record)
        assert not SERVICE_REQUEST_GUARD.can(BEN2, Action.READ, record)
        assert SERVICE_REQUEST_GUARD.can(LAWYER2, Action.TRANSITION, record)
        assert not SERVICE_REQUEST_GUARD.can(BEN1, Action.TRANSITION, record)
        assert not SERVICE_REQUEST_GUARD.can(ADMIN, Action.CREATE)
