"""
Authorization Module (Capabilities + Guards)
============================================

Role-based capabilities with record-level scoping.

A capability is `entity:action:scope`:
- all:      any record of that kind (admins)
- assigned: records the principal is the current assignee of (lawyers)
- own:      records owned by the principal's beneficiary profile

ROLE_CAPABILITIES is the single source of truth; adding a role or
capability is a table edit. Each entity kind has one guard
(`CASE_GUARD`, `TASK_GUARD`, ...) that answers
(principal, action, record) -> Decision.

Guards fail closed: no principal, an inconsistent principal, an unknown
role or a missing capability all deny.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, Optional

from .auth import Principal
from .db.models import Role
from .errors import Forbidden, NotFound, ProfileIncomplete, Unauthenticated

logger = logging.getLogger(__name__)


# =============================================================================
# CAPABILITY TYPES
# =============================================================================

class EntityKind(str, Enum):
    CASE = "case"
    JUDICIAL_SERVICE = "judicial_service"
    TASK = "task"
    SERVICE_REQUEST = "service_request"
    USER = "user"


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    REJECT = "reject"
    ASSIGN = "assign"
    TRANSITION = "transition"
    ATTACH = "attach"
    # Staff-only fields and private documents of a readable record
    READ_INTERNAL = "read_internal"


class Scope(str, Enum):
    ALL = "all"
    ASSIGNED = "assigned"
    OWN = "own"


# Evaluation order: broadest scope first
SCOPE_ORDER = (Scope.ALL, Scope.ASSIGNED, Scope.OWN)


class Capability(str, Enum):
    """Available capabilities in the system"""
    # Cases
    CASE_CREATE_ALL = "case:create:all"
    CASE_CREATE_OWN = "case:create:own"
    CASE_READ_ALL = "case:read:all"
    CASE_READ_ASSIGNED = "case:read:assigned"
    CASE_READ_OWN = "case:read:own"
    CASE_UPDATE_ALL = "case:update:all"
    CASE_UPDATE_ASSIGNED = "case:update:assigned"
    CASE_DELETE_ALL = "case:delete:all"
    CASE_DELETE_ASSIGNED = "case:delete:assigned"
    CASE_APPROVE_ALL = "case:approve:all"
    CASE_REJECT_ALL = "case:reject:all"
    CASE_ASSIGN_ALL = "case:assign:all"
    CASE_TRANSITION_ALL = "case:transition:all"
    CASE_TRANSITION_ASSIGNED = "case:transition:assigned"
    CASE_ATTACH_ALL = "case:attach:all"
    CASE_ATTACH_ASSIGNED = "case:attach:assigned"
    CASE_ATTACH_OWN = "case:attach:own"
    CASE_READ_INTERNAL_ALL = "case:read_internal:all"
    CASE_READ_INTERNAL_ASSIGNED = "case:read_internal:assigned"

    # Judicial services
    JS_CREATE_ALL = "judicial_service:create:all"
    JS_CREATE_OWN = "judicial_service:create:own"
    JS_READ_ALL = "judicial_service:read:all"
    JS_READ_ASSIGNED = "judicial_service:read:assigned"
    JS_READ_OWN = "judicial_service:read:own"
    JS_UPDATE_ALL = "judicial_service:update:all"
    JS_DELETE_ALL = "judicial_service:delete:all"
    JS_ASSIGN_ALL = "judicial_service:assign:all"
    JS_TRANSITION_ALL = "judicial_service:transition:all"
    JS_ATTACH_ALL = "judicial_service:attach:all"
    JS_ATTACH_ASSIGNED = "judicial_service:attach:assigned"
    JS_ATTACH_OWN = "judicial_service:attach:own"
    JS_READ_INTERNAL_ALL = "judicial_service:read_internal:all"
    JS_READ_INTERNAL_ASSIGNED = "judicial_service:read_internal:assigned"

    # Tasks
    TASK_CREATE_ALL = "task:create:all"
    TASK_READ_ALL = "task:read:all"
    TASK_READ_ASSIGNED = "task:read:assigned"
    TASK_READ_OWN = "task:read:own"
    TASK_UPDATE_ALL = "task:update:all"
    TASK_DELETE_ALL = "task:delete:all"
    TASK_TRANSITION_ALL = "task:transition:all"
    TASK_TRANSITION_ASSIGNED = "task:transition:assigned"
    TASK_ATTACH_ALL = "task:attach:all"
    TASK_ATTACH_ASSIGNED = "task:attach:assigned"
    TASK_ATTACH_OWN = "task:attach:own"
    TASK_READ_INTERNAL_ALL = "task:read_internal:all"
    TASK_READ_INTERNAL_ASSIGNED = "task:read_internal:assigned"

    # Service requests
    SR_CREATE_OWN = "service_request:create:own"
    SR_READ_ALL = "service_request:read:all"
    SR_READ_OWN = "service_request:read:own"
    SR_TRANSITION_ALL = "service_request:transition:all"
    SR_ATTACH_OWN = "service_request:attach:own"
    SR_READ_INTERNAL_ALL = "service_request:read_internal:all"

    # Users
    USER_CREATE_ALL = "user:create:all"
    USER_READ_ALL = "user:read:all"


_ADMIN_CAPABILITIES = frozenset({
    Capability.CASE_CREATE_ALL, Capability.CASE_READ_ALL, Capability.CASE_UPDATE_ALL,
    Capability.CASE_DELETE_ALL, Capability.CASE_APPROVE_ALL, Capability.CASE_REJECT_ALL,
    Capability.CASE_ASSIGN_ALL, Capability.CASE_TRANSITION_ALL, Capability.CASE_ATTACH_ALL,
    Capability.CASE_READ_INTERNAL_ALL,
    Capability.JS_CREATE_ALL, Capability.JS_READ_ALL, Capability.JS_UPDATE_ALL,
    Capability.JS_DELETE_ALL, Capability.JS_ASSIGN_ALL, Capability.JS_TRANSITION_ALL,
    Capability.JS_ATTACH_ALL, Capability.JS_READ_INTERNAL_ALL,
    Capability.TASK_CREATE_ALL, Capability.TASK_READ_ALL, Capability.TASK_UPDATE_ALL,
    Capability.TASK_DELETE_ALL, Capability.TASK_TRANSITION_ALL, Capability.TASK_ATTACH_ALL,
    Capability.TASK_READ_INTERNAL_ALL,
    Capability.SR_READ_ALL, Capability.SR_TRANSITION_ALL, Capability.SR_READ_INTERNAL_ALL,
    Capability.USER_CREATE_ALL, Capability.USER_READ_ALL,
})

# Role to capabilities mapping
ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.SUPER_ADMIN: _ADMIN_CAPABILITIES,
    Role.ADMIN: _ADMIN_CAPABILITIES,
    Role.LAWYER: frozenset({
        Capability.CASE_READ_ASSIGNED, Capability.CASE_UPDATE_ASSIGNED,
        Capability.CASE_DELETE_ASSIGNED, Capability.CASE_TRANSITION_ASSIGNED,
        Capability.CASE_ATTACH_ASSIGNED, Capability.CASE_READ_INTERNAL_ASSIGNED,
        Capability.JS_READ_ASSIGNED, Capability.JS_ATTACH_ASSIGNED,
        Capability.JS_READ_INTERNAL_ASSIGNED,
        Capability.TASK_READ_ASSIGNED, Capability.TASK_TRANSITION_ASSIGNED,
        Capability.TASK_ATTACH_ASSIGNED, Capability.TASK_READ_INTERNAL_ASSIGNED,
        Capability.SR_READ_ALL, Capability.SR_TRANSITION_ALL, Capability.SR_READ_INTERNAL_ALL,
    }),
    Role.VIEWER: frozenset(),
    Role.EXPERT: frozenset(),
    Role.BENEFICIARY: frozenset({
        Capability.CASE_CREATE_OWN, Capability.CASE_READ_OWN, Capability.CASE_ATTACH_OWN,
        Capability.JS_CREATE_OWN, Capability.JS_READ_OWN, Capability.JS_ATTACH_OWN,
        Capability.TASK_READ_OWN, Capability.TASK_ATTACH_OWN,
        Capability.SR_CREATE_OWN, Capability.SR_READ_OWN, Capability.SR_ATTACH_OWN,
    }),
}


def has_capability(role: Optional[Role], capability: Capability) -> bool:
    """Single lookup for role -> capability; unknown roles hold nothing"""
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def capability_for(entity: EntityKind, action: Action, scope: Scope) -> Optional[Capability]:
    """Capability for an (entity, action, scope) triple, if one is defined"""
    try:
        return Capability(f"{entity.value}:{action.value}:{scope.value}")
    except ValueError:
        return None


# =============================================================================
# DECISIONS
# =============================================================================

@dataclass(frozen=True)
class Decision:
    """Outcome of a guard evaluation"""
    allowed: bool
    reason: str
    scope: Optional[Scope] = None

    def __bool__(self) -> bool:
        return self.allowed


def allow(scope: Scope) -> Decision:
    return Decision(True, f"granted:{scope.value}", scope)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


# =============================================================================
# RECORD PREDICATES
# =============================================================================

def _owned_by_beneficiary(principal: Principal, record) -> bool:
    return record.beneficiary_id is not None and record.beneficiary_id == principal.beneficiary_id


def _task_owned(principal: Principal, record) -> bool:
    if not record.show_in_portal:
        return False
    return _owned_by_beneficiary(principal, record) or record.assigned_to == principal.user_id


def _lawyer_assigned(principal: Principal, record) -> bool:
    return record.assigned_lawyer_id is not None and record.assigned_lawyer_id == principal.user_id


def _task_assigned(principal: Principal, record) -> bool:
    return record.lawyer_id is not None and record.lawyer_id == principal.user_id


def _never(principal: Principal, record) -> bool:
    return False


# =============================================================================
# GUARDS
# =============================================================================

class EntityGuard:
    """
    Authorization guard for one entity kind.

    Without a record the guard answers the route-level question ("may this
    principal ever do X to a Y?"). With a record it also applies the
    assignee / owner predicate of the granting scope.
    """

    def __init__(
        self,
        entity: EntityKind,
        is_assignee: Callable[[Principal, object], bool],
        is_owner: Callable[[Principal, object], bool],
    ):
        self.entity = entity
        self._predicates = {
            Scope.ALL: lambda principal, record: True,
            Scope.ASSIGNED: is_assignee,
            Scope.OWN: is_owner,
        }

    def decide(self, principal: Optional[Principal], action: Action, record=None) -> Decision:
        if principal is None:
            return deny("unauthenticated")
        if not principal.is_consistent or principal.role not in ROLE_CAPABILITIES:
            return deny("invalid_principal")

        reason = "missing_capability"
        for scope in SCOPE_ORDER:
            capability = capability_for(self.entity, action, scope)
            if capability is None or not has_capability(principal.role, capability):
                continue

            # Scope to staff vs beneficiary principals only
            if scope == Scope.OWN and not principal.is_beneficiary:
                continue
            if scope in (Scope.ALL, Scope.ASSIGNED) and not principal.is_staff:
                continue

            if scope == Scope.OWN and not principal.profile_complete:
                reason = "profile_incomplete"
                continue

            if record is None or self._predicates[scope](principal, record):
                return allow(scope)

            reason = "not_owner" if scope == Scope.OWN else "not_assignee"

        return deny(reason)

    def ensure(self, principal: Optional[Principal], action: Action, record=None) -> Scope:
        """
        Raise the matching error unless the action is allowed.

        Beneficiaries get NotFound for records they do not own so that
        "exists but not yours" and "does not exist" look the same.
        """
        decision = self.decide(principal, action, record)
        if decision:
            return decision.scope

        record_id = getattr(record, "id", None)
        who = principal.user_id if principal else "anonymous"
        logger.warning(
            f"Guard denied: {who} {action.value} {self.entity.value} {record_id or '-'} ({decision.reason})"
        )

        if decision.reason == "unauthenticated":
            raise Unauthenticated()
        if decision.reason == "profile_incomplete":
            raise ProfileIncomplete()
        if principal.is_beneficiary and decision.reason == "not_owner":
            raise NotFound()
        raise Forbidden()

    def can(self, principal: Optional[Principal], action: Action, record=None) -> bool:
        return bool(self.decide(principal, action, record))


CASE_GUARD = EntityGuard(EntityKind.CASE, _lawyer_assigned, _owned_by_beneficiary)
JUDICIAL_SERVICE_GUARD = EntityGuard(EntityKind.JUDICIAL_SERVICE, _lawyer_assigned, _owned_by_beneficiary)
TASK_GUARD = EntityGuard(EntityKind.TASK, _task_assigned, _task_owned)
SERVICE_REQUEST_GUARD = EntityGuard(EntityKind.SERVICE_REQUEST, _never, _owned_by_beneficiary)
USER_GUARD = EntityGuard(EntityKind.USER, _never, _never)

GUARDS: Dict[EntityKind, EntityGuard] = {
    EntityKind.CASE: CASE_GUARD,
    EntityKind.JUDICIAL_SERVICE: JUDICIAL_SERVICE_GUARD,
    EntityKind.TASK: TASK_GUARD,
    EntityKind.SERVICE_REQUEST: SERVICE_REQUEST_GUARD,
    EntityKind.USER: USER_GUARD,
}


def authorize(principal: Optional[Principal], entity: EntityKind, action: Action, record=None) -> Decision:
    """Uniform entry point: decide (principal, entity, action) for an optional record"""
    return GUARDS[entity].decide(principal, action, record)
