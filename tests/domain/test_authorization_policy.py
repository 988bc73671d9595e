"""Tests for role-based authorization (production_kernel/domain/actor.py)."""

from uuid import uuid4

import pytest

from production_kernel.domain.actor import (
    DEFAULT_ALLOWED_ROLES,
    ActorContext,
    AuthorizationPolicy,
    Operation,
    Role,
)
from production_kernel.exceptions import ForbiddenError


def _actor(role: Role) -> ActorContext:
    return ActorContext(actor_id=uuid4(), role=role)


class TestDefaultPolicy:

    def test_every_operation_has_an_allow_list(self):
        assert set(DEFAULT_ALLOWED_ROLES) == set(Operation)

    def test_admin_may_do_everything(self):
        policy = AuthorizationPolicy()
        admin = _actor(Role.ADMIN)
        assert all(policy.is_allowed(admin, op) for op in Operation)

    @pytest.mark.parametrize("operation", [
        Operation.START_REQUEST, Operation.COMPLETE_REQUEST, Operation.ADJUST_STOCK,
    ])
    def test_production_floor_operations(self, operation):
        policy = AuthorizationPolicy()
        assert policy.is_allowed(_actor(Role.PRODUCTION), operation)
        assert not policy.is_allowed(_actor(Role.FULFILLMENT), operation)

    @pytest.mark.parametrize("operation", [
        Operation.CREATE_REQUEST, Operation.RESERVE, Operation.RELEASE,
    ])
    def test_fulfillment_operations(self, operation):
        policy = AuthorizationPolicy()
        assert policy.is_allowed(_actor(Role.FULFILLMENT), operation)
        assert not policy.is_allowed(_actor(Role.PRODUCTION), operation)

    def test_any_role_may_cancel(self):
        policy = AuthorizationPolicy()
        assert all(
            policy.is_allowed(_actor(role), Operation.CANCEL_REQUEST) for role in Role
        )


class TestRequire:

    def test_denied_actor_raises_forbidden(self, captured_logs):
        actor = _actor(Role.FULFILLMENT)
        with pytest.raises(ForbiddenError) as exc_info:
            AuthorizationPolicy().require(actor, Operation.COMPLETE_REQUEST)

        err = exc_info.value
        assert err.code == "FORBIDDEN"
        assert err.role == "fulfillment"
        assert err.operation == "complete_request"
        assert err.allowed_roles == ("admin", "production")

        denied = [r for r in captured_logs() if r["message"] == "authorization_denied"]
        assert denied and denied[0]["actor_id"] == str(actor.actor_id)

    def test_allowed_actor_passes_silently(self):
        AuthorizationPolicy().require(_actor(Role.PRODUCTION), Operation.COMPLETE_REQUEST)


class TestFromMapping:

    def test_override_replaces_one_operation(self):
        policy = AuthorizationPolicy.from_mapping({"create_request": ["production"]})
        assert policy.roles_for(Operation.CREATE_REQUEST) == frozenset({Role.PRODUCTION})
        assert policy.roles_for(Operation.RESERVE) == DEFAULT_ALLOWED_ROLES[Operation.RESERVE]

    def test_unknown_operation_is_rejected(self):
        with pytest.raises(ValueError):
            AuthorizationPolicy.from_mapping({"launch_rocket": ["admin"]})

    def test_unknown_role_is_rejected(self):
        with pytest.raises(ValueError):
            AuthorizationPolicy.from_mapping({"reserve": ["intern"]})
