"""
Authorization tests.

Verifies:
- Operations missing from the policy are denied
- Each workflow operation is limited to its roles
- A granted permission opens an operation to a role that lacks it
- Managers without view_all_deals only reach their own deals
- Denied calls change nothing
"""

import pytest

from dealflow.errors import AuthorizationError, NotFoundError, ValidationError
from dealflow.extensions import db
from dealflow.models import Deal
from dealflow.permissions import (
    Actor,
    OPERATION_POLICY,
    PermissionCategory,
    authorize,
    get_all_permission_codes,
    get_permission_definition,
    get_permissions_by_category,
    is_allowed,
)
from dealflow.services import deal_service, directory_service, lifecycle_service as lifecycle


def _bare(role: str, *permissions: str) -> Actor:
    return Actor(user_id=1, role=role, permissions=frozenset(permissions))


# =============================================================================
# POLICY TABLE
# =============================================================================


class TestPolicyTable:

    def test_unknown_operation_denied(self):
        assert is_allowed(_bare("SUPER_ADMIN"), "drop_database") is False
        with pytest.raises(AuthorizationError):
            authorize(_bare("ADMIN"), "drop_database")

    def test_admin_roles_allowed_everywhere(self):
        for operation in OPERATION_POLICY:
            assert is_allowed(_bare("ADMIN"), operation), operation
            assert is_allowed(_bare("SUPER_ADMIN"), operation), operation

    def test_every_grant_is_a_known_permission(self):
        codes = set(get_all_permission_codes())
        for operation, rule in OPERATION_POLICY.items():
            assert rule.grant_permissions <= codes, operation

    @pytest.mark.parametrize(
        "role,operation,allowed",
        [
            ("MANAGER", "create_deal", True),
            ("MANAGER", "set_item_quantities", True),
            ("MANAGER", "approve_finance", False),
            ("MANAGER", "submit_shipment", False),
            ("MANAGER", "close", False),
            ("ACCOUNTANT", "approve_finance", True),
            ("ACCOUNTANT", "reject_finance", True),
            ("ACCOUNTANT", "record_payment", True),
            ("ACCOUNTANT", "create_deal", False),
            ("ACCOUNTANT", "approve_admin", False),
            ("WAREHOUSE", "submit_warehouse_response", True),
            ("WAREHOUSE", "submit_shipment", False),
            ("WAREHOUSE", "record_payment", False),
            ("WAREHOUSE_MANAGER", "submit_shipment", True),
            ("WAREHOUSE_MANAGER", "hold_shipment", True),
            ("WAREHOUSE_MANAGER", "submit_warehouse_response", True),
            ("OPERATOR", "view_deals", False),
            ("OPERATOR", "create_deal", False),
        ],
    )
    def test_role_matrix(self, role, operation, allowed):
        assert is_allowed(_bare(role), operation) is allowed

    def test_permission_grant_opens_operation(self):
        assert is_allowed(_bare("WAREHOUSE"), "submit_shipment") is False
        assert is_allowed(_bare("WAREHOUSE", "confirm_shipment"), "submit_shipment") is True

    def test_error_names_operation(self):
        with pytest.raises(AuthorizationError) as exc:
            authorize(_bare("WAREHOUSE"), "approve_admin")
        assert exc.value.details == {"operation": "approve_admin", "role": "WAREHOUSE"}


class TestPermissionCatalog:

    def test_codes_unique(self):
        codes = get_all_permission_codes()
        assert len(codes) == len(set(codes))

    def test_every_category_has_permissions(self):
        for category in PermissionCategory.ALL:
            assert get_permissions_by_category(category), category

    def test_definition_lookup(self):
        definition = get_permission_definition("close_deals")
        assert definition["category"] == PermissionCategory.DEALS
        assert get_permission_definition("nope") is None

    def test_create_user_rejects_unknown_permission(self, db_session):
        with pytest.raises(ValidationError):
            directory_service.create_user(username="x", full_name="X", role="MANAGER", permissions=["fly"])

    def test_create_user_rejects_unknown_role(self, db_session):
        with pytest.raises(ValidationError):
            directory_service.create_user(username="x", full_name="X", role="JANITOR")


# =============================================================================
# SERVICE BOUNDARY
# =============================================================================


class TestServiceBoundary:

    def test_denied_call_changes_nothing(self, workflow, warehouse):
        deal = workflow.create()
        with pytest.raises(AuthorizationError):
            deal_service.start_work(warehouse, deal.id)
        assert db.session.get(Deal, deal.id).status == lifecycle.NEW

    def test_authorization_checked_before_input(self, warehouse):
        # Garbage input still yields the authorization error
        with pytest.raises(AuthorizationError):
            deal_service.create_deal(warehouse, client_id=None, items=None)

    def test_granted_warehouse_user_can_ship(self, workflow, product_a, product_b, stock_in, shipment_fields):
        stock_in(product_a, 10)
        stock_in(product_b, 10)
        deal = workflow.ready_for_shipment()
        user = directory_service.create_user(
            username="picker",
            full_name="Picker",
            role="WAREHOUSE",
            permissions=["stock_confirm", "confirm_shipment", "view_all_deals"],
        )

        deal = deal_service.submit_shipment(Actor.from_user(user), deal.id, **shipment_fields())
        assert deal.status == lifecycle.SHIPPED


class TestOwnerScope:

    def test_manager_sees_only_own_deals(self, workflow, manager, other_manager, customer, product_a):
        own = workflow.create()
        foreign = deal_service.create_deal(
            other_manager, client_id=customer.id, items=[{"product_id": product_a.id}]
        )

        assert [d.id for d in deal_service.list_deals(manager)] == [own.id]
        assert [d.id for d in deal_service.list_deals(other_manager)] == [foreign.id]
        with pytest.raises(NotFoundError):
            deal_service.get_deal(manager, foreign.id)

    def test_view_all_deals_widens_scope(self, workflow, customer, product_a):
        own = workflow.create()
        user = directory_service.create_user(
            username="lead",
            full_name="Team Lead",
            role="MANAGER",
            permissions=["manage_deals", "view_all_deals"],
        )
        lead = Actor.from_user(user)

        assert [d.id for d in deal_service.list_deals(lead)] == [own.id]
        assert deal_service.get_deal(lead, own.id).id == own.id

    def test_foreign_write_reported_as_missing(self, workflow, other_manager, product_a):
        deal = workflow.create()
        with pytest.raises(NotFoundError):
            deal_service.add_item(other_manager, deal.id, product_a.id)
        assert len(db.session.get(Deal, deal.id).items) == 2
