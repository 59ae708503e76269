import pytest

from agro_orders.domain import transitions
from agro_orders.domain.enums import OrderStatus, Role, TERMINAL_STATUSES
from agro_orders.domain.errors import AlreadyFinalized, InvalidTransition, Unauthorized

S = OrderStatus

# Every (role, from, to) the authority must accept; everything else is refused
EXPECTED_ALLOWED = {
    (Role.BUYER, S.PENDING, S.CANCELLED),
    (Role.BUYER, S.CONFIRMED, S.CANCELLED),
    (Role.BUYER, S.PROCESSING, S.CANCELLED),
    (Role.FARMER, S.PENDING, S.CONFIRMED),
    (Role.FARMER, S.PENDING, S.CANCELLED),
    (Role.FARMER, S.CONFIRMED, S.PROCESSING),
    (Role.FARMER, S.CONFIRMED, S.CANCELLED),
    (Role.FARMER, S.PROCESSING, S.SHIPPED),
    (Role.FARMER, S.PROCESSING, S.CANCELLED),
    (Role.FARMER, S.SHIPPED, S.IN_TRANSIT),
    (Role.FARMER, S.SHIPPED, S.CANCELLED),
    (Role.FARMER, S.IN_TRANSIT, S.DELIVERED),
    (Role.FARMER, S.IN_TRANSIT, S.CANCELLED),
    (Role.TRANSPORTER, S.PROCESSING, S.SHIPPED),
    (Role.TRANSPORTER, S.SHIPPED, S.IN_TRANSIT),
    (Role.TRANSPORTER, S.IN_TRANSIT, S.DELIVERED),
} | {
    (Role.ADMIN, current, requested)
    for current, targets in transitions.BASE_TRANSITIONS.items()
    for requested in targets
}


@pytest.mark.parametrize("role", list(Role))
@pytest.mark.parametrize("current", list(OrderStatus))
@pytest.mark.parametrize("requested", list(OrderStatus))
def test_authority_matches_expected_table(role, current, requested):
    assert transitions.allowed(current, requested, role) == ((role, current, requested) in EXPECTED_ALLOWED)


@pytest.mark.parametrize("current", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_statuses_have_no_exits(current):
    assert transitions.BASE_TRANSITIONS[current] == frozenset()
    for role in Role:
        assert transitions.permitted_next(current, role) == frozenset()


def test_gateway_role_cannot_move_fulfillment():
    for current in OrderStatus:
        assert transitions.permitted_next(current, Role.GATEWAY) == frozenset()


def test_unknown_role_is_refused():
    assert not transitions.role_allows(S.PENDING, S.CONFIRMED, "auditor")


def test_buyer_cannot_cancel_shipped_order():
    with pytest.raises(Unauthorized):
        transitions.check(S.SHIPPED, S.CANCELLED, Role.BUYER)


def test_admin_cannot_skip_to_delivered():
    transitions.check(S.PENDING, S.CONFIRMED, Role.ADMIN)
    with pytest.raises(InvalidTransition):
        transitions.check(S.CONFIRMED, S.DELIVERED, Role.ADMIN)


def test_graph_violation_wins_over_role_violation():
    # Buyers cannot confirm, but the edge itself does not exist either
    with pytest.raises(InvalidTransition):
        transitions.check(S.PENDING, S.SHIPPED, Role.BUYER)


@pytest.mark.parametrize("current", [S.DELIVERED, S.CANCELLED, S.REFUNDED])
def test_terminal_order_reports_already_finalized(current):
    with pytest.raises(AlreadyFinalized):
        transitions.check(current, S.DELIVERED, Role.ADMIN)


def test_farmer_permitted_next_from_processing():
    assert transitions.permitted_next(S.PROCESSING, Role.FARMER) == {S.SHIPPED, S.CANCELLED}
    assert transitions.permitted_next(S.PROCESSING, Role.BUYER) == {S.CANCELLED}
