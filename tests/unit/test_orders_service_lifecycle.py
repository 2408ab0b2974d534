import pytest

from commerce.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from commerce.orders.models import AddressUpdate, PlaceOrderRequest
from fakes import order_payload


def _place(world, buyer="buyer-1", mode="card"):
    address = world.addresses.add(buyer)
    request = PlaceOrderRequest.model_validate(order_payload(address_id=address["id"], mode=mode))
    res = world.order_service.place_order(buyer, request)
    return res["orderId"] if mode != "cod" else res["id"]


def _force(world, order_id, **fields):
    world.orders_repo.rows[order_id].update(fields)


# --- Annulation ---

def test_cancel_pending_order_fails_payment_attempt(world):
    order_id = _place(world)
    result = world.order_service.cancel_order(order_id, "buyer-1")

    assert result.success is True
    assert result.order["status"] == "canceled"
    assert result.order["payment_status"] == "failed"
    (payment,) = world.payments.list_by_order(order_id)
    assert payment["status"] == "failed"
    assert "order.cancelled" in world.publisher.topics()


def test_cancel_other_buyer_order_forbidden(world):
    order_id = _place(world)
    with pytest.raises(AuthorizationError):
        world.order_service.cancel_order(order_id, "intruder")
    assert world.orders_repo.get(order_id)["status"] == "pending"


def test_cancel_unknown_order(world):
    with pytest.raises(NotFoundError):
        world.order_service.cancel_order("missing", "buyer-1")


def test_cancel_twice_conflicts(world):
    order_id = _place(world)
    world.order_service.cancel_order(order_id, "buyer-1")
    with pytest.raises(ConflictError):
        world.order_service.cancel_order(order_id, "buyer-1")


@pytest.mark.parametrize("dispatch", ["dispatched", "in_transit"])
def test_cancel_refused_once_dispatched(world, dispatch):
    order_id = _place(world, mode="cod")
    _force(world, order_id, dispatch_status=dispatch)

    result = world.order_service.cancel_order(order_id, "buyer-1")

    assert result.success is False
    assert result.message
    assert world.orders_repo.get(order_id)["status"] == "confirmed"


@pytest.mark.parametrize("status", ["shipped", "delivered", "returned", "refunded"])
def test_cancel_refused_for_late_statuses(world, status):
    order_id = _place(world, mode="cod")
    _force(world, order_id, status=status)
    result = world.order_service.cancel_order(order_id, "buyer-1")
    assert result.success is False
    assert world.orders_repo.get(order_id)["status"] == status


def test_cancel_paid_card_order_requests_refund(world):
    order_id = _place(world)
    world.order_service.confirm_payment(order_id)
    result = world.order_service.cancel_order(order_id, "buyer-1")
    assert result.success is True
    assert result.order["payment_status"] == "success"
    assert world.publisher.of("order.refund_required")[0]["orderId"] == order_id


# --- Statut ---

def test_update_status_follows_state_machine(world):
    order_id = _place(world, mode="cod")
    order = world.order_service.update_order_status(order_id, "shipped")
    assert order["status"] == "shipped"
    order = world.order_service.update_order_status(order_id, "delivered")
    assert order["status"] == "delivered"
    assert order["dispatch_status"] == "delivered"
    updates = world.publisher.of("order.updated")
    assert [u["status"] for u in updates] == ["shipped", "delivered"]
    assert updates[0]["previousStatus"] == "confirmed"


def test_update_status_rejects_unknown_value(world):
    order_id = _place(world)
    with pytest.raises(ValidationError):
        world.order_service.update_order_status(order_id, "lost")


def test_terminal_status_absorbs(world):
    order_id = _place(world)
    world.order_service.cancel_order(order_id, "buyer-1")
    for target in ("pending", "confirmed", "shipped"):
        with pytest.raises(ConflictError):
            world.order_service.update_order_status(order_id, target)
    assert world.orders_repo.get(order_id)["status"] == "canceled"


def test_admin_cancel_applies_cancellation_effects(world):
    order_id = _place(world)
    payment_id = next(iter(world.payments.rows))

    order = world.order_service.update_order_status(order_id, "canceled")

    assert order["status"] == "canceled"
    assert order["payment_status"] == "failed"
    assert world.payments.get(payment_id)["status"] == "failed"
    assert world.publisher.of("order.cancelled")[0]["buyerId"] == "buyer-1"
    assert world.publisher.of("order.refund_required") == []


def test_admin_cancel_of_paid_order_flags_refund(world):
    order_id = _place(world)
    world.order_service.confirm_payment(order_id)

    world.order_service.update_order_status(order_id, "canceled")

    refund = world.publisher.of("order.refund_required")[0]
    assert refund["reason"] == "cancelled_after_payment"
    assert world.publisher.of("order.updated")[0]["previousStatus"] == "confirmed"


def test_no_backward_transition(world):
    order_id = _place(world, mode="cod")
    world.order_service.update_order_status(order_id, "shipped")
    with pytest.raises(ConflictError):
        world.order_service.update_order_status(order_id, "confirmed")


def test_returned_only_through_return_flow(world):
    order_id = _place(world, mode="cod")
    _force(world, order_id, status="delivered")
    with pytest.raises(ConflictError):
        world.order_service.update_order_status(order_id, "returned")


# --- Expédition ---

def test_dispatch_rejected_while_pending(world):
    order_id = _place(world)
    with pytest.raises(ConflictError):
        world.order_service.update_dispatch_status(order_id, "dispatched")


def test_dispatch_moves_order_to_shipped(world):
    order_id = _place(world, mode="cod")
    order = world.order_service.update_dispatch_status(order_id, "dispatched", vendor_id="vendor-1")
    assert order["dispatch_status"] == "dispatched"
    assert order["status"] == "shipped"
    event = world.publisher.of("dispatch.status.updated")[0]
    assert event == {"orderId": order_id, "dispatchStatus": "dispatched", "status": "shipped"}


def test_dispatch_delivered_requires_shipped(world):
    order_id = _place(world, mode="cod")
    with pytest.raises(ConflictError):
        world.order_service.update_dispatch_status(order_id, "delivered")


def test_dispatch_full_path_delivers_order(world):
    order_id = _place(world, mode="cod")
    for step in ("dispatched", "in_transit", "delivered"):
        order = world.order_service.update_dispatch_status(order_id, step)
    assert order["status"] == "delivered"
    assert order["dispatch_status"] == "delivered"


def test_dispatch_by_foreign_vendor_forbidden(world):
    order_id = _place(world, mode="cod")
    with pytest.raises(AuthorizationError):
        world.order_service.update_dispatch_status(order_id, "dispatched", vendor_id="vendor-9")


def test_dispatch_rejects_unknown_value(world):
    order_id = _place(world, mode="cod")
    with pytest.raises(ValidationError):
        world.order_service.update_dispatch_status(order_id, "teleported")


# --- Verrou optimiste ---

def test_lost_race_is_retried(world):
    order_id = _place(world, mode="cod")
    world.orders_repo.concurrent_bumps = 1
    order = world.order_service.update_order_status(order_id, "shipped")
    assert order["status"] == "shipped"
    assert world.orders_repo.cas_calls >= 2


def test_persistent_race_gives_conflict(world):
    order_id = _place(world, mode="cod")
    world.orders_repo.concurrent_bumps = 10
    with pytest.raises(ConflictError):
        world.order_service.update_order_status(order_id, "shipped")
    assert world.orders_repo.rows[order_id]["status"] == "confirmed"


def test_guards_reevaluated_after_lost_race(world):
    order_id = _place(world, mode="cod")
    original = world.orders_repo.compare_and_set

    def cas_with_concurrent_dispatch(oid, version, changes):
        # Le vendeur expédie entre la lecture et l'écriture de l'annulation
        world.orders_repo.compare_and_set = original
        row = world.orders_repo.rows[oid]
        row.update({"dispatch_status": "dispatched", "status": "shipped", "version": row["version"] + 1})
        return original(oid, version, changes)

    world.orders_repo.compare_and_set = cas_with_concurrent_dispatch
    result = world.order_service.cancel_order(order_id, "buyer-1")
    assert result.success is False
    assert world.orders_repo.get(order_id)["status"] == "shipped"


# --- Retours ---

def test_return_flow_approved(world):
    order_id = _place(world, mode="cod")
    _force(world, order_id, status="delivered")
    request = world.order_service.request_return(order_id, "buyer-1", " damaged ")
    assert request["reason"] == "damaged"

    reviewed = world.order_service.review_return(request["id"], approve=True)

    assert reviewed["status"] == "approved"
    assert world.orders_repo.get(order_id)["status"] == "returned"
    assert world.publisher.of("order.returned")[0]["returnRequestId"] == request["id"]


def test_return_flow_rejected_keeps_order(world):
    order_id = _place(world, mode="cod")
    _force(world, order_id, status="delivered")
    request = world.order_service.request_return(order_id, "buyer-1", "changed my mind")
    world.order_service.review_return(request["id"], approve=False)
    assert world.orders_repo.get(order_id)["status"] == "delivered"
    with pytest.raises(ConflictError):
        world.order_service.review_return(request["id"], approve=True)


def test_return_requires_delivered_order(world):
    order_id = _place(world, mode="cod")
    with pytest.raises(ConflictError):
        world.order_service.request_return(order_id, "buyer-1", "too early")


def test_single_open_return_request(world):
    order_id = _place(world, mode="cod")
    _force(world, order_id, status="delivered")
    world.order_service.request_return(order_id, "buyer-1", "first")
    with pytest.raises(ConflictError):
        world.order_service.request_return(order_id, "buyer-1", "second")



def test_return_requests_listed_for_buyer(world):
    first = _place(world, mode="cod")
    second = _place(world, mode="cod")
    _force(world, first, status="delivered")
    _force(world, second, status="delivered")
    world.order_service.request_return(first, "buyer-1", "first")
    world.order_service.request_return(second, "buyer-1", "second")

    listed = world.order_service.get_return_requests_by_user("buyer-1")

    assert [r["reason"] for r in listed] == ["second", "first"]
    assert world.order_service.get_return_requests_by_user("buyer-2") == []

# --- Lectures ---

def test_reads(world):
    order_id = _place(world, mode="cod")
    assert [o["id"] for o in world.order_service.get_orders_by_user("buyer-1")] == [order_id]
    assert world.order_service.get_order_by_id(order_id)["buyer_id"] == "buyer-1"
    vendor_orders = world.order_service.get_vendor_orders("vendor-2")
    assert [it["vendor_id"] for it in vendor_orders[0]["order_items"]] == ["vendor-2"]
    with pytest.raises(NotFoundError):
        world.order_service.get_order_by_id("nope")


# --- Adresses ---

def test_edit_address_partial_update(world):
    address = world.addresses.add("buyer-1", city="Austin")
    edited = world.services.addresses.edit_address(
        "buyer-1", address["id"], AddressUpdate.model_validate({"city": "Dallas", "addressLine2": "Apt 4"})
    )
    assert edited["city"] == "Dallas"
    assert edited["address_line2"] == "Apt 4"
    assert edited["name"] == address["name"]


def test_edit_address_default_resets_others(world):
    previous = world.addresses.add("buyer-1", is_default=True)
    other_user = world.addresses.add("buyer-2", is_default=True)
    address = world.addresses.add("buyer-1")

    world.services.addresses.edit_address("buyer-1", address["id"], AddressUpdate(is_default=True))

    assert world.addresses.rows[address["id"]]["is_default"] is True
    assert world.addresses.rows[previous["id"]]["is_default"] is False
    assert world.addresses.rows[other_user["id"]]["is_default"] is True


def test_edit_address_of_another_user_is_not_found(world):
    address = world.addresses.add("buyer-2", is_default=True)
    own = world.addresses.add("buyer-1", is_default=True)
    with pytest.raises(NotFoundError):
        world.services.addresses.edit_address("buyer-1", address["id"], AddressUpdate(is_default=True))
    assert world.addresses.rows[address["id"]]["city"] == "San Francisco"
    assert world.addresses.rows[own["id"]]["is_default"] is True


def test_edit_address_without_fields_rejected(world):
    address = world.addresses.add("buyer-1")
    with pytest.raises(ValidationError):
        world.services.addresses.edit_address("buyer-1", address["id"], AddressUpdate())
