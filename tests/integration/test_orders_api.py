from fakes import order_payload


def _address(world, user_id="test-user"):
    return world.addresses.add(user_id)["id"]


def test_place_cod_order_201(client, world):
    r = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod"))
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "confirmed"
    assert body["payment_status"] == "success"
    assert body["payment"]["method"] == "cod"
    assert body["shipping_address"]["city"] == "San Francisco"
    assert world.mailer.sent[0][0] == "test@example.com"


def test_place_card_order_returns_checkout_url(client, world):
    r = client.post("/orders", json=order_payload(address_id=_address(world)))
    assert r.status_code == 201
    body = r.json()
    assert body["checkoutUrl"].startswith("https://")
    assert world.orders_repo.get(body["orderId"])["status"] == "pending"


def test_place_order_total_mismatch_400(client, world):
    r = client.post("/orders", json=order_payload(total="24.99", address_id=_address(world)))
    assert r.status_code == 400
    assert "Total amount mismatch" in r.json()["detail"]
    assert world.orders_repo.rows == {}


def test_place_order_sub_cent_price_400(client, world):
    items = [{"productId": "p", "vendorId": "v", "listingId": "l", "quantity": 3, "price": "0.333"}]
    r = client.post("/orders", json=order_payload(items=items, total="0.999", address_id=_address(world)))
    assert r.status_code == 400
    assert world.orders_repo.rows == {}


def test_place_order_malformed_body_400(client):
    r = client.post("/orders", json={"items": []})
    assert r.status_code == 400


def test_place_order_unknown_address_404(client, world):
    r = client.post("/orders", json=order_payload(address_id=world.addresses.add("someone-else")["id"]))
    assert r.status_code == 404


def test_gateway_outage_502(client, world):
    world.gateway.fail = True
    r = client.post("/orders", json=order_payload(address_id=_address(world)))
    assert r.status_code == 502
    order = next(iter(world.orders_repo.rows.values()))
    assert order["status"] == "canceled"


def test_list_and_get_my_orders(client, world):
    created = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod")).json()

    listed = client.get("/orders").json()["orders"]
    assert [o["id"] for o in listed] == [created["id"]]

    r = client.get(f"/orders/{created['id']}")
    assert r.status_code == 200
    assert len(r.json()["order_items"]) == 2


def test_get_order_of_another_buyer_403(client, world, current_user):
    created = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod")).json()
    current_user["id"] = "intruder"
    assert client.get(f"/orders/{created['id']}").status_code == 403


def test_get_unknown_order_404(client):
    assert client.get("/orders/nope").status_code == 404


def test_cancel_pending_then_conflict(client, world):
    created = client.post("/orders", json=order_payload(address_id=_address(world))).json()

    r = client.post(f"/orders/{created['orderId']}/cancel")
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert r.json()["order"]["status"] == "canceled"

    assert client.post(f"/orders/{created['orderId']}/cancel").status_code == 409


def test_cancel_shipped_order_is_refused_with_200(client, world, current_user):
    created = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod")).json()
    current_user["role"] = "admin"
    assert client.patch(f"/orders/{created['id']}", json={"status": "shipped"}).status_code == 200
    current_user["role"] = "buyer"

    r = client.post(f"/orders/{created['id']}/cancel")

    assert r.status_code == 200
    assert r.json()["success"] is False
    assert world.orders_repo.get(created["id"])["status"] == "shipped"


def test_admin_status_update_requires_admin(client, world, current_user):
    created = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod")).json()
    assert client.patch(f"/orders/{created['id']}", json={"status": "shipped"}).status_code == 403

    current_user["role"] = "admin"
    assert client.patch(f"/orders/{created['id']}", json={"status": "pending"}).status_code == 409
    assert client.patch(f"/orders/{created['id']}", json={"status": "bogus"}).status_code == 400


def test_vendor_dispatch_flow(client, world, current_user):
    created = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod")).json()
    current_user.update({"role": "vendor", "vendor_id": "vendor-1"})

    vendor_orders = client.get("/orders/vendor/orders").json()["orders"]
    assert [o["id"] for o in vendor_orders] == [created["id"]]

    r = client.patch(f"/orders/vendor/orders/{created['id']}/dispatch", json={"dispatchStatus": "dispatched"})
    assert r.status_code == 200
    assert r.json()["status"] == "shipped"
    assert r.json()["dispatch_status"] == "dispatched"


def test_vendor_cannot_dispatch_foreign_order(client, world, current_user):
    created = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod")).json()
    current_user.update({"role": "vendor", "vendor_id": "vendor-99"})
    r = client.patch(f"/orders/vendor/orders/{created['id']}/dispatch", json={"dispatchStatus": "dispatched"})
    assert r.status_code == 403


def test_buyer_cannot_use_vendor_routes(client):
    assert client.get("/orders/vendor/orders").status_code == 403


def test_return_request_and_review(client, world, current_user):
    created = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod")).json()
    current_user["role"] = "admin"
    client.patch(f"/orders/{created['id']}", json={"status": "shipped"})
    client.patch(f"/orders/{created['id']}", json={"status": "delivered"})
    current_user["role"] = "buyer"

    r = client.post(f"/orders/{created['id']}/return", json={"reason": "  abîmé  "})
    assert r.status_code == 201
    request_id = r.json()["id"]
    assert client.post(f"/orders/{created['id']}/return", json={"reason": "encore"}).status_code == 409

    current_user.update({"role": "vendor", "vendor_id": "vendor-1"})
    reviewed = client.put(f"/orders/return-requests/{request_id}", json={"approve": True})
    assert reviewed.status_code == 200
    assert world.orders_repo.get(created["id"])["status"] == "returned"


def test_addresses_crud(client):
    payload = {
        "name": "Jane Doe",
        "phone": "5550100",
        "city": "Austin",
        "state": "TX",
        "pinCode": "73301",
        "addressLine1": "2 Congress Ave",
        "isDefault": True,
    }
    r = client.post("/addresses", json=payload)
    assert r.status_code == 201
    address_id = r.json()["id"]
    assert r.json()["pin_code"] == "73301"

    assert [a["id"] for a in client.get("/addresses").json()["addresses"]] == [address_id]
    assert client.delete(f"/addresses/{address_id}").status_code == 204
    assert client.delete(f"/addresses/{address_id}").status_code == 404


def test_edit_address(client, world):
    own = world.addresses.add("test-user", is_default=True)
    address = world.addresses.add("test-user")
    foreign = world.addresses.add("someone-else")

    r = client.patch(f"/addresses/{address['id']}", json={"city": "Denver", "isDefault": True})
    assert r.status_code == 200
    assert r.json()["city"] == "Denver"
    assert world.addresses.rows[own["id"]]["is_default"] is False

    assert client.patch(f"/addresses/{foreign['id']}", json={"city": "Denver"}).status_code == 404
    assert client.patch(f"/addresses/{address['id']}", json={"phone": "1"}).status_code == 400


def test_list_my_return_requests(client, world, current_user):
    created = client.post("/orders", json=order_payload(address_id=_address(world), mode="cod")).json()
    world.orders_repo.rows[created["id"]]["status"] = "delivered"
    client.post(f"/orders/{created['id']}/return", json={"reason": "wrong size"})

    r = client.get("/orders/return-requests")

    assert r.status_code == 200
    requests = r.json()["returnRequests"]
    assert [(q["order_id"], q["status"]) for q in requests] == [(created["id"], "pending")]
