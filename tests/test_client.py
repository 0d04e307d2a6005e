"""Tests for the QSkipper client operations against a scripted backend."""

import base64
import json
from decimal import Decimal

import httpx
import pytest

from qskipper_server.auth import RESTAURANT_ID_KEY
from qskipper_server.errors import (
    DecodeFailure,
    FallbackExhausted,
    InvalidInputError,
    NotFoundError,
    RequestTimeout,
    ServerError,
    UnauthorizedError,
)
from qskipper_server.imaging import is_image
from qskipper_server.models import AuthCredentials, Product, RestaurantProfile
from qskipper_server.qskipper_client import QSkipperClient

from conftest import FakeBackend, jpeg_bytes, json_response

CREDENTIALS = AuthCredentials(email="owner@example.com", password="secret")

ORDERS_PAYLOAD = {
    "all_orders": [
        {
            "_id": "o1",
            "resturant": "r1",
            "userID": "u7",
            "items": [{"_id": "p1", "name": "Idli", "quantity": "3", "price": 20}],
            "totalAmount": "60",
            "status": "Placed",
            "cookTime": 10,
            "takeAway": True,
            "Time": "2024-05-01T10:00:00.000Z",
        },
        {"_id": "o2", "status": "Schedule", "totalAmount": 45.5, "scheduleDate": "2024-05-02T12:30:00Z"},
    ],
    "length": 2,
}


def _is_multipart(request: httpx.Request) -> bool:
    return request.headers.get("content-type", "").startswith("multipart/form-data")


def _form_field(name: str, value: str) -> bytes:
    return f'name="{name}"\r\n\r\n{value}\r\n'.encode()


# Authentication


def test_login_persists_session(client: QSkipperClient, backend: FakeBackend) -> None:
    backend.on(
        "POST",
        "/resturant-login",
        json_response(
            200,
            {
                "id": "u1",
                "token": "tok-123",
                "restaurantid": "r1",
                "restaurantName": "Campus Bites",
                "resturantCusine": "Snacks",
                "resturantEstimateTime": 15,
            },
        ),
    )
    backend.on("GET", "/get-order/r1", json_response(200, {"all_orders": []}))

    identity = client.login(CREDENTIALS)

    assert identity.user_id == "u1"
    assert identity.email == "owner@example.com"
    assert identity.restaurant_id == "r1"
    assert client.is_authenticated()
    assert json.loads(backend.requests[0].content) == {"email": "owner@example.com", "password": "secret"}

    client.get_orders()
    assert backend.requests[-1].headers["authorization"] == "Bearer tok-123"


def test_login_rejected(client: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("POST", "/resturant-login", json_response(401, {"message": "Invalid credentials"}))

    with pytest.raises(UnauthorizedError):
        client.login(CREDENTIALS)

    assert not client.is_authenticated()


def test_login_without_user_id_is_a_decode_failure(client: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("POST", "/resturant-login", json_response(200, {"token": "tok"}))

    with pytest.raises(DecodeFailure):
        client.login(CREDENTIALS)

    assert not client.is_authenticated()


def test_login_replaces_previous_account(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("POST", "/resturant-login", json_response(200, {"id": "u2", "token": "tok-2"}))

    identity = logged_in.login(AuthCredentials(email="other@example.com", password="pw"))

    assert identity.user_id == "u2"
    assert logged_in.identity().restaurant_id is None
    assert logged_in.resolver.resolve() is None


def test_register_sends_credentials(client: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("POST", "/resturant-register", json_response(200, {"id": "u5", "token": "tok-5"}))

    identity = client.register(CREDENTIALS)

    assert identity.user_id == "u5"
    assert not identity.is_restaurant_registered
    assert client.is_authenticated()


def test_logout_clears_session_and_caches(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get_product_photo/p1", httpx.Response(200, content=jpeg_bytes()))
    backend.on("GET", "/get_all_product/r1", json_response(200, {"products": []}))
    logged_in.product_image("p1")
    logged_in.get_products()

    logged_in.logout()
    logged_in.logout()

    assert not logged_in.is_authenticated()
    assert logged_in.image_cache.get("https://backend.test/get_product_photo/p1") is None
    assert logged_in.gateway.response_cache.get("/get_all_product/r1") is None


def test_unauthorized_response_invalidates_session(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get-order/r1", json_response(401, {"message": "jwt expired"}))

    with pytest.raises(UnauthorizedError):
        logged_in.get_orders()

    assert not logged_in.is_authenticated()


# Products


def test_get_products_without_restaurant_makes_no_request(client: QSkipperClient, backend: FakeBackend) -> None:
    assert client.get_products() == []
    assert backend.requests == []


def test_get_products_decodes_and_caches(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on(
        "GET",
        "/get_all_product/r1",
        json_response(
            200,
            {"products": [{"_id": "p1", "product_name": "Vada", "product_price": "25", "availability": True}]},
        ),
    )

    first = logged_in.get_products()
    second = logged_in.get_products()

    assert [p.name for p in first] == ["Vada"]
    assert first[0].price == 25
    assert second == first
    assert len(backend.calls("GET", "/get_all_product/r1")) == 1


def test_get_products_explicit_restaurant(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get_all_product/r2", json_response(200, [{"_id": "p9", "product_name": "Tea"}]))
    assert [p.id for p in logged_in.get_products("r2")] == ["p9"]


@pytest.mark.parametrize(
    "response",
    [
        json_response(404, {"message": "No products found"}),
        httpx.Response(200, content=b"<!DOCTYPE html><html><title>Waking up</title></html>"),
        httpx.Response(200, content=b"garbage"),
    ],
)
def test_get_products_nothing_here(logged_in: QSkipperClient, backend: FakeBackend, response: httpx.Response) -> None:
    backend.on("GET", "/get_all_product/r1", response)
    assert logged_in.get_products() == []


GATEWAY_PAGE = b"<!DOCTYPE html><html><head><title>502 Bad Gateway</title></head><body>nginx</body></html>"


@pytest.mark.parametrize("status", [502, 503])
def test_list_reads_treat_gateway_pages_as_empty(logged_in: QSkipperClient, backend: FakeBackend, status: int) -> None:
    backend.on("GET", "/get_all_product/r1", httpx.Response(status, content=GATEWAY_PAGE))
    backend.on("GET", "/get-order/r1", httpx.Response(status, content=GATEWAY_PAGE))

    assert logged_in.get_products() == []
    assert logged_in.get_orders() == []


def test_list_reads_raise_json_server_errors(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get_all_product/r1", json_response(500, {"message": "Database unavailable"}))
    backend.on("GET", "/get-order/r1", json_response(503, {"message": "Database unavailable"}))

    with pytest.raises(ServerError):
        logged_in.get_products()
    with pytest.raises(ServerError):
        logged_in.get_orders()


def test_writes_still_raise_on_gateway_pages(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("DELETE", "/delete-product/p1", httpx.Response(502, content=GATEWAY_PAGE))

    with pytest.raises(ServerError) as exc_info:
        logged_in.delete_product("p1")

    assert "502 Bad Gateway" in exc_info.value.message


def test_create_product_requires_restaurant(client: QSkipperClient, backend: FakeBackend) -> None:
    with pytest.raises(InvalidInputError):
        client.create_product(Product(name="Tea", price=10))
    assert backend.requests == []


def test_create_product_multipart(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("POST", "/create-product", json_response(201, {"productId": "p123"}))

    created = logged_in.create_product(Product(name="Tea", price=10, category="Beverages"))

    assert created.id == "p123"
    assert created.restaurant_id == "r1"
    request = backend.requests[0]
    assert _is_multipart(request)
    assert _form_field("product_name", "Tea") in request.content
    assert _form_field("restaurant_id", "r1") in request.content
    assert _form_field("availability", "true") in request.content
    assert b'name="product_photo64Image"; filename="product.jpg"' in request.content


def test_create_product_falls_back_to_json_on_timeout(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if _is_multipart(request):
            raise httpx.ReadTimeout("upload timed out", request=request)
        return json_response(200, {"product": {"_id": "p77", "product_name": "Dosa", "product_price": 60}})

    backend.on("POST", "/create-product", handler)

    created = logged_in.create_product(Product(name="Dosa", price=60, image_data=jpeg_bytes((800, 800))))

    assert created.id == "p77"
    assert created.image_data is not None
    assert len(backend.requests) == 2
    payload = json.loads(backend.requests[1].content)
    assert payload["restaurant_id"] == "r1"
    assert is_image(base64.b64decode(payload["product_photo64Image"]))


def test_create_product_exhausted(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    backend.on("POST", "/create-product", handler)

    with pytest.raises(FallbackExhausted) as exc_info:
        logged_in.create_product(Product(name="Dosa", price=60))

    assert isinstance(exc_info.value.last_error, RequestTimeout)


def test_create_product_without_id_gets_placeholder(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("POST", "/create-product", json_response(200, {"message": "Product created successfully"}))

    created = logged_in.create_product(Product(name="Tea", price=10))

    assert created.is_placeholder_id
    assert created.name == "Tea"


def test_create_product_invalidates_product_list(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get_all_product/r1", json_response(200, {"products": []}))
    backend.on("POST", "/create-product", json_response(200, {"productId": "p1"}))

    logged_in.get_products()
    logged_in.create_product(Product(name="Tea", price=10))
    logged_in.get_products()

    assert len(backend.calls("GET", "/get_all_product/r1")) == 2


def test_update_product_returns_submitted_when_no_record(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("PUT", "/update-product/p1", json_response(200, {"message": "Product updated"}))

    updated = logged_in.update_product(Product(id="p1", name="Tea", price=12, restaurant_id="r1"))

    assert updated.id == "p1"
    assert updated.price == 12
    assert _form_field("product_price", "12") in backend.requests[0].content


def test_update_placeholder_product_is_rejected(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    with pytest.raises(InvalidInputError):
        logged_in.update_product(Product(id="temp_abc", name="Tea", price=12))
    assert backend.requests == []


def test_set_product_availability(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("PUT", "/update-product/p1", json_response(200, {}))

    updated = logged_in.set_product_availability(Product(id="p1", name="Tea", price=12), False)

    assert updated.is_available is False
    assert _form_field("availability", "false") in backend.requests[0].content


def test_delete_product(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("DELETE", "/delete-product/p1", json_response(200, {"success": True}))
    backend.on("DELETE", "/delete-product/gone", json_response(404, {"message": "Product not found"}))

    assert logged_in.delete_product("p1") is True
    with pytest.raises(NotFoundError):
        logged_in.delete_product("gone")


# Orders


def test_get_orders(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get-order/r1", json_response(200, ORDERS_PAYLOAD))

    orders = logged_in.get_orders()

    assert [o.id for o in orders] == ["o1", "o2"]
    assert orders[0].total_amount == Decimal("60")
    assert orders[0].items[0].quantity == 3
    assert orders[1].total_amount == Decimal("45.5")
    assert orders[1].is_scheduled


def test_get_orders_404_no_orders_is_empty(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get-order/r1", json_response(404, {"message": "No orders found"}))
    assert logged_in.get_orders() == []


def test_get_orders_without_restaurant(client: QSkipperClient, backend: FakeBackend) -> None:
    assert client.get_orders() == []
    assert backend.requests == []


@pytest.mark.parametrize("status", [200, 202])
def test_complete_order(logged_in: QSkipperClient, backend: FakeBackend, status: int) -> None:
    backend.on("PUT", "/order-complete/o1", httpx.Response(status, content=b""))
    assert logged_in.complete_order("o1") is True


def test_complete_unknown_order(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("PUT", "/order-complete/o404", json_response(404, {"message": "Order not found"}))
    with pytest.raises(NotFoundError):
        logged_in.complete_order("o404")


def test_complete_order_locally(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get-order/r1", json_response(200, ORDERS_PAYLOAD))
    orders = logged_in.get_orders()

    patched = QSkipperClient.complete_order_locally(orders, "o1")

    assert patched[0].status == "Completed"
    assert patched[1] is orders[1]
    assert orders[0].status == "Placed"


# Restaurant profile


def test_update_restaurant(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("POST", "/update-restaurant", json_response(200, {"_id": "r9", "restaurant_Name": "New Bites"}))

    identity = logged_in.update_restaurant(
        RestaurantProfile(
            user_id="u1",
            restaurant_name="New Bites",
            cuisine="Chinese",
            estimated_time=25,
            banner_image=jpeg_bytes((2000, 1000)),
        )
    )

    assert identity.restaurant_id == "r9"
    assert logged_in.session_store.get(RESTAURANT_ID_KEY) == "r9"
    assert logged_in.identity().restaurant_name == "New Bites"
    body = backend.requests[0].content
    assert _form_field("restaurant_Name", "New Bites") in body
    assert _form_field("userId", "u1") in body
    assert _form_field("cuisines", "Chinese") in body
    assert _form_field("estimatedTime", "25") in body
    assert b'name="bannerPhoto64Image"' in body


def test_update_restaurant_requires_banner(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    with pytest.raises(InvalidInputError):
        logged_in.update_restaurant(RestaurantProfile(user_id="u1", restaurant_name="New Bites"))
    assert backend.requests == []


# Images


def test_product_image_is_cached(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    photo = jpeg_bytes()
    backend.on("GET", "/get_product_photo/p1", httpx.Response(200, content=photo))

    assert logged_in.product_image("p1") == photo
    assert logged_in.product_image("p1") == photo
    assert len(backend.requests) == 1


def test_non_image_body_is_not_found(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get_restaurant_photo/r1", json_response(200, {"message": "No photo"}))

    with pytest.raises(NotFoundError):
        logged_in.restaurant_image()

    assert logged_in.image_cache.get("https://backend.test/get_restaurant_photo/r1") is None


def test_clear_cache(logged_in: QSkipperClient, backend: FakeBackend) -> None:
    backend.on("GET", "/get_product_photo/p1", httpx.Response(200, content=jpeg_bytes()))
    logged_in.product_image("p1")

    logged_in.clear_cache()
    logged_in.product_image("p1")

    assert len(backend.requests) == 2
    assert logged_in.is_authenticated()
