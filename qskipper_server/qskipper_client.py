"""QSkipper restaurant-admin API client."""

import base64
import logging
from typing import Optional
from urllib.parse import quote

import httpx

from .auth import SessionStore, identity_from_login
from .config import Settings
from .errors import DecodeFailure, InvalidInputError, NotFoundError, ServerError
from .gateway import ApiGateway, ApiResponse, ResponseCache, Strategy, run_strategies
from .image_cache import ImageCache
from .imaging import BANNER_MAX_DIMENSION, PRODUCT_MAX_DIMENSION, compress_image, is_image, placeholder_jpeg
from .models import (
    PLACEHOLDER_ID_PREFIX,
    AuthCredentials,
    Order,
    Product,
    RestaurantProfile,
    SessionIdentity,
)
from .normalizer import (
    decode_completion,
    decode_create_result,
    decode_list,
    load_json,
    looks_like_html,
    normalize_order,
    normalize_product,
    resolve_created_product,
)
from .resolver import RestaurantIdentityResolver

logger = logging.getLogger(__name__)

PRODUCT_LIST_PREFIX = "/get_all_product/"


def _segment(value: str) -> str:
    return quote(value, safe="")


class QSkipperClient:
    """Client for the QSkipper restaurant backend."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session_store: Optional[SessionStore] = None,
        image_cache: Optional[ImageCache] = None,
        gateway: Optional[ApiGateway] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        """
        Initialize the QSkipper client.

        Args:
            settings: Runtime settings, read from the environment when omitted
            session_store: Persisted session, created from settings when omitted
            image_cache: Image cache, created from settings when omitted
            gateway: HTTP gateway, created from settings when omitted
            transport: httpx transport for the default gateway (tests)
        """
        self.settings = settings or Settings.from_env()
        self.session_store = session_store or SessionStore(self.settings.session_file)
        self.resolver = RestaurantIdentityResolver(self.session_store)
        self.image_cache = image_cache or ImageCache(
            self.settings.cache_dir,
            max_memory_bytes=self.settings.max_memory_cache_bytes,
            max_disk_bytes=self.settings.max_disk_cache_bytes,
        )
        self.gateway = gateway or ApiGateway(
            self.session_store,
            base_url=self.settings.base_url,
            timeout=self.settings.timeout,
            response_cache=ResponseCache(self.settings.response_cache_ttl),
            transport=transport,
        )
        if self.gateway.on_unauthorized is None:
            self.gateway.on_unauthorized = self._handle_unauthorized

        self.session_store.add_invalidation_hook(self.image_cache.clear)
        self.session_store.add_invalidation_hook(self.gateway.response_cache.clear)

    def _handle_unauthorized(self) -> None:
        logger.warning("Session rejected by backend, logging out")
        self.session_store.logout()

    # Authentication

    def _authenticate(self, path: str, body: dict, email: str) -> SessionIdentity:
        # Start from a clean slate so nothing from a previous account survives
        self.session_store.logout()

        response = self.gateway.post(path, json=body)
        payload = load_json(response.content)
        if not isinstance(payload, dict):
            raise DecodeFailure(f"Unexpected response from {path}")

        identity = identity_from_login(payload)
        if not identity.user_id:
            raise DecodeFailure("Response did not include a user ID")
        if not identity.email:
            identity = identity.model_copy(update={"email": email})

        raw = {key: value for key, value in payload.items() if key not in ("token", "accessToken")}
        self.session_store.save_login(identity, raw_payload=raw)
        return identity

    def login(self, credentials: AuthCredentials) -> SessionIdentity:
        """
        Log in as a restaurant owner.

        Raises:
            UnauthorizedError: Wrong credentials
            ServerError: Any other backend rejection
            DecodeFailure: The response carried no user id
        """
        logger.info(f"=== LOGIN: email={credentials.email} ===")
        identity = self._authenticate(
            "/resturant-login",
            {"email": credentials.email, "password": credentials.password},
            credentials.email,
        )
        logger.info(f"Login successful for user {identity.user_id}")
        return identity

    def register(self, credentials: AuthCredentials, name: Optional[str] = None) -> SessionIdentity:
        """Create a restaurant-owner account and keep its session."""
        logger.info(f"=== REGISTER: email={credentials.email} ===")
        body = {"email": credentials.email, "password": credentials.password}
        if name:
            body["name"] = name
        identity = self._authenticate("/resturant-register", body, credentials.email)
        logger.info(f"Registration successful for user {identity.user_id}")
        return identity

    def logout(self) -> None:
        """Clear the session and every cache."""
        logger.info("=== LOGOUT ===")
        self.session_store.logout()

    def is_authenticated(self) -> bool:
        return self.session_store.is_authenticated()

    def identity(self) -> SessionIdentity:
        return self.session_store.identity()

    # Products

    def get_products(self, restaurant_id: Optional[str] = None) -> list[Product]:
        """
        Get the restaurant's menu.

        Returns an empty list, without calling the backend, when no restaurant
        id can be resolved. 404s, HTML pages and unparseable bodies also read
        as an empty menu.
        """
        restaurant_id = self.resolver.resolve(restaurant_id)
        logger.info(f"=== GET PRODUCTS: restaurant={restaurant_id} ===")
        if not restaurant_id:
            logger.warning("No restaurant ID, returning empty product list")
            return []

        try:
            response = self.gateway.get(f"{PRODUCT_LIST_PREFIX}{_segment(restaurant_id)}", use_cache=True)
        except NotFoundError:
            logger.info("No products found for restaurant")
            return []
        except ServerError as e:
            if not looks_like_html(e.body):
                raise
            logger.warning(f"Gateway error page instead of products, treating as empty: {e.message}")
            return []

        try:
            products = decode_list(response.content, "products", normalize_product)
        except DecodeFailure as e:
            logger.warning(f"Could not decode product list, treating as empty: {e.message}")
            return []

        logger.info(f"Found {len(products)} product(s)")
        return products

    def _prepare_product(self, product: Product) -> Product:
        restaurant_id = self.resolver.require(product.restaurant_id or None)
        image_data = product.image_data
        if image_data:
            try:
                image_data = compress_image(image_data, max_dimension=PRODUCT_MAX_DIMENSION)
            except ValueError as e:
                raise InvalidInputError(f"Product image could not be read: {e}") from e
        return product.model_copy(update={"restaurant_id": restaurant_id, "image_data": image_data})

    def _product_strategies(self, method: str, path: str, product: Product) -> list[Strategy[ApiResponse]]:
        def multipart() -> ApiResponse:
            image = product.image_data or placeholder_jpeg()
            return self.gateway.request(
                method,
                path,
                data=product.to_form_fields(),
                files={"product_photo64Image": ("product.jpg", image, "image/jpeg")},
                timeout=self.settings.multipart_upload_timeout,
            )

        def json_base64() -> ApiResponse:
            image_b64 = base64.b64encode(product.image_data).decode("ascii") if product.image_data else None
            return self.gateway.request(
                method,
                path,
                json=product.to_json_payload(image_b64),
                timeout=self.settings.json_upload_timeout,
            )

        return [Strategy("multipart upload", multipart), Strategy("JSON upload", json_base64)]

    def create_product(self, product: Product) -> Product:
        """
        Create a menu item.

        The restaurant id is resolved and stamped onto the product before any
        request. Multipart upload is tried first and JSON with a base64 image
        second. When the backend accepts the product without telling us its
        id, the returned product carries a temp_ placeholder id.

        Raises:
            InvalidInputError: No restaurant id, or an unreadable image
            FallbackExhausted: Every upload strategy failed
        """
        product = self._prepare_product(product)
        logger.info(f"=== CREATE PRODUCT: {product.name} (restaurant={product.restaurant_id}) ===")

        response = run_strategies("create product", self._product_strategies("POST", "/create-product", product))
        created = resolve_created_product(product, decode_create_result(response.content))
        self.gateway.response_cache.invalidate(PRODUCT_LIST_PREFIX)

        logger.info(f"Product created with ID {created.id}")
        return created

    def update_product(self, product: Product) -> Product:
        """
        Update a menu item.

        Returns the record the backend sent back, or the submitted product
        when the response carries none.
        """
        if not product.id or product.is_placeholder_id:
            raise InvalidInputError(f"Product '{product.name}' has no backend ID and cannot be updated")

        product = self._prepare_product(product)
        logger.info(f"=== UPDATE PRODUCT: {product.id} ===")

        path = f"/update-product/{_segment(product.id)}"
        response = run_strategies("update product", self._product_strategies("PUT", path, product))
        updated = resolve_created_product(product, decode_create_result(response.content))
        if updated.is_placeholder_id:
            updated = product
        self.gateway.response_cache.invalidate(PRODUCT_LIST_PREFIX)
        return updated

    def set_product_availability(self, product: Product, is_available: bool) -> Product:
        logger.info(f"Setting availability of {product.id} to {is_available}")
        return self.update_product(product.model_copy(update={"is_available": is_available}))

    def delete_product(self, product_id: str) -> bool:
        """
        Delete a menu item.

        Raises:
            InvalidInputError: Empty or placeholder product id
            NotFoundError: The backend does not know the product
        """
        if not product_id or product_id.startswith(PLACEHOLDER_ID_PREFIX):
            raise InvalidInputError(f"Product ID '{product_id}' cannot be deleted on the backend")

        logger.info(f"=== DELETE PRODUCT: {product_id} ===")
        response = self.gateway.delete(f"/delete-product/{_segment(product_id)}")
        success, message = decode_completion(response.content)
        if not success:
            raise ServerError(message or f"Failed to delete product {product_id}", status_code=response.status_code)

        self.gateway.response_cache.invalidate(PRODUCT_LIST_PREFIX)
        return True

    # Orders

    def get_orders(self, restaurant_id: Optional[str] = None) -> list[Order]:
        """Get the restaurant's orders; 'nothing here' responses read as []."""
        restaurant_id = self.resolver.resolve(restaurant_id)
        logger.info(f"=== GET ORDERS: restaurant={restaurant_id} ===")
        if not restaurant_id:
            logger.warning("No restaurant ID, returning empty order list")
            return []

        try:
            response = self.gateway.get(f"/get-order/{_segment(restaurant_id)}")
        except NotFoundError as e:
            logger.info(f"No orders found ({e.message})")
            return []
        except ServerError as e:
            if not looks_like_html(e.body):
                raise
            logger.warning(f"Gateway error page instead of orders, treating as empty: {e.message}")
            return []

        try:
            orders = decode_list(response.content, "all_orders", normalize_order)
        except DecodeFailure as e:
            logger.warning(f"Could not decode order list, treating as empty: {e.message}")
            return []

        logger.info(f"Found {len(orders)} order(s)")
        return orders

    def complete_order(self, order_id: str) -> bool:
        """
        Mark an order as completed.

        Raises:
            NotFoundError: Unknown order
            ServerError: Any status other than 200/202
        """
        if not order_id:
            raise InvalidInputError("Order ID is required")

        logger.info(f"=== COMPLETE ORDER: {order_id} ===")
        response = self.gateway.put(f"/order-complete/{_segment(order_id)}")
        if response.status_code not in (200, 202):
            raise ServerError(
                f"Unexpected status {response.status_code} completing order {order_id}",
                status_code=response.status_code,
            )
        return True

    @staticmethod
    def complete_order_locally(orders: list[Order], order_id: str) -> list[Order]:
        """Apply a successful completion to orders already held by the caller."""
        return [order.with_status("Completed") if order.id == order_id else order for order in orders]

    # Restaurant profile

    def update_restaurant(self, profile: RestaurantProfile) -> SessionIdentity:
        """
        Update the restaurant profile and persist the new snapshot.

        Raises:
            InvalidInputError: Missing banner image or unreadable image
            ServerError: Backend answered success=false
        """
        logger.info(f"=== UPDATE RESTAURANT: {profile.restaurant_name} ===")
        if not profile.banner_image:
            raise InvalidInputError("A banner image is required to update the restaurant")

        try:
            banner = compress_image(profile.banner_image, max_dimension=BANNER_MAX_DIMENSION)
        except ValueError as e:
            raise InvalidInputError(f"Banner image could not be read: {e}") from e

        response = self.gateway.post(
            "/update-restaurant",
            data=profile.to_form_fields(),
            files={"bannerPhoto64Image": ("restaurant.jpg", banner, "image/jpeg")},
            timeout=self.settings.multipart_upload_timeout,
        )

        try:
            payload = load_json(response.content)
        except DecodeFailure:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}

        success, message = decode_completion(response.content)
        if not success:
            raise ServerError(message or "Restaurant update was rejected", status_code=response.status_code)

        restaurant_id = payload.get("_id") if isinstance(payload.get("_id"), str) else None
        current = self.session_store.identity()
        identity = current.model_copy(
            update={
                "restaurant_id": restaurant_id or self.resolver.resolve() or current.restaurant_id,
                "restaurant_name": profile.restaurant_name,
                "cuisine": profile.cuisine,
                "estimated_time": profile.estimated_time,
            }
        )
        identity = identity.model_copy(update={"is_restaurant_registered": bool(identity.restaurant_id)})
        self.session_store.update_restaurant(identity)
        if identity.restaurant_id:
            self.image_cache.discard(self._image_identity(f"/get_restaurant_photo/{_segment(identity.restaurant_id)}"))
        return identity

    # Images

    def _image_identity(self, url: str) -> str:
        if url.startswith(("http://", "https://")):
            return url
        return f"{str(self.gateway.client.base_url).rstrip('/')}{url}"

    def fetch_image(self, url: str) -> bytes:
        """
        Fetch an image through the image cache.

        Args:
            url: Absolute URL or backend path

        Raises:
            NotFoundError: 404, or the body is not an image
        """
        identity = self._image_identity(url)
        cached = self.image_cache.get(identity)
        if cached is not None:
            return cached.data

        logger.info(f"Fetching image: {identity}")
        response = self.gateway.get(url)
        if not is_image(response.content):
            raise NotFoundError(f"No image at {url}", body=response.content)

        self.image_cache.put(identity, response.content)
        return response.content

    def product_image(self, product_id: str) -> bytes:
        return self.fetch_image(f"/get_product_photo/{_segment(product_id)}")

    def restaurant_image(self, restaurant_id: Optional[str] = None) -> bytes:
        return self.fetch_image(f"/get_restaurant_photo/{_segment(self.resolver.require(restaurant_id))}")

    def clear_cache(self) -> None:
        """Drop cached images and API responses."""
        self.image_cache.clear()
        self.gateway.response_cache.clear()

    def close(self) -> None:
        """Close the HTTP client."""
        self.gateway.close()
