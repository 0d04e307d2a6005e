"""HTTP server exposing the QSkipper client core as a REST API."""

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from .config import Settings
from .errors import (
    FallbackExhausted,
    InvalidInputError,
    NotFoundError,
    QSkipperError,
    UnauthorizedError,
)
from .models import AuthCredentials, Product, RestaurantProfile
from .qskipper_client import QSkipperClient

logger = logging.getLogger("qskipper-http-server")

VERSION = "0.1.0"


# Request/Response Models
class LoginRequest(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    success: bool
    message: str
    user_id: Optional[str] = None
    restaurant_id: Optional[str] = None


class ProductRequest(BaseModel):
    name: str
    price: int = Field(ge=0)
    description: str = ""
    category: str = ""
    extra_time: int = 0
    is_available: bool = True
    is_featured: bool = False
    image_base64: Optional[str] = Field(None, description="Product image, base64 encoded")


class ProductUpdateRequest(BaseModel):
    name: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None
    category: Optional[str] = None
    extra_time: Optional[int] = None
    is_available: Optional[bool] = None
    is_featured: Optional[bool] = None
    image_base64: Optional[str] = None


class RestaurantRequest(BaseModel):
    restaurant_name: str
    cuisine: str = ""
    estimated_time: int = 30
    banner_base64: str = Field(description="Banner image, base64 encoded")


def _decode_image(value: Optional[str]) -> Optional[bytes]:
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Image is not valid base64")


def _http_error(e: QSkipperError) -> HTTPException:
    """Map a client-core error onto an HTTP status."""
    if isinstance(e, FallbackExhausted) and isinstance(e.last_error, QSkipperError):
        return _http_error(e.last_error)
    if isinstance(e, InvalidInputError):
        return HTTPException(status_code=400, detail=e.message)
    if isinstance(e, UnauthorizedError):
        return HTTPException(status_code=401, detail=e.message)
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    return HTTPException(status_code=502, detail=e.message)


def create_app(client: Optional[QSkipperClient] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        client: Client to serve; built from the environment at startup when omitted
    """
    state: dict = {"client": client}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown."""
        logger.info("Starting QSkipper HTTP Server...")
        owns_client = state["client"] is None
        if owns_client:
            state["client"] = QSkipperClient(Settings.from_env())

        yield

        logger.info("Shutting down QSkipper HTTP Server...")
        if owns_client:
            state["client"].close()
            state["client"] = None

    app = FastAPI(
        title="QSkipper MCP Server",
        description="HTTP API for managing a QSkipper restaurant",
        version=VERSION,
        lifespan=lifespan,
    )

    def get_client() -> QSkipperClient:
        if state["client"] is None:
            raise HTTPException(status_code=503, detail="Server is starting")
        return state["client"]

    def require_session() -> QSkipperClient:
        qskipper_client = get_client()
        if not qskipper_client.is_authenticated():
            raise HTTPException(status_code=401, detail="Not authenticated")
        return qskipper_client

    def find_product(qskipper_client: QSkipperClient, product_id: str) -> Product:
        for product in qskipper_client.get_products():
            if product.id == product_id:
                return product
        raise HTTPException(status_code=404, detail=f"Product {product_id} not found")

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        qskipper_client = state["client"]
        return {
            "name": "QSkipper MCP Server",
            "version": VERSION,
            "description": "HTTP API for managing a QSkipper restaurant",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": {"login": "POST /auth/login", "logout": "POST /auth/logout", "status": "GET /auth/status"},
                "products": {
                    "list": "GET /products",
                    "create": "POST /products",
                    "update": "PUT /products/{product_id}",
                    "delete": "DELETE /products/{product_id}",
                },
                "orders": {"list": "GET /orders", "complete": "PUT /orders/{order_id}/complete"},
                "restaurant": {"update": "POST /restaurant"},
                "cache": {"clear": "POST /cache/clear"},
            },
            "authenticated": qskipper_client.is_authenticated() if qskipper_client else False,
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        qskipper_client = state["client"]
        return {
            "status": "healthy",
            "authenticated": qskipper_client.is_authenticated() if qskipper_client else False,
        }

    # Authentication endpoints
    @app.post("/auth/login", response_model=LoginResponse)
    async def login(request: LoginRequest):
        """Login as a restaurant owner."""
        qskipper_client = get_client()
        try:
            identity = qskipper_client.login(AuthCredentials(email=request.email, password=request.password))
        except UnauthorizedError:
            return LoginResponse(success=False, message="Login failed. Check your credentials.")
        except QSkipperError as e:
            logger.error(f"Login error: {e.message}", exc_info=True)
            raise _http_error(e)

        return LoginResponse(
            success=True,
            message=f"Successfully logged in as {request.email}",
            user_id=identity.user_id,
            restaurant_id=identity.restaurant_id,
        )

    @app.post("/auth/logout")
    async def logout():
        """Logout and clear every cache."""
        get_client().logout()
        return {"success": True, "message": "Successfully logged out"}

    @app.get("/auth/status")
    async def auth_status():
        """Get authentication status."""
        qskipper_client = get_client()
        if not qskipper_client.is_authenticated():
            return {"authenticated": False}
        identity = qskipper_client.identity()
        return {
            "authenticated": True,
            "user_id": identity.user_id,
            "email": identity.email,
            "restaurant_id": identity.restaurant_id,
            "restaurant_name": identity.restaurant_name,
            "is_restaurant_registered": identity.is_restaurant_registered,
        }

    # Product endpoints
    @app.get("/products")
    async def list_products(restaurant_id: Optional[str] = None):
        """List the restaurant's products."""
        qskipper_client = get_client()
        try:
            products = qskipper_client.get_products(restaurant_id)
        except QSkipperError as e:
            logger.error(f"List products error: {e.message}", exc_info=True)
            raise _http_error(e)
        return {"count": len(products), "products": [product.model_dump() for product in products]}

    @app.post("/products", status_code=201)
    async def create_product(request: ProductRequest):
        """Create a product."""
        qskipper_client = require_session()
        product = Product(
            name=request.name,
            price=request.price,
            description=request.description,
            category=request.category,
            extra_time=request.extra_time,
            is_available=request.is_available,
            is_featured=request.is_featured,
            image_data=_decode_image(request.image_base64),
        )
        try:
            created = qskipper_client.create_product(product)
        except QSkipperError as e:
            logger.error(f"Create product error: {e.message}", exc_info=True)
            raise _http_error(e)
        return {"success": True, "placeholder_id": created.is_placeholder_id, "product": created.model_dump()}

    @app.put("/products/{product_id}")
    async def update_product(product_id: str, request: ProductUpdateRequest):
        """Update a product; only the given fields change."""
        qskipper_client = require_session()
        try:
            product = find_product(qskipper_client, product_id)
            updates = request.model_dump(exclude_none=True, exclude={"image_base64"})
            image_data = _decode_image(request.image_base64)
            if image_data:
                updates["image_data"] = image_data
            updated = qskipper_client.update_product(product.model_copy(update=updates))
        except QSkipperError as e:
            logger.error(f"Update product error: {e.message}", exc_info=True)
            raise _http_error(e)
        return {"success": True, "product": updated.model_dump()}

    @app.delete("/products/{product_id}")
    async def delete_product(product_id: str):
        """Delete a product."""
        qskipper_client = require_session()
        try:
            qskipper_client.delete_product(product_id)
        except QSkipperError as e:
            logger.error(f"Delete product error: {e.message}", exc_info=True)
            raise _http_error(e)
        return {"success": True, "message": f"Deleted product {product_id}"}

    # Order endpoints
    @app.get("/orders")
    async def list_orders(status: Optional[str] = None):
        """List the restaurant's orders, optionally filtered by status category."""
        qskipper_client = require_session()
        try:
            orders = qskipper_client.get_orders()
        except QSkipperError as e:
            logger.error(f"Get orders error: {e.message}", exc_info=True)
            raise _http_error(e)
        if status:
            orders = [order for order in orders if order.status_category.value == status.lower()]
        return {"count": len(orders), "orders": [order.model_dump() for order in orders]}

    @app.put("/orders/{order_id}/complete")
    async def complete_order(order_id: str):
        """Mark an order as completed."""
        qskipper_client = require_session()
        try:
            qskipper_client.complete_order(order_id)
        except QSkipperError as e:
            logger.error(f"Complete order error: {e.message}", exc_info=True)
            raise _http_error(e)
        return {"success": True, "message": f"Order {order_id} marked as completed"}

    # Restaurant endpoints
    @app.post("/restaurant")
    async def update_restaurant(request: RestaurantRequest):
        """Update the restaurant profile."""
        qskipper_client = require_session()
        profile = RestaurantProfile(
            user_id=qskipper_client.identity().user_id or "",
            restaurant_name=request.restaurant_name,
            cuisine=request.cuisine,
            estimated_time=request.estimated_time,
            banner_image=_decode_image(request.banner_base64),
        )
        try:
            identity = qskipper_client.update_restaurant(profile)
        except QSkipperError as e:
            logger.error(f"Update restaurant error: {e.message}", exc_info=True)
            raise _http_error(e)
        return {"success": True, "restaurant": identity.model_dump(exclude={"auth_token"})}

    @app.post("/cache/clear")
    async def clear_cache():
        """Clear cached images and API responses."""
        get_client().clear_cache()
        return {"success": True, "message": "Cache cleared"}

    return app


app = create_app()


def run_http_server(host: str = "0.0.0.0", port: int = 8000, log_level: str = "info"):
    """Run the HTTP server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_http_server()
