"""MCP Server for the QSkipper restaurant-admin backend."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool
from pydantic import AnyUrl

from .config import Settings
from .errors import FallbackExhausted, QSkipperError
from .models import AuthCredentials, Order, Product, RestaurantProfile
from .qskipper_client import QSkipperClient

logger = logging.getLogger("qskipper-mcp-server")

# Initialize server
app = Server("qskipper-mcp-server")

# Global state
qskipper_client: QSkipperClient
credentials: Optional[AuthCredentials] = None

NOT_AUTHENTICATED = (
    "Error: Not authenticated. Please configure QSKIPPER_EMAIL and QSKIPPER_PASSWORD "
    "in the MCP settings or call qskipper_login."
)


async def ensure_authenticated() -> bool:
    """Ensure the client is authenticated, auto-login if credentials are available."""
    if qskipper_client.is_authenticated():
        return True

    if credentials:
        try:
            logger.info("Auto-logging in with configured credentials...")
            qskipper_client.login(credentials)
            logger.info("Auto-login successful")
            return True
        except QSkipperError as e:
            logger.error(f"Auto-login error: {e.message}")

    return False


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


def _read_image(path: Optional[str]) -> Optional[bytes]:
    if not path:
        return None
    return Path(path).expanduser().read_bytes()


def format_products(products: list[Product]) -> str:
    if not products:
        return "No products found"

    result_lines = [f"Found {len(products)} product(s):\n"]
    for i, product in enumerate(products, 1):
        result_lines.append(f"\n{i}. {product.name}")
        result_lines.append(f"   ID: {product.id}")
        result_lines.append(f"   Price: ₹{product.price}")
        if product.category:
            result_lines.append(f"   Category: {product.category}")
        if product.description:
            result_lines.append(f"   Description: {product.description}")
        result_lines.append(f"   Available: {'Yes' if product.is_available else 'No'}")
        if product.is_featured:
            result_lines.append("   Featured: Yes")
        if product.extra_time:
            result_lines.append(f"   Extra time: {product.extra_time} min")
    return "\n".join(result_lines)


def format_orders(orders: list[Order]) -> str:
    if not orders:
        return "No orders found"

    result_lines = [f"Found {len(orders)} order(s):\n"]
    for i, order in enumerate(orders, 1):
        result_lines.append(f"\n{i}. Order {order.id}")
        result_lines.append(f"   Status: {order.status or order.status_category.value}")
        if order.order_time:
            result_lines.append(f"   Placed: {order.order_time.strftime('%Y-%m-%d %H:%M')}")
        if order.schedule_date:
            result_lines.append(f"   Scheduled for: {order.schedule_date.strftime('%Y-%m-%d %H:%M')}")
        result_lines.append(f"   Total: ₹{order.total_amount}")
        result_lines.append(f"   Take away: {'Yes' if order.take_away else 'No'}")
        if order.cook_time:
            result_lines.append(f"   Cook time: {order.cook_time} min")
        if order.items:
            result_lines.append(f"   Items ({len(order.items)}):")
            for item in order.items:
                result_lines.append(f"     - {item.name} x{item.quantity} (₹{item.subtotal})")
    return "\n".join(result_lines)


def _find_product(product_id: str) -> Optional[Product]:
    for product in qskipper_client.get_products():
        if product.id == product_id:
            return product
    return None


@app.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    resources = []

    if qskipper_client.is_authenticated():
        resources.extend(
            [
                Resource(
                    uri=AnyUrl("qskipper://products"),
                    name="Menu",
                    mimeType="application/json",
                    description="Products on the restaurant's menu",
                ),
                Resource(
                    uri=AnyUrl("qskipper://orders"),
                    name="Orders",
                    mimeType="application/json",
                    description="Orders placed at the restaurant",
                ),
            ]
        )

    return resources


@app.read_resource()
async def read_resource(uri: AnyUrl) -> str:
    """Read a resource by URI."""
    uri_str = str(uri)

    if uri_str == "qskipper://products":
        if not qskipper_client.is_authenticated():
            return "Error: Not authenticated. Please login first."
        products = qskipper_client.get_products()
        return json.dumps([product.model_dump() for product in products], indent=2, default=str)

    elif uri_str == "qskipper://orders":
        if not qskipper_client.is_authenticated():
            return "Error: Not authenticated. Please login first."
        orders = qskipper_client.get_orders()
        return json.dumps([order.model_dump() for order in orders], indent=2, default=str)

    raise ValueError(f"Unknown resource: {uri}")


PRODUCT_PROPERTIES = {
    "name": {"type": "string", "description": "Product name"},
    "price": {"type": "integer", "description": "Price in rupees"},
    "description": {"type": "string", "description": "Product description"},
    "category": {"type": "string", "description": "Food category (e.g. Snacks, Beverages)"},
    "extra_time": {"type": "integer", "description": "Extra preparation time in minutes"},
    "is_available": {"type": "boolean", "description": "Whether the product can be ordered"},
    "is_featured": {"type": "boolean", "description": "Whether the product is featured"},
    "image_path": {"type": "string", "description": "Path to a local image file (optional)"},
}


@app.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="qskipper_login",
            description="Authenticate as a restaurant owner. Uses credentials from environment (QSKIPPER_EMAIL, QSKIPPER_PASSWORD) if not provided.",
            inputSchema={
                "type": "object",
                "properties": {
                    "email": {
                        "type": "string",
                        "description": "Account email (optional if QSKIPPER_EMAIL is configured)",
                    },
                    "password": {
                        "type": "string",
                        "description": "Account password (optional if QSKIPPER_PASSWORD is configured)",
                    },
                },
            },
        ),
        Tool(
            name="qskipper_logout",
            description="Logout and clear the session and all caches",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="qskipper_status",
            description="Show the logged-in user and restaurant",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="qskipper_list_products",
            description="List the products on the restaurant's menu",
            inputSchema={
                "type": "object",
                "properties": {
                    "restaurant_id": {
                        "type": "string",
                        "description": "Restaurant ID (defaults to the logged-in restaurant)",
                    },
                },
            },
        ),
        Tool(
            name="qskipper_create_product",
            description="Add a product to the menu",
            inputSchema={
                "type": "object",
                "properties": PRODUCT_PROPERTIES,
                "required": ["name", "price"],
            },
        ),
        Tool(
            name="qskipper_update_product",
            description="Update an existing product. Only the given fields change.",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "string", "description": "Product ID to update"},
                    **PRODUCT_PROPERTIES,
                },
                "required": ["product_id"],
            },
        ),
        Tool(
            name="qskipper_delete_product",
            description="Delete a product from the menu",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "string", "description": "Product ID to delete"},
                },
                "required": ["product_id"],
            },
        ),
        Tool(
            name="qskipper_set_availability",
            description="Mark a product as available or unavailable",
            inputSchema={
                "type": "object",
                "properties": {
                    "product_id": {"type": "string", "description": "Product ID"},
                    "is_available": {"type": "boolean", "description": "New availability"},
                },
                "required": ["product_id", "is_available"],
            },
        ),
        Tool(
            name="qskipper_list_orders",
            description="List orders placed at the restaurant",
            inputSchema={
                "type": "object",
                "properties": {
                    "status": {
                        "type": "string",
                        "enum": ["pending", "scheduled", "preparing", "ready", "completed", "cancelled"],
                        "description": "Only show orders in this state (optional)",
                    },
                },
            },
        ),
        Tool(
            name="qskipper_complete_order",
            description="Mark an order as completed",
            inputSchema={
                "type": "object",
                "properties": {
                    "order_id": {"type": "string", "description": "Order ID to complete"},
                },
                "required": ["order_id"],
            },
        ),
        Tool(
            name="qskipper_update_restaurant",
            description="Update the restaurant profile (name, cuisine, estimated time and banner)",
            inputSchema={
                "type": "object",
                "properties": {
                    "restaurant_name": {"type": "string", "description": "Restaurant name"},
                    "cuisine": {"type": "string", "description": "Cuisine"},
                    "estimated_time": {"type": "integer", "description": "Estimated preparation time in minutes"},
                    "banner_path": {"type": "string", "description": "Path to a local banner image"},
                },
                "required": ["restaurant_name", "banner_path"],
            },
        ),
        Tool(
            name="qskipper_clear_cache",
            description="Clear cached images and API responses",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


@app.call_tool()
async def call_tool(name: str, arguments: Any) -> list[TextContent]:
    """Handle tool calls."""
    arguments = arguments or {}
    try:
        if name == "qskipper_login":
            email = arguments.get("email")
            password = arguments.get("password")

            if not email or not password:
                if credentials:
                    email = email or credentials.email
                    password = password or credentials.password
                else:
                    return _text("Error: No credentials provided and QSKIPPER_EMAIL/QSKIPPER_PASSWORD not configured.")

            identity = qskipper_client.login(AuthCredentials(email=email, password=password))
            restaurant = identity.restaurant_name or identity.restaurant_id or "no restaurant registered"
            return _text(f"Successfully logged in as {email} ({restaurant})")

        elif name == "qskipper_logout":
            qskipper_client.logout()
            return _text("Successfully logged out")

        elif name == "qskipper_status":
            if not qskipper_client.is_authenticated():
                return _text("Not logged in")
            identity = qskipper_client.identity()
            result_lines = [f"Logged in as: {identity.email or identity.user_id}"]
            result_lines.append(f"User ID: {identity.user_id}")
            result_lines.append(f"Restaurant ID: {identity.restaurant_id or 'not registered'}")
            if identity.restaurant_name:
                result_lines.append(f"Restaurant: {identity.restaurant_name}")
            if identity.cuisine:
                result_lines.append(f"Cuisine: {identity.cuisine}")
            result_lines.append(f"Estimated time: {identity.estimated_time} min")
            return _text("\n".join(result_lines))

        # Everything below needs a session
        if not await ensure_authenticated():
            return _text(NOT_AUTHENTICATED)

        if name == "qskipper_list_products":
            products = qskipper_client.get_products(arguments.get("restaurant_id"))
            return _text(format_products(products))

        elif name == "qskipper_create_product":
            product = Product(
                name=arguments["name"],
                price=arguments["price"],
                description=arguments.get("description", ""),
                category=arguments.get("category", ""),
                extra_time=arguments.get("extra_time", 0),
                is_available=arguments.get("is_available", True),
                is_featured=arguments.get("is_featured", False),
                image_data=_read_image(arguments.get("image_path")),
            )
            created = qskipper_client.create_product(product)
            note = " (backend did not return an ID yet)" if created.is_placeholder_id else ""
            return _text(f"Successfully created product {created.name} with ID {created.id}{note}")

        elif name == "qskipper_update_product":
            product_id = arguments["product_id"]
            product = _find_product(product_id)
            if not product:
                return _text(f"Product {product_id} not found")

            updates = {
                field: arguments[field]
                for field in ("name", "price", "description", "category", "extra_time", "is_available", "is_featured")
                if field in arguments
            }
            image_data = _read_image(arguments.get("image_path"))
            if image_data:
                updates["image_data"] = image_data
            updated = qskipper_client.update_product(product.model_copy(update=updates))
            return _text(f"Successfully updated product {updated.name} ({updated.id})")

        elif name == "qskipper_delete_product":
            product_id = arguments["product_id"]
            qskipper_client.delete_product(product_id)
            return _text(f"Successfully deleted product {product_id}")

        elif name == "qskipper_set_availability":
            product_id = arguments["product_id"]
            product = _find_product(product_id)
            if not product:
                return _text(f"Product {product_id} not found")
            updated = qskipper_client.set_product_availability(product, arguments["is_available"])
            state = "available" if updated.is_available else "unavailable"
            return _text(f"Product {updated.name} is now {state}")

        elif name == "qskipper_list_orders":
            orders = qskipper_client.get_orders()
            status = arguments.get("status")
            if status:
                orders = [order for order in orders if order.status_category.value == status]
            return _text(format_orders(orders))

        elif name == "qskipper_complete_order":
            order_id = arguments["order_id"]
            qskipper_client.complete_order(order_id)
            return _text(f"Order {order_id} marked as completed")

        elif name == "qskipper_update_restaurant":
            identity = qskipper_client.identity()
            profile = RestaurantProfile(
                user_id=identity.user_id or "",
                restaurant_name=arguments["restaurant_name"],
                cuisine=arguments.get("cuisine", identity.cuisine),
                estimated_time=arguments.get("estimated_time", identity.estimated_time),
                banner_image=_read_image(arguments["banner_path"]),
            )
            updated = qskipper_client.update_restaurant(profile)
            return _text(f"Restaurant {updated.restaurant_name} updated (ID: {updated.restaurant_id})")

        elif name == "qskipper_clear_cache":
            qskipper_client.clear_cache()
            return _text("Cache cleared")

        else:
            return _text(f"Unknown tool: {name}")

    except FallbackExhausted as e:
        logger.error(f"Error executing tool {name}: {e.message}", exc_info=True)
        return _text(f"Error: {e.last_error}")
    except (QSkipperError, OSError, KeyError, ValueError) as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        return _text(f"Error: {e}")


async def main() -> None:
    """Main entry point for the MCP server."""
    global qskipper_client, credentials

    settings = Settings.from_env()
    qskipper_client = QSkipperClient(settings)

    email = os.environ.get("QSKIPPER_EMAIL")
    password = os.environ.get("QSKIPPER_PASSWORD")

    if email and password:
        credentials = AuthCredentials(email=email, password=password)
        logger.info(f"Credentials loaded from environment for: {email}")
    else:
        logger.warning("No credentials found in environment variables (QSKIPPER_EMAIL, QSKIPPER_PASSWORD)")
        logger.warning("Menu and order operations will require manual login via qskipper_login tool")

    logger.info("Starting QSkipper MCP Server...")

    from mcp.server.stdio import stdio_server

    try:
        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        qskipper_client.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
