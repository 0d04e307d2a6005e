"""Restaurant identity resolution."""

import logging
from typing import Optional

from .auth import RESTAURANT_ID_KEY, SessionStore
from .errors import InvalidInputError

logger = logging.getLogger(__name__)


class RestaurantIdentityResolver:
    """
    Pick the restaurant id used to scope API calls.

    Sources in order, first non-empty wins:
    1. the id passed explicitly by the caller
    2. the persisted "restaurant_id" key
    3. the restaurant id cached on the in-memory session
    4. the restaurant id recorded on the authenticated user's profile
    """

    def __init__(self, session_store: SessionStore) -> None:
        self.session_store = session_store

    def resolve(self, explicit_id: Optional[str] = None) -> Optional[str]:
        """Return the restaurant id, or None when every source is empty."""
        candidates = (
            ("explicit argument", lambda: explicit_id),
            ("persisted key", lambda: self.session_store.get(RESTAURANT_ID_KEY)),
            ("session cache", lambda: self.session_store.cached_restaurant_id),
            ("user profile", self.session_store.user_profile_restaurant_id),
        )
        for source, lookup in candidates:
            value = lookup()
            if isinstance(value, str) and value.strip():
                logger.debug(f"Restaurant ID {value} resolved from {source}")
                return value.strip()

        logger.info("No restaurant ID available from any source")
        return None

    def require(self, explicit_id: Optional[str] = None) -> str:
        """Like resolve(), but reject the operation when unresolved."""
        restaurant_id = self.resolve(explicit_id)
        if not restaurant_id:
            raise InvalidInputError("No restaurant ID available for this operation")
        return restaurant_id
