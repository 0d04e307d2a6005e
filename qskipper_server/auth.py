"""Session persistence for the restaurant owner's identity."""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from .models import SessionIdentity
from .normalizer import coerce_int

logger = logging.getLogger(__name__)

AUTH_TOKEN_KEY = "qskipper_auth_token"
USER_ID_KEY = "qskipper_user_id"
USER_EMAIL_KEY = "qskipper_user_email"
RESTAURANT_ID_KEY = "restaurant_id"
RESTAURANT_DATA_KEY = "restaurant_data"
RESTAURANT_RAW_DATA_KEY = "restaurant_raw_data"
RESTAURANT_REGISTERED_KEY = "is_restaurant_registered"

RESTAURANT_KEYS = (
    RESTAURANT_ID_KEY,
    RESTAURANT_DATA_KEY,
    RESTAURANT_RAW_DATA_KEY,
    RESTAURANT_REGISTERED_KEY,
)

# Any persisted key containing one of these is swept on logout
SWEEP_MARKERS = ("user", "auth", "token", "restaurant", "profile", "login", "qskipper")


def _text(value: Any) -> Optional[str]:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        value = str(value).strip()
        return value or None
    return None


def identity_from_login(payload: dict) -> SessionIdentity:
    """
    Extract the session identity from a login/register response.

    The backend answers either with a flat object (``id``, ``token``,
    ``restaurantid``, ``restaurantName``...) or with the user nested under
    ``user``. Missing fields stay empty.
    """
    user = payload.get("user") if isinstance(payload.get("user"), dict) else {}

    def pick(*keys: str) -> Any:
        for source in (payload, user):
            for key in keys:
                if source.get(key) not in (None, ""):
                    return source[key]
        return None

    restaurant_id = _text(pick("restaurantid", "restaurantId", "restaurant_id"))
    return SessionIdentity(
        user_id=_text(pick("id", "_id", "userId", "userID")),
        auth_token=_text(pick("token", "accessToken")),
        email=_text(pick("email")),
        restaurant_id=restaurant_id,
        restaurant_name=_text(pick("restaurantName", "restaurant_Name")) or "",
        cuisine=_text(pick("resturantCusine", "cuisine", "cuisines")) or "",
        estimated_time=coerce_int(pick("resturantEstimateTime", "estimatedTime"), 30),
        is_restaurant_registered=bool(restaurant_id),
    )


class SessionStore:
    """
    Persisted key-value session with an exhaustive logout.

    The presence of a persisted user id is the only "is authenticated" signal;
    the auth token is advisory. Every mutation goes through one re-entrant
    lock so a logout can never interleave with a login half-way through.
    """

    def __init__(self, session_file: Optional[str] = None) -> None:
        """
        Initialize the session store.

        Args:
            session_file: Path of the key-value file. Defaults to ~/.qskipper_session.json
        """
        if session_file is None:
            session_file = str(Path.home() / ".qskipper_session.json")
        self.session_file = session_file
        self._lock = threading.RLock()
        self._invalidation_hooks: list[Callable[[], None]] = []
        self.cached_restaurant_id: Optional[str] = None
        self._values: dict[str, Any] = self._load_session()

        self._load_identity_from_env()

        if self.is_authenticated():
            self.cached_restaurant_id = self.get(RESTAURANT_ID_KEY) or None
            logger.info(f"User ID found ({self.get_user_id()}), session is authenticated")
        else:
            logger.info("No user ID found, session is not authenticated")

    def _load_session(self) -> dict[str, Any]:
        """Load persisted keys from file if it exists."""
        if os.path.exists(self.session_file):
            try:
                with open(self.session_file, "r") as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return data
                logger.warning(f"Ignoring malformed session file {self.session_file}")
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"Could not load session: {e}")
        return {}

    def _save_session(self) -> None:
        """Write persisted keys to file."""
        try:
            directory = os.path.dirname(self.session_file)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.session_file, "w") as f:
                json.dump(self._values, f, indent=2, default=str)
            os.chmod(self.session_file, 0o600)
        except OSError as e:
            logger.error(f"Could not save session: {e}")

    def _load_identity_from_env(self) -> None:
        """
        Pre-seed the session from environment variables.

        - QSKIPPER_USER_ID → qskipper_user_id
        - QSKIPPER_AUTH_TOKEN → qskipper_auth_token
        - QSKIPPER_RESTAURANT_ID → restaurant_id
        """
        user_id = os.environ.get("QSKIPPER_USER_ID")
        token = os.environ.get("QSKIPPER_AUTH_TOKEN")
        restaurant_id = os.environ.get("QSKIPPER_RESTAURANT_ID")

        if not (user_id or token or restaurant_id):
            logger.debug("No session values found in environment variables")
            return

        if user_id:
            self._values[USER_ID_KEY] = user_id
            logger.info("Loaded user ID from environment")
        if token:
            self._values[AUTH_TOKEN_KEY] = token
            logger.info("Loaded auth token from environment")
        if restaurant_id:
            self._values[RESTAURANT_ID_KEY] = restaurant_id
            self._values[RESTAURANT_REGISTERED_KEY] = True
            logger.info(f"Loaded restaurant ID {restaurant_id} from environment")
        self._save_session()

    # Key-value access

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value
            self._save_session()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._values.keys())

    # Identity

    def get_user_id(self) -> Optional[str]:
        return _text(self.get(USER_ID_KEY))

    def get_token(self) -> Optional[str]:
        return _text(self.get(AUTH_TOKEN_KEY))

    def is_authenticated(self) -> bool:
        """True iff a non-empty user id is persisted."""
        return self.get_user_id() is not None

    def user_profile_restaurant_id(self) -> Optional[str]:
        """Restaurant id recorded on the user's login payload."""
        raw = self.get(RESTAURANT_RAW_DATA_KEY)
        if not isinstance(raw, dict):
            return None
        return identity_from_login(raw).restaurant_id

    def identity(self) -> SessionIdentity:
        with self._lock:
            data = self.get(RESTAURANT_DATA_KEY)
            if not isinstance(data, dict):
                data = {}
            return SessionIdentity(
                user_id=self.get_user_id(),
                auth_token=self.get_token(),
                email=_text(self.get(USER_EMAIL_KEY)),
                restaurant_id=_text(self.get(RESTAURANT_ID_KEY)) or self.cached_restaurant_id,
                restaurant_name=data.get("name", ""),
                cuisine=data.get("cuisine", ""),
                estimated_time=coerce_int(data.get("estimatedTime"), 30),
                is_restaurant_registered=bool(self.get(RESTAURANT_REGISTERED_KEY, False)),
            )

    def save_login(self, identity: SessionIdentity, raw_payload: Optional[dict] = None) -> None:
        """
        Persist a successful login/registration.

        Args:
            identity: Identity extracted from the response; user_id is required
            raw_payload: Full response body, kept as restaurant_raw_data
        """
        if not identity.user_id:
            raise ValueError("Cannot save a session without a user ID")

        with self._lock:
            self._values[USER_ID_KEY] = identity.user_id
            if identity.auth_token:
                self._values[AUTH_TOKEN_KEY] = identity.auth_token
            if identity.email:
                self._values[USER_EMAIL_KEY] = identity.email
            if raw_payload is not None:
                self._values[RESTAURANT_RAW_DATA_KEY] = raw_payload
            self._write_restaurant(identity)
            self._save_session()

        logger.info(f"Session saved for user {identity.user_id} (restaurant: {identity.restaurant_id or 'none'})")

    def update_restaurant(self, identity: SessionIdentity) -> None:
        """Persist a new restaurant snapshot (after registration or profile edit)."""
        with self._lock:
            self._write_restaurant(identity)
            self._save_session()
        logger.info(f"Restaurant data saved: {identity.restaurant_id}")

    def _write_restaurant(self, identity: SessionIdentity) -> None:
        restaurant_id = identity.restaurant_id or ""
        self._values[RESTAURANT_ID_KEY] = restaurant_id
        self._values[RESTAURANT_REGISTERED_KEY] = bool(restaurant_id)
        self._values[RESTAURANT_DATA_KEY] = {
            "id": restaurant_id,
            "name": identity.restaurant_name,
            "cuisine": identity.cuisine,
            "estimatedTime": identity.estimated_time,
            "isRegistered": bool(restaurant_id),
        }
        self.cached_restaurant_id = restaurant_id or None

    # Logout

    def add_invalidation_hook(self, hook: Callable[[], None]) -> None:
        """Register a callable run at the end of every logout (cache clears)."""
        self._invalidation_hooks.append(hook)

    def logout(self) -> None:
        """
        Clear the session.

        Order: auth token, user id, every restaurant key, then any key that
        looks user/auth/restaurant related, then registered caches. Calling it
        when already logged out is a no-op apart from re-running the hooks.
        """
        with self._lock:
            self._values.pop(AUTH_TOKEN_KEY, None)
            self._values.pop(USER_ID_KEY, None)
            for key in RESTAURANT_KEYS:
                self._values.pop(key, None)
            for key in list(self._values.keys()):
                lowered = key.lower()
                if any(marker in lowered for marker in SWEEP_MARKERS):
                    self._values.pop(key, None)
            self.cached_restaurant_id = None

            if self._values:
                self._save_session()
            elif os.path.exists(self.session_file):
                try:
                    os.remove(self.session_file)
                except OSError as e:
                    logger.warning(f"Could not delete session file: {e}")

            for hook in self._invalidation_hooks:
                try:
                    hook()
                except Exception as e:
                    logger.error(f"Logout invalidation hook failed: {e}", exc_info=True)

        logger.info("Session cleared")
