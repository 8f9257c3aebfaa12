import logging
from dataclasses import dataclass
from typing import Optional
from itsdangerous import URLSafeTimedSerializer, BadSignature
from lendlab.configs import SEED
from lendlab.core.exceptions import UnauthorizedError
from lendlab.models.users import Role

logger = logging.getLogger(__name__)

SERIALIZER = None  # Will be initialized lazily
COOKIE_TTL = 604800


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of an engine operation."""
    user_id: str
    role: Role

    @property
    def is_privileged(self):
        return self.role.is_privileged

def _get_serializer():
    """Get or initialize the SERIALIZER lazily."""
    global SERIALIZER
    if SERIALIZER is None:
        SERIALIZER = URLSafeTimedSerializer(SEED, salt="auth-cookie")
    return SERIALIZER

def create_session_cookie(user_id: str, role) -> str:
    """Returns a signed session token carrying the user id and role."""
    role = Role(role)
    return _get_serializer().dumps({"user_id": user_id, "role": role.value})

def verify_session_cookie(session, max_age: int = COOKIE_TTL) -> Optional[Actor]:
    """Retrieves and verifies the actor from a signed token."""
    if not session:
        return None
    try:
        data = _get_serializer().loads(session, max_age=max_age)
    except BadSignature:
        return None
    if not isinstance(data, dict) or not data.get("user_id"):
        return None
    try:
        return Actor(user_id=data["user_id"], role=Role(data.get("role")))
    except ValueError:
        logger.warning(f"Session token for {data['user_id']} carries unknown role {data.get('role')!r}")
        return None

def require_actor(session) -> Actor:
    actor = verify_session_cookie(session)
    if actor is None:
        raise UnauthorizedError("A valid session is required.")
    return actor
