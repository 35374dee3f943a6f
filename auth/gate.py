"""
auth/gate.py -- The authorization decision, and nothing else.

Every role check in the application goes through authorize(). It is a pure
function of the session-resolved Identity and the capability an operation
requires; it never touches a store, a request, or a response.

Per-request state machine:

    Anonymous --(resolve session)--> Anonymous | AuthenticatedUser | AuthenticatedManager

The state is recomputed on every request. Nothing is cached across requests
except the role stored in the session itself.

Layer rule: no imports from api/ or web/, and no FastAPI imports.
"""

from __future__ import annotations

from enum import Enum

from auth.errors import Forbidden, Unauthenticated
from auth.models import Identity, Role


class Capability(str, Enum):
    authenticated = "authenticated"
    manager = "manager"


class AccessState(str, Enum):
    anonymous = "anonymous"
    user = "user"
    manager = "manager"


def access_state(identity: Identity | None) -> AccessState:
    if identity is None:
        return AccessState.anonymous
    if identity.role is Role.manager:
        return AccessState.manager
    return AccessState.user


def authorize(identity: Identity | None, capability: Capability) -> Identity:
    """Return identity if it may use capability.

    authenticated: any live session passes; no session raises Unauthenticated.
    manager: only a session whose cached role is manager passes; everyone
        else, anonymous callers included, gets Forbidden.
    """
    state = access_state(identity)
    if capability is Capability.manager:
        if state is not AccessState.manager:
            raise Forbidden()
    elif state is AccessState.anonymous:
        raise Unauthenticated()
    return identity
