import logging

import errors
from models import Actor, Role

logger = logging.getLogger(__name__)

STAFF_ROLES = frozenset({Role.SUPER_ADMIN, Role.MANAGER, Role.STAFF})
# may hard-delete reservations they do not own
ELEVATED_ROLES = frozenset({Role.SUPER_ADMIN, Role.MANAGER})


def is_staff(actor: Actor) -> bool:
    return actor.role in STAFF_ROLES


def is_elevated(actor: Actor) -> bool:
    return actor.role in ELEVATED_ROLES


def is_owner(actor: Actor, owner_id: str) -> bool:
    return actor.user_id == owner_id


def deny(actor: Actor, what: str) -> errors.PermissionDeniedError:
    logger.warning("permission denied user_id=%s role=%s action=%s", actor.user_id, actor.role.value, what)
    return errors.PermissionDeniedError(f"not allowed to {what}")


def require_staff(actor: Actor, what: str) -> None:
    if not is_staff(actor):
        raise deny(actor, what)


def require_owner_or_staff(actor: Actor, owner_id: str, what: str) -> None:
    if not (is_owner(actor, owner_id) or is_staff(actor)):
        raise deny(actor, what)


def require_role(actor: Actor, role: Role, what: str) -> None:
    if actor.role != role:
        raise deny(actor, what)
