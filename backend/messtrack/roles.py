"""
Rôles et capacités des appelants.

L'authentification est assurée en amont (passerelle) : elle transmet l'acteur
authentifié dans les en-têtes X-Actor-Id et X-Actor-Role. Ils sont lus une
seule fois ici ; les routers ne manipulent ensuite qu'un Actor typé.
"""

import logging
import uuid
from enum import Enum
from typing import Dict, FrozenSet, Optional

from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class Role(str, Enum):
    SUBSCRIBER = "subscriber"
    MESS_ADMIN = "mess_admin"
    SUPER_ADMIN = "super_admin"


class Capability(str, Enum):
    SUBMIT_SCAN = "submit_scan"
    MANAGE_OWN_CREDENTIAL = "manage_own_credential"
    MANAGE_CREDENTIALS = "manage_credentials"
    RECORD_MANUAL = "record_manual"
    VIEW_LEDGER = "view_ledger"
    MANAGE_SERVICE_POINTS = "manage_service_points"


CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.SUBSCRIBER: frozenset({
        Capability.SUBMIT_SCAN,
        Capability.MANAGE_OWN_CREDENTIAL,
    }),
    Role.MESS_ADMIN: frozenset({
        Capability.MANAGE_CREDENTIALS,
        Capability.RECORD_MANUAL,
        Capability.VIEW_LEDGER,
        Capability.MANAGE_SERVICE_POINTS,
    }),
    Role.SUPER_ADMIN: frozenset(Capability),
}


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    role: Role

    def can(self, capability: Capability) -> bool:
        return capability in CAPABILITIES[self.role]

    def can_act_for(self, identity_id: uuid.UUID, capability: Capability) -> bool:
        """L'acteur agit pour lui-même, ou possède la capacité d'administration."""
        return self.id == identity_id or self.can(capability)


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
) -> Actor:
    """Dépendance FastAPI : acteur authentifié, 401 si les en-têtes manquent ou sont invalides."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(status_code=401, detail="Acteur non authentifié.")
    try:
        return Actor(id=uuid.UUID(x_actor_id), role=Role(x_actor_role))
    except ValueError:
        raise HTTPException(status_code=401, detail="En-têtes d'authentification invalides.")


def require_capability(capability: Capability):
    """Fabrique de dépendance : 403 si le rôle de l'acteur n'a pas la capacité."""

    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if not actor.can(capability):
            logger.info("Accès refusé : %s (%s) sans la capacité %s", actor.id, actor.role.value, capability.value)
            raise HTTPException(status_code=403, detail="Action non autorisée pour ce rôle.")
        return actor

    return dependency
