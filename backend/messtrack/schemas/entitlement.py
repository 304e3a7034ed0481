"""
Schémas Pydantic (lecture seule) des droits au repas et des confirmations.
"""

import uuid
import datetime as dt
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from messtrack.schemas.common import MealSlot


class EntitlementSnapshot(BaseModel):
    """
    Droit actif d'une identité sur un réfectoire.

    Inclusion des repas (meals_included) :
    - dict {"lunch": false, ...} : une clé ABSENTE vaut inclus (défaut permissif
      des anciens abonnements créés sans détail par repas) ;
    - liste ["breakfast", "lunch"] (ancien format) : seuls les repas listés sont inclus ;
    - None : tous les repas sont inclus.
    """
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    identity_id: uuid.UUID
    service_point_id: uuid.UUID
    start_date: dt.date
    end_date: dt.date
    status: str
    meals_included: Optional[Union[Dict[str, bool], List[str]]] = None

    def includes(self, slot: MealSlot) -> bool:
        if self.meals_included is None:
            return True
        if isinstance(self.meals_included, list):
            return slot.value in self.meals_included
        return bool(self.meals_included.get(slot.value, True))


class ConfirmationSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    identity_id: uuid.UUID
    service_point_id: uuid.UUID
    meal_date: dt.date
    meal_slot: str
    status: str


class GateDecision(BaseModel):
    """Verdict positif de la porte droit + confirmation."""
    model_config = ConfigDict(frozen=True)

    entitlement: EntitlementSnapshot
    confirmation: Optional[ConfirmationSnapshot] = None
