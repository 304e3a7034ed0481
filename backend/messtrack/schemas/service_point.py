"""
Schémas Pydantic (valeurs immuables) décrivant la configuration d'un point de service.
Construits depuis le modèle ORM puis mis en cache ; le moteur ne manipule que ces copies.
"""

import uuid
import datetime as dt
from datetime import datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from messtrack.schemas.common import GeoPoint, MealSlot


class MealWindow(BaseModel):
    """Créneau [start, end) en heure locale. end <= start : le créneau traverse minuit."""
    model_config = ConfigDict(frozen=True)

    slot: MealSlot
    start: time
    end: time

    @property
    def crosses_midnight(self) -> bool:
        return self.end <= self.start

    def contains(self, t: time) -> bool:
        if self.crosses_midnight:
            return t >= self.start or t < self.end
        return self.start <= t < self.end


class ServicePointConfig(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: uuid.UUID
    name: str
    code: str
    status: str = "active"
    beacon_secret: str = Field(repr=False)
    beacon_issued_at: Optional[datetime] = None

    latitude: float
    longitude: float
    radius_meters: int
    requires_location: bool = True

    timezone: str
    breakfast_start: time
    breakfast_end: time
    lunch_start: time
    lunch_end: time
    dinner_start: time
    dinner_end: time

    requires_confirmation: bool = True
    confirmation_lead_hours: int = 2

    @property
    def location(self) -> GeoPoint:
        return GeoPoint(latitude=self.latitude, longitude=self.longitude)

    @property
    def meal_windows(self) -> List[MealWindow]:
        windows = [
            MealWindow(slot=MealSlot.BREAKFAST, start=self.breakfast_start, end=self.breakfast_end),
            MealWindow(slot=MealSlot.LUNCH, start=self.lunch_start, end=self.lunch_end),
            MealWindow(slot=MealSlot.DINNER, start=self.dinner_start, end=self.dinner_end),
        ]
        return sorted(windows, key=lambda w: w.start)


class ResolvedSlot(BaseModel):
    """Résultat du résolveur : créneau courant et date de service associée."""
    model_config = ConfigDict(frozen=True)

    meal_slot: MealSlot
    service_date: dt.date
    local_time: time
    window: MealWindow
