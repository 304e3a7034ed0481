"""
Résolution du créneau de repas courant pour un point de service.

Sans état : les créneaux viennent de la configuration du réfectoire.
Règle de bornes : start <= t < end, en heure locale du réfectoire.
Un créneau dont la fin n'est pas après le début traverse minuit ; après minuit,
il appartient à la date de service de la veille.
"""

import datetime as dt
from datetime import datetime, timedelta
from typing import List, Optional, Union
from zoneinfo import ZoneInfo

from messtrack.schemas.common import MealSlot, RejectReason, Rejection, reject
from messtrack.schemas.service_point import MealWindow, ResolvedSlot, ServicePointConfig


def local_now(service_point: ServicePointConfig, instant: datetime) -> datetime:
    """Convertit un instant (aware, ou naïf UTC) dans le fuseau du réfectoire."""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=dt.timezone.utc)
    return instant.astimezone(ZoneInfo(service_point.timezone))


def windows_for(service_point: ServicePointConfig) -> List[MealWindow]:
    """Créneaux du réfectoire, triés par heure de début."""
    return service_point.meal_windows


def _next_window(service_point: ServicePointConfig, t: dt.time) -> Optional[MealWindow]:
    windows = windows_for(service_point)
    upcoming = [w for w in windows if w.start > t]
    if upcoming:
        return upcoming[0]
    return windows[0] if windows else None  # premier créneau du lendemain


def resolve(service_point: ServicePointConfig, instant: datetime) -> Union[ResolvedSlot, Rejection]:
    """
    Renvoie le créneau contenant `instant`, ou NoServiceNow (cas normal hors
    horaires, à gérer explicitement par l'appelant) avec le prochain créneau.
    """
    local = local_now(service_point, instant)
    t = local.time().replace(tzinfo=None)

    for window in windows_for(service_point):
        if window.contains(t):
            service_date = local.date()
            if window.crosses_midnight and t < window.end:
                service_date -= timedelta(days=1)
            return ResolvedSlot(meal_slot=window.slot, service_date=service_date, local_time=t, window=window)

    upcoming = _next_window(service_point, t)
    next_meal = None
    if upcoming is not None:
        next_meal = {
            "slot": upcoming.slot.value,
            "start": upcoming.start.strftime("%H:%M"),
            "end": upcoming.end.strftime("%H:%M"),
        }
    return reject(
        RejectReason.NO_SERVICE_NOW,
        local_time=t.strftime("%H:%M:%S"),
        next_meal=next_meal,
        message="Aucun service de repas à cette heure.",
    )


def window_for(service_point: ServicePointConfig, slot: MealSlot) -> MealWindow:
    for window in windows_for(service_point):
        if window.slot == slot:
            return window
    raise ValueError(f"Créneau {slot} non configuré.")


def confirmation_deadline(
    service_point: ServicePointConfig,
    service_date: dt.date,
    slot: MealSlot,
) -> datetime:
    """Heure limite de confirmation : début du repas moins confirmation_lead_hours (heure locale)."""
    window = window_for(service_point, slot)
    meal_start = datetime.combine(service_date, window.start, tzinfo=ZoneInfo(service_point.timezone))
    return meal_start - timedelta(hours=service_point.confirmation_lead_hours)
