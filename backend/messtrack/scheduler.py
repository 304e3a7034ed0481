"""
Planificateur APScheduler : purge périodique des entrées expirées du cache.

Le cache en mémoire ne supprime une clé expirée qu'à sa prochaine lecture ;
les challenges jamais utilisés s'accumuleraient sans ce job. Redis expire
lui-même ses clés (purge_expired y renvoie 0).
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from messtrack.cache import CacheBackend
from messtrack.config import settings

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def _purge_cache(cache: CacheBackend) -> None:
    """Tâche planifiée : supprime les entrées expirées."""
    try:
        purged = cache.purge_expired()
        if purged:
            logger.info("Cache : %d entrée(s) expirée(s) supprimée(s)", purged)
    except Exception as exc:
        logger.error("Erreur lors de la purge du cache : %s", exc)


def start_scheduler(cache: CacheBackend) -> None:
    """Démarre le planificateur en arrière-plan (appelé au démarrage de l'API)."""
    scheduler.add_job(
        _purge_cache,
        trigger="interval",
        minutes=settings.CACHE_PURGE_INTERVAL_MINUTES,
        args=[cache],
        id="cache_purge",
        replace_existing=True,
    )
    if not scheduler.running:
        scheduler.start()
    logger.info("Scheduler démarré : purge du cache toutes les %d minutes.", settings.CACHE_PURGE_INTERVAL_MINUTES)


def stop_scheduler() -> None:
    """Arrête le planificateur proprement (appelé à l'arrêt de l'API)."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler arrêté.")
