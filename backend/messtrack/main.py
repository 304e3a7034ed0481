"""
Point d'entrée principal de l'API MessTrack (moteur de vérification des présences au réfectoire).
Démarrage : uvicorn messtrack.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import messtrack.models  # noqa: F401  enregistre tous les modèles dans Base.metadata avant les routers
from messtrack.cache import build_cache
from messtrack.config import settings
from messtrack.routers import attendance, credentials, scans, service_points
from messtrack.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cycle de vie : crée le cache partagé puis démarre et arrête le scheduler APScheduler."""
    app.state.cache = build_cache(settings)
    start_scheduler(app.state.cache)
    yield
    stop_scheduler()


app = FastAPI(
    title="MessTrack API",
    description="API de vérification des présences aux repas du réfectoire",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : localhost uniquement en développement (à restreindre en production).
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-Actor-Id", "X-Actor-Role"],
)


app.include_router(scans.router)
app.include_router(credentials.router)
app.include_router(attendance.router)
app.include_router(service_points.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées pour que la réponse 500
    passe bien par CORSMiddleware (qui injecte les headers CORS).
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'API est opérationnelle."""
    return {"status": "ok", "service": "MessTrack API", "version": "0.1.0"}
