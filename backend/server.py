"""
Portail Citoyen - API Backend
Noyau de modération: permissions, statuts des contenus, affectation des réclamations.

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS, client, db
from services.errors import PortailError
from services.permission_registry import seed_permissions

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("portail")

# Créer l'app
app = FastAPI(
    title="Portail Citoyen",
    description="Modération des contenus citoyens",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PortailError)
async def portail_error_handler(request: Request, exc: PortailError):
    if exc.status_code >= 500:
        logger.error(f"[{exc.code}] {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ==================== IMPORT DES ROUTES ====================

from routes import auth, permissions, contenus, reclamations, settings

# Routes avec préfixe /api
app.include_router(auth.router, prefix="/api")
app.include_router(permissions.router, prefix="/api")
app.include_router(contenus.router, prefix="/api")
app.include_router(reclamations.router, prefix="/api")
app.include_router(settings.router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/")
async def root():
    return {
        "name": "Portail Citoyen API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP ====================

@app.on_event("startup")
async def startup():
    logger.info("Portail Citoyen démarré")

    inserted = await seed_permissions(db)
    logger.info(f"[PERMISSIONS_SEED] catalogue synchronisé ({inserted} ajoutée(s))")

    # Index MongoDB
    await db.users.create_index("id", unique=True)
    await db.users.create_index("commune_responsable_id")
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.permissions.create_index("code", unique=True)
    await db.user_permissions.create_index([("user_id", 1), ("permission_code", 1)], unique=True)
    await db.reclamations.create_index("id", unique=True)
    await db.reclamations.create_index("commune_id")
    await db.reclamations.create_index("affectee_a_autorite_id")
    await db.evenements.create_index("id", unique=True)
    await db.actualites.create_index("id", unique=True)
    await db.campagnes.create_index("id", unique=True)
    await db.programmes_activites.create_index("id", unique=True)
    await db.event_log.create_index([("entity_type", 1), ("entity_id", 1), ("created_at", 1)])
    await db.notifications.create_index([("user_id", 1), ("is_read", 1)])
    await db.settings.create_index("key", unique=True)

    logger.info("Index MongoDB créés")


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
