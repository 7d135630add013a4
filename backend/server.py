"""
Facturo - API Backend
Facturation des freelances: clients, prestations, factures, rectifications, avoirs

Démarre avec:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from config import client, db, CORS_ORIGINS, SCHEDULER_ENABLED
from services.errors import FacturationError

# Configuration logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("facturo")

# Créer l'app
app = FastAPI(
    title="Facturo",
    description="Facturation des freelances",
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


# ==================== ERREURS MÉTIER ====================

@app.exception_handler(FacturationError)
async def facturation_error_handler(request: Request, exc: FacturationError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.kind}
    )


# ==================== IMPORT DES ROUTES ====================

from routes import auth, clients, prestations, factures, settings, dashboard, reminders

# Routes avec préfixe /api
app.include_router(auth.router, prefix="/api")
app.include_router(clients.router, prefix="/api")
app.include_router(prestations.router, prefix="/api")
app.include_router(factures.router, prefix="/api")
app.include_router(settings.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(reminders.router, prefix="/api")


# ==================== ROUTE RACINE ====================

@app.get("/api")
async def root():
    return {"name": "Facturo", "version": "1.0.0", "status": "ok"}


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    logger.info("🚀 Facturo démarré")

    # Index
    await db.users.create_index("email", unique=True)
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.clients.create_index([("user_id", 1), ("email", 1)], unique=True)
    await db.prestations.create_index([("user_id", 1), ("client_id", 1), ("date", 1)])
    await db.prestations.create_index("invoice_id")
    await db.factures.create_index([("user_id", 1), ("invoice_number", 1)], unique=True)
    await db.factures.create_index([("user_id", 1), ("client_id", 1), ("year", 1), ("month", 1)])
    await db.factures.create_index("rectification_info.rectification_chain")
    await db.factures.create_index("status")
    await db.business_info.create_index("user_id", unique=True)
    await db.counters.create_index("id", unique=True)
    await db.event_log.create_index("entity_id")
    await db.event_log.create_index("created_at")

    logger.info("✅ Index MongoDB créés")

    if SCHEDULER_ENABLED:
        from scheduler_service import task_scheduler
        task_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    if SCHEDULER_ENABLED:
        from scheduler_service import task_scheduler
        task_scheduler.stop()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
