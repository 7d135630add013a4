"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Routes Clients                                                    ║
║                                                                              ║
║  CRUD des clients du freelance                                               ║
║  Toutes les requêtes filtrées par user_id                                    ║
║  Email unique par utilisateur                                                ║
║  Suppression refusée dès qu'une facture référence le client                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends
import uuid

from config import db, now_iso
from routes.auth import get_current_user
from models import ClientCreate, ClientUpdate
from services.errors import NotFound, Conflict, InvalidState
from services.event_logger import log_event

router = APIRouter(prefix="/clients", tags=["Clients"])


async def _get_client(user_id: str, client_id: str) -> dict:
    client = await db.clients.find_one({"id": client_id, "user_id": user_id}, {"_id": 0})
    if not client:
        raise NotFound("Client non trouvé")
    return client


async def _ensure_email_available(user_id: str, email: str, exclude_id: str = None):
    query = {"user_id": user_id, "email": email}
    if exclude_id:
        query["id"] = {"$ne": exclude_id}
    if await db.clients.find_one(query, {"_id": 0, "id": 1}):
        raise Conflict(f"Un client existe déjà avec l'email {email}")


@router.get("")
async def list_clients(user: dict = Depends(get_current_user)):
    clients = await db.clients.find({"user_id": user["id"]}, {"_id": 0}).sort("name", 1).to_list(1000)
    return {"clients": clients, "count": len(clients)}


@router.get("/{client_id}")
async def get_client(client_id: str, user: dict = Depends(get_current_user)):
    return await _get_client(user["id"], client_id)


@router.post("")
async def create_client(data: ClientCreate, user: dict = Depends(get_current_user)):
    await _ensure_email_available(user["id"], data.email)

    now = now_iso()
    client = {
        "id": str(uuid.uuid4()),
        "user_id": user["id"],
        **data.model_dump(),
        "created_at": now,
        "updated_at": now
    }
    await db.clients.insert_one(client)
    client.pop("_id", None)

    await log_event(action="client_create", entity_type="client", entity_id=client["id"],
                    user=user["id"], details={"name": client["name"]})
    return client


@router.put("/{client_id}")
async def update_client(client_id: str, data: ClientUpdate, user: dict = Depends(get_current_user)):
    await _get_client(user["id"], client_id)

    update = data.model_dump(exclude_none=True)
    if "email" in update:
        await _ensure_email_available(user["id"], update["email"], exclude_id=client_id)

    update["updated_at"] = now_iso()
    await db.clients.update_one({"id": client_id}, {"$set": update})

    await log_event(action="client_update", entity_type="client", entity_id=client_id,
                    user=user["id"], details={"fields": list(update.keys())})
    return await _get_client(user["id"], client_id)


@router.delete("/{client_id}")
async def delete_client(client_id: str, user: dict = Depends(get_current_user)):
    client = await _get_client(user["id"], client_id)

    invoice = await db.factures.find_one({"client_id": client_id, "user_id": user["id"]}, {"_id": 0, "id": 1})
    if invoice:
        raise InvalidState("Ce client est référencé par des factures: suppression impossible")

    await db.prestations.delete_many({"client_id": client_id, "user_id": user["id"], "invoice_id": None})
    await db.clients.delete_one({"id": client_id})

    await log_event(action="client_delete", entity_type="client", entity_id=client_id,
                    user=user["id"], details={"name": client.get("name")})
    return {"success": True}
