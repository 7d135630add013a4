"""
FACTURO - Routes Prestations
CRUD des lignes facturables. Le total est toujours recalculé côté serveur.
Une prestation d'une facture payée, verrouillée ou envoyée est immuable (403).
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from routes.auth import get_current_user
from models import PrestationCreate
from services import prestations as prestation_service

router = APIRouter(prefix="/prestations", tags=["Prestations"])


@router.get("")
async def list_prestations(
    client_id: Optional[str] = None,
    year: Optional[int] = Query(None, ge=1900),
    month: Optional[int] = Query(None, ge=1, le=12),
    unbilled_only: bool = False,
    user: dict = Depends(get_current_user)
):
    items = await prestation_service.list_prestations(
        user["id"], client_id=client_id, year=year, month=month, unbilled_only=unbilled_only
    )
    return {"prestations": items, "count": len(items)}


@router.get("/{prestation_id}")
async def get_prestation(prestation_id: str, user: dict = Depends(get_current_user)):
    return await prestation_service.get_prestation(user["id"], prestation_id)


@router.post("")
async def create_prestation(data: PrestationCreate, user: dict = Depends(get_current_user)):
    return await prestation_service.create_prestation(user["id"], data.model_dump(mode="json"))


@router.put("/{prestation_id}")
async def update_prestation(prestation_id: str, data: PrestationCreate, user: dict = Depends(get_current_user)):
    return await prestation_service.update_prestation(user["id"], prestation_id, data.model_dump(mode="json"))


@router.delete("/{prestation_id}")
async def delete_prestation(prestation_id: str, user: dict = Depends(get_current_user)):
    await prestation_service.delete_prestation(user["id"], prestation_id)
    return {"success": True}
