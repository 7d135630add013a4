"""
FACTURO - Routes Rappels
Déclenchement manuel du traitement quotidien des rappels de paiement.
"""

from fastapi import APIRouter, Depends

from routes.auth import get_current_user
from services.reminders import process_factures

router = APIRouter(prefix="/reminders", tags=["Reminders"])


@router.post("/check-now")
async def check_now(user: dict = Depends(get_current_user)):
    """Traite immédiatement les rappels dus pour les factures de l'utilisateur"""
    stats = await process_factures(user["id"])
    return {"message": "Traitement des rappels effectué", **stats}
