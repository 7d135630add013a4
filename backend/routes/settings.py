"""
FACTURO - Routes Settings

Endpoints pour gérer les paramètres de l'utilisateur:
- /business-info: coordonnées, taux URSSAF / TVA, options, rappels
- /invoice-settings: numéro de départ, titre des factures
"""

from fastapi import APIRouter, Depends

from routes.auth import get_current_user
from models import BusinessInfoUpdate, InvoiceSettingsUpdate
from services.event_logger import log_event
from services.settings import (
    get_business_info_with_defaults,
    upsert_business_info,
    get_invoice_settings,
    update_invoice_settings,
)

router = APIRouter(tags=["Settings"])


# ---- Business info ----

@router.get("/business-info")
async def read_business_info(user: dict = Depends(get_current_user)):
    return await get_business_info_with_defaults(user["id"])


@router.put("/business-info")
async def write_business_info(data: BusinessInfoUpdate, user: dict = Depends(get_current_user)):
    update = data.model_dump(exclude_none=True)
    result = await upsert_business_info(user["id"], update)
    await log_event(action="business_info_update", entity_type="business_info", entity_id=user["id"],
                    user=user["id"], details={"fields": list(update.keys())})
    return result


# ---- Invoice settings ----

@router.get("/invoice-settings")
async def read_invoice_settings(user: dict = Depends(get_current_user)):
    return await get_invoice_settings(user["id"])


@router.put("/invoice-settings")
async def write_invoice_settings(data: InvoiceSettingsUpdate, user: dict = Depends(get_current_user)):
    update = data.model_dump(exclude_none=True)
    result = await update_invoice_settings(user["id"], update)
    await log_event(action="invoice_settings_update", entity_type="business_info", entity_id=user["id"],
                    user=user["id"], details=update)
    return result
