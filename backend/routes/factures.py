"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  FACTURO - Routes Factures                                                   ║
║                                                                              ║
║  Création, prévisualisation, rectification, paiement, annulation, avoir,     ║
║  envoi, duplication, chaîne de rectification, PDF.                           ║
║  Toute la logique est dans services/: les routes ne font que traduire.       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends, Query
from fastapi.responses import FileResponse, Response
from typing import Optional

from routes.auth import get_current_user
from models import (
    InvoiceCreate,
    RectifyRequest,
    PaymentRequest,
    CancelRequest,
    CreditNoteRequest,
    PaymentStatus,
    LegalStatus,
)
from services import factures as facture_service
from services import facture_state_machine
from services.rectification import rectify_invoice, get_rectification_chain

router = APIRouter(prefix="/factures", tags=["Factures"])


# ════════════════════════════════════════════════════════════════════════
# LECTURE
# ════════════════════════════════════════════════════════════════════════

@router.get("")
async def list_factures(
    client_id: Optional[str] = None,
    status: Optional[PaymentStatus] = None,
    statut: Optional[LegalStatus] = None,
    year: Optional[int] = Query(None, ge=1900),
    month: Optional[int] = Query(None, ge=1, le=12),
    user: dict = Depends(get_current_user)
):
    invoices = await facture_service.list_invoices(
        user["id"],
        client_id=client_id,
        status=status.value if status else None,
        statut=statut.value if statut else None,
        year=year,
        month=month
    )
    return {"factures": invoices, "count": len(invoices)}


@router.get("/last-number")
async def last_invoice_number(user: dict = Depends(get_current_user)):
    return {"last_invoice_number": await facture_service.get_last_invoice_number(user["id"])}


@router.get("/{invoice_id}")
async def get_facture(invoice_id: str, user: dict = Depends(get_current_user)):
    return await facture_service.get_invoice_detail(user["id"], invoice_id)


@router.get("/{invoice_id}/chain")
async def facture_chain(invoice_id: str, user: dict = Depends(get_current_user)):
    return await get_rectification_chain(user["id"], invoice_id)


@router.get("/{invoice_id}/pdf")
async def facture_pdf(invoice_id: str, user: dict = Depends(get_current_user)):
    path = await facture_service.get_invoice_pdf_path(user["id"], invoice_id)
    return FileResponse(path, media_type="application/pdf", filename=path.rsplit("/", 1)[-1])


# ════════════════════════════════════════════════════════════════════════
# CRÉATION
# ════════════════════════════════════════════════════════════════════════

@router.post("")
async def create_facture(data: InvoiceCreate, user: dict = Depends(get_current_user)):
    return await facture_service.create_invoice(user["id"], data.client_id, data.year, data.month)


@router.post("/preview")
async def preview_facture(data: InvoiceCreate, user: dict = Depends(get_current_user)):
    content = await facture_service.preview_invoice_pdf(user["id"], data.client_id, data.year, data.month)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": "inline; filename=preview.pdf"}
    )


@router.post("/{invoice_id}/duplicate")
async def duplicate_facture(invoice_id: str, user: dict = Depends(get_current_user)):
    return await facture_service.duplicate_invoice(user["id"], invoice_id)


@router.delete("/{invoice_id}")
async def delete_facture(invoice_id: str, user: dict = Depends(get_current_user)):
    await facture_service.delete_invoice(user["id"], invoice_id)
    return {"success": True}


# ════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ════════════════════════════════════════════════════════════════════════

@router.post("/{invoice_id}/rectify")
async def rectify_facture(invoice_id: str, data: RectifyRequest, user: dict = Depends(get_current_user)):
    return await rectify_invoice(
        user["id"], invoice_id, data.reason.value, data.reason_detail, data.prestations
    )


@router.post("/{invoice_id}/paiement")
async def pay_facture(invoice_id: str, data: PaymentRequest, user: dict = Depends(get_current_user)):
    return await facture_state_machine.mark_paid(
        user["id"], invoice_id, data.methode_paiement, data.commentaire
    )


@router.post("/{invoice_id}/cancel")
async def cancel_facture(invoice_id: str, data: CancelRequest, user: dict = Depends(get_current_user)):
    return await facture_state_machine.cancel_invoice(user["id"], invoice_id, data.motif, data.commentaire)


@router.post("/{invoice_id}/avoir")
async def credit_note_facture(invoice_id: str, data: CreditNoteRequest, user: dict = Depends(get_current_user)):
    return await facture_state_machine.create_credit_note(
        user["id"], invoice_id, data.motif, data.montant, data.remboursement, data.methode_remboursement
    )


@router.post("/{invoice_id}/send")
async def send_facture(invoice_id: str, user: dict = Depends(get_current_user)):
    return await facture_state_machine.mark_sent(user["id"], invoice_id)
