"""
FACTURO - Rendu PDF des factures et avoirs

Utilise Jinja2 pour le template HTML et WeasyPrint pour la conversion en PDF.
Les fichiers sont stockés sous PDF_STORAGE_DIR/uploads/invoices/, le chemin
relatif (uploads/invoices/...) est celui persisté dans pdf_path.
"""

import re
import time
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from jinja2 import Environment, FileSystemLoader

from config import PDF_STORAGE_DIR, PDF_UPLOAD_SUBDIR
from models.prestation import BillingType, DurationUnit, MINUTES_PER_DAY
from services.errors import InternalError

logger = logging.getLogger("pdf_renderer")

TEMPLATES_DIR = Path(__file__).parent / "templates"

TVA_COMMENT = "TVA non applicable - art.293B du CGI"

REASON_LABELS = {
    "erreur_montant": "Erreur de montant",
    "erreur_prestation": "Erreur de prestation",
    "erreur_client": "Erreur d'information client",
    "erreur_tva": "Erreur de TVA",
    "remise_commerciale": "Remise commerciale",
    "autre": "Autre motif",
}


# ==================== FORMATAGE ====================

def sanitize_client_name(name: str) -> str:
    """Nom de client utilisable dans un nom de fichier"""
    return re.sub(r"[^a-zA-Z0-9\-_]", "_", name or "")


def format_date_fr(value: Optional[str]) -> str:
    if not value:
        return ""
    return datetime.fromisoformat(value).strftime("%d/%m/%Y")


def format_eur(value) -> str:
    return f"{float(value or 0):.2f} €"


def format_duration(duration: Optional[int], duration_unit: Optional[str], billing_type: Optional[str]) -> str:
    """Durée lisible: 2h30, 45min, ½ journée, 3 journées"""
    if not duration:
        return ""

    if billing_type == BillingType.HOURLY.value or duration_unit == DurationUnit.HOURS.value:
        hours, minutes = divmod(int(duration), 60)
        return f"{hours}h{minutes:02d}" if minutes else f"{hours}h"

    if duration_unit == DurationUnit.DAYS.value:
        days = duration / MINUTES_PER_DAY
        if days == 0.5:
            return "½ journée"
        if days == 1:
            return "1 journée"
        return f"{days:g} journées"

    return f"{duration}min"


def prestation_label(prestation: Dict) -> str:
    duration = format_duration(
        prestation.get("duration"), prestation.get("duration_unit"), prestation.get("billing_type")
    )
    description = prestation.get("description", "")

    if prestation.get("billing_type") == BillingType.HOURLY.value:
        return f"{duration} de {description}"
    if prestation.get("duration_unit") == DurationUnit.DAYS.value:
        return f"{duration} de {description}"

    quantity = prestation.get("quantity") or 1
    text = f"{quantity} {description}{'s' if quantity > 1 else ''}"
    if duration:
        text += f" de {duration}"
    return text


def group_by_date(prestations: List[Dict]) -> List[Dict]:
    """Une ligne par jour, du plus récent au plus ancien"""
    groups: Dict[str, List[Dict]] = {}
    for p in prestations:
        groups.setdefault((p.get("date") or "")[:10], []).append(p)

    rows = []
    for day in sorted(groups.keys(), reverse=True):
        items = groups[day]
        rows.append({
            "date": format_date_fr(day) if day else "",
            "label": " / ".join(prestation_label(p) for p in items),
            "total": sum(p.get("total") or 0 for p in items),
        })
    return rows


def _environment() -> Environment:
    env = Environment(loader=FileSystemLoader(str(TEMPLATES_DIR)), autoescape=True)
    env.filters["eur"] = format_eur
    env.filters["date_fr"] = format_date_fr
    return env


# ==================== HTML ====================

def render_invoice_html(invoice: Dict, prestations: List[Dict], client: Dict, business_info: Dict) -> str:
    display = business_info.get("display_options") or {}
    legal = business_info.get("legal_messages") or {}
    rectification = None

    if invoice.get("is_rectification"):
        info = invoice.get("rectification_info") or {}
        rectification = {
            "original_invoice_number": info.get("original_invoice_number"),
            "reason": REASON_LABELS.get(info.get("reason"), info.get("reason")),
            "reason_detail": info.get("reason_detail"),
            "difference_montant_ttc": info.get("difference_montant_ttc", 0),
        }

    template = _environment().get_template("facture.html")
    return template.render(
        facture=invoice,
        client=client,
        business=business_info,
        rows=group_by_date(prestations),
        rectification=rectification,
        show_tva_comment=bool(display.get("show_tva_comment")) and not invoice.get("montant_tva"),
        tva_comment=TVA_COMMENT,
        show_due_date=bool(display.get("show_due_date_on_invoice")),
        late_payment_text=legal.get("late_payment_text") if legal.get("enable_late_payment_comment") else None,
        custom_comment=legal.get("custom_comment_text") if legal.get("enable_custom_comment") else None,
    )


def render_credit_note_html(invoice: Dict, client: Dict, business_info: Dict) -> str:
    template = _environment().get_template("avoir.html")
    return template.render(
        facture=invoice,
        avoir=invoice.get("avoir") or {},
        client=client,
        business=business_info,
    )


# ==================== PDF ====================

def _html_to_pdf(html: str) -> bytes:
    import weasyprint

    return weasyprint.HTML(string=html, base_url=str(TEMPLATES_DIR)).write_pdf()


def render_invoice_pdf(invoice: Dict, prestations: List[Dict], client: Dict, business_info: Dict) -> bytes:
    """
    Produit le PDF d'une facture.

    Raises:
        InternalError si le rendu échoue
    """
    try:
        return _html_to_pdf(render_invoice_html(invoice, prestations, client, business_info))
    except Exception as e:
        logger.error(f"[PDF] Échec rendu facture {invoice.get('invoice_number')}: {str(e)}")
        raise InternalError(f"Échec de la génération du PDF: {str(e)}") from e


def render_credit_note_pdf(invoice: Dict, client: Dict, business_info: Dict) -> bytes:
    try:
        return _html_to_pdf(render_credit_note_html(invoice, client, business_info))
    except Exception as e:
        logger.error(f"[PDF] Échec rendu avoir {(invoice.get('avoir') or {}).get('numero')}: {str(e)}")
        raise InternalError(f"Échec de la génération du PDF de l'avoir: {str(e)}") from e


# ==================== STOCKAGE ====================

def invoice_pdf_filename(invoice: Dict, client_name: str) -> str:
    """Facture_{client}_{MM_YYYY}_{numéro}_{timestamp}.pdf, MM_YYYY = mois facturé"""
    period = f"{int(invoice['month']):02d}_{invoice['year']}"
    timestamp = int(time.time() * 1000)
    return f"Facture_{sanitize_client_name(client_name)}_{period}_{invoice['invoice_number']}_{timestamp}.pdf"


def credit_note_pdf_filename(invoice: Dict, client_name: str) -> str:
    numero = (invoice.get("avoir") or {}).get("numero", "")
    timestamp = int(time.time() * 1000)
    return f"Avoir_{sanitize_client_name(numero)}_{sanitize_client_name(client_name)}_{timestamp}.pdf"


def store_pdf(content: bytes, filename: str) -> str:
    """
    Écrit le PDF et retourne son chemin relatif (uploads/invoices/...).

    Raises:
        InternalError si l'écriture échoue
    """
    directory = Path(PDF_STORAGE_DIR) / PDF_UPLOAD_SUBDIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
        (directory / filename).write_bytes(content)
    except OSError as e:
        logger.error(f"[PDF] Échec écriture {filename}: {str(e)}")
        raise InternalError(f"Échec de l'enregistrement du PDF: {str(e)}") from e

    logger.info(f"[PDF] Enregistré {filename} ({len(content)} octets)")
    return f"{PDF_UPLOAD_SUBDIR}/{filename}"


def store_invoice_pdf(invoice: Dict, prestations: List[Dict], client: Dict, business_info: Dict) -> str:
    """Rend et stocke le PDF d'une facture, retourne le pdf_path"""
    content = render_invoice_pdf(invoice, prestations, client, business_info)
    return store_pdf(content, invoice_pdf_filename(invoice, client.get("name", "")))


class PdfWrites:
    """PDF écrits pendant une transaction et PDF qu'ils remplacent"""

    def __init__(self):
        self.written: List[str] = []
        self.replaced: List[str] = []

    def track(self, pdf_path: str) -> str:
        self.written.append(pdf_path)
        return pdf_path

    def replace(self, old_pdf_path: Optional[str]):
        if old_pdf_path and old_pdf_path not in self.written:
            self.replaced.append(old_pdf_path)


@asynccontextmanager
async def pdf_writes():
    """
    À ouvrir autour de transaction():
    - échec: les PDF écrits sont supprimés, la base ne les référence pas
    - succès: les PDF remplacés sont supprimés
    """
    writes = PdfWrites()
    try:
        yield writes
    except Exception:
        for pdf_path in writes.written:
            remove_pdf(pdf_path)
        raise

    for pdf_path in writes.replaced:
        remove_pdf(pdf_path)


def resolve_pdf_path(pdf_path: str) -> Path:
    return Path(PDF_STORAGE_DIR) / pdf_path


def remove_pdf(pdf_path: Optional[str]):
    if not pdf_path:
        return
    path = resolve_pdf_path(pdf_path)
    if path.exists():
        path.unlink()
        logger.info(f"[PDF] Supprimé {pdf_path}")
