"""
FACTURO - Routes Dashboard
Chiffre d'affaires encaissé (factures payées): totaux, par mois, top clients.
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from config import db, round2
from routes.auth import get_current_user
from models import PaymentStatus

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])

SUMS = {
    "total_factures": {"$sum": 1},
    "total_brut": {"$sum": "$montant_ht"},
    "total_net": {"$sum": "$montant_net"},
    "total_ttc": {"$sum": "$montant_ttc"},
    "total_urssaf": {"$sum": "$taxe_urssaf"},
}


def _paid_match(user_id: str, year: Optional[int]) -> dict:
    match = {"user_id": user_id, "status": PaymentStatus.PAID.value}
    if year:
        match["year"] = year
    return match


def _rounded(doc: dict) -> dict:
    return {k: (round2(v) if k.startswith("total_") and k != "total_factures" else v) for k, v in doc.items()}


@router.get("/totals")
async def dashboard_totals(
    year: Optional[int] = Query(None, ge=1900),
    user: dict = Depends(get_current_user)
):
    pipeline = [
        {"$match": _paid_match(user["id"], year)},
        {"$group": {"_id": None, **SUMS}}
    ]
    result = await db.factures.aggregate(pipeline).to_list(1)
    if not result:
        return {"total_factures": 0, "total_brut": 0, "total_net": 0, "total_ttc": 0, "total_urssaf": 0}

    totals = result[0]
    totals.pop("_id", None)
    return _rounded(totals)


@router.get("/monthly")
async def dashboard_monthly(
    year: Optional[int] = Query(None, ge=1900),
    user: dict = Depends(get_current_user)
):
    pipeline = [
        {"$match": _paid_match(user["id"], year)},
        {"$group": {"_id": {"year": "$year", "month": "$month"}, **SUMS}},
        {"$sort": {"_id.year": 1, "_id.month": 1}}
    ]
    months = []
    async for doc in db.factures.aggregate(pipeline):
        key = doc.pop("_id")
        months.append({"year": key["year"], "month": key["month"], **_rounded(doc)})
    return {"months": months}


@router.get("/top-clients")
async def dashboard_top_clients(
    year: Optional[int] = Query(None, ge=1900),
    limit: int = Query(5, ge=1, le=50),
    user: dict = Depends(get_current_user)
):
    pipeline = [
        {"$match": _paid_match(user["id"], year)},
        {"$group": {"_id": "$client_id", "client_name": {"$first": "$client_name"}, **SUMS}},
        {"$sort": {"total_brut": -1}},
        {"$limit": limit}
    ]
    clients = []
    async for doc in db.factures.aggregate(pipeline):
        clients.append({"client_id": doc.pop("_id"), **_rounded(doc)})
    return {"clients": clients}
