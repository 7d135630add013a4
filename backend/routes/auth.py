"""
FACTURO - Routes Auth
Inscription / Login / Logout / Session.
"""

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from datetime import datetime, timezone, timedelta
import uuid

from models.auth import UserLogin, UserCreate
from config import db, hash_password, generate_token, now_iso, SESSION_TTL_HOURS
from services.event_logger import log_event

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)


# ==================== HELPERS ====================

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Récupère l'utilisateur connecté depuis le token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Non authentifié")

    token = credentials.credentials
    session = await db.sessions.find_one({
        "token": token,
        "expires_at": {"$gt": now_iso()}
    })

    if not session:
        raise HTTPException(status_code=401, detail="Session expirée")

    user = await db.users.find_one(
        {"id": session["user_id"]},
        {"_id": 0, "password": 0}
    )

    if not user:
        raise HTTPException(status_code=401, detail="Utilisateur non trouvé")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    return user


async def _open_session(user_id: str) -> str:
    token = generate_token()
    expires_at = (datetime.now(timezone.utc) + timedelta(hours=SESSION_TTL_HOURS)).isoformat()

    await db.sessions.insert_one({
        "token": token,
        "user_id": user_id,
        "created_at": now_iso(),
        "expires_at": expires_at
    })
    return token


def _public_user(user: dict) -> dict:
    return {"id": user["id"], "email": user["email"], "nom": user.get("nom", "")}


# ==================== REGISTER / LOGIN / LOGOUT ====================

@router.post("/register")
async def register(data: UserCreate):
    """Création d'un compte freelance."""
    existing = await db.users.find_one({"email": data.email}, {"_id": 0, "id": 1})
    if existing:
        raise HTTPException(status_code=409, detail="Un compte existe déjà pour cet email")

    user = {
        "id": str(uuid.uuid4()),
        "email": data.email,
        "password": hash_password(data.password),
        "nom": data.nom,
        "is_active": True,
        "created_at": now_iso()
    }
    await db.users.insert_one(user)

    await log_event(action="user_register", entity_type="user", entity_id=user["id"], user=user["id"])

    token = await _open_session(user["id"])
    return {"token": token, "user": _public_user(user)}


@router.post("/login")
async def login(data: UserLogin):
    """Connexion utilisateur."""
    user = await db.users.find_one(
        {"email": data.email.lower().strip()},
        {"_id": 0}
    )

    if not user:
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")

    if user.get("password") != hash_password(data.password):
        raise HTTPException(status_code=401, detail="Email ou mot de passe incorrect")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Compte désactivé")

    token = await _open_session(user["id"])
    return {"token": token, "user": _public_user(user)}


@router.post("/logout")
async def logout(
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    if credentials:
        await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return user
