from fastapi import APIRouter, Depends
from sqlmodel import Session, text
from datetime import datetime

from app.config import settings
from app.database import get_session

router = APIRouter()

@router.get("/check")
def health_check(session: Session = Depends(get_session)):
    try:
        session.exec(text("SELECT 1"))
        db_status = "ok"
    except Exception:
        db_status = "failed"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "database": db_status,
        "payment_gateway_configured": bool(settings.mercadopago_access_token),
        "payments_test_mode": settings.payments_test_mode_enabled,
        "timestamp": datetime.utcnow().isoformat()
    }
