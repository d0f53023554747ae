from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .actor import Actor
from .dashboard_service import get_chart_data, get_dashboard_stats, get_quick_stats
from .database import get_db_session
from .errors import success
from .middleware import require_roles
from .models import UserRole

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])

admin_only = require_roles(UserRole.ADMIN)


@router.get("")
def stats(db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    return success(get_dashboard_stats(db), "Statistik dashboard berhasil diambil")


@router.get("/chart")
def chart(
    chart_type: str = Query(default="siswa_per_kelas", alias="type"),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    return success(get_chart_data(db, chart_type), "Data chart berhasil diambil")


@router.get("/quick-stats")
def quick_stats(db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    return success(get_quick_stats(db), "Quick stats berhasil diambil")
