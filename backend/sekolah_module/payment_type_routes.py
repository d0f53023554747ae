from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .actor import Actor
from .database import get_db_session
from .errors import success
from .middleware import require_roles
from .models import UserRole
from .payment_type_service import (
    create_payment_type,
    delete_payment_type,
    get_payment_type,
    list_payment_types,
    list_payment_types_for_tingkat,
    toggle_payment_type_status,
    update_payment_type,
)
from .schemas import PaymentTypeCreate, PaymentTypeUpdate

router = APIRouter(prefix="/payment-types", tags=["Jenis Pembayaran"])

admin_only = require_roles(UserRole.ADMIN)
any_role = require_roles(UserRole.ADMIN, UserRole.GURU, UserRole.SISWA)


@router.get("")
def index(
    search: str | None = Query(default=None),
    periode: str | None = Query(default=None),
    tingkat: int | None = Query(default=None),
    status_filter: str | None = Query(default="aktif", alias="status"),
    page: int = Query(default=1),
    limit: int = Query(default=10),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(any_role),
):
    result = list_payment_types(
        db,
        search=search,
        periode=periode,
        tingkat=tingkat,
        status=status_filter,
        page=page,
        limit=limit,
    )
    return success(result, "Data jenis pembayaran berhasil diambil")


@router.get("/tingkat/{tingkat}")
def for_tingkat(tingkat: int, db: Session = Depends(get_db_session), actor: Actor = Depends(any_role)):
    return success(list_payment_types_for_tingkat(db, tingkat), "Data jenis pembayaran berhasil diambil")


@router.get("/{type_id}")
def show(type_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(any_role)):
    return success(get_payment_type(db, type_id), "Data jenis pembayaran berhasil diambil")


@router.post("", status_code=status.HTTP_201_CREATED)
def create(payload: PaymentTypeCreate, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    item = create_payment_type(
        db,
        nama_pembayaran=payload.nama_pembayaran,
        nominal=payload.nominal,
        periode=payload.periode,
        tingkat=payload.tingkat,
        deskripsi=payload.deskripsi,
    )
    return success(item, "Jenis pembayaran berhasil ditambahkan")


@router.put("/{type_id}")
def edit(
    type_id: int,
    payload: PaymentTypeUpdate,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    item = update_payment_type(db, type_id, **payload.model_dump(exclude_unset=True))
    return success(item, "Jenis pembayaran berhasil diupdate")


@router.patch("/{type_id}/toggle-status")
def toggle(type_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    item = toggle_payment_type_status(db, type_id)
    return success(item, f"Jenis pembayaran berhasil di{'aktifkan' if item.status.value == 'aktif' else 'nonaktifkan'}")


@router.delete("/{type_id}")
def destroy(type_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    delete_payment_type(db, type_id)
    return success(message="Jenis pembayaran berhasil dihapus")
