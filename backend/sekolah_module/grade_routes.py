from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .actor import Actor
from .database import get_db_session
from .errors import success
from .grade_service import (
    class_ranking,
    create_rapor,
    create_subject,
    delete_rapor,
    get_rapor,
    list_subjects,
    rapor_by_class,
    rapor_by_student,
    update_rapor,
)
from .middleware import require_roles
from .models import UserRole
from .schemas import RaporCreate, RaporUpdate, SubjectCreate

subject_router = APIRouter(prefix="/mata-pelajaran", tags=["Mata Pelajaran"])
rapor_router = APIRouter(prefix="/rapor", tags=["Rapor"])

admin_only = require_roles(UserRole.ADMIN)
staff = require_roles(UserRole.ADMIN, UserRole.GURU)
any_role = require_roles(UserRole.ADMIN, UserRole.GURU, UserRole.SISWA)


@subject_router.get("")
def subject_index(db: Session = Depends(get_db_session), actor: Actor = Depends(any_role)):
    return success(list_subjects(db), "Data mata pelajaran berhasil diambil")


@subject_router.post("", status_code=status.HTTP_201_CREATED)
def subject_create(payload: SubjectCreate, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    subject = create_subject(db, kode_mapel=payload.kode_mapel, nama_mapel=payload.nama_mapel)
    return success(subject, "Mata pelajaran berhasil ditambahkan")


@rapor_router.post("", status_code=status.HTTP_201_CREATED)
def rapor_create(payload: RaporCreate, db: Session = Depends(get_db_session), actor: Actor = Depends(staff)):
    rapor = create_rapor(db, actor=actor, **payload.model_dump())
    return success(rapor, "Nilai berhasil disimpan")


@rapor_router.get("/siswa/{siswa_id}")
def rapor_student(
    siswa_id: int,
    semester: str | None = Query(default=None),
    tahun_ajaran: str | None = Query(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(any_role),
):
    result = rapor_by_student(db, siswa_id, actor=actor, semester=semester, tahun_ajaran=tahun_ajaran)
    return success(result, "Rapor siswa berhasil diambil")


@rapor_router.get("/kelas/{kelas_id}")
def rapor_class(
    kelas_id: int,
    semester: str | None = Query(default=None),
    tahun_ajaran: str | None = Query(default=None),
    mata_pelajaran_id: int | None = Query(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(staff),
):
    result = rapor_by_class(
        db,
        kelas_id,
        semester=semester,
        tahun_ajaran=tahun_ajaran,
        mata_pelajaran_id=mata_pelajaran_id,
    )
    return success(result, "Rapor kelas berhasil diambil")


@rapor_router.get("/ranking/kelas/{kelas_id}")
def rapor_ranking(
    kelas_id: int,
    semester: str | None = Query(default=None),
    tahun_ajaran: str | None = Query(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(staff),
):
    result = class_ranking(db, kelas_id, semester=semester, tahun_ajaran=tahun_ajaran)
    return success(result, "Ranking kelas berhasil diambil")


@rapor_router.get("/{rapor_id}")
def rapor_show(rapor_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(staff)):
    return success(get_rapor(db, rapor_id), "Data rapor berhasil diambil")


@rapor_router.put("/{rapor_id}")
def rapor_update(
    rapor_id: int,
    payload: RaporUpdate,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(staff),
):
    return success(update_rapor(db, rapor_id, **payload.model_dump()), "Nilai berhasil diupdate")


@rapor_router.delete("/{rapor_id}")
def rapor_delete(rapor_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(staff)):
    delete_rapor(db, rapor_id)
    return success(message="Rapor berhasil dihapus")
