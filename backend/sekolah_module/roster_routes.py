from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .actor import Actor
from .database import get_db_session
from .errors import success
from .middleware import require_roles
from .models import StudentStatus, UserRole
from .roster_service import (
    assign_students,
    create_class,
    create_student,
    create_teacher,
    delete_class,
    delete_student,
    delete_teacher,
    get_class,
    get_student,
    get_teacher,
    list_classes,
    list_students,
    list_teachers,
    remove_student_from_class,
    update_class,
    update_student,
    update_teacher,
)
from .schemas import (
    AssignStudentsRequest,
    KelasCreate,
    KelasUpdate,
    StudentCreate,
    StudentUpdate,
    TeacherCreate,
    TeacherUpdate,
)

student_router = APIRouter(prefix="/siswa", tags=["Siswa"])
teacher_router = APIRouter(prefix="/guru", tags=["Guru"])
class_router = APIRouter(prefix="/kelas", tags=["Kelas"])

admin_only = require_roles(UserRole.ADMIN)
staff = require_roles(UserRole.ADMIN, UserRole.GURU)


# Students


@student_router.get("")
def student_index(
    search: str | None = Query(default=None),
    kelas_id: int | None = Query(default=None),
    status_filter: StudentStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1),
    limit: int = Query(default=10),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(staff),
):
    result = list_students(db, search=search, kelas_id=kelas_id, status=status_filter, page=page, limit=limit)
    return success(result, "Data siswa berhasil diambil")


@student_router.get("/{siswa_id}")
def student_show(siswa_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(staff)):
    return success(get_student(db, siswa_id), "Data siswa berhasil diambil")


@student_router.post("", status_code=status.HTTP_201_CREATED)
def student_create(payload: StudentCreate, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    fields = payload.model_dump()
    created = create_student(
        db,
        nisn=fields.pop("nisn"),
        nama_lengkap=fields.pop("nama_lengkap"),
        jenis_kelamin=fields.pop("jenis_kelamin"),
        username=fields.pop("username"),
        password=fields.pop("password"),
        kelas_id=fields.pop("kelas_id"),
        status=fields.pop("status"),
        **fields,
    )
    return success(created, "Siswa berhasil ditambahkan")


@student_router.put("/{siswa_id}")
def student_update(
    siswa_id: int,
    payload: StudentUpdate,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    return success(update_student(db, siswa_id, **payload.model_dump(exclude_unset=True)), "Data siswa berhasil diupdate")


@student_router.delete("/{siswa_id}")
def student_delete(siswa_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    delete_student(db, siswa_id)
    return success(message="Siswa berhasil dihapus")


# Teachers


@teacher_router.get("")
def teacher_index(
    search: str | None = Query(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    return success(list_teachers(db, search=search), "Data guru berhasil diambil")


@teacher_router.get("/{guru_id}")
def teacher_show(guru_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    return success(get_teacher(db, guru_id), "Data guru berhasil diambil")


@teacher_router.post("", status_code=status.HTTP_201_CREATED)
def teacher_create(payload: TeacherCreate, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    fields = payload.model_dump()
    created = create_teacher(
        db,
        nip=fields.pop("nip"),
        nama_lengkap=fields.pop("nama_lengkap"),
        jenis_kelamin=fields.pop("jenis_kelamin"),
        username=fields.pop("username"),
        **fields,
    )
    return success(created, "Guru berhasil ditambahkan")


@teacher_router.put("/{guru_id}")
def teacher_update(
    guru_id: int,
    payload: TeacherUpdate,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    return success(update_teacher(db, guru_id, **payload.model_dump(exclude_unset=True)), "Data guru berhasil diupdate")


@teacher_router.delete("/{guru_id}")
def teacher_delete(guru_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    delete_teacher(db, guru_id)
    return success(message="Guru berhasil dihapus")


# Classes


@class_router.get("")
def class_index(
    tahun_ajaran: str | None = Query(default=None),
    tingkat: int | None = Query(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(staff),
):
    return success(list_classes(db, tahun_ajaran=tahun_ajaran, tingkat=tingkat), "Data kelas berhasil diambil")


@class_router.get("/{kelas_id}")
def class_show(kelas_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(staff)):
    return success(get_class(db, kelas_id), "Data kelas berhasil diambil")


@class_router.post("", status_code=status.HTTP_201_CREATED)
def class_create(payload: KelasCreate, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    kelas = create_class(
        db,
        nama_kelas=payload.nama_kelas,
        tingkat=payload.tingkat,
        tahun_ajaran=payload.tahun_ajaran,
        guru_id=payload.guru_id,
    )
    return success(kelas, "Kelas berhasil ditambahkan")


@class_router.put("/{kelas_id}")
def class_update(
    kelas_id: int,
    payload: KelasUpdate,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    return success(update_class(db, kelas_id, **payload.model_dump(exclude_unset=True)), "Kelas berhasil diupdate")


@class_router.delete("/{kelas_id}")
def class_delete(kelas_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    delete_class(db, kelas_id)
    return success(message="Kelas berhasil dihapus")


@class_router.post("/{kelas_id}/siswa")
def class_assign(
    kelas_id: int,
    payload: AssignStudentsRequest,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    kelas = assign_students(db, kelas_id, payload.siswa_ids)
    return success(kelas, f"{len(payload.siswa_ids)} siswa berhasil dimasukkan ke kelas")


@class_router.delete("/{kelas_id}/siswa/{siswa_id}")
def class_remove_student(
    kelas_id: int,
    siswa_id: int,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    remove_student_from_class(db, kelas_id, siswa_id)
    return success(message="Siswa berhasil dikeluarkan dari kelas")
