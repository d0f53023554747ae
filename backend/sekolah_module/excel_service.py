import io
import logging
import re
import zipfile
from datetime import date, datetime

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .config import settings
from .database import unit_of_work
from .errors import ValidationError
from .models import Kelas, Siswa, StudentStatus, User, UserRole
from .schemas import ImportFailure, ImportResult, ImportSuccess
from .security import hash_password


logger = logging.getLogger(__name__)

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

EXPORT_SHEET = "Data Siswa"
EXPORT_COLUMNS = [
    "No",
    "NISN",
    "Nama Lengkap",
    "Jenis Kelamin",
    "Tanggal Lahir",
    "Tempat Lahir",
    "Alamat",
    "Kelas",
    "Tingkat",
    "Nama Orang Tua",
    "Telepon Orang Tua",
    "Email",
    "Username",
    "Status",
]

TEMPLATE_HEADERS = [
    "NISN",
    "Nama Lengkap",
    "Jenis Kelamin (L/P)",
    "Tanggal Lahir (YYYY-MM-DD)",
    "Tempat Lahir",
    "Alamat",
    "Kelas ID",
    "Nama Orang Tua",
    "Telepon Orang Tua",
    "Email",
    "Username",
    "Password",
]
TEMPLATE_EXAMPLE = [
    "0012345678",
    "Ahmad Fauzi",
    "L",
    "2015-05-15",
    "Jakarta",
    "Jl. Merdeka No. 1",
    1,
    "Budi Santoso",
    "081234567890",
    "ahmad@example.com",
    "",
    "",
]
TEMPLATE_INSTRUCTIONS = [
    "1. Isi data siswa mulai dari baris ke-2 pada sheet 'Template Siswa'.",
    "2. Kolom NISN, Nama Lengkap, Jenis Kelamin, dan Kelas ID wajib diisi.",
    "3. Jenis Kelamin diisi L (Laki-laki) atau P (Perempuan).",
    "4. Tanggal Lahir menggunakan format YYYY-MM-DD.",
    "5. Kelas ID dapat dilihat pada sheet 'Referensi Kelas'.",
    "6. Username default sama dengan NISN jika dikosongkan.",
    "7. Password default 'password123' jika dikosongkan.",
    "8. Email default <NISN>@student.com jika dikosongkan.",
]

# Normalized header text -> student field
HEADER_FIELDS = {
    "nisn": "nisn",
    "nama lengkap": "nama_lengkap",
    "nama": "nama_lengkap",
    "jenis kelamin": "jenis_kelamin",
    "jk": "jenis_kelamin",
    "tanggal lahir": "tanggal_lahir",
    "tempat lahir": "tempat_lahir",
    "alamat": "alamat",
    "kelas id": "kelas_id",
    "kelas_id": "kelas_id",
    "nama orang tua": "nama_orang_tua",
    "telepon orang tua": "telepon_orang_tua",
    "email": "email",
    "username": "username",
    "password": "password",
}

DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%Y/%m/%d")
# Upper bound of a 32-bit INTEGER primary key.
MAX_ROW_ID = 2**31 - 1


class RowError(Exception):
    pass


def _dash(value):
    if value is None or value == "":
        return "-"
    return value


def export_students(db: Session) -> bytes:
    """Render every student as an .xlsx workbook, newest first."""
    students = db.scalars(
        select(Siswa)
        .options(joinedload(Siswa.kelas), joinedload(Siswa.user))
        .order_by(Siswa.created_at.desc(), Siswa.id.desc())
    ).all()

    rows = []
    for index, siswa in enumerate(students, start=1):
        rows.append([
            index,
            siswa.nisn,
            siswa.nama_lengkap,
            "Laki-laki" if siswa.jenis_kelamin == "L" else "Perempuan",
            siswa.tanggal_lahir.isoformat() if siswa.tanggal_lahir else "-",
            _dash(siswa.tempat_lahir),
            _dash(siswa.alamat),
            siswa.kelas.nama_kelas if siswa.kelas else "-",
            siswa.kelas.tingkat if siswa.kelas else "-",
            _dash(siswa.nama_orang_tua),
            _dash(siswa.telepon_orang_tua),
            _dash(siswa.email),
            siswa.user.username if siswa.user else "-",
            siswa.status.value,
        ])

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        pd.DataFrame(rows, columns=EXPORT_COLUMNS).to_excel(writer, sheet_name=EXPORT_SHEET, index=False)
    buffer.seek(0)
    logger.info(f"Exported {len(rows)} students to Excel")
    return buffer.getvalue()


def build_import_template(db: Session) -> bytes:
    classes = db.scalars(select(Kelas).order_by(Kelas.tingkat, Kelas.nama_kelas)).all()
    template_df = pd.DataFrame([TEMPLATE_EXAMPLE], columns=TEMPLATE_HEADERS)
    kelas_df = pd.DataFrame(
        [[k.id, k.nama_kelas, k.tingkat, k.tahun_ajaran] for k in classes],
        columns=["ID", "Nama Kelas", "Tingkat", "Tahun Ajaran"],
    )
    petunjuk_df = pd.DataFrame({"Petunjuk Pengisian": TEMPLATE_INSTRUCTIONS})

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        template_df.to_excel(writer, sheet_name="Template Siswa", index=False)
        kelas_df.to_excel(writer, sheet_name="Referensi Kelas", index=False)
        petunjuk_df.to_excel(writer, sheet_name="Petunjuk", index=False)
    buffer.seek(0)
    return buffer.getvalue()


def _normalize_header(value) -> str:
    text = re.sub(r"\(.*?\)", "", str(value or "")).strip().lower()
    return re.sub(r"\s+", " ", text)


def _text(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _parse_date(value) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = _text(value)
    if not text:
        return None
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _parse_int(value) -> int | None:
    text = _text(value)
    if text is None:
        return None
    try:
        return int(float(text))
    except (ValueError, OverflowError):
        return None


def read_rows(content: bytes) -> list[tuple[int, dict]]:
    """Read the first sheet into (sheet row number, field dict) pairs.

    Row 1 holds the headers; fully empty rows are skipped.
    """
    try:
        workbook = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
        raise ValidationError("File Excel tidak valid") from exc

    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            raise ValidationError("File Excel kosong")
        fields = [HEADER_FIELDS.get(_normalize_header(cell)) for cell in header]

        records = []
        for row_number, values in enumerate(rows, start=2):
            if not values or all(_text(v) is None for v in values):
                continue
            record = {}
            for field_name, value in zip(fields, values):
                if field_name and field_name not in record:
                    record[field_name] = value
            records.append((row_number, record))
    finally:
        workbook.close()

    if not records:
        raise ValidationError("File Excel kosong")
    return records


def _import_row(db: Session, record: dict) -> ImportSuccess:
    nisn = _text(record.get("nisn"))
    nama = _text(record.get("nama_lengkap"))
    gender = (_text(record.get("jenis_kelamin")) or "").upper()
    kelas_id = _parse_int(record.get("kelas_id"))

    if not nisn or not nama or not gender or kelas_id is None:
        raise RowError("NISN, Nama Lengkap, Jenis Kelamin, dan Kelas ID wajib diisi")
    if gender not in ("L", "P"):
        raise RowError("Jenis Kelamin harus L atau P")
    if db.scalar(select(Siswa.id).where(Siswa.nisn == nisn)):
        raise RowError(f"NISN {nisn} sudah terdaftar")
    if not 0 < kelas_id <= MAX_ROW_ID or not db.get(Kelas, kelas_id):
        raise RowError(f"Kelas ID {kelas_id} tidak ditemukan")

    username = _text(record.get("username")) or nisn
    if db.scalar(select(User.id).where(User.username == username)):
        raise RowError(f"Username {username} sudah digunakan")
    password = _text(record.get("password")) or settings.default_student_password

    user = User(username=username, password_hash=hash_password(password), role=UserRole.SISWA, is_active=True)
    db.add(user)
    db.flush()
    db.add(
        Siswa(
            user_id=user.id,
            nisn=nisn,
            nama_lengkap=nama,
            jenis_kelamin=gender,
            tanggal_lahir=_parse_date(record.get("tanggal_lahir")),
            tempat_lahir=_text(record.get("tempat_lahir")),
            alamat=_text(record.get("alamat")),
            kelas_id=kelas_id,
            nama_orang_tua=_text(record.get("nama_orang_tua")),
            telepon_orang_tua=_text(record.get("telepon_orang_tua")),
            email=_text(record.get("email")) or f"{nisn}@student.com",
            status=StudentStatus.AKTIF,
        )
    )
    db.flush()
    return ImportSuccess(row=0, nisn=nisn, nama=nama, username=username)


def import_students(db: Session, content: bytes) -> ImportResult:
    """Create students from an uploaded workbook.

    Each row is written in its own savepoint, so a bad row is reported in
    failedDetails without undoing the rows that went in before or after it.
    """
    records = read_rows(content)
    succeeded: list[ImportSuccess] = []
    failed: list[ImportFailure] = []

    with unit_of_work(db):
        for row_number, record in records:
            try:
                with db.begin_nested():
                    outcome = _import_row(db, record)
            except RowError as exc:
                failed.append(_failure(row_number, record, str(exc)))
                continue
            except IntegrityError:
                failed.append(_failure(row_number, record, "Data duplikat (NISN atau username sudah ada)"))
                continue
            except SQLAlchemyError as exc:
                logger.warning(f"Import row {row_number} rejected by the database: {exc}")
                failed.append(_failure(row_number, record, "Data tidak valid untuk disimpan"))
                continue
            succeeded.append(outcome.model_copy(update={"row": row_number}))

    logger.info(f"Student import finished: {len(succeeded)} succeeded, {len(failed)} failed of {len(records)} rows")
    return ImportResult(
        totalRows=len(records),
        successCount=len(succeeded),
        failedCount=len(failed),
        successDetails=succeeded,
        failedDetails=failed,
    )


def _failure(row_number: int, record: dict, error: str) -> ImportFailure:
    return ImportFailure(
        row=row_number,
        nisn=_text(record.get("nisn")),
        nama=_text(record.get("nama_lengkap")),
        error=error,
    )


def check_upload(filename: str | None, content: bytes) -> None:
    if not (filename or "").lower().endswith(".xlsx"):
        raise ValidationError("Hanya file Excel (.xlsx) yang diperbolehkan")
    if not content:
        raise ValidationError("File Excel kosong")
    if len(content) > settings.max_excel_bytes:
        raise ValidationError(f"Ukuran file maksimal {settings.max_excel_bytes // (1024 * 1024)}MB")
