from datetime import datetime

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from .actor import Actor
from .database import get_db_session
from .errors import success
from .excel_service import XLSX_CONTENT_TYPE, build_import_template, check_upload, export_students, import_students
from .middleware import require_roles
from .models import UserRole

router = APIRouter(prefix="/excel", tags=["Excel"])

admin_only = require_roles(UserRole.ADMIN)


def _xlsx(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type=XLSX_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/siswa/export")
def export(db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    filename = f"data_siswa_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
    return _xlsx(export_students(db), filename)


@router.get("/siswa/template")
def template(db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    return _xlsx(build_import_template(db), "template_import_siswa.xlsx")


@router.post("/siswa/import")
def upload(
    file: UploadFile = File(...),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    content = file.file.read()
    check_upload(file.filename, content)
    result = import_students(db, content)
    return success(
        result,
        f"Import selesai: {result.successCount} berhasil, {result.failedCount} gagal",
    )
