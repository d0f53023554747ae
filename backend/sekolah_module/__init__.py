from sqlalchemy.orm import Session

from .auth_routes import router as auth_router
from .auth_service import seed_default_admin
from .chatbot_routes import router as chatbot_router
from .dashboard_routes import router as dashboard_router
from .database import Base, engine
from .excel_routes import router as excel_router
from .grade_routes import rapor_router, subject_router
from .payment_routes import router as payment_router
from .payment_type_routes import router as payment_type_router
from .roster_routes import class_router, student_router, teacher_router

routers = [
    auth_router,
    payment_router,
    payment_type_router,
    excel_router,
    dashboard_router,
    student_router,
    teacher_router,
    class_router,
    subject_router,
    rapor_router,
    chatbot_router,
]


def init_sekolah_module() -> None:
    Base.metadata.create_all(bind=engine)
    db = Session(bind=engine)
    try:
        seed_default_admin(db)
    finally:
        db.close()


__all__ = ["routers", "init_sekolah_module"]
