import os
from dataclasses import dataclass, field


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    jwt_secret: str = os.getenv("SEKOLAH_JWT_SECRET", os.getenv("JWT_SECRET", "change-me-in-production"))
    jwt_algorithm: str = os.getenv("SEKOLAH_JWT_ALGORITHM", "HS256")
    jwt_exp_minutes: int = int(os.getenv("SEKOLAH_JWT_EXP_MINUTES", str(24 * 60)))
    upload_dir: str = os.getenv(
        "SEKOLAH_UPLOAD_DIR",
        os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "uploads"),
    )
    max_proof_bytes: int = int(os.getenv("SEKOLAH_MAX_PROOF_BYTES", str(2 * 1024 * 1024)))
    max_excel_bytes: int = int(os.getenv("SEKOLAH_MAX_EXCEL_BYTES", str(5 * 1024 * 1024)))
    default_student_password: str = os.getenv("SEKOLAH_DEFAULT_STUDENT_PASSWORD", "password123")
    default_admin_username: str = os.getenv("SEKOLAH_ADMIN_USERNAME", "admin")
    default_admin_password: str = os.getenv("SEKOLAH_ADMIN_PASSWORD", "ChangeMe@123")
    nlp_service_url: str = os.getenv("SEKOLAH_NLP_URL", "")
    nlp_timeout_seconds: float = float(os.getenv("SEKOLAH_NLP_TIMEOUT", "10"))
    cors_origins: list[str] = field(default_factory=lambda: _csv(os.getenv("SEKOLAH_CORS_ORIGINS", "*")))


settings = Settings()
