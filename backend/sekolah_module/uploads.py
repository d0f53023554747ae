import logging
import os
import random
import time
from dataclasses import dataclass

from .config import settings
from .errors import ValidationError


logger = logging.getLogger(__name__)

PROOF_SUBDIR = "bukti_bayar"
IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png"}
IMAGE_EXTENSIONS = {"image/jpeg": ".jpg", "image/jpg": ".jpg", "image/png": ".png"}
ALLOWED_SUFFIXES = {".jpg", ".jpeg", ".png"}


def proof_dir() -> str:
    path = os.path.join(settings.upload_dir, PROOF_SUBDIR)
    os.makedirs(path, exist_ok=True)
    return path


def proof_filename(original_name: str | None, content_type: str) -> str:
    ext = os.path.splitext(original_name or "")[1].lower()
    if ext not in ALLOWED_SUFFIXES:
        ext = IMAGE_EXTENSIONS[content_type]
    unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return f"bukti-{unique_suffix}{ext}"


def save_proof(original_name: str | None, content_type: str | None, content: bytes) -> str:
    """Store a proof-of-payment image and return the stored filename."""
    if content_type not in IMAGE_TYPES:
        raise ValidationError("Only image files (.jpg, .jpeg, .png) are allowed!")
    if not content:
        raise ValidationError("File bukti bayar kosong")
    if len(content) > settings.max_proof_bytes:
        raise ValidationError(f"Ukuran file maksimal {settings.max_proof_bytes // (1024 * 1024)}MB")

    filename = proof_filename(original_name, content_type)
    with open(os.path.join(proof_dir(), filename), "wb") as buffer:
        buffer.write(content)
    logger.info(f"Stored proof of payment {filename} ({len(content)} bytes)")
    return filename


def remove_proof(filename: str | None) -> None:
    if not filename:
        return
    path = os.path.join(proof_dir(), os.path.basename(filename))
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.warning(f"Proof file {filename} already missing")


@dataclass(frozen=True)
class ProofFile:
    filename: str | None
    content_type: str | None
    content: bytes


def store(proof: ProofFile | None) -> str | None:
    if proof is None:
        return None
    return save_proof(proof.filename, proof.content_type, proof.content)
