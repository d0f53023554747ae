import logging
import re
from datetime import date, datetime, time

import requests
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from .actor import Actor
from .config import settings
from .database import unit_of_work
from .errors import DuplicateError, NotFoundError, ValidationError
from .models import (
    ChatbotIntent,
    ChatbotLog,
    ChatbotResponse,
    Pembayaran,
    PaymentStatus,
    Rapor,
    Siswa,
    User,
    UserRole,
)
from .schemas import ChatReply, IntentOut, ResponseOut


logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.6
RULE_CONFIDENCE = 0.8
UNKNOWN_INTENT = "unknown"
HISTORY_LIMIT = 50

# Checked in order; the first pattern that matches wins.
KEYWORD_RULES = [
    ("bantuan", re.compile(r"\b(bantuan|help|panduan)\b")),
    ("jadwal", re.compile(r"(jadwal|pelajaran|mengajar|kelas|hari ini|besok)")),
    ("nilai", re.compile(r"(nilai|rapor|ujian|uts|uas|rata-rata)")),
    ("presensi", re.compile(r"(presensi|absen|kehadiran|masuk|sakit)")),
    ("pembayaran", re.compile(r"(bayar|pembayaran|spp|tagihan|lunas)")),
    ("informasi", re.compile(r"(informasi|pengumuman|acara|event|libur)")),
    ("greeting", re.compile(r"^(hai|halo|hello|hi|selamat)")),
]

INTENT_ALIASES = {
    "schedule": "jadwal",
    "grades": "nilai",
    "attendance": "presensi",
    "payment": "pembayaran",
    "information": "informasi",
    "salam": "greeting",
    "help": "bantuan",
}

FAQ = [
    {
        "category": "Nilai",
        "questions": [
            "Berapa nilai rata-rata saya?",
            "Lihat nilai rapor semester ini",
            "Nilai matematika saya berapa?",
        ],
    },
    {
        "category": "Pembayaran",
        "questions": [
            "Status pembayaran SPP saya?",
            "Tagihan saya berapa?",
            "Pembayaran bulan ini sudah lunas?",
        ],
    },
    {
        "category": "Jadwal",
        "questions": ["Apa jadwal saya hari ini?", "Kapan ujian semester?"],
    },
    {
        "category": "Informasi",
        "questions": ["Kapan libur semester?", "Pengumuman terbaru apa?"],
    },
]

HELP_TEXT = (
    "Panduan Chatbot\n\n"
    "Saya dapat membantu Anda dengan:\n"
    "1. Nilai & Rapor\n2. Pembayaran\n3. Jadwal Pelajaran\n4. Presensi\n5. Informasi Sekolah\n\n"
    "Ketik pertanyaan Anda dengan bahasa sehari-hari."
)
DEFAULT_TEXT = 'Maaf, saya belum memahami pertanyaan Anda.\n\nKetik "bantuan" untuk panduan.'


def detect_intent_by_rules(message: str) -> tuple[str, float]:
    lowered = message.lower()
    for intent_name, pattern in KEYWORD_RULES:
        if pattern.search(lowered):
            return intent_name, RULE_CONFIDENCE
    return UNKNOWN_INTENT, 0.0


def _analyze_remote(message: str, actor: Actor, context: dict | None) -> dict | None:
    if not settings.nlp_service_url:
        return None
    url = f"{settings.nlp_service_url.rstrip('/')}/api/nlp/analyze"
    try:
        response = requests.post(
            url,
            json={"message": message, "user_id": actor.id, "user_role": actor.role.value, "context": context},
            timeout=settings.nlp_timeout_seconds,
        )
        response.raise_for_status()
        result = response.json()
        return {
            "intent_name": str(result["intent_name"]),
            "confidence_score": float(result.get("confidence_score", 0.0)),
            "entities": result.get("entities") or {},
        }
    except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
        logger.warning(f"NLP service unavailable, falling back to keyword rules: {exc}")
        return None


def analyze(message: str, actor: Actor, context: dict | None = None) -> dict:
    result = _analyze_remote(message, actor, context)
    if result is None:
        intent_name, confidence = detect_intent_by_rules(message)
        result = {"intent_name": intent_name, "confidence_score": confidence, "entities": {}}
    return result


def _get_or_create_intent(db: Session, intent_name: str) -> ChatbotIntent:
    intent = db.scalars(select(ChatbotIntent).where(ChatbotIntent.intent_name == intent_name)).first()
    if intent is None:
        intent = ChatbotIntent(intent_name=intent_name, description="Auto-created from user query")
        db.add(intent)
        db.flush()
    return intent


def _student_for(db: Session, actor: Actor) -> Siswa | None:
    if actor.role != UserRole.SISWA:
        return None
    return db.scalars(select(Siswa).where(Siswa.user_id == actor.id)).first()


def _payment_reply(db: Session, actor: Actor) -> tuple[str, dict | None]:
    siswa = _student_for(db, actor)
    if siswa is None:
        return "Informasi pembayaran dapat dilihat pada menu Pembayaran.", None

    rows = db.execute(
        select(Pembayaran.status, func.count(Pembayaran.id), func.coalesce(func.sum(Pembayaran.jumlah_bayar), 0))
        .where(Pembayaran.siswa_id == siswa.id)
        .group_by(Pembayaran.status)
    ).all()
    summary = {s.value: {"count": 0, "nominal": 0.0} for s in PaymentStatus}
    for status, count, total in rows:
        summary[PaymentStatus(status).value] = {"count": count, "nominal": float(total)}

    approved = summary[PaymentStatus.APPROVED.value]
    pending = summary[PaymentStatus.PENDING.value]
    message = (
        f"Ringkasan pembayaran {siswa.nama_lengkap}:\n"
        f"- Disetujui: {approved['count']} transaksi (Rp {approved['nominal']:,.0f})\n"
        f"- Menunggu verifikasi: {pending['count']} transaksi\n"
        f"- Ditolak: {summary[PaymentStatus.REJECTED.value]['count']} transaksi"
    )
    return message, summary


def _grade_reply(db: Session, actor: Actor) -> tuple[str, dict | None]:
    siswa = _student_for(db, actor)
    if siswa is None:
        return "Nilai siswa dapat dilihat pada menu Rapor.", None

    average, subjects = db.execute(
        select(func.avg(Rapor.nilai_akhir), func.count(Rapor.id)).where(Rapor.siswa_id == siswa.id)
    ).one()
    if not subjects:
        return "Belum ada nilai rapor yang tercatat untuk Anda.", {"total_mapel": 0, "rata_rata": 0.0}
    average = round(float(average or 0), 2)
    return (
        f"Rata-rata nilai Anda dari {subjects} mata pelajaran adalah {average}.",
        {"total_mapel": subjects, "rata_rata": average},
    )


def _custom_reply(db: Session, intent: ChatbotIntent) -> str:
    response = db.scalars(
        select(ChatbotResponse)
        .where(ChatbotResponse.intent_id == intent.id)
        .order_by(ChatbotResponse.priority.desc(), ChatbotResponse.id)
    ).first()
    return response.response_text if response else DEFAULT_TEXT


def ask(db: Session, *, message: str | None, actor: Actor, context: dict | None = None) -> ChatReply:
    """Answer a chat message and log the exchange."""
    if not message or not message.strip():
        raise ValidationError("Message tidak boleh kosong")
    message = message.strip()

    result = analyze(message, actor, context)
    intent_name = INTENT_ALIASES.get(result["intent_name"], result["intent_name"])
    confidence = result["confidence_score"]

    with unit_of_work(db):
        intent = _get_or_create_intent(db, intent_name)
        data = None
        if confidence < CONFIDENCE_THRESHOLD:
            reply = (
                f"Maaf, saya kurang yakin memahami maksud Anda (confidence: {confidence * 100:.0f}%).\n\n"
                'Coba tanyakan dengan lebih jelas atau ketik "bantuan" untuk panduan.'
            )
        elif intent_name == "pembayaran":
            reply, data = _payment_reply(db, actor)
        elif intent_name == "nilai":
            reply, data = _grade_reply(db, actor)
        elif intent_name == "greeting":
            reply = f"Halo {actor.username}! Ada yang bisa saya bantu hari ini?"
        elif intent_name == "bantuan":
            reply = HELP_TEXT
        else:
            reply = _custom_reply(db, intent)

        db.add(
            ChatbotLog(
                user_id=actor.id,
                user_message=message,
                bot_response=reply,
                intent_id=intent.id,
                confidence_score=confidence,
            )
        )

    return ChatReply(message=reply, data=data, intent=intent_name, confidence=confidence, entities=result["entities"])


def get_history(db: Session, actor: Actor, limit: int = HISTORY_LIMIT) -> list[dict]:
    logs = db.scalars(
        select(ChatbotLog)
        .options(joinedload(ChatbotLog.intent))
        .where(ChatbotLog.user_id == actor.id)
        .order_by(ChatbotLog.created_at.desc(), ChatbotLog.id.desc())
        .limit(limit)
    ).all()

    history = []
    for log in reversed(logs):
        history.append({"id": f"{log.id}_user", "message": log.user_message, "is_bot": False, "created_at": log.created_at})
        history.append(
            {
                "id": f"{log.id}_bot",
                "message": log.bot_response,
                "is_bot": True,
                "intent": log.intent.intent_name if log.intent else None,
                "confidence": log.confidence_score,
                "created_at": log.created_at,
            }
        )
    return history


def clear_history(db: Session, actor: Actor) -> int:
    with unit_of_work(db):
        result = db.execute(delete(ChatbotLog).where(ChatbotLog.user_id == actor.id))
    return result.rowcount


def get_faq() -> list[dict]:
    return FAQ


def get_stats(db: Session, *, start_date: date | None = None, end_date: date | None = None) -> dict:
    conditions = []
    if start_date and end_date:
        conditions.append(
            ChatbotLog.created_at.between(datetime.combine(start_date, time.min), datetime.combine(end_date, time.max))
        )

    total = db.scalar(select(func.count(ChatbotLog.id)).where(*conditions)) or 0
    distribution = db.execute(
        select(ChatbotIntent.intent_name, func.count(ChatbotLog.id))
        .join(ChatbotIntent, ChatbotIntent.id == ChatbotLog.intent_id)
        .where(*conditions)
        .group_by(ChatbotIntent.intent_name)
        .order_by(func.count(ChatbotLog.id).desc())
    ).all()
    average = db.scalar(select(func.avg(ChatbotLog.confidence_score)).where(*conditions))
    active_users = db.execute(
        select(User.id, User.username, User.role, func.count(ChatbotLog.id).label("chat_count"))
        .join(User, User.id == ChatbotLog.user_id)
        .where(*conditions)
        .group_by(User.id, User.username, User.role)
        .order_by(func.count(ChatbotLog.id).desc())
        .limit(10)
    ).all()

    return {
        "total_interactions": total,
        "intent_distribution": [{"intent_name": name, "count": count} for name, count in distribution],
        "average_confidence": round(float(average or 0), 4),
        "most_active_users": [
            {"user_id": uid, "username": username, "role": role, "chat_count": count}
            for uid, username, role, count in active_users
        ],
    }


# Intent and response management


def _response_out(response: ChatbotResponse) -> ResponseOut:
    return ResponseOut(
        id=response.id,
        intent_id=response.intent_id,
        response_text=response.response_text,
        priority=response.priority,
    )


def _intent_out(intent: ChatbotIntent) -> IntentOut:
    responses = sorted(intent.responses, key=lambda r: (-r.priority, r.id))
    return IntentOut(
        id=intent.id,
        intent_name=intent.intent_name,
        description=intent.description,
        responses=[_response_out(r) for r in responses],
    )


def _get_intent(db: Session, intent_id: int) -> ChatbotIntent:
    intent = db.scalars(
        select(ChatbotIntent).options(selectinload(ChatbotIntent.responses)).where(ChatbotIntent.id == intent_id)
    ).first()
    if not intent:
        raise NotFoundError("Intent tidak ditemukan")
    return intent


def list_intents(db: Session) -> list[IntentOut]:
    intents = db.scalars(
        select(ChatbotIntent).options(selectinload(ChatbotIntent.responses)).order_by(ChatbotIntent.intent_name)
    ).all()
    return [_intent_out(i) for i in intents]


def create_intent(db: Session, *, intent_name: str | None, description: str | None = None) -> IntentOut:
    if not intent_name or not intent_name.strip():
        raise ValidationError("Nama intent wajib diisi")
    name = intent_name.strip().lower()
    if db.scalar(select(ChatbotIntent.id).where(ChatbotIntent.intent_name == name)):
        raise DuplicateError(f"Intent {name} sudah ada")
    intent = ChatbotIntent(intent_name=name, description=description)
    with unit_of_work(db):
        db.add(intent)
    return _intent_out(_get_intent(db, intent.id))


def update_intent(db: Session, intent_id: int, *, intent_name: str | None = None, description: str | None = None) -> IntentOut:
    intent = _get_intent(db, intent_id)
    if intent_name and intent_name.strip():
        name = intent_name.strip().lower()
        clash = db.scalar(select(ChatbotIntent.id).where(ChatbotIntent.intent_name == name, ChatbotIntent.id != intent_id))
        if clash:
            raise DuplicateError(f"Intent {name} sudah ada")
        intent.intent_name = name
    if description is not None:
        intent.description = description
    with unit_of_work(db):
        db.add(intent)
    return _intent_out(_get_intent(db, intent_id))


def delete_intent(db: Session, intent_id: int) -> None:
    intent = _get_intent(db, intent_id)
    with unit_of_work(db):
        db.execute(
            update(ChatbotLog)
            .where(ChatbotLog.intent_id == intent_id)
            .values(intent_id=None)
            .execution_options(synchronize_session=False)
        )
        db.delete(intent)
    logger.info(f"Chatbot intent {intent_id} deleted")


def list_responses(db: Session, intent_id: int) -> list[ResponseOut]:
    return _intent_out(_get_intent(db, intent_id)).responses


def create_response(db: Session, intent_id: int, *, response_text: str | None, priority: int | None = None) -> ResponseOut:
    _get_intent(db, intent_id)
    if not response_text or not response_text.strip():
        raise ValidationError("Teks response wajib diisi")
    response = ChatbotResponse(intent_id=intent_id, response_text=response_text.strip(), priority=priority or 1)
    with unit_of_work(db):
        db.add(response)
    return _response_out(response)


def _get_response(db: Session, response_id: int) -> ChatbotResponse:
    response = db.get(ChatbotResponse, response_id)
    if not response:
        raise NotFoundError("Response tidak ditemukan")
    return response


def update_response(db: Session, response_id: int, *, response_text: str | None = None, priority: int | None = None) -> ResponseOut:
    response = _get_response(db, response_id)
    if response_text and response_text.strip():
        response.response_text = response_text.strip()
    if priority is not None:
        response.priority = priority
    with unit_of_work(db):
        db.add(response)
    return _response_out(response)


def delete_response(db: Session, response_id: int) -> None:
    response = _get_response(db, response_id)
    with unit_of_work(db):
        db.delete(response)
