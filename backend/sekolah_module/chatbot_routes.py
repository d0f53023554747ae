from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from . import chatbot_service
from .actor import Actor
from .database import get_db_session
from .errors import success
from .middleware import get_actor, require_roles
from .models import UserRole
from .schemas import ChatRequest, IntentCreate, ResponseCreate

router = APIRouter(prefix="/chatbot", tags=["Chatbot"])

admin_only = require_roles(UserRole.ADMIN)


@router.post("/ask")
def ask(payload: ChatRequest, db: Session = Depends(get_db_session), actor: Actor = Depends(get_actor)):
    reply = chatbot_service.ask(db, message=payload.message, actor=actor, context=payload.context)
    return success(reply, "Chatbot response berhasil")


@router.get("/history")
def history(
    limit: int = Query(default=chatbot_service.HISTORY_LIMIT, ge=1, le=200),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
):
    return success(chatbot_service.get_history(db, actor, limit), "Chat history berhasil diambil")


@router.delete("/history")
def clear_history(db: Session = Depends(get_db_session), actor: Actor = Depends(get_actor)):
    removed = chatbot_service.clear_history(db, actor)
    return success({"deleted": removed}, "Chat history berhasil dihapus")


@router.get("/faq")
def faq(actor: Actor = Depends(get_actor)):
    return success(chatbot_service.get_faq(), "FAQ berhasil diambil")


@router.get("/stats")
def stats(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    result = chatbot_service.get_stats(db, start_date=start_date, end_date=end_date)
    return success(result, "Statistik chatbot berhasil diambil")


@router.get("/intents")
def intents(db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    return success(chatbot_service.list_intents(db), "Data intent berhasil diambil")


@router.post("/intents", status_code=status.HTTP_201_CREATED)
def create_intent(payload: IntentCreate, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    intent = chatbot_service.create_intent(db, intent_name=payload.intent_name, description=payload.description)
    return success(intent, "Intent berhasil ditambahkan")


@router.put("/intents/{intent_id}")
def update_intent(
    intent_id: int,
    payload: IntentCreate,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    intent = chatbot_service.update_intent(
        db, intent_id, intent_name=payload.intent_name, description=payload.description
    )
    return success(intent, "Intent berhasil diupdate")


@router.delete("/intents/{intent_id}")
def delete_intent(intent_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    chatbot_service.delete_intent(db, intent_id)
    return success(message="Intent berhasil dihapus")


@router.get("/intents/{intent_id}/responses")
def responses(intent_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    return success(chatbot_service.list_responses(db, intent_id), "Data response berhasil diambil")


@router.post("/intents/{intent_id}/responses", status_code=status.HTTP_201_CREATED)
def create_response(
    intent_id: int,
    payload: ResponseCreate,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    response = chatbot_service.create_response(
        db, intent_id, response_text=payload.response_text, priority=payload.priority
    )
    return success(response, "Response berhasil ditambahkan")


@router.put("/responses/{response_id}")
def update_response(
    response_id: int,
    payload: ResponseCreate,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    response = chatbot_service.update_response(
        db, response_id, response_text=payload.response_text, priority=payload.priority
    )
    return success(response, "Response berhasil diupdate")


@router.delete("/responses/{response_id}")
def delete_response(response_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    chatbot_service.delete_response(db, response_id)
    return success(message="Response berhasil dihapus")
