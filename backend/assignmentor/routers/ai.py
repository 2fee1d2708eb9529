from __future__ import annotations
import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..llm_client import LLMClient, build_chat_prompt, build_generation_prompt
from .assignments import append_chat, get_owned_assignment
from .auth import get_current_user_row
from ..db import get_db
from ..models import AuthUser

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


class GenerateRequest(BaseModel):
	prompt: str
	topic: Optional[str] = None
	word_limit: Optional[int] = None
	# When given, the generated text replaces that assignment's document
	assignment_id: Optional[str] = None


class ChatTurn(BaseModel):
	role: Literal["user", "assistant"]
	content: str


class ChatRequest(BaseModel):
	messages: List[ChatTurn]
	topic: str = ""


async def get_llm_client():
	client = LLMClient()
	try:
		yield client
	finally:
		await client.aclose()


def _consume_request(db: Session, user: AuthUser) -> None:
	# Enforce per-user request limits
	if user.requests_used >= user.requests_limit:
		raise HTTPException(status_code=429, detail="request limit reached")
	user.requests_used += 1
	db.add(user)
	db.commit()


@router.post("/generate")
async def generate(
	req: GenerateRequest,
	user: AuthUser = Depends(get_current_user_row),
	db: Session = Depends(get_db),
	client: LLMClient = Depends(get_llm_client),
):
	instruction = (req.prompt or "").strip()
	if not instruction:
		raise HTTPException(status_code=400, detail="prompt is required")
	assignment = get_owned_assignment(db, req.assignment_id, user.id) if req.assignment_id else None
	topic = req.topic if req.topic is not None else (assignment.topic if assignment else "")
	word_limit = req.word_limit or (assignment.word_limit if assignment else None)
	_consume_request(db, user)
	try:
		text = await client.complete(build_generation_prompt(topic, instruction, word_limit))
	except Exception as e:
		logger.error("Generation failed for user %s: %s", user.id, e)
		raise HTTPException(status_code=502, detail="Failed to generate content")
	if assignment is not None:
		append_chat(db, assignment, "user", instruction)
		append_chat(db, assignment, "assistant", text)
		assignment.content = text
		assignment.updated_at = datetime.utcnow()
		db.commit()
	return {"content": text}


@router.post("/chat")
async def chat(
	req: ChatRequest,
	user: AuthUser = Depends(get_current_user_row),
	db: Session = Depends(get_db),
	client: LLMClient = Depends(get_llm_client),
):
	if not req.messages:
		raise HTTPException(status_code=400, detail="messages are required")
	last = req.messages[-1]
	_consume_request(db, user)
	try:
		text = await client.complete(build_chat_prompt(req.topic, last.content))
	except Exception as e:
		logger.error("Chat generation failed for user %s: %s", user.id, e)
		raise HTTPException(status_code=502, detail="Chat generation failed")
	return {"content": text}
