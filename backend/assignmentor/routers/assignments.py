from __future__ import annotations
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from .auth import User, get_current_user
from ..db import get_db
from ..models import Assignment, ChatMessage

router = APIRouter(prefix="/assignments", tags=["assignments"])


class AssignmentCreate(BaseModel):
	subject: str
	topic: str = ""
	assessment_name: Optional[str] = None
	module_number: Optional[str] = None
	module_name: Optional[str] = None
	word_limit: Optional[int] = None
	content: str = ""


class AssignmentUpdate(BaseModel):
	subject: Optional[str] = None
	topic: Optional[str] = None
	assessment_name: Optional[str] = None
	module_number: Optional[str] = None
	module_name: Optional[str] = None
	word_limit: Optional[int] = None
	content: Optional[str] = None


class ChatMessageIn(BaseModel):
	role: Literal["user", "assistant"]
	content: str
	timestamp: Optional[datetime] = None


class ChatMessageOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: int
	role: str
	content: str
	timestamp: datetime


class AssignmentOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	id: str
	user_id: str
	subject: str
	topic: str
	assessment_name: Optional[str] = None
	module_number: Optional[str] = None
	module_name: Optional[str] = None
	word_limit: Optional[int] = None
	content: str
	created_at: datetime
	updated_at: datetime


class AssignmentDetail(AssignmentOut):
	chat_history: List[ChatMessageOut] = []


# NOT NULL columns that a partial update may not clear
_REQUIRED_FIELDS = ("subject", "topic", "content")


def get_owned_assignment(db: Session, assignment_id: str, user_id: str) -> Assignment:
	row = (
		db.query(Assignment)
		.filter(Assignment.id == assignment_id, Assignment.user_id == user_id)
		.first()
	)
	if row is None:
		raise HTTPException(status_code=404, detail="Assignment not found")
	return row


def append_chat(db: Session, assignment: Assignment, role: str, content: str, timestamp: Optional[datetime] = None) -> ChatMessage:
	message = ChatMessage(role=role, content=content, timestamp=timestamp or datetime.utcnow())
	assignment.chat_history.append(message)
	db.add(assignment)
	return message


@router.get("", response_model=List[AssignmentOut])
def list_assignments(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return (
		db.query(Assignment)
		.filter(Assignment.user_id == user.id)
		.order_by(Assignment.updated_at.desc())
		.all()
	)


@router.post("", status_code=201, response_model=AssignmentOut)
def create_assignment(req: AssignmentCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	subject = (req.subject or "").strip()
	if not subject:
		raise HTTPException(status_code=400, detail="subject is required")
	row = Assignment(user_id=user.id, **{**req.model_dump(), "subject": subject})
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


@router.get("/{assignment_id}", response_model=AssignmentDetail)
def get_assignment(assignment_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return get_owned_assignment(db, assignment_id, user.id)


@router.put("/{assignment_id}", response_model=AssignmentOut)
def update_assignment(
	assignment_id: str,
	req: AssignmentUpdate,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	row = get_owned_assignment(db, assignment_id, user.id)
	changes = req.model_dump(exclude_unset=True)
	for key in _REQUIRED_FIELDS:
		if key in changes and changes[key] is None:
			raise HTTPException(status_code=400, detail=f"{key} cannot be null")
	if "subject" in changes and not (changes["subject"] or "").strip():
		raise HTTPException(status_code=400, detail="subject cannot be empty")
	for key, value in changes.items():
		setattr(row, key, value)
	row.updated_at = datetime.utcnow()
	db.add(row)
	db.commit()
	db.refresh(row)
	return row


@router.delete("/{assignment_id}")
def delete_assignment(assignment_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	row = get_owned_assignment(db, assignment_id, user.id)
	db.delete(row)
	db.commit()
	return {"message": "Assignment deleted successfully", "id": assignment_id}


@router.get("/{assignment_id}/chat", response_model=List[ChatMessageOut])
def list_chat(assignment_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	return get_owned_assignment(db, assignment_id, user.id).chat_history


@router.post("/{assignment_id}/chat", response_model=List[ChatMessageOut])
def add_chat(
	assignment_id: str,
	req: ChatMessageIn,
	user: User = Depends(get_current_user),
	db: Session = Depends(get_db),
):
	row = get_owned_assignment(db, assignment_id, user.id)
	append_chat(db, row, req.role, req.content, req.timestamp)
	db.commit()
	db.refresh(row)
	return row.chat_history
