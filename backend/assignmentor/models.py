from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey
from sqlalchemy.orm import relationship
from .db import Base
from .settings import settings


def _new_id() -> str:
	return uuid.uuid4().hex


class AuthUser(Base):
	__tablename__ = "auth_users"
	id = Column(String(32), primary_key=True, default=_new_id)
	email = Column(String(256), unique=True, index=True, nullable=False)
	name = Column(String(256), nullable=False)
	password_hash = Column(String(256), nullable=False)
	# Student profile printed on the first exported page
	roll_number = Column(String(64), nullable=True)
	course = Column(String(128), nullable=True)
	college_name = Column(String(256), nullable=True)
	section = Column(String(64), nullable=True)
	semester = Column(String(64), nullable=True)
	requests_used = Column(Integer, default=0, nullable=False)
	requests_limit = Column(Integer, default=lambda: settings.default_requests_limit, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# jti claim of the issued token
	session_id = Column(String(64), primary_key=True)
	user_id = Column(String(32), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Assignment(Base):
	__tablename__ = "assignments"
	id = Column(String(32), primary_key=True, default=_new_id)
	user_id = Column(String(32), ForeignKey("auth_users.id", ondelete="CASCADE"), index=True, nullable=False)
	subject = Column(String(256), nullable=False)
	topic = Column(String(512), default="", nullable=False)
	assessment_name = Column(String(256), nullable=True)
	module_number = Column(String(32), nullable=True)
	module_name = Column(String(256), nullable=True)
	word_limit = Column(Integer, nullable=True)
	# Markdown document; replaced wholesale by generation, edited per block
	content = Column(Text, default="", nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	chat_history = relationship(
		"ChatMessage",
		order_by="ChatMessage.timestamp",
		cascade="all, delete-orphan",
		back_populates="assignment",
	)


class ChatMessage(Base):
	__tablename__ = "chat_messages"
	id = Column(Integer, primary_key=True, autoincrement=True)
	assignment_id = Column(String(32), ForeignKey("assignments.id", ondelete="CASCADE"), index=True, nullable=False)
	role = Column(String(16), nullable=False)  # "user" | "assistant"
	content = Column(Text, nullable=False)
	timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

	assignment = relationship("Assignment", back_populates="chat_history")
