from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

from fastapi import APIRouter, HTTPException, Depends
from fastapi.security import OAuth2PasswordRequestForm, OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
import logging

from ..settings import settings
from sqlalchemy.orm import Session
from ..db import get_db
from ..models import AuthUser, AuthSession

router = APIRouter(prefix="/auth", tags=["auth"])

logging.getLogger('passlib').setLevel(logging.ERROR)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class User(BaseModel):
	id: str
	email: str
	name: str
	roll_number: Optional[str] = None
	course: Optional[str] = None
	college_name: Optional[str] = None
	section: Optional[str] = None
	semester: Optional[str] = None

	@classmethod
	def from_row(cls, row: AuthUser) -> "User":
		return cls(
			id=row.id,
			email=row.email,
			name=row.name,
			roll_number=row.roll_number,
			course=row.course,
			college_name=row.college_name,
			section=row.section,
			semester=row.semester,
		)


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def authenticate_user(db: Session, email: str, password: str) -> Optional[AuthUser]:
	email = (email or "").strip().lower()
	user_row = db.query(AuthUser).filter(AuthUser.email == email).first()
	if user_row and verify_password(password, user_row.password_hash):
		return user_row
	return None


def _resolve_expiry(expires_delta: Optional[timedelta]) -> datetime:
	"""Return a safe JWT expiry timestamp.

	Respects the configured session timeout when provided and falls back to a
	generous but finite default.
	"""
	delta = expires_delta
	if delta is None:
		minutes = getattr(settings, "access_token_expire_minutes", None)
		if isinstance(minutes, int) and minutes > 0:
			delta = timedelta(minutes=minutes)
		else:
			delta = timedelta(days=30)
	now = datetime.now(timezone.utc)
	try:
		return now + delta
	except OverflowError:
		# Cap at far future but within datetime bounds
		return datetime.max.replace(tzinfo=timezone.utc)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
	to_encode = data.copy()
	expire = _resolve_expiry(expires_delta)
	to_encode.update({"exp": expire})
	encoded_jwt = jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
	return encoded_jwt


@router.post("/token", response_model=Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
	# The OAuth2 form calls it "username"; accounts are keyed by email
	user = authenticate_user(db, form_data.username, form_data.password)
	if not user:
		raise HTTPException(status_code=401, detail="Incorrect email or password")
	session_id = uuid.uuid4().hex
	access_token = create_access_token({"sub": user.id, "jti": session_id})
	try:
		row = AuthSession(session_id=session_id, user_id=user.id)
		db.merge(row)
		db.commit()
	except Exception:
		db.rollback()
		raise HTTPException(status_code=500, detail="Could not create session")
	return Token(access_token=access_token)


def get_current_user_row(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> AuthUser:
	credentials_exception = HTTPException(status_code=401, detail="Could not validate credentials")
	try:
		payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
		user_id: str | None = payload.get("sub")
		jti: str | None = payload.get("jti")
		if user_id is None or jti is None:
			raise credentials_exception
	except JWTError:
		raise credentials_exception
	# The session row must still exist; purged or revoked sessions are rejected
	try:
		row = db.get(AuthSession, jti)
		if not row or row.user_id != user_id:
			raise credentials_exception
		row.last_activity_at = datetime.utcnow()
		db.add(row)
		db.commit()
		user_row = db.get(AuthUser, user_id)
	except HTTPException:
		raise
	except Exception:
		# On DB errors, fail closed
		raise credentials_exception
	if user_row is None:
		raise credentials_exception
	return user_row


def get_current_user(user_row: AuthUser = Depends(get_current_user_row)) -> User:
	return User.from_row(user_row)


@router.get("/me", response_model=User)
async def me(user: User = Depends(get_current_user)):
	return user


class RegisterRequest(BaseModel):
	name: str
	email: str
	password: str
	roll_number: Optional[str] = None
	course: Optional[str] = None
	college_name: Optional[str] = None
	section: Optional[str] = None
	semester: Optional[str] = None


class ProfileUpdate(BaseModel):
	name: Optional[str] = None
	roll_number: Optional[str] = None
	course: Optional[str] = None
	college_name: Optional[str] = None
	section: Optional[str] = None
	semester: Optional[str] = None


@router.post("/register", status_code=201, response_model=User)
async def register(req: RegisterRequest, db: Session = Depends(get_db)):
	name = (req.name or "").strip()
	email = (req.email or "").strip().lower()
	password = req.password or ""
	if not name or not email or not password:
		raise HTTPException(status_code=400, detail="name, email and password are required")
	if "@" not in email or len(email) > 256:
		raise HTTPException(status_code=400, detail="a valid email is required")
	if len(password) < 6:
		raise HTTPException(status_code=400, detail="password must be at least 6 characters")
	existing = db.query(AuthUser).filter(AuthUser.email == email).first()
	if existing:
		raise HTTPException(status_code=409, detail="email already registered")
	row = AuthUser(
		name=name,
		email=email,
		password_hash=hash_password(password),
		roll_number=req.roll_number,
		course=req.course,
		college_name=req.college_name,
		section=req.section,
		semester=req.semester,
	)
	db.add(row)
	db.commit()
	db.refresh(row)
	return User.from_row(row)


@router.put("/me", response_model=User)
async def update_profile(
	req: ProfileUpdate,
	user_row: AuthUser = Depends(get_current_user_row),
	db: Session = Depends(get_db),
):
	for key, value in req.model_dump(exclude_unset=True).items():
		if key == "name" and not (value or "").strip():
			raise HTTPException(status_code=400, detail="name cannot be empty")
		setattr(user_row, key, value)
	db.add(user_row)
	db.commit()
	db.refresh(user_row)
	return User.from_row(user_row)
