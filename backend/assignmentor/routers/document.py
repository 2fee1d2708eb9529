from __future__ import annotations
import logging
from datetime import datetime
from functools import lru_cache
from typing import List
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from .assignments import get_owned_assignment
from .auth import get_current_user_row
from ..db import get_db
from ..export import ExportArtifact, ExportFailed, NoContent, NoPagesFound, PdfExporter, export_filename
from ..models import Assignment, AuthUser
from ..pagination import BlockNotFound, Page, paginate, replace_block
from ..rendering import DocumentFrame, FontSet, PageRasterizer, PrintProfile
from ..settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assignments", tags=["document"])


class BlockOut(BaseModel):
	id: str
	index: int
	html: str
	markdown: str
	length: int


class PageOut(BaseModel):
	number: int
	char_count: int
	blocks: List[BlockOut]


class PagesOut(BaseModel):
	assignment_id: str
	capacity: int
	page_count: int
	pages: List[PageOut]


class BlockEdit(BaseModel):
	markdown: str


def _pages_out(assignment_id: str, pages: List[Page]) -> PagesOut:
	return PagesOut(
		assignment_id=assignment_id,
		capacity=settings.chars_per_page,
		page_count=len(pages),
		pages=[
			PageOut(
				number=p.number,
				char_count=p.char_count,
				blocks=[
					BlockOut(id=b.id, index=b.index, html=b.html, markdown=b.source, length=b.length)
					for b in p.blocks
				],
			)
			for p in pages
		],
	)


@lru_cache(maxsize=1)
def _fonts() -> FontSet:
	return FontSet(
		regular=settings.export_font_path,
		bold=settings.export_font_bold_path,
		mono=settings.export_font_mono_path,
	)


def build_frame(user: AuthUser, assignment: Assignment) -> DocumentFrame:
	return DocumentFrame(
		institution_name=settings.institution_name,
		institution_lines=tuple(settings.institution_lines),
		department_name=settings.department_name,
		sheet_title=settings.sheet_title,
		student_name=user.name or "",
		roll_number=user.roll_number or "",
		section=user.section or "",
		subject=assignment.subject or "",
		assessment=assignment.assessment_name or "",
		module=assignment.module_number or "",
		topic=assignment.topic or "",
	)


def _content_disposition(filename: str) -> str:
	fallback = filename.encode("ascii", "ignore").decode("ascii").replace('"', "") or "document.pdf"
	return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


@router.get("/{assignment_id}/pages", response_model=PagesOut)
def get_pages(assignment_id: str, user: AuthUser = Depends(get_current_user_row), db: Session = Depends(get_db)):
	row = get_owned_assignment(db, assignment_id, user.id)
	return _pages_out(row.id, paginate(row.content or "", settings.chars_per_page))


@router.put("/{assignment_id}/blocks/{block_id}", response_model=PagesOut)
def edit_block(
	assignment_id: str,
	block_id: str,
	req: BlockEdit,
	user: AuthUser = Depends(get_current_user_row),
	db: Session = Depends(get_db),
):
	row = get_owned_assignment(db, assignment_id, user.id)
	try:
		row.content = replace_block(row.content or "", block_id, req.markdown)
	except BlockNotFound:
		raise HTTPException(status_code=404, detail="Block not found")
	row.updated_at = datetime.utcnow()
	db.add(row)
	db.commit()
	db.refresh(row)
	return _pages_out(row.id, paginate(row.content, settings.chars_per_page))


def _export_assignment(db: Session, assignment_id: str, user: AuthUser) -> ExportArtifact:
	row = get_owned_assignment(db, assignment_id, user.id)
	# Export always works from a fresh pagination of the stored document
	pages = paginate(row.content or "", settings.chars_per_page)
	rasterizer = PageRasterizer(
		profile=PrintProfile(scale=settings.export_scale),
		frame=build_frame(user, row),
		fonts=_fonts(),
	)
	exporter = PdfExporter(
		rasterizer,
		jpeg_quality=settings.export_jpeg_quality,
		debug_dir=settings.export_debug_dir,
		title=row.subject,
	)
	try:
		return exporter.export(pages, export_filename(row.subject, user.roll_number))
	except ExportFailed as exc:
		logger.error("Export of assignment %s failed: %s", row.id, exc)
		raise


@router.get("/{assignment_id}/export")
async def export_pdf(assignment_id: str, user: AuthUser = Depends(get_current_user_row), db: Session = Depends(get_db)):
	# Lookup, pagination and rasterization all stay off the event loop
	try:
		artifact = await run_in_threadpool(_export_assignment, db, assignment_id, user)
	except (NoPagesFound, NoContent) as exc:
		raise HTTPException(status_code=400, detail=str(exc))
	except ExportFailed as exc:
		raise HTTPException(status_code=500, detail=f"PDF generation failed: {exc}")
	headers = {
		"Content-Disposition": _content_disposition(artifact.filename),
		"X-Export-Pages": str(artifact.page_count),
	}
	if artifact.skipped:
		headers["X-Export-Skipped"] = ",".join(str(n) for n in artifact.skipped)
	return Response(content=artifact.content, media_type=artifact.media_type, headers=headers)
