"""
PDF export of paginated assignment documents.

Pages are rasterized one at a time, in page order, and each bitmap is
placed on its own A4 portrait page of the output file. A page that cannot
be captured is logged and left out; the export only fails as a whole when
there is nothing to export or when no page at all could be embedded.
"""

from __future__ import annotations
import io
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

from fpdf import FPDF
from PIL import Image

from .pagination import Page

logger = logging.getLogger(__name__)

A4_WIDTH_MM = 210.0
A4_HEIGHT_MM = 297.0
# Any channel below this counts as ink
BLANK_THRESHOLD = 250

_UNSAFE_FILENAME_RE = re.compile(r'[\\/:*?"<>|\r\n]+')


class ExportError(Exception):
	default_message = "PDF generation failed"

	def __init__(self, message: Optional[str] = None) -> None:
		super().__init__(message or self.default_message)


class NoPagesFound(ExportError):
	default_message = "No pages found to export. Please ensure content is generated first."


class NoContent(ExportError):
	default_message = "No content found in pages. Please generate content first."


class EmptyRaster(ExportError):
	def __init__(self, page_number: int) -> None:
		super().__init__(f"Raster for page {page_number} has zero dimensions")
		self.page_number = page_number


class ExportFailed(ExportError):
	default_message = "No pages were successfully added to the PDF"


@dataclass
class ExportArtifact:
	filename: str
	content: bytes
	page_count: int
	skipped: List[int] = field(default_factory=list)
	media_type: str = "application/pdf"


def export_filename(subject: Optional[str], identifier: Optional[str], ext: str = "pdf") -> str:
	subject = _UNSAFE_FILENAME_RE.sub("-", (subject or "").strip()) or "assignment"
	identifier = _UNSAFE_FILENAME_RE.sub("-", (identifier or "").strip()) or "document"
	return f"{subject}_{identifier}.{ext}"


def fit_to_page(
	image_width: int,
	image_height: int,
	page_width: float = A4_WIDTH_MM,
	page_height: float = A4_HEIGHT_MM,
) -> Tuple[float, float, float, float]:
	"""Return (x, y, w, h) placing the image on the page without distortion.

	Images relatively wider than the page fill its width and are centred
	vertically; taller ones are capped at the page height and centred
	horizontally.
	"""
	image_ratio = image_width / image_height
	page_ratio = page_width / page_height
	if image_ratio > page_ratio:
		w = page_width
		h = page_width / image_ratio
		return 0.0, (page_height - h) / 2, w, h
	h = page_height
	w = page_height * image_ratio
	return (page_width - w) / 2, 0.0, w, h


def is_blank(image: Image.Image, threshold: int = BLANK_THRESHOLD) -> bool:
	extrema = image.convert("RGB").getextrema()
	return all(low >= threshold for low, _ in extrema)


class _EncodedPage(NamedTuple):
	number: int
	data: bytes
	width: int
	height: int


class PdfExporter:
	def __init__(
		self,
		rasterize: Callable[[Page], Image.Image],
		*,
		jpeg_quality: int = 95,
		debug_dir: Optional[str] = None,
		title: Optional[str] = None,
	) -> None:
		self.rasterize = rasterize
		self.jpeg_quality = jpeg_quality
		self.debug_dir = Path(debug_dir) if debug_dir else None
		self.title = title

	def export(self, pages: Sequence[Page], filename: str) -> ExportArtifact:
		logger.info("PDF export started: %s (%d pages)", filename, len(pages))
		if not pages:
			raise NoPagesFound()
		for page in pages:
			logger.debug("Page %d text length: %d", page.number, len(page.text.strip()))
		if not any(page.text.strip() for page in pages):
			raise NoContent()

		skipped: List[int] = []
		encoded: List[_EncodedPage] = []
		# Strictly sequential; one capture at a time
		for index, page in enumerate(pages):
			try:
				image = self._capture(page, first=index == 0)
			except EmptyRaster as exc:
				logger.error("%s; skipping page", exc)
				skipped.append(page.number)
				continue
			try:
				encoded.append(self._encode(page.number, image))
			except (OSError, ValueError) as exc:
				logger.error("Failed to encode image for page %d: %s", page.number, exc)
				skipped.append(page.number)

		pdf, embedded = self._assemble(encoded, skipped)
		logger.info("PDF export summary: %d/%d pages embedded", len(embedded), len(pages))
		if pdf is None:
			raise ExportFailed()
		return ExportArtifact(
			filename=filename,
			content=bytes(pdf.output()),
			page_count=len(embedded),
			skipped=sorted(skipped),
		)

	def _capture(self, page: Page, *, first: bool = False) -> Image.Image:
		image = self.rasterize(page)
		if image.width == 0 or image.height == 0:
			raise EmptyRaster(page.number)
		logger.debug("Raster for page %d: %dx%d", page.number, image.width, image.height)
		if is_blank(image):
			logger.warning("Raster for page %d appears to be blank", page.number)
		if first and self.debug_dir is not None:
			self._save_debug(image)
		return image

	def _encode(self, number: int, image: Image.Image) -> _EncodedPage:
		buf = io.BytesIO()
		image.convert("RGB").save(buf, format="JPEG", quality=self.jpeg_quality)
		if buf.tell() == 0:
			raise ValueError("encoded image is empty")
		return _EncodedPage(number, buf.getvalue(), image.width, image.height)

	def _new_document(self) -> FPDF:
		pdf = FPDF(orientation="portrait", unit="mm", format="A4")
		pdf.set_auto_page_break(False)
		pdf.set_creator("Assignmentor")
		if self.title:
			pdf.set_title(self.title)
		return pdf

	def _assemble(self, encoded: List[_EncodedPage], skipped: List[int]) -> Tuple[Optional[FPDF], List[int]]:
		# fpdf2 cannot drop a page once added, so a failed embed restarts the
		# document without that page
		pending = list(encoded)
		while pending:
			pdf = self._new_document()
			failed: Optional[int] = None
			for item in pending:
				x, y, w, h = fit_to_page(item.width, item.height)
				pdf.add_page()
				try:
					pdf.image(io.BytesIO(item.data), x=x, y=y, w=w, h=h)
				except (OSError, ValueError, RuntimeError) as exc:
					logger.error("Failed to add image for page %d: %s", item.number, exc)
					failed = item.number
					break
				logger.debug("Page %d added", item.number)
			if failed is None:
				return pdf, [item.number for item in pending]
			skipped.append(failed)
			pending = [item for item in pending if item.number != failed]
		return None, []

	def _save_debug(self, image: Image.Image) -> None:
		target = self.debug_dir / "debug-page1.png"
		try:
			target.parent.mkdir(parents=True, exist_ok=True)
			image.save(target, format="PNG")
			logger.info("Saved first page raster to %s", target)
		except OSError as exc:
			logger.error("Failed to save debug raster: %s", exc)
