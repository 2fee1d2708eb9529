"""
Offscreen page renderer used for PDF export.

Every page is drawn from the paginated blocks onto a fresh white A4
canvas with a fixed print profile: one opaque dark text colour, a white
background and solid dark rules. Nothing here depends on how the pages
look in the browser, so a dark UI theme can never leak into an export.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from PIL import Image, ImageDraw, ImageFont

from .pagination import Page

logger = logging.getLogger(__name__)

RGB = Tuple[int, int, int]

_WS_RE = re.compile(r"\s+")
_TOKEN_RE = re.compile(r"\s+|\S+")
_HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_BLOCK_TAGS = _HEADING_TAGS | {"p", "ul", "ol", "li", "pre", "blockquote", "table", "hr", "div"}

_FONT_CANDIDATES: Dict[str, Tuple[str, ...]] = {
	"regular": ("DejaVuSans.ttf", "LiberationSans-Regular.ttf", "Arial.ttf"),
	"bold": ("DejaVuSans-Bold.ttf", "LiberationSans-Bold.ttf", "Arial Bold.ttf"),
	"italic": ("DejaVuSans-Oblique.ttf", "LiberationSans-Italic.ttf", "Arial Italic.ttf"),
	"bold_italic": ("DejaVuSans-BoldOblique.ttf", "LiberationSans-BoldItalic.ttf", "Arial Bold Italic.ttf"),
	"mono": ("DejaVuSansMono.ttf", "LiberationMono-Regular.ttf", "Courier New.ttf"),
}


@dataclass(frozen=True)
class PrintProfile:
	"""Theme-independent styling for exported pages.

	Lengths are CSS pixels at `dpi`; `scale` multiplies every pixel value so
	the raster stays sharp once it is shrunk onto the PDF page.
	"""

	page_width_mm: float = 210.0
	page_height_mm: float = 297.0
	dpi: int = 96
	scale: int = 2
	margin_mm: float = 18.0
	footer_mm: float = 12.0
	font_size: int = 16
	line_spacing: float = 1.6
	block_spacing: int = 16
	first_line_indent: int = 32
	list_indent: int = 28
	cell_padding: int = 6
	rule_thickness: int = 2
	background: RGB = (255, 255, 255)
	text_color: RGB = (0, 0, 0)
	rule_color: RGB = (0, 0, 0)
	heading_scale: Tuple[float, ...] = (1.75, 1.5, 1.25, 1.1, 1.0, 0.9)

	def px(self, css_px: float) -> int:
		return int(round(css_px * self.scale))

	def mm(self, millimetres: float) -> int:
		return int(round(millimetres / 25.4 * self.dpi * self.scale))

	@property
	def page_size(self) -> Tuple[int, int]:
		return self.mm(self.page_width_mm), self.mm(self.page_height_mm)


@dataclass(frozen=True)
class DocumentFrame:
	"""Institution header, student details and module line around the body."""

	institution_name: str = ""
	institution_lines: Tuple[str, ...] = ()
	department_name: str = ""
	sheet_title: str = ""
	student_name: str = ""
	roll_number: str = ""
	section: str = ""
	subject: str = ""
	assessment: str = ""
	module: str = ""
	topic: str = ""

	@property
	def has_header(self) -> bool:
		return bool(self.institution_name or self.institution_lines)

	@property
	def module_line(self) -> str:
		if not (self.module or self.topic):
			return ""
		return f"Module {self.module or '1'}: {self.topic}"


class Style(NamedTuple):
	bold: bool = False
	italic: bool = False
	mono: bool = False


Segment = Tuple[str, Style]
Line = List[Tuple[str, ImageFont.ImageFont]]


class FontSet:
	def __init__(
		self,
		regular: Optional[str] = None,
		bold: Optional[str] = None,
		mono: Optional[str] = None,
	) -> None:
		self._explicit = {"regular": regular, "bold": bold, "mono": mono}
		self._cache: Dict[Tuple[str, int], ImageFont.ImageFont] = {}

	@staticmethod
	def _kind(style: Style) -> str:
		if style.mono:
			return "mono"
		if style.bold and style.italic:
			return "bold_italic"
		if style.bold:
			return "bold"
		if style.italic:
			return "italic"
		return "regular"

	def get(self, style: Style, size: int) -> ImageFont.ImageFont:
		kind = self._kind(style)
		key = (kind, size)
		font = self._cache.get(key)
		if font is None:
			font = self._load(kind, size)
			self._cache[key] = font
		return font

	def _load(self, kind: str, size: int) -> ImageFont.ImageFont:
		candidates: List[str] = []
		explicit = self._explicit.get(kind) or (self._explicit["bold"] if kind == "bold_italic" else None)
		if explicit:
			candidates.append(explicit)
		candidates.extend(_FONT_CANDIDATES[kind])
		for candidate in candidates:
			try:
				return ImageFont.truetype(candidate, size)
			except OSError:
				continue
		logger.debug("No TrueType font found for %s, using Pillow default", kind)
		return ImageFont.load_default(size=size)


def _line_height(font: ImageFont.ImageFont, spacing: float) -> int:
	try:
		ascent, descent = font.getmetrics()
		base = ascent + descent
	except AttributeError:
		bbox = font.getbbox("Ag")
		base = bbox[3] - bbox[1]
	return max(1, int(base * spacing))


def _inline_segments(node: Tag, style: Style = Style()) -> List[Segment]:
	return _segments(node.children, style)


def _segments(nodes, style: Style = Style()) -> List[Segment]:
	out: List[Segment] = []
	for child in nodes:
		if isinstance(child, Comment):
			continue
		if isinstance(child, NavigableString):
			text = str(child) if style.mono else _WS_RE.sub(" ", str(child))
			if text:
				out.append((text, style))
			continue
		if not isinstance(child, Tag):
			continue
		name = child.name
		if name == "br":
			out.append(("\n", style))
		elif name in ("strong", "b"):
			out.extend(_inline_segments(child, style._replace(bold=True)))
		elif name in ("em", "i"):
			out.extend(_inline_segments(child, style._replace(italic=True)))
		elif name == "code":
			out.extend(_inline_segments(child, style._replace(mono=True)))
		elif name == "img":
			alt = child.get("alt") or "image"
			out.append((f"[{alt}]", style))
		else:
			out.extend(_inline_segments(child, style))
	return out


class _PageCanvas:
	def __init__(self, profile: PrintProfile, fonts: FontSet) -> None:
		self.profile = profile
		self.fonts = fonts
		width, height = profile.page_size
		self.image = Image.new("RGB", (width, height), profile.background)
		self.draw = ImageDraw.Draw(self.image)
		self.left = profile.mm(profile.margin_mm)
		self.right = width - self.left
		self.top = self.left
		self.bottom = height - profile.mm(profile.footer_mm) - profile.px(profile.font_size * 2)
		self.y = self.top
		self.clipped = False

	@property
	def base_size(self) -> int:
		return self.profile.px(self.profile.font_size)

	def space(self, css_px: float) -> None:
		self.y += self.profile.px(css_px)

	def rule(self, x0: int, x1: int, thickness: Optional[int] = None) -> None:
		height = self.profile.px(thickness or self.profile.rule_thickness)
		if self.y + height > self.bottom:
			self.clipped = True
			return
		self.draw.rectangle([x0, self.y, x1, self.y + height - 1], fill=self.profile.rule_color)
		self.y += height

	def _split_long(self, piece: str, font: ImageFont.ImageFont, width: int) -> List[str]:
		if font.getlength(piece) <= width:
			return [piece]
		chunks: List[str] = []
		current = ""
		for ch in piece:
			if current and font.getlength(current + ch) > width:
				chunks.append(current)
				current = ch
			else:
				current += ch
		if current:
			chunks.append(current)
		return chunks

	def wrap(self, segments: Sequence[Segment], width: int, size: int, first_indent: int = 0) -> List[Line]:
		lines: List[Line] = []
		line: Line = []
		x = first_indent

		def finish() -> None:
			while line and line[-1][0] == " ":
				line.pop()
			lines.append(list(line))

		for text, style in segments:
			font = self.fonts.get(style, size)
			if text == "\n":
				finish()
				line.clear()
				x = 0
				continue
			for piece in _TOKEN_RE.findall(text):
				if piece.isspace() and not style.mono:
					if line:
						line.append((" ", font))
						x += font.getlength(" ")
					continue
				for chunk in self._split_long(piece, font, width):
					w = font.getlength(chunk)
					if line and x + w > width:
						finish()
						line.clear()
						x = 0
						if chunk.isspace():
							continue
					line.append((chunk, font))
					x += w
		if line:
			finish()
		return lines

	def draw_lines(
		self,
		lines: Sequence[Line],
		x: int,
		size: int,
		first_indent: int = 0,
		marker: Optional[Tuple[str, int]] = None,
		center_within: Optional[Tuple[int, int]] = None,
	) -> None:
		line_h = _line_height(self.fonts.get(Style(), size), self.profile.line_spacing)
		for i, line in enumerate(lines):
			if self.y + line_h > self.bottom:
				self.clipped = True
				return
			cx = x + (first_indent if i == 0 else 0)
			if center_within is not None:
				width = sum(font.getlength(text) for text, font in line)
				lo, hi = center_within
				cx = lo + max(0, int((hi - lo - width) / 2))
			if i == 0 and marker is not None:
				text, mx = marker
				self.draw.text((mx, self.y), text, font=self.fonts.get(Style(), size), fill=self.profile.text_color)
			for text, font in line:
				self.draw.text((cx, self.y), text, font=font, fill=self.profile.text_color)
				cx += font.getlength(text)
			self.y += line_h

	def text_block(
		self,
		segments: Sequence[Segment],
		x: int,
		width: int,
		size: Optional[int] = None,
		first_indent: int = 0,
		marker: Optional[Tuple[str, int]] = None,
		centered: bool = False,
	) -> None:
		size = size or self.base_size
		lines = self.wrap(segments, width, size, first_indent)
		if not lines and marker is not None:
			lines = [[]]
		self.draw_lines(
			lines,
			x,
			size,
			first_indent=first_indent,
			marker=marker,
			center_within=(x, x + width) if centered else None,
		)


class PageRasterizer:
	"""Draws one `Page` (plus the document frame) into an RGB bitmap."""

	def __init__(
		self,
		profile: Optional[PrintProfile] = None,
		frame: Optional[DocumentFrame] = None,
		fonts: Optional[FontSet] = None,
	) -> None:
		self.profile = profile or PrintProfile()
		self.frame = frame or DocumentFrame()
		self.fonts = fonts or FontSet()

	def __call__(self, page: Page) -> Image.Image:
		return self.rasterize(page)

	def rasterize(self, page: Page) -> Image.Image:
		canvas = _PageCanvas(self.profile, self.fonts)
		self._draw_header(canvas)
		if page.number == 1:
			self._draw_student_info(canvas)
		soup = BeautifulSoup(page.html, "html.parser")
		width = canvas.right - canvas.left
		for node in soup.contents:
			self._render_node(canvas, node, canvas.left, width, top_level=True)
		if canvas.clipped:
			logger.warning("Page %d overflowed the printable area; content was clipped", page.number)
		self._draw_footer(canvas, page.number)
		return canvas.image

	# ------------------------------------------------------------------
	# Frame
	# ------------------------------------------------------------------

	def _draw_header(self, canvas: _PageCanvas) -> None:
		frame = self.frame
		if not frame.has_header:
			return
		width = canvas.right - canvas.left
		base = self.profile.font_size
		if frame.institution_name:
			canvas.text_block(
				[(frame.institution_name.upper(), Style(bold=True))],
				canvas.left,
				width,
				size=self.profile.px(base * 1.25),
			)
		for line in frame.institution_lines:
			canvas.text_block([(line, Style())], canvas.left, width, size=self.profile.px(base * 0.875))
		canvas.space(8)
		canvas.rule(canvas.left, canvas.right)
		canvas.space(16)

	def _draw_student_info(self, canvas: _PageCanvas) -> None:
		frame = self.frame
		width = canvas.right - canvas.left
		title_size = self.profile.px(self.profile.font_size * 1.125)
		for title in (frame.department_name, frame.sheet_title):
			if title:
				canvas.text_block([(title, Style(bold=True))], canvas.left, width, size=title_size, centered=True)
		if frame.department_name or frame.sheet_title:
			canvas.space(16)

		rows = [
			(("Student Name:", frame.student_name), ("Subject:", frame.subject)),
			(("Roll No:", frame.roll_number), ("Assessment:", frame.assessment)),
			(("Section:", frame.section), ("Module:", frame.module or "I")),
		]
		column_gap = self.profile.px(48)
		column_width = (width - column_gap) // 2
		label_widths = (self.profile.px(135), self.profile.px(110))
		label_font = self.fonts.get(Style(bold=True), canvas.base_size)
		for row in rows:
			start_y = canvas.y
			end_y = start_y
			for col, (label, value) in enumerate(row):
				canvas.y = start_y
				x = canvas.left + col * (column_width + column_gap)
				label_w = label_widths[col]
				canvas.draw.text((x, start_y), label, font=label_font, fill=self.profile.text_color)
				lines = canvas.wrap([(value or "", Style())], column_width - label_w, canvas.base_size)
				canvas.draw_lines(lines or [[]], x + label_w, canvas.base_size)
				end_y = max(end_y, canvas.y)
			canvas.y = end_y
		canvas.space(24)

		if frame.module_line:
			canvas.text_block([(frame.module_line, Style(bold=True))], canvas.left, width)
			canvas.space(8)

	def _draw_footer(self, canvas: _PageCanvas, number: int) -> None:
		font = self.fonts.get(Style(), self.profile.px(self.profile.font_size * 0.875))
		label = str(number)
		width, height = canvas.image.size
		text_w = font.getlength(label)
		y = height - self.profile.mm(self.profile.footer_mm) - _line_height(font, 1.0)
		canvas.draw.text(((width - text_w) / 2, y), label, font=font, fill=self.profile.text_color)

	# ------------------------------------------------------------------
	# Body
	# ------------------------------------------------------------------

	def _render_node(self, canvas: _PageCanvas, node, x: int, width: int, top_level: bool = False) -> None:
		if isinstance(node, Comment):
			return
		if isinstance(node, NavigableString):
			text = str(node)
			if text.strip():
				canvas.text_block([(_WS_RE.sub(" ", text), Style())], x, width)
			return
		if not isinstance(node, Tag):
			return
		name = node.name
		profile = self.profile
		if name in _HEADING_TAGS:
			level = int(name[1])
			size = profile.px(profile.font_size * profile.heading_scale[level - 1])
			canvas.space(4)
			canvas.text_block(_inline_segments(node, Style(bold=True)), x, width, size=size)
			canvas.space(profile.block_spacing / 2)
		elif name == "p":
			indent = profile.px(profile.first_line_indent) if top_level else 0
			canvas.text_block(_inline_segments(node), x, width, first_indent=indent)
			canvas.space(profile.block_spacing)
		elif name in ("ul", "ol"):
			self._render_list(canvas, node, x, width)
			if top_level:
				canvas.space(profile.block_spacing)
		elif name == "blockquote":
			self._render_quote(canvas, node, x, width)
		elif name == "pre":
			self._render_preformatted(canvas, node, x, width)
			canvas.space(profile.block_spacing)
		elif name == "hr":
			canvas.space(8)
			canvas.rule(x, x + width)
			canvas.space(profile.block_spacing)
		elif name == "table":
			self._render_table(canvas, node, x, width)
			canvas.space(profile.block_spacing)
		elif any(isinstance(c, Tag) and c.name in _BLOCK_TAGS for c in node.children):
			for child in node.children:
				self._render_node(canvas, child, x, width, top_level=top_level)
		else:
			segments = _inline_segments(node)
			if "".join(t for t, _ in segments).strip():
				canvas.text_block(segments, x, width)
				canvas.space(profile.block_spacing)

	def _render_list(self, canvas: _PageCanvas, node: Tag, x: int, width: int) -> None:
		indent = self.profile.px(self.profile.list_indent)
		ordered = node.name == "ol"
		try:
			start = int(node.get("start", 1))
		except (TypeError, ValueError):
			start = 1
		items = [c for c in node.children if isinstance(c, Tag) and c.name == "li"]
		for i, item in enumerate(items):
			marker = f"{start + i}." if ordered else "•"
			self._render_list_item(canvas, item, x + indent, width - indent, (marker, x))

	def _render_list_item(self, canvas: _PageCanvas, item: Tag, x: int, width: int, marker: Tuple[str, int]) -> None:
		pending: Optional[Tuple[str, int]] = marker
		inline: List = []

		def flush() -> None:
			nonlocal pending
			segments = _segments(inline)
			inline.clear()
			if pending is not None or "".join(t for t, _ in segments).strip():
				canvas.text_block(segments, x, width, marker=pending)
				pending = None

		for child in item.children:
			if isinstance(child, Tag) and child.name in _BLOCK_TAGS:
				if child.name == "p" and pending is not None and not "".join(str(c) for c in inline).strip():
					inline.clear()
					canvas.text_block(_inline_segments(child), x, width, marker=pending)
					pending = None
					continue
				if inline or pending is not None:
					flush()
				self._render_node(canvas, child, x, width)
			else:
				inline.append(child)
		if inline or pending is not None:
			flush()

	def _render_quote(self, canvas: _PageCanvas, node: Tag, x: int, width: int) -> None:
		indent = self.profile.px(self.profile.list_indent)
		start_y = canvas.y
		for child in node.children:
			self._render_node(canvas, child, x + indent, width - indent)
		bar = self.profile.px(3)
		if canvas.y > start_y:
			canvas.draw.rectangle([x, start_y, x + bar - 1, canvas.y - 1], fill=self.profile.rule_color)

	def _render_preformatted(self, canvas: _PageCanvas, node: Tag, x: int, width: int) -> None:
		size = self.profile.px(self.profile.font_size * 0.875)
		font = self.fonts.get(Style(mono=True), size)
		lines: List[Line] = []
		for raw in node.get_text().rstrip("\n").split("\n"):
			raw = raw.replace("\t", "    ")
			for chunk in canvas._split_long(raw, font, width) or [""]:
				lines.append([(chunk, font)])
		canvas.draw_lines(lines, x, size)

	def _render_table(self, canvas: _PageCanvas, node: Tag, x: int, width: int) -> None:
		rows = node.find_all("tr")
		if not rows:
			return
		columns = max(len(r.find_all(["td", "th"], recursive=False)) for r in rows) or 1
		pad = self.profile.px(self.profile.cell_padding)
		col_w = width // columns
		size = canvas.base_size
		line_h = _line_height(self.fonts.get(Style(), size), self.profile.line_spacing)
		canvas.rule(x, x + width, 1)
		for row in rows:
			cells = row.find_all(["td", "th"], recursive=False)
			wrapped = []
			for cell in cells:
				style = Style(bold=cell.name == "th")
				wrapped.append(canvas.wrap(_inline_segments(cell, style), col_w - 2 * pad, size))
			row_h = max((len(w) for w in wrapped), default=1) * line_h + 2 * pad
			if canvas.y + row_h > canvas.bottom:
				canvas.clipped = True
				return
			top = canvas.y
			for i, lines in enumerate(wrapped):
				canvas.y = top + pad
				canvas.draw_lines(lines, x + i * col_w + pad, size)
			canvas.y = top + row_h
			canvas.rule(x, x + width, 1)
