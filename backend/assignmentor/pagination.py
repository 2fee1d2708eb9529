"""
Block paginator.

Splits a markdown document into top-level blocks (one per rendered
paragraph, heading, list, table, code block, ...) and groups them greedily
into pages of roughly one printed A4 sheet each, using the plain-text
length of every block as the size measure.

Blocks keep the exact markdown lines they were parsed from, so a single
block can be edited in place (`replace_block`) without re-serialising the
rest of the document from HTML.
"""

from __future__ import annotations
import hashlib
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from bs4 import BeautifulSoup
from markdown_it import MarkdownIt

logger = logging.getLogger(__name__)


class BlockNotFound(KeyError):
	"""Raised when a block id does not exist in the current document."""


@dataclass(frozen=True)
class MarkdownOptions:
	# CommonMark with single newlines rendered as <br>
	breaks: bool = True
	html: bool = True
	typographer: bool = False
	# GitHub-style tables and strikethrough
	gfm: bool = True

	def build(self) -> MarkdownIt:
		md = MarkdownIt(
			"commonmark",
			{"breaks": self.breaks, "html": self.html, "typographer": self.typographer},
		)
		if self.gfm:
			md.enable(["table", "strikethrough"])
		return md


DEFAULT_OPTIONS = MarkdownOptions()


@dataclass(frozen=True)
class Block:
	id: str
	index: int
	html: str
	text: str
	source: str
	# Half-open [start, end) line span in the document
	lines: Tuple[int, int]
	tag: str = ""

	@property
	def length(self) -> int:
		return len(self.text)


@dataclass(frozen=True)
class Page:
	number: int
	blocks: Tuple[Block, ...] = field(default_factory=tuple)

	@property
	def char_count(self) -> int:
		return sum(b.length for b in self.blocks)

	@property
	def text(self) -> str:
		return "".join(b.text for b in self.blocks)

	@property
	def html(self) -> str:
		return "".join(b.html for b in self.blocks)


_NEWLINE_RE = re.compile(r"\r\n?")
# markdown-it breaks lines on \n only; str.splitlines() would also split on \f, \u2028 etc.
_LINE_RE = re.compile(r"[^\n]*\n|[^\n]+\Z")


def _source_lines(document: str) -> List[str]:
	return _LINE_RE.findall(_NEWLINE_RE.sub("\n", document))


def _plain_text(html: str) -> str:
	return BeautifulSoup(html.strip(), "html.parser").get_text()


def _group_top_level(tokens) -> List[list]:
	groups: List[list] = []
	current: list = []
	depth = 0
	for tok in tokens:
		current.append(tok)
		depth += tok.nesting
		if depth == 0:
			groups.append(current)
			current = []
	if current:
		groups.append(current)
	return groups


def parse_blocks(document: str, options: MarkdownOptions = DEFAULT_OPTIONS) -> List[Block]:
	"""Render `document` and return its top-level blocks in source order."""
	if not document or not document.strip():
		return []
	md = options.build()
	env: Dict = {}
	source_lines = _source_lines(document)
	tokens = md.parse("".join(source_lines), env)

	blocks: List[Block] = []
	seen: Dict[str, int] = {}
	for group in _group_top_level(tokens):
		head = group[0]
		html = md.renderer.render(group, md.options, env)
		if head.map:
			start, end = head.map
		else:
			start = end = blocks[-1].lines[1] if blocks else 0
		source = "".join(source_lines[start:end])
		digest = hashlib.sha1(source.encode("utf-8")).hexdigest()[:12]
		occurrence = seen.get(digest, 0)
		seen[digest] = occurrence + 1
		block_id = digest if occurrence == 0 else f"{digest}-{occurrence}"
		blocks.append(
			Block(
				id=block_id,
				index=len(blocks),
				html=html,
				text=_plain_text(html),
				source=source,
				lines=(start, end),
				tag=head.tag,
			)
		)
	return blocks


def paginate_blocks(blocks: Sequence[Block], capacity: int) -> List[Page]:
	"""Greedily pack blocks into pages of at most `capacity` characters.

	A block that does not fit starts a new page, unless the current page is
	still empty; an oversized block therefore sits alone on its own page and
	is never split.
	"""
	if capacity <= 0:
		raise ValueError("capacity must be positive")
	pages: List[Page] = []
	current: List[Block] = []
	running = 0
	for block in blocks:
		if running + block.length > capacity and current:
			pages.append(Page(number=len(pages) + 1, blocks=tuple(current)))
			current = [block]
			running = block.length
		else:
			current.append(block)
			running += block.length
	if current:
		pages.append(Page(number=len(pages) + 1, blocks=tuple(current)))
	return pages


def paginate(document: str, capacity: int, options: MarkdownOptions = DEFAULT_OPTIONS) -> List[Page]:
	blocks = parse_blocks(document, options)
	pages = paginate_blocks(blocks, capacity)
	logger.debug("Paginated %d blocks into %d pages (capacity=%d)", len(blocks), len(pages), capacity)
	return pages


def find_block(document: str, block_id: str, options: MarkdownOptions = DEFAULT_OPTIONS) -> Block:
	for block in parse_blocks(document, options):
		if block.id == block_id:
			return block
	raise BlockNotFound(block_id)


def replace_block(
	document: str,
	block_id: str,
	markdown: str,
	options: MarkdownOptions = DEFAULT_OPTIONS,
) -> str:
	"""Return `document` with the source of one block replaced by `markdown`.

	Only the lines of the identified block change; every other block keeps
	its original markdown byte for byte. An empty replacement removes the
	block.
	"""
	target = find_block(document, block_id, options)
	lines = _source_lines(document)
	start, end = target.lines
	before = lines[:start]
	after = lines[end:]

	replacement = (markdown or "").strip("\n")
	if not replacement.strip():
		return "".join(before + after)

	new_lines: List[str] = list(before)
	if new_lines:
		if not new_lines[-1].endswith("\n"):
			new_lines[-1] += "\n"
		if new_lines[-1].strip():
			new_lines.append("\n")
	new_lines.append(replacement + "\n")
	if after and after[0].strip():
		new_lines.append("\n")
	new_lines.extend(after)
	return "".join(new_lines)
