import logging
import re

import pytest
from fpdf import FPDF
from PIL import Image, ImageDraw

from assignmentor.export import (
    A4_HEIGHT_MM,
    A4_WIDTH_MM,
    ExportFailed,
    NoContent,
    NoPagesFound,
    PdfExporter,
    export_filename,
    fit_to_page,
    is_blank,
)
from assignmentor.pagination import Block, Page


def make_page(number: int, text: str = "Some text") -> Page:
    block = Block(
        id=f"b{number}",
        index=number - 1,
        html=f"<p>{text}</p>",
        text=text,
        source=text + "\n",
        lines=(number - 1, number),
    )
    return Page(number=number, blocks=(block,))


def inked(width: int = 210, height: int = 297) -> Image.Image:
    image = Image.new("RGB", (width, height), "white")
    ImageDraw.Draw(image).rectangle([10, 10, 60, 20], fill="black")
    return image


def pdf_page_count(content: bytes) -> int:
    return len(re.findall(rb"/Type /Page\b", content))


class RecordingRasterizer:
    def __init__(self, empty_pages: tuple[int, ...] = (), blank: bool = False) -> None:
        self.empty_pages = empty_pages
        self.blank = blank
        self.calls: list[int] = []

    def __call__(self, page: Page) -> Image.Image:
        self.calls.append(page.number)
        if page.number in self.empty_pages:
            return Image.new("RGB", (0, 0))
        if self.blank:
            return Image.new("RGB", (210, 297), "white")
        return inked()


class TestPreconditions:
    def test_no_pages(self) -> None:
        """Exporting zero pages fails before any rasterization."""
        rasterizer = RecordingRasterizer()

        with pytest.raises(NoPagesFound):
            PdfExporter(rasterizer).export([], "x.pdf")
        assert rasterizer.calls == []

    def test_pages_without_text(self) -> None:
        """Pages whose text is all whitespace fail with NoContent."""
        rasterizer = RecordingRasterizer()
        pages = [make_page(1, ""), make_page(2, "   \n")]

        with pytest.raises(NoContent):
            PdfExporter(rasterizer).export(pages, "x.pdf")
        assert rasterizer.calls == []

    def test_error_messages_are_user_facing(self) -> None:
        """Default messages tell the user what to do."""
        assert "generated" in str(NoPagesFound())
        assert "generate content" in str(NoContent())


class TestExport:
    def test_all_pages_embedded_in_order(self) -> None:
        """Every page is captured once, sequentially, in page order."""
        rasterizer = RecordingRasterizer()
        pages = [make_page(n) for n in (1, 2, 3)]

        artifact = PdfExporter(rasterizer).export(pages, "Subject_123.pdf")

        assert rasterizer.calls == [1, 2, 3]
        assert artifact.filename == "Subject_123.pdf"
        assert artifact.page_count == 3
        assert artifact.skipped == []
        assert artifact.media_type == "application/pdf"
        assert artifact.content.startswith(b"%PDF")
        assert pdf_page_count(artifact.content) == 3

    def test_failed_pages_are_skipped(self) -> None:
        """Zero-size rasters are left out without failing the export."""
        rasterizer = RecordingRasterizer(empty_pages=(2,))
        pages = [make_page(n) for n in (1, 2, 3)]

        artifact = PdfExporter(rasterizer).export(pages, "x.pdf")

        assert rasterizer.calls == [1, 2, 3]
        assert artifact.page_count == 2
        assert artifact.skipped == [2]
        assert pdf_page_count(artifact.content) == 2

    def test_all_pages_failing_is_fatal(self) -> None:
        """No embedded page at all raises ExportFailed after trying every page."""
        rasterizer = RecordingRasterizer(empty_pages=(1, 2))

        with pytest.raises(ExportFailed):
            PdfExporter(rasterizer).export([make_page(1), make_page(2)], "x.pdf")
        assert rasterizer.calls == [1, 2]

    def test_failed_embed_leaves_no_blank_page(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A page whose image cannot be placed is absent from the PDF."""
        original = FPDF.image
        calls = {"n": 0}

        def flaky_image(pdf, *args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise ValueError("corrupt image")
            return original(pdf, *args, **kwargs)

        monkeypatch.setattr(FPDF, "image", flaky_image)

        artifact = PdfExporter(RecordingRasterizer()).export([make_page(n) for n in (1, 2, 3)], "x.pdf")

        assert artifact.page_count == 2
        assert artifact.skipped == [2]
        assert pdf_page_count(artifact.content) == 2

    def test_failed_encode_is_skipped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """JPEG encoding errors skip the page without failing the export."""
        original = PdfExporter._encode

        def flaky_encode(self, number, image):
            if number == 1:
                raise OSError("cannot write mode")
            return original(self, number, image)

        monkeypatch.setattr(PdfExporter, "_encode", flaky_encode)

        artifact = PdfExporter(RecordingRasterizer()).export([make_page(1), make_page(2)], "x.pdf")

        assert artifact.page_count == 1
        assert artifact.skipped == [1]
        assert pdf_page_count(artifact.content) == 1

    def test_every_embed_failing_is_fatal(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """When no image can be placed the export fails."""

        def broken_image(pdf, *args, **kwargs):
            raise RuntimeError("no images today")

        monkeypatch.setattr(FPDF, "image", broken_image)

        with pytest.raises(ExportFailed):
            PdfExporter(RecordingRasterizer()).export([make_page(1), make_page(2)], "x.pdf")

    def test_blank_raster_only_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        """A uniformly white raster is logged but still exported."""
        rasterizer = RecordingRasterizer(blank=True)

        with caplog.at_level(logging.WARNING, logger="assignmentor.export"):
            artifact = PdfExporter(rasterizer).export([make_page(1)], "x.pdf")

        assert artifact.page_count == 1
        assert "appears to be blank" in caplog.text

    def test_debug_raster_of_first_page(self, tmp_path) -> None:
        """With a debug directory set, the first raster is saved as PNG."""
        PdfExporter(RecordingRasterizer(), debug_dir=str(tmp_path)).export(
            [make_page(1), make_page(2)], "x.pdf"
        )

        saved = tmp_path / "debug-page1.png"
        assert saved.exists()
        with Image.open(saved) as image:
            assert image.size == (210, 297)


class TestHelpers:
    def test_fit_wide_image_fills_width_and_centres_vertically(self) -> None:
        """Relatively wide images span the page width."""
        x, y, w, h = fit_to_page(2000, 1000)

        assert (x, w) == (0.0, A4_WIDTH_MM)
        assert h == pytest.approx(105.0)
        assert y == pytest.approx((A4_HEIGHT_MM - 105.0) / 2)

    def test_fit_tall_image_is_capped_at_page_height(self) -> None:
        """Relatively tall images span the page height."""
        x, y, w, h = fit_to_page(1000, 3000)

        assert (y, h) == (0.0, A4_HEIGHT_MM)
        assert w == pytest.approx(99.0)
        assert x == pytest.approx((A4_WIDTH_MM - 99.0) / 2)

    def test_is_blank(self) -> None:
        """Only near-white images count as blank."""
        assert is_blank(Image.new("RGB", (20, 20), (252, 252, 252)))
        assert not is_blank(inked())

    def test_export_filename(self) -> None:
        """Names combine subject and identifier with fallbacks."""
        assert export_filename("Marketing", "21MBA001") == "Marketing_21MBA001.pdf"
        assert export_filename(None, "") == "assignment_document.pdf"
        assert export_filename("HR/Ops", "7") == "HR-Ops_7.pdf"
