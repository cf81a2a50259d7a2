"""Join completed chunks and render the output PDF."""
from dataclasses import dataclass
from typing import Iterable, List, Protocol

import fitz  # PyMuPDF

from cogniflow.exceptions import NothingToAssemble
from cogniflow.models.job import Chunk, ChunkStatus
from cogniflow.utils.logger import logger

PARAGRAPH_SEPARATOR = "\n\n"
OUTPUT_PREFIX = "CogniFlow_"


def assemble(chunks: Iterable[Chunk]) -> str:
    """
    Concatenate the transformed text of completed chunks in id order.

    Raises:
        NothingToAssemble: If no chunk is completed
    """
    completed = sorted((c for c in chunks if c.status == ChunkStatus.COMPLETED), key=lambda c: c.id)
    if not completed:
        raise NothingToAssemble("No chunks were successfully processed. Cannot generate PDF.")
    return PARAGRAPH_SEPARATOR.join(c.result_text for c in completed)


def output_filename(document_name: str) -> str:
    """Deterministic download name derived from the source document name."""
    name = document_name.replace("/", "_").replace("\\", "_").strip() or "document.pdf"
    if not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"
    return f"{OUTPUT_PREFIX}{name}"


class DocumentRenderer(Protocol):
    def render(self, text: str, font_size: float, line_height: float, margin: float) -> bytes:
        ...


@dataclass
class PdfRenderer:
    """Lay text out on US Letter pages with PyMuPDF."""

    font_name: str = "tiro"  # Times-Roman
    page_width: float = 612.0
    page_height: float = 792.0

    def wrap_line(self, line: str, font_size: float, max_width: float) -> List[str]:
        """Greedy word wrap using measured glyph widths."""
        words = line.split()
        if not words:
            return [""]

        lines = []
        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if fitz.get_text_length(candidate, fontname=self.font_name, fontsize=font_size) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
            # A single word wider than the line is split by characters
            while fitz.get_text_length(word, fontname=self.font_name, fontsize=font_size) > max_width and len(word) > 1:
                cut = len(word) - 1
                while cut > 1 and fitz.get_text_length(word[:cut], fontname=self.font_name, fontsize=font_size) > max_width:
                    cut -= 1
                lines.append(word[:cut])
                word = word[cut:]
            current = word
        lines.append(current)
        return lines

    def render(self, text: str, font_size: float = 12, line_height: float = 1.5, margin: float = 25) -> bytes:
        """
        Render plain text to PDF bytes.

        Args:
            text: Assembled output text; blank lines separate paragraphs
            font_size: Font size in points
            line_height: Line spacing as a multiple of the font size
            margin: Page margin in points on every side

        Returns:
            The finished PDF document
        """
        max_width = self.page_width - 2 * margin
        step = font_size * line_height
        bottom = self.page_height - margin

        doc = fitz.open()
        try:
            page = doc.new_page(width=self.page_width, height=self.page_height)
            # Baseline of the first line sits one font size below the top margin
            cursor_y = margin + font_size

            for raw_line in text.splitlines():
                for line in self.wrap_line(raw_line, font_size, max_width):
                    if cursor_y > bottom:
                        page = doc.new_page(width=self.page_width, height=self.page_height)
                        cursor_y = margin + font_size
                    if line:
                        page.insert_text((margin, cursor_y), line, fontname=self.font_name, fontsize=font_size)
                    cursor_y += step

            pdf_bytes = doc.tobytes()
        finally:
            doc.close()

        logger.info(f"Rendered output PDF: {len(pdf_bytes):,} bytes")
        return pdf_bytes
