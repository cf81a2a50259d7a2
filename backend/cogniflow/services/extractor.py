"""PDF text extraction, page by page."""
import asyncio
import io
import re
from typing import Callable, Optional

import pdfplumber

from cogniflow.exceptions import DocumentEmptyError, ExtractionError, PageLimitExceededError
from cogniflow.utils.logger import logger

ProgressCallback = Callable[[float], None]


def normalize_page_text(text: str) -> str:
    """Collapse runs of whitespace and drop control characters."""
    text = re.sub(r"[\x00-\x08\x0b-\x0c\x0e-\x1f]", "", text)
    text = re.sub(r"[ \t\r\f\v]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class PdfTextExtractor:
    """Extract page-ordered text from a PDF held in memory."""

    def __init__(self, max_pages: int = 1000):
        self.max_pages = max_pages

    async def extract(self, content: bytes, on_progress: Optional[ProgressCallback] = None) -> str:
        """
        Extract all text, marking each page.

        Pages are read one at a time in a worker thread so the event loop
        keeps serving other requests. A page that cannot be read is kept as
        an error marker instead of failing the whole document.

        Args:
            content: Raw PDF bytes
            on_progress: Called with the fraction of pages done (0 to 1)

        Returns:
            Text with ``--- Page N ---`` headers

        Raises:
            ExtractionError: If the document cannot be opened
            DocumentEmptyError: If the document has no pages
            PageLimitExceededError: If the document has too many pages
        """
        try:
            pdf = pdfplumber.open(io.BytesIO(content))
        except Exception as e:
            logger.error(f"Error opening PDF: {str(e)}")
            raise ExtractionError(f"Failed to open PDF: {str(e)}") from e

        parts = []
        with pdf:
            try:
                total_pages = len(pdf.pages)
            except Exception as e:
                logger.error(f"Error reading PDF page tree: {str(e)}")
                raise ExtractionError(f"Failed to read PDF pages: {str(e)}") from e

            if total_pages == 0:
                raise DocumentEmptyError("PDF contains no pages. Please provide a valid PDF with content.")
            if total_pages > self.max_pages:
                raise PageLimitExceededError(
                    f"PDF has {total_pages} pages, which exceeds the maximum of {self.max_pages} pages."
                )

            for page_num, page in enumerate(pdf.pages, 1):
                try:
                    raw = await asyncio.to_thread(page.extract_text)
                    page_text = normalize_page_text(raw or "")
                    parts.append(f"--- Page {page_num} ---\n{page_text}\n\n")
                except Exception as e:
                    logger.warning(f"Error extracting text from PDF page {page_num}: {str(e)}")
                    parts.append(f"--- Page {page_num} (Error: Could not extract content) ---\n\n")

                if on_progress:
                    on_progress(page_num / total_pages)

        full_text = "".join(parts)
        logger.info(f"Extracted {len(full_text):,} characters from {total_pages} pages")
        return full_text
