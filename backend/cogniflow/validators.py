"""Upload validation run before a job is started."""
from pathlib import Path
from typing import Dict, Any

from cogniflow.exceptions import (
    DocumentCorruptedError,
    DocumentEmptyError,
    FileSizeExceededError,
    FileTypeNotSupportedError,
)

SUPPORTED_EXTENSIONS = [".pdf"]
MIN_PDF_SIZE = 100  # bytes


class PDFValidator:
    """Cheap structural checks on uploaded PDF bytes."""

    @staticmethod
    def validate_file_type(filename: str) -> str:
        """Validate file type and return the lower-cased extension."""
        if not filename:
            raise FileTypeNotSupportedError("File name is required.")

        extension = Path(filename).suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS:
            raise FileTypeNotSupportedError(
                f"Unsupported file type. Supported formats: {', '.join(SUPPORTED_EXTENSIONS)}"
            )
        return extension

    @staticmethod
    def validate_file_size(file_size_bytes: int, max_size_mb: float) -> None:
        if file_size_bytes == 0:
            raise DocumentEmptyError("Uploaded file is empty.")
        file_size_mb = file_size_bytes / (1024 * 1024)
        if file_size_mb > max_size_mb:
            raise FileSizeExceededError(
                f"File size ({file_size_mb:.2f} MB) exceeds maximum allowed size ({max_size_mb} MB)."
            )

    @staticmethod
    def validate_pdf_header(content: bytes) -> str:
        """
        Check the ``%PDF-`` header and the ``%%EOF`` trailer.

        Returns:
            The PDF version from the header, or "unknown"
        """
        if not content.startswith(b"%PDF-"):
            raise DocumentCorruptedError(
                "File is not a valid PDF. PDF files must start with '%PDF-' header."
            )
        if len(content) < MIN_PDF_SIZE:
            raise DocumentCorruptedError(
                f"PDF file is too small ({len(content)} bytes). Minimum size: {MIN_PDF_SIZE} bytes."
            )
        if b"%%EOF" not in content[-1024:]:
            raise DocumentCorruptedError("PDF file is corrupted or incomplete. Missing '%%EOF' marker.")

        try:
            return content[5:8].decode("ascii")
        except UnicodeDecodeError:
            return "unknown"


def validate_upload(filename: str, content: bytes, max_size_mb: float) -> Dict[str, Any]:
    """
    Run every upload check.

    Args:
        filename: Original file name
        content: Uploaded bytes
        max_size_mb: Size limit in megabytes

    Returns:
        Dict with ``file_extension`` and ``pdf_version``

    Raises:
        ValidationError subclasses from ``cogniflow.exceptions``
    """
    extension = PDFValidator.validate_file_type(filename)
    PDFValidator.validate_file_size(len(content), max_size_mb)
    version = PDFValidator.validate_pdf_header(content)
    return {"file_extension": extension, "pdf_version": version}
