"""Split extracted text into ordered, overlapping chunks."""
from typing import List

from cogniflow.exceptions import ConfigurationError
from cogniflow.models.job import Chunk
from cogniflow.utils.logger import logger

# Rough estimate used for sizing; not a tokenizer.
CHARS_PER_TOKEN = 4


def chunk_text(text: str, target_size: int, overlap: int) -> List[Chunk]:
    """
    Split text into overlapping character windows.

    Each window is ``target_size`` tokens long and the next one starts
    ``overlap`` tokens before the previous end. The last window stops at
    the end of the text.

    Args:
        text: Full extracted text
        target_size: Window size in tokens (estimated)
        overlap: Tokens shared by consecutive windows

    Returns:
        Chunks with ids 1..N in source order, all pending

    Raises:
        ConfigurationError: If the sizes would not advance through the text
    """
    if target_size <= 0:
        raise ConfigurationError(f"Chunk size must be positive, got {target_size}")
    if overlap < 0 or overlap >= target_size:
        raise ConfigurationError(
            f"Chunk overlap must be in [0, {target_size}), got {overlap}"
        )

    if not text:
        return []

    size_chars = target_size * CHARS_PER_TOKEN
    overlap_chars = overlap * CHARS_PER_TOKEN
    text_length = len(text)

    chunks: List[Chunk] = []
    start = 0
    next_id = 1

    while start < text_length:
        end = min(start + size_chars, text_length)
        chunks.append(Chunk(id=next_id, source_text=text[start:end]))
        next_id += 1

        if end >= text_length:
            break

        start = end - overlap_chars

    logger.debug(
        f"Split {text_length:,} characters into {len(chunks)} chunks",
        extra={"total_chunks": len(chunks)},
    )
    return chunks
