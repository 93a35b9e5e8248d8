from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class DocumentChunk:
    index: int
    text: str


def chunk_text(text: str, chunk_size: int = 500, overlap: int = 50) -> List[DocumentChunk]:
    """Fixed-window splitter with overlap between neighbouring chunks.

    A text of length L yields ceil((L - overlap) / (chunk_size - overlap)) chunks,
    and exactly one when L <= chunk_size.
    """
    if chunk_size <= 0 or overlap < 0:
        raise ValueError("chunk_size must be positive and overlap non-negative")
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")
    if not text:
        return []
    if len(text) <= chunk_size:
        return [DocumentChunk(0, text)]

    chunks: List[DocumentChunk] = []
    start = 0
    length = len(text)
    step = chunk_size - overlap
    while True:
        end = min(length, start + chunk_size)
        chunks.append(DocumentChunk(len(chunks), text[start:end]))
        if end >= length:
            break
        start += step
    return chunks
