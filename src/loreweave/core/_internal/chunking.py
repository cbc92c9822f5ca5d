from __future__ import annotations

from dataclasses import dataclass

from langchain_text_splitters import RecursiveCharacterTextSplitter

# Paragraph and sentence boundaries first so chunks end on natural breaks
NARRATIVE_SEPARATORS: list[str] = [
    "\n\n\n",
    "\n\n",
    "\n",
    ". ",
    "! ",
    "? ",
    "; ",
    ", ",
    " ",
    "",
]


@dataclass(frozen=True)
class TextSegment:
    text: str
    index: int
    total: int
    previous_context: str | None
    next_context: str | None

    @property
    def word_count(self) -> int:
        return len(self.text.split())


class DocumentSplitter:
    """Splits a source document into overlapping chunks with neighbour context."""

    def __init__(self, chunk_size: int = 1000, chunk_overlap: int = 200, context_chars: int = 150):
        self.chunk_size = chunk_size
        self.context_chars = context_chars
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=NARRATIVE_SEPARATORS,
        )

    def split(self, content: str) -> list[TextSegment]:
        text = content.strip()
        if not text:
            return []
        if len(text) <= self.chunk_size:
            pieces = [text]
        else:
            pieces = [piece.strip() for piece in self._splitter.split_text(text) if piece.strip()]

        total = len(pieces)
        return [
            TextSegment(
                text=piece,
                index=index,
                total=total,
                previous_context=pieces[index - 1][-self.context_chars :] if index > 0 else None,
                next_context=pieces[index + 1][: self.context_chars] if index < total - 1 else None,
            )
            for index, piece in enumerate(pieces)
        ]
