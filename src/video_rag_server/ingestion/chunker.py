from typing import List, Optional, Tuple

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..config import settings


class TranscriptChunker:
    """
    Splits a transcript into fixed-size, overlapping ``(title, content)`` pairs.

    The video title is prepended to the text before splitting so that the
    first chunk carries it in its embedding.
    """

    def __init__(
        self,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
    ) -> None:
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size or settings.chunk_size,
            chunk_overlap=settings.chunk_overlap if chunk_overlap is None else chunk_overlap,
            length_function=len,
        )

    def split(self, title: str, transcript: str) -> List[Tuple[str, str]]:
        if not transcript.strip():
            return []
        text = f"Title: {title} | Content: {transcript}"
        return [(title, chunk) for chunk in self._splitter.split_text(text)]
