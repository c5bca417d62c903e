"""Source document validation and text extraction.

Byte-level parsing of rich formats is delegated to extractors implementing
``TextExtractor``. The built-in ``PlainTextExtractor`` handles UTF-8 text
files such as .txt and .md.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Tuple
import structlog

from ragreader.errors import ValidationError

logger = structlog.get_logger()

# Marker inserted between pages by extractors that know page boundaries
PAGE_SEPARATOR = "\n\n--- Page {page} ---\n\n"


@dataclass
class ExtractedText:
    """Full text of a document plus its page count."""

    text: str
    page_count: int = 1


# Called with (pages_done, page_count) as pages are read
PageProgressCallback = Callable[[int, int], None]


class TextExtractor(Protocol):
    def extract(
        self, path: Path, progress_callback: Optional[PageProgressCallback] = None
    ) -> ExtractedText:
        ...


def validate_source(path: Path) -> Path:
    """Check that a source document path points at a readable file.

    Raises:
        ValidationError: If the path is missing or not a regular file
    """
    path = Path(path)
    if not path.exists():
        raise ValidationError(f"Document not found: {path}")
    if not path.is_file():
        raise ValidationError(f"Not a file: {path}")
    return path


def join_pages(pages: list) -> str:
    """Join page texts with numbered separators, the way page-aware extractors do."""
    parts = []
    for index, page in enumerate(pages):
        parts.append(page)
        if index < len(pages) - 1:
            parts.append(PAGE_SEPARATOR.format(page=index + 2))
    return "".join(parts).strip()


class PlainTextExtractor:
    """Extractor for UTF-8 text files. Form feeds are treated as page breaks."""

    suffixes: Tuple[str, ...] = (".txt", ".md", ".markdown", ".rst", ".text")

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def extract(
        self, path: Path, progress_callback: Optional[PageProgressCallback] = None
    ) -> ExtractedText:
        """Read the file and return its text, reporting progress per page.

        Raises:
            ValidationError: If the file type is unsupported or the file can't be decoded
        """
        path = validate_source(path)

        if path.suffix.lower() not in self.suffixes:
            raise ValidationError(
                f"Unsupported file type '{path.suffix}'. Supported: {', '.join(self.suffixes)}"
            )

        try:
            raw = path.read_text(encoding=self.encoding)
        except (OSError, UnicodeDecodeError) as e:
            logger.error("text_extraction_failed", path=str(path), error=str(e))
            raise ValidationError(f"Failed to read {path.name}: {e}") from e

        pages = []
        raw_pages = raw.split("\f")
        for index, page in enumerate(raw_pages, 1):
            pages.append(page.strip())
            if progress_callback:
                progress_callback(index, len(raw_pages))
        text = join_pages(pages)

        logger.info(
            "text_extracted",
            path=str(path),
            page_count=len(pages),
            text_length=len(text),
        )

        return ExtractedText(text=text, page_count=len(pages))
