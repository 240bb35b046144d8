"""Turn plain-text source files into ``DocumentRecord`` values.

Only text formats are read. Paginated text uses form feeds or an explicit
``<<<PAGE_BREAK>>>`` marker between pages; each page is kept separately so
the page locator can report which pages matched.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
import hashlib
import logging
import mimetypes
import os
from pathlib import Path
import re

from docindex.models import DocumentRecord
from docindex.search.errors import ExtractionError


logger = logging.getLogger(__name__)

PAGE_BREAK_MARKER = "<<<PAGE_BREAK>>>"
DEFAULT_MAX_FILE_SIZE_BYTES = 20 * 1024 * 1024

TEXT_EXTENSIONS = frozenset(
    {
        ".txt",
        ".text",
        ".md",
        ".markdown",
        ".rst",
        ".csv",
        ".tsv",
        ".json",
        ".xml",
        ".html",
        ".htm",
        ".yaml",
        ".yml",
        ".ini",
        ".cfg",
        ".toml",
        ".log",
        ".py",
        ".js",
        ".ts",
        ".java",
        ".c",
        ".h",
        ".cpp",
        ".go",
        ".rs",
        ".sh",
        ".sql",
    }
)

_PAGE_SPLIT = re.compile("\f|" + re.escape(PAGE_BREAK_MARKER))


def document_id_for(path: str | Path) -> str:
    """Stable id: the first 8 bytes of SHA-256 over the absolute path, in hex."""
    absolute = str(Path(path).expanduser().resolve())
    return hashlib.sha256(absolute.encode("utf-8")).hexdigest()[:16]


def split_pages(text: str) -> list[str] | None:
    """Return per-page text, or None when ``text`` has no page breaks."""
    if "\f" not in text and PAGE_BREAK_MARKER not in text:
        return None
    pages = [page.strip() for page in _PAGE_SPLIT.split(text)]
    while pages and not pages[-1]:
        pages.pop()
    return pages or None


def _joined_content(text: str, pages: list[str] | None) -> str:
    return "\n\n".join(pages) if pages else text


class TextFileExtractor:
    """Read supported text files into document records."""

    def __init__(self, max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES) -> None:
        self.max_file_size_bytes = max_file_size_bytes

    def supports(self, path: str | Path) -> bool:
        return Path(path).suffix.lower() in TEXT_EXTENSIONS

    def extract(self, path: str | Path) -> DocumentRecord:
        """Read ``path`` into a record.

        Raises:
            ExtractionError: The file is unsupported, unreadable, empty or
                larger than ``max_file_size_bytes``.
        """
        source = Path(path).expanduser().resolve()
        if not self.supports(source):
            raise ExtractionError(f"Unsupported file type: {source.name}")
        try:
            stat = source.stat()
        except OSError as exc:
            raise ExtractionError(f"Cannot read {source}: {exc}") from exc
        if stat.st_size > self.max_file_size_bytes:
            raise ExtractionError(
                f"{source.name} is {stat.st_size} bytes, above the {self.max_file_size_bytes} byte limit"
            )
        try:
            text = source.read_bytes().decode("utf-8", errors="replace")
        except OSError as exc:
            raise ExtractionError(f"Cannot read {source}: {exc}") from exc
        if not text.strip():
            raise ExtractionError(f"{source.name} has no text content")

        pages = split_pages(text)
        metadata = {"extension": source.suffix.lower().lstrip(".")}
        if pages:
            metadata["pageCount"] = str(len(pages))
        content_type, _ = mimetypes.guess_type(source.name)
        return DocumentRecord(
            id=document_id_for(source),
            file_path=str(source),
            file_name=source.name,
            content=_joined_content(text, pages),
            page_contents=pages,
            content_type=content_type or "text/plain",
            file_size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            metadata=metadata,
        )

    def iter_files(self, root: str | Path, *, recursive: bool = True) -> Iterator[Path]:
        """Yield supported files under ``root`` in sorted order, skipping hidden entries."""
        base = Path(root).expanduser()
        if base.is_file():
            if self.supports(base):
                yield base
            return
        if not base.is_dir():
            raise ExtractionError(f"No such file or directory: {base}")

        for current, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(name for name in dirnames if not name.startswith(".")) if recursive else []
            for name in sorted(filenames):
                if name.startswith("."):
                    continue
                candidate = Path(current) / name
                if self.supports(candidate):
                    yield candidate


def load_source_text(path: str | Path) -> str | None:
    """Re-read a document's text for snippets; None if missing or unsupported."""
    source = Path(path)
    if source.suffix.lower() not in TEXT_EXTENSIONS:
        return None
    try:
        text = source.read_bytes().decode("utf-8", errors="replace")
    except OSError as exc:
        logger.debug("Source text unavailable for %s: %s", source, exc)
        return None
    return _joined_content(text, split_pages(text))
