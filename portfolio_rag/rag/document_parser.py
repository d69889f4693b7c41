"""
Project file parser.

Extracts plain text from project write-ups kept as files (PDF via PyMuPDF,
plain text and Markdown read directly) so the document builder can turn them
into project documents. This is the only place in the pipeline that reads
arbitrary files; the builder itself stays pure.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".pdf", ".txt", ".md")
MIN_WORD_COUNT = 50
DEFAULT_MAX_LENGTH = 2500


@dataclass
class ParsedFile:
    """Text extracted from one project file."""
    filename: str
    title: str
    content: str
    file_type: str
    word_count: int


def clean_text(text: str) -> str:
    """Normalize extracted text: page markers, control bytes and whitespace."""
    text = text.replace("\x00", "")
    text = re.sub(r"Page \d+ of \d+", "", text, flags=re.IGNORECASE)
    text = re.sub(r"[^\x20-\x7E\n\r\t]", " ", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def generate_title(filename: str) -> str:
    """Build a readable title from a file name.

    "yolo_v7-tracking_report.pdf" -> "Yolo V7 Tracking Report"
    """
    title = re.sub(r"\.(pdf|txt|md|docx|doc)$", "", filename, flags=re.IGNORECASE)
    title = re.sub(r"[_-]", " ", title)
    title = re.sub(r"\s+", " ", title).strip()

    words = []
    for word in title.split(" "):
        if len(word) <= 2:
            words.append(word.upper())
        else:
            words.append(word[0].upper() + word[1:].lower())
    return " ".join(words)


def truncate_content(content: str, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Shorten content to roughly max_length characters.

    Cuts at the last sentence end or line break when it lies beyond 70% of the
    limit, otherwise cuts hard. Truncated text ends with "...".
    """
    if len(content) <= max_length:
        return content

    truncated = content[:max_length]
    cut_point = max(truncated.rfind("."), truncated.rfind("\n"))
    if cut_point > max_length * 0.7:
        return truncated[:cut_point + 1] + "..."
    return truncated + "..."


def _read_pdf(path: Path) -> str:
    doc = fitz.open(str(path))
    try:
        return "\n\n".join(page.get_text() for page in doc)
    finally:
        doc.close()


def _read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8", errors="replace")


def parse_file(path: Union[str, Path], max_length: int = DEFAULT_MAX_LENGTH) -> Optional[ParsedFile]:
    """Parse a single project file.

    Returns:
        ParsedFile, or None when the extension is unsupported or the file
        holds fewer than MIN_WORD_COUNT words.
    """
    path = Path(path)
    ext = path.suffix.lower()

    if ext not in SUPPORTED_EXTENSIONS:
        logger.info(f"[DOC_PARSER] Skipping {path.name}: unsupported file type")
        return None

    raw = _read_pdf(path) if ext == ".pdf" else _read_text(path)
    cleaned = clean_text(raw)
    word_count = len(cleaned.split()) if cleaned else 0

    if word_count < MIN_WORD_COUNT:
        logger.info(f"[DOC_PARSER] Skipping {path.name}: too little content ({word_count} words)")
        return None

    title = generate_title(path.name)
    logger.info(f"[DOC_PARSER] Parsed {title} ({word_count} words)")
    return ParsedFile(
        filename=path.name,
        title=title,
        content=truncate_content(cleaned, max_length),
        file_type=ext.lstrip("."),
        word_count=word_count,
    )


def parse_documents_in_directory(
    dir_path: Union[str, Path],
    max_length: int = DEFAULT_MAX_LENGTH,
) -> List[ParsedFile]:
    """Parse every supported file in a directory, sorted by file name.

    A file that fails to parse is logged and skipped. A missing directory
    yields an empty list.
    """
    directory = Path(dir_path)
    if not directory.is_dir():
        logger.info(f"[DOC_PARSER] Project docs folder not found: {directory}")
        return []

    files = sorted(p for p in directory.iterdir() if p.is_file())
    logger.info(f"[DOC_PARSER] Found {len(files)} files in {directory}")

    parsed: List[ParsedFile] = []
    for path in files:
        try:
            result = parse_file(path, max_length)
        except Exception as e:
            logger.error(f"[DOC_PARSER] Error parsing {path.name}: {e}")
            continue
        if result is not None:
            parsed.append(result)

    logger.info(f"[DOC_PARSER] Successfully parsed {len(parsed)} project documents")
    return parsed
