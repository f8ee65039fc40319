"""Text extraction for uploaded documents, ahead of knowledge-base ingest."""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Mapping

from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_community.document_loaders.base import BaseLoader

from openassist.errors import ValidationFailure
from openassist.metrics.observability import get_logger


class UnsupportedFileTypeError(ValidationFailure):
    """Raised when a document extension has no text extractor."""


class ExtractionError(ValidationFailure):
    """Raised when a supported document cannot be read."""


_LOADERS: Mapping[str, type[BaseLoader]] = {
    ".pdf": PyPDFLoader,
    ".docx": Docx2txtLoader,
    ".txt": TextLoader,
    ".md": TextLoader,
}

_logger = get_logger("ingestion")


def _normalize_text(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip()


def supported_extensions() -> tuple[str, ...]:
    return tuple(_LOADERS)


def extract_text(path: Path, *, encoding: str = "utf-8") -> str:
    """Return the normalized text content of a .txt, .md, .pdf or .docx file."""

    suffix = path.suffix.lower()
    loader_cls = _LOADERS.get(suffix)
    if loader_cls is None:
        raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")
    if loader_cls is TextLoader:
        loader: BaseLoader = TextLoader(str(path), encoding=encoding)
    else:
        loader = loader_cls(str(path))
    try:
        documents = loader.load()
    except Exception as exc:  # pragma: no cover - loader specific errors
        raise ExtractionError(f"Failed to load {path.name}: {exc}") from exc
    text = "\n\n".join(_normalize_text(document.page_content) for document in documents)
    _logger.info("extraction.complete", path=str(path), pages=len(documents), characters=len(text))
    return text
