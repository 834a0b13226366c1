"""
Document text extraction and segmentation.

PDF (PyMuPDF), CSV (pandas) and plain text are turned into text, split
into blank-line separated segments and ranked by billing-rule keywords.
"""
import io
import re
from pathlib import Path
from typing import List

import fitz
import pandas as pd

import config
from sop_engine.errors import ExtractionError
from sop_engine.utils.logger import get_logger

logger = get_logger(__name__)

SUPPORTED_EXTENSIONS = {".pdf", ".csv", ".txt"}

RULE_KEYWORDS = [
    # Actions
    'modifier', 'add', 'append', 'remove', 'delete', 'require', 'authorization',
    'prior auth', 'bundle', 'unbundle', 'deny', 'reject', 'swap', 'replace',
    # Codes
    'code', 'cpt', 'icd', 'hcpcs', 'procedure', 'diagnosis',
    # Payers
    'payer', 'insurance', 'medicare', 'medicaid', 'commercial', 'bcbs', 'blue cross',
    'anthem', 'cigna', 'aetna', 'humana', 'united',
    # Documentation
    'documentation', 'chart', 'note', 'record', 'medical necessity',
    # Providers
    'provider', 'physician', 'doctor', 'nurse', 'therapist', 'specialist',
]


# ============================================================
# TEXT EXTRACTION
# ============================================================

def clean_pdf_text(text: str) -> str:
    """Strip page furniture left over from PDF text extraction."""
    text = re.sub(r'Page \d+ of \d+', '', text, flags=re.IGNORECASE)
    text = re.sub(r'^\d+$', '', text, flags=re.MULTILINE)
    text = re.sub(r'\[\d+\]', '', text)
    text = re.sub(r'^[A-Z\s]{20,}$', '', text, flags=re.MULTILINE)
    text = text.replace('\f', '\n')
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n{3,}', '\n\n', text)
    return text.strip()


def extract_pdf(data: bytes) -> str:
    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = [page.get_text() for page in doc]
    except (RuntimeError, ValueError) as e:
        raise ExtractionError(f"Failed to extract text from PDF: {e}")
    logger.info(f"PDF: {len(pages)} page(s)")
    return clean_pdf_text("\n\n".join(pages))


def extract_csv(data: bytes) -> str:
    """One 'Rule N:' block per row with its non-empty columns."""
    try:
        df = pd.read_csv(io.BytesIO(data), dtype=str, skip_blank_lines=True).fillna("")
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise ExtractionError(f"Failed to parse CSV: {e}")
    if df.empty:
        raise ExtractionError("CSV file is empty")

    blocks = []
    for i, row in enumerate(df.to_dict(orient="records")):
        entries = [f"  {str(key).strip()}: {value.strip()}"
                   for key, value in row.items() if value and value.strip()]
        blocks.append(f"Rule {i + 1}:\n" + "\n".join(entries))
    return "\n\n".join(blocks)


def extract_txt(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def extract_text(filename: str, data: bytes) -> str:
    ext = Path(filename or "").suffix.lower()
    if ext == ".pdf":
        text = extract_pdf(data)
    elif ext == ".csv":
        text = extract_csv(data)
    elif ext == ".txt":
        text = extract_txt(data)
    else:
        raise ExtractionError(f"Unsupported file type: {ext or filename}. Supported: PDF, CSV, TXT")

    if not text or not text.strip():
        raise ExtractionError("No text could be extracted from the document")
    return text


# ============================================================
# SEGMENTATION
# ============================================================

def keyword_score(segment: str) -> int:
    lower = segment.lower()
    return sum(1 for keyword in RULE_KEYWORDS if keyword in lower)


def segment_text(text: str, min_length: int = None) -> List[str]:
    """
    Split on blank lines, drop short noise, and order by keyword score.

    Segments without any keyword are dropped unless nothing scores, in
    which case every segment is kept in document order.
    """
    min_length = config.MIN_SEGMENT_LENGTH if min_length is None else min_length
    segments = [s.strip() for s in re.split(r'\n\n+', text or "")]
    segments = [s for s in segments if len(s) > min_length]

    scored = [(keyword_score(s), s) for s in segments]
    scored.sort(key=lambda item: item[0], reverse=True)
    relevant = [s for score, s in scored if score > 0]

    final = relevant if relevant else segments
    logger.info(f"Segments: {len(segments)} total, {len(relevant)} rule-related, {len(final)} kept")
    return final
