# Document Extraction
#
# Modules:
#   - core_ai.py: LLM calls (Gemini/OpenAI)
#   - prompts.py: rule candidate extraction prompt
#   - segmenter.py: PDF/CSV/TXT text extraction and keyword segmentation
#   - pipeline.py: IngestionPipeline and ProcessingQueue

from .core_ai import call_model, call_gemini_model, call_openai_model
from .prompts import build_extraction_prompt
from .segmenter import extract_text, segment_text, clean_pdf_text, keyword_score
from .pipeline import (
    IngestMode,
    IngestionReport,
    IngestionPipeline,
    LLMExtractor,
    ProcessingQueue,
    QueueJob,
    JobStatus,
)

__all__ = [
    # Core AI
    'call_model',
    'call_gemini_model',
    'call_openai_model',

    # Prompts
    'build_extraction_prompt',

    # Segmenter
    'extract_text',
    'segment_text',
    'clean_pdf_text',
    'keyword_score',

    # Pipeline
    'IngestMode',
    'IngestionReport',
    'IngestionPipeline',
    'LLMExtractor',
    'ProcessingQueue',
    'QueueJob',
    'JobStatus',
]
