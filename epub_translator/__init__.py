"""EPUB Translator - literary translation of EPUB books.

This package translates EPUB packages node by node with any model
supported by LiteLLM, preserving the markup of every document.

Features:
    - Multiple AI providers (OpenAI, Anthropic, Google, etc.)
    - Bounded concurrent translation with a rate-limit cooldown
    - Translation cache and resume after interruption
    - Style analysis of the book applied to every request
    - Byte-stable repackaging of the EPUB archive
    - Detailed logging and progress reporting

Main modules:
    archive: EPUB container read/write
    manifest: Reading order and metadata from the OPF package
    extractors: Translatable node extraction and fragment helpers
    parallel: Translation orchestrator
    checkpoint: Resume record persistence
    cache: Key-value store and translation cache
    progress: Progress snapshots and activity log
    translator: Settings and LiteLLM translation client
    style: Style profile and analysis
    pipeline: End-to-end run
    logging_config: Logging setup

Example:
    Basic usage:

    >>> from epub_translator import SqliteStore, TranslationClient, TranslationPipeline, TranslationSettings
    >>>
    >>> settings = TranslationSettings(model="gemini/gemini-2.5-flash", target_language="Turkish")
    >>> pipeline = TranslationPipeline(settings, TranslationClient(settings), SqliteStore("book.db"))
    >>> result = await pipeline.run(open("book.epub", "rb").read(), "book.epub")
    >>> open("book_tr.epub", "wb").write(result.data)

Note:
    A valid API key for the chosen provider is required.
"""

__version__ = "1.0.0"
__description__ = "Literary EPUB translator using LiteLLM"
__license__ = "MIT"

from .archive import EpubArchive
from .cache import MemoryStore, SqliteStore, TranslationCache
from .checkpoint import CheckpointManager, ResumeRecord
from .errors import (
    ArchiveFormatError,
    EntryNotFoundError,
    EpubTranslatorError,
    ManifestError,
    RateLimitedError,
    TranslationCancelledError,
    TranslationFailedError,
    TranslationServiceError,
)
from .extractors import NodeExtractor
from .manifest import BookMetadata, ManifestResolver
from .parallel import TranslationOrchestrator
from .pipeline import TranslationPipeline, TranslationResult
from .progress import ProgressReporter, ProgressSnapshot
from .style import StyleAnalyzer, StyleProfile
from .translator import TranslationClient, TranslationService, TranslationSettings

__all__ = [
    'EpubArchive',
    'MemoryStore',
    'SqliteStore',
    'TranslationCache',
    'CheckpointManager',
    'ResumeRecord',
    'ArchiveFormatError',
    'EntryNotFoundError',
    'EpubTranslatorError',
    'ManifestError',
    'RateLimitedError',
    'TranslationCancelledError',
    'TranslationFailedError',
    'TranslationServiceError',
    'NodeExtractor',
    'BookMetadata',
    'ManifestResolver',
    'TranslationOrchestrator',
    'TranslationPipeline',
    'TranslationResult',
    'ProgressReporter',
    'ProgressSnapshot',
    'StyleAnalyzer',
    'StyleProfile',
    'TranslationClient',
    'TranslationService',
    'TranslationSettings',
]
