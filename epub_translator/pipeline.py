"""
End-to-end translation of an EPUB package.

The pipeline opens the archive, resolves the reading order, restores or
creates the resume record, obtains the style profile, runs the
orchestrator and serialises the translated package. Structural errors are
raised before any analysis or translation request is made. The resume
record survives ``run``; the caller drops it with ``finish`` once the
output is stored.

Classes:
    TranslationResult: Translated package and run statistics
    TranslationPipeline: Wires the components together for one run
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from .archive import EpubArchive
from .cache import KeyValueStore, TranslationCache
from .checkpoint import CheckpointManager, ResumeRecord
from .errors import TranslationCancelledError, TranslationFailedError
from .logging_config import progress_logger
from .manifest import BookMetadata, ManifestResolver
from .parallel import RunStats, TranslationOrchestrator
from .progress import (
    STATUS_ANALYZING,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_RESUMING,
    ProgressReporter,
)
from .style import StyleAnalyzer, StyleProfile
from .translator import TranslationService, TranslationSettings

logger = logging.getLogger(__name__)


@dataclass
class TranslationResult:
    """Outcome of a successful run."""

    data: bytes
    stats: RunStats
    style_profile: StyleProfile
    metadata: BookMetadata
    document_paths: list[str] = field(default_factory=list)
    resumed: bool = False
    token_usage: dict[str, int] = field(default_factory=dict)


class TranslationPipeline:
    """Runs one translation of one package.

    Attributes:
        settings: Translation settings
        service: Translation service used for every node
        store: Durable store shared by the cache and the resume record
        analyzer: Style analyser (defaults to a LiteLLM one)
        reporter: Progress reporter receiving every snapshot
        cancel_event: Event that stops the run when set
    """

    def __init__(
        self,
        settings: TranslationSettings,
        service: TranslationService,
        store: KeyValueStore,
        analyzer: StyleAnalyzer | None = None,
        reporter: ProgressReporter | None = None,
        cancel_event: asyncio.Event | None = None,
    ):
        self.settings = settings
        self.service = service
        self.store = store
        self.analyzer = analyzer or StyleAnalyzer(
            settings.model, settings.source_language, settings.target_language
        )
        self.reporter = reporter or ProgressReporter(
            log_window=settings.log_window, usage_provider=self.token_usage
        )
        if self.reporter.usage_provider is None:
            self.reporter.usage_provider = self.token_usage
        self.cancel_event = cancel_event or asyncio.Event()

        self.checkpoints = CheckpointManager(store)
        self.cache = TranslationCache(
            store, settings.source_language, settings.target_language, settings.model
        )
        self.orchestrator: TranslationOrchestrator | None = None

    def token_usage(self) -> dict[str, int]:
        """Token usage of the translation service plus the style analysis."""
        usage = self.service.usage.to_dict()
        usage["analysis_tokens"] = self.analyzer.usage_tokens
        return usage

    def cancel(self) -> None:
        self.cancel_event.set()

    def finish(self) -> None:
        """Drop the resume record once the caller has stored the translated package."""
        self.checkpoints.clear()
        logger.info("Resume record cleared")

    async def run(self, data: bytes, source_filename: str, resume: bool = True) -> TranslationResult:
        """
        Translate a package.

        Args:
            data: EPUB bytes
            source_filename: Name used to match a saved resume record
            resume: Reuse a compatible resume record when one exists

        Returns:
            TranslationResult with the translated package

        Raises:
            ArchiveFormatError: If the package or its manifest is unusable
            TranslationCancelledError: If the run was cancelled
            TranslationFailedError: On a fatal service outcome
        """
        archive = EpubArchive.open(data, source_filename)
        document_paths, metadata = ManifestResolver().resolve(archive)
        self.reporter.log(
            f"Package opened: '{metadata.title}' by {metadata.creator}, "
            f"{len(document_paths)} documents"
        )
        progress_logger.log_start(source_filename, self.settings.model, len(document_paths))

        record, style_profile, resumed = await self._prepare(source_filename, metadata, resume)

        self.orchestrator = TranslationOrchestrator(
            service=self.service,
            settings=self.settings,
            style_profile=style_profile,
            cache=self.cache,
            checkpoints=self.checkpoints,
            reporter=self.reporter,
            cancel_event=self.cancel_event,
        )

        try:
            stats = await self.orchestrator.run(archive, document_paths, record)
        except TranslationCancelledError:
            self.reporter.log("Translation cancelled, progress saved", "warning")
            self.reporter.report(status=STATUS_CANCELLED)
            raise
        except TranslationFailedError as e:
            self.reporter.log(f"Translation failed: {e}", "error")
            self.reporter.report(status=STATUS_ERROR)
            raise

        output = archive.serialize()

        self.reporter.log("Translation completed", "success")
        self.reporter.report(status=STATUS_COMPLETED)

        return TranslationResult(
            data=output,
            stats=stats,
            style_profile=style_profile,
            metadata=metadata,
            document_paths=document_paths,
            resumed=resumed,
            token_usage=self.token_usage(),
        )

    async def _prepare(
        self, source_filename: str, metadata: BookMetadata, resume: bool
    ) -> tuple[ResumeRecord, StyleProfile, bool]:
        """Restore a compatible resume record or start a fresh one."""
        snapshot: dict[str, Any] = {"settings": self.settings.to_dict()}

        record = self.checkpoints.load() if resume else None
        if record is not None and self.checkpoints.can_resume(record, source_filename, snapshot):
            saved_profile = record.settings_snapshot.get("style_profile")
            if saved_profile:
                self.reporter.log(
                    f"Resuming from document {record.document_index + 1}, "
                    f"node {record.node_index + 1}"
                )
                progress_logger.log_resume(record.document_index, record.node_index)
                self.reporter.report(status=STATUS_RESUMING)
                return record, StyleProfile.from_dict(saved_profile), True

        if record is not None:
            self.checkpoints.clear()

        self.reporter.log("Analyzing literary style...")
        self.reporter.report(status=STATUS_ANALYZING)
        profile = await self.analyzer.analyze(metadata)
        self.reporter.log(f"Style: {profile.genre} / {profile.tone}", "success")

        snapshot["style_profile"] = profile.to_dict()
        record = ResumeRecord(source_filename=source_filename, settings_snapshot=snapshot)
        self.checkpoints.save(record)
        return record, profile, False
