"""
Translation orchestrator: bounded concurrent dispatch of node translations.

Documents are processed in reading order and nodes in document order.
Only calls to the translation service run concurrently, in batches of at
most ``max_concurrency`` nodes; results are applied, cached and
checkpointed strictly in document order once the whole batch has settled,
so the resume record always describes a prefix of finished work.
"""

import asyncio
import contextlib
import logging
import posixpath
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from .archive import EpubArchive
from .cache import TranslationCache
from .checkpoint import CheckpointManager, ResumeRecord
from .errors import (
    RateLimitedError,
    TranslationCancelledError,
    TranslationFailedError,
    TranslationServiceError,
)
from .extractors import ExtractedDocument, NodeExtractor, NodeHandle, word_count
from .logging_config import progress_logger
from .progress import STATUS_PROCESSING, STATUS_RATE_LIMITED, ProgressReporter
from .style import StyleProfile
from .translator import REPAIR_TEMPERATURE, TranslationService, TranslationSettings
from .validation import TranslationValidator

logger = logging.getLogger(__name__)


class NodeState(Enum):
    """Lifecycle of a translatable node."""

    PENDING = "pending"
    RECORD_HIT = "record_hit"
    CACHE_HIT = "cache_hit"
    DISPATCHED = "dispatched"
    RETRYING = "retrying"
    TRANSLATED = "translated"
    SKIPPED = "skipped"


class OutcomeKind(Enum):
    """Tagged result of one dispatch, inspected by the orchestration loop."""

    SUCCESS = "success"
    RETRYABLE = "retryable"
    SKIPPABLE = "skippable"
    FATAL = "fatal"


@dataclass
class DispatchResult:
    """Result of one call (or call + repair) to the translation service."""

    kind: OutcomeKind
    fragment: str | None = None
    error: str = ""


@dataclass
class NodeResult:
    """Terminal result of a node, applied by the loop."""

    state: NodeState
    source: str
    fragment: str | None = None
    reason: str = ""


@dataclass
class RunStats:
    """Statistics of an orchestration run."""

    documents_processed: int = 0
    documents_rewritten: int = 0
    nodes_total: int = 0
    nodes_translated: int = 0
    nodes_cached: int = 0
    nodes_from_record: int = 0
    nodes_skipped: int = 0
    containers: int = 0
    nodes_enclosed: int = 0
    repairs: int = 0
    rate_limit_waits: int = 0
    service_calls: int = 0
    max_in_flight: int = 0
    total_time: float = 0.0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class TranslationOrchestrator:
    """Drives the per-node state machine over all documents of a package."""

    def __init__(
        self,
        service: TranslationService,
        settings: TranslationSettings,
        style_profile: StyleProfile,
        cache: TranslationCache,
        checkpoints: CheckpointManager,
        reporter: ProgressReporter,
        cancel_event: asyncio.Event | None = None,
        extractor: NodeExtractor | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            service: Translation service
            settings: Translation settings
            style_profile: Style profile passed to every request
            cache: Translation cache
            checkpoints: Resume record persistence
            reporter: Progress reporter
            cancel_event: Event that stops the run when set
            extractor: Node extractor (a default one is created if omitted)
        """
        self.service = service
        self.settings = settings
        self.style_profile = style_profile
        self.cache = cache
        self.checkpoints = checkpoints
        self.reporter = reporter
        self.cancel_event = cancel_event or asyncio.Event()
        self.extractor = extractor or NodeExtractor()
        self.validator = TranslationValidator(settings.source_language, settings.target_language)

        self.stats = RunStats()
        self.node_states: dict[tuple[int, int], NodeState] = {}
        self._semaphore = asyncio.Semaphore(settings.max_concurrency)
        self._in_flight = 0

    @property
    def temperature(self) -> float:
        """Sampling temperature: the profile's recommendation when it has one."""
        if self.style_profile.variability:
            return min(1.0, self.style_profile.variability)
        return self.settings.temperature

    async def run(
        self, archive: EpubArchive, document_paths: list[str], record: ResumeRecord
    ) -> RunStats:
        """
        Translate every document of the archive in place.

        Args:
            archive: Opened archive; rewritten documents are written back to it
            document_paths: Content documents in reading order
            record: Resume record (fresh or loaded), updated as nodes settle

        Returns:
            Run statistics

        Raises:
            TranslationCancelledError: When the cancel event is set
            TranslationFailedError: On a fatal service outcome
        """
        start_time = time.time()
        self.reporter.start(len(document_paths))
        self.reporter.documents_done = min(record.document_index, len(document_paths))

        for document_index, path in enumerate(document_paths):
            self._check_cancelled()
            await self._process_document(archive, document_index, path, record)

            self.stats.documents_processed += 1
            self.reporter.documents_done = document_index + 1
            self.reporter.report(current_document=path, status=STATUS_PROCESSING)

        self.stats.total_time = time.time() - start_time
        logger.info(
            f"Orchestration finished in {self.stats.total_time:.1f}s: "
            f"{self.stats.nodes_translated} translated, {self.stats.nodes_cached} cached, "
            f"{self.stats.nodes_from_record} from record, {self.stats.nodes_skipped} skipped"
        )
        return self.stats

    async def _process_document(
        self, archive: EpubArchive, document_index: int, path: str, record: ResumeRecord
    ) -> None:
        document = self.extractor.extract(
            archive.read(path), self.settings.target_tags, document_index, path
        )
        handles = document.handles
        if not handles:
            logger.debug(f"No translatable nodes in {path}")
            return

        self.stats.nodes_total += len(handles)
        progress_logger.log_document(path, len(handles))
        if not record.is_settled(document_index, len(handles) - 1):
            self.reporter.log(f"Processing: {posixpath.basename(path)}")

        changed = False
        batch_size = self.settings.max_concurrency
        index = 0

        while index < len(handles):
            self._check_cancelled()
            batch = handles[index : index + batch_size]
            results = await self._settle_batch(document, batch, record)

            for handle in batch:
                self._check_cancelled()
                settled = record.is_settled(document_index, handle.node_index)
                changed |= self._apply(document, handle, results[handle.node_index], record)

                if not settled:
                    record.advance(document_index, handle.node_index)
                    self.checkpoints.save(record)
                self.reporter.report(
                    document_index=document_index,
                    node_index=handle.node_index,
                    node_count=len(handles),
                    current_document=path,
                    status=STATUS_PROCESSING,
                )

            index += len(batch)

        if changed:
            archive.write(path, document.serialize())
            self.stats.documents_rewritten += 1

    async def _settle_batch(
        self, document: ExtractedDocument, batch: list[NodeHandle], record: ResumeRecord
    ) -> dict[int, NodeResult]:
        """Resolve every node of the batch (record, cache, then dispatch)."""
        results: dict[int, NodeResult] = {}
        to_dispatch: list[NodeHandle] = []

        for handle in batch:
            source = handle.source()
            self.node_states[handle.key] = NodeState.PENDING

            if handle.container:
                results[handle.node_index] = NodeResult(NodeState.SKIPPED, source, reason="container")
                continue
            if handle.enclosed:
                # Translated with its enclosing node
                results[handle.node_index] = NodeResult(NodeState.SKIPPED, source, reason="enclosed")
                continue

            stored = record.get(document.path, handle.node_index)
            if stored is not None:
                results[handle.node_index] = NodeResult(NodeState.RECORD_HIT, source, stored)
                continue

            if record.is_settled(document.document_index, handle.node_index):
                # Settled without a translation in an earlier run
                results[handle.node_index] = NodeResult(NodeState.RECORD_HIT, source)
                continue

            cached = self.cache.get(source)
            if cached is not None:
                results[handle.node_index] = NodeResult(NodeState.CACHE_HIT, source, cached)
                continue

            to_dispatch.append(handle)

        if to_dispatch:
            results.update(await self._dispatch(document, to_dispatch))

        return results

    async def _dispatch(
        self, document: ExtractedDocument, handles: list[NodeHandle]
    ) -> dict[int, NodeResult]:
        """Translate nodes concurrently; pause the whole run on rate limits."""
        results: dict[int, NodeResult] = {}
        pending = handles

        while pending:
            for handle in pending:
                self.node_states[handle.key] = NodeState.DISPATCHED

            outcomes = await self._await_cancellable(
                asyncio.gather(*(self._translate_node(document, h) for h in pending))
            )

            retry: list[NodeHandle] = []
            for handle, outcome in zip(pending, outcomes):
                source = handle.source()
                if outcome.kind is OutcomeKind.FATAL:
                    self.stats.errors.append(outcome.error)
                    raise TranslationFailedError(outcome.error)
                if outcome.kind is OutcomeKind.RETRYABLE:
                    self.node_states[handle.key] = NodeState.RETRYING
                    retry.append(handle)
                elif outcome.kind is OutcomeKind.SUCCESS:
                    results[handle.node_index] = NodeResult(
                        NodeState.TRANSLATED, source, outcome.fragment
                    )
                else:
                    results[handle.node_index] = NodeResult(
                        NodeState.SKIPPED, source, reason=outcome.error
                    )

            if retry:
                self.stats.rate_limit_waits += 1
                self.reporter.log(
                    f"Quota exceeded! Waiting {self.settings.cooldown_seconds:.0f}s...", "warning"
                )
                self.reporter.report(
                    document_index=document.document_index,
                    node_index=retry[0].node_index - 1,
                    node_count=len(document),
                    current_document=document.path,
                    status=STATUS_RATE_LIMITED,
                )
                await self._cooldown()
            pending = retry

        return results

    async def _translate_node(self, document: ExtractedDocument, handle: NodeHandle) -> DispatchResult:
        """One translation, validated, with a single stricter repair attempt."""
        source = handle.source()
        result = await self._call(source, self.temperature, strict=False)
        if result.kind is not OutcomeKind.SUCCESS:
            return result

        check = self.validator.validate(source, result.fragment, document.namespaces)
        if check.valid:
            return result

        self.stats.repairs += 1
        logger.warning(
            f"Suspicious translation for node {handle.key} ({check.reason}) - repairing"
        )
        repair = await self._call(
            source, min(self.temperature, REPAIR_TEMPERATURE), strict=True
        )
        if repair.kind is not OutcomeKind.SUCCESS:
            return repair

        check = self.validator.validate(source, repair.fragment, document.namespaces)
        if check.valid:
            return repair

        return DispatchResult(OutcomeKind.SKIPPABLE, error=f"suspicious translation: {check.reason}")

    async def _call(self, fragment: str, temperature: float, strict: bool) -> DispatchResult:
        """Call the service under the concurrency bound and tag the outcome."""
        async with self._semaphore:
            self._in_flight += 1
            self.stats.max_in_flight = max(self.stats.max_in_flight, self._in_flight)
            self.stats.service_calls += 1
            try:
                translated = await self.service.translate(
                    fragment,
                    self.settings.source_language,
                    self.settings.target_language,
                    self.style_profile,
                    temperature,
                    strict=strict,
                )
                return DispatchResult(OutcomeKind.SUCCESS, translated)
            except RateLimitedError as e:
                return DispatchResult(OutcomeKind.RETRYABLE, error=str(e))
            except TranslationFailedError as e:
                return DispatchResult(OutcomeKind.FATAL, error=str(e))
            except TranslationServiceError as e:
                return DispatchResult(OutcomeKind.SKIPPABLE, error=str(e))
            except Exception as e:
                logger.exception("Unexpected error from translation service")
                return DispatchResult(OutcomeKind.SKIPPABLE, error=f"{type(e).__name__}: {e}")
            finally:
                self._in_flight -= 1

    def _apply(
        self,
        document: ExtractedDocument,
        handle: NodeHandle,
        result: NodeResult,
        record: ResumeRecord,
    ) -> bool:
        """Write a settled result into the tree and the resume record."""
        self.node_states[handle.key] = result.state
        path = document.path

        if result.fragment is None:
            record.put(path, handle.node_index, record.get(path, handle.node_index))
            if result.reason == "container":
                self.stats.containers += 1
            elif result.reason == "enclosed":
                self.stats.nodes_enclosed += 1
            elif result.state is NodeState.RECORD_HIT:
                self.stats.nodes_from_record += 1
            else:
                self.stats.nodes_skipped += 1
                self.stats.errors.append(f"{path}#{handle.node_index}: {result.reason}")
                self.reporter.log(
                    f"Skipped node {handle.node_index} of {posixpath.basename(path)}: {result.reason}",
                    "warning",
                )
            return False

        document.apply(handle.node_index, result.fragment)
        record.put(path, handle.node_index, result.fragment)

        if result.state is NodeState.RECORD_HIT:
            self.stats.nodes_from_record += 1
            return True

        if result.state is NodeState.TRANSLATED:
            self.cache.set(result.source, result.fragment)
            self.stats.nodes_translated += 1
        else:
            self.stats.nodes_cached += 1

        self.reporter.throughput.add_words(word_count(result.fragment, document.namespaces))
        return True

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise TranslationCancelledError("Translation cancelled")

    async def _await_cancellable(self, awaitable):
        """Await ``awaitable`` unless cancellation is requested first."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.cancel_event.wait())

        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            waiter.cancel()
            return task.result()

        # In-flight results are abandoned, never cached
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        raise TranslationCancelledError("Translation cancelled while awaiting the service")

    async def _cooldown(self) -> None:
        """Pause the whole run; returns early only to raise on cancellation."""
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=self.settings.cooldown_seconds)
        except asyncio.TimeoutError:
            return
        raise TranslationCancelledError("Translation cancelled during rate-limit cooldown")
