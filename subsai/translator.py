"""High-level orchestration of subtitle translation runs."""

from __future__ import annotations

import asyncio
import pathlib
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set

from loguru import logger

from .batches import BatchJobManager, JobStore
from .client import TranslationClient, render_group
from .configuration import SubsAIConfig
from .corpus import ErrorCorpus
from .documents import SrtDocument, derive_output_path, find_existing_translation
from .errors import GroupTranslationError, JobPollError, JobSubmissionError, SubsAIError
from .providers import TranslationProvider, build_provider
from .segmenter import GroupBuilder
from .structures import Group, OutcomeKind, ReconcileOutcome, Segment
from .tokens import TiktokenEstimator, TokenEstimator
from .verifier import GroupReconciler


class FileStatus(str, Enum):
    TRANSLATED = "translated"
    QUEUED = "queued"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class FileSummary:
    """Report returned after processing one subtitle file."""

    input_path: pathlib.Path
    status: FileStatus
    output_path: Optional[pathlib.Path] = None
    total_segments: int = 0
    total_groups: int = 0
    translated_groups: int = 0
    queued_groups: int = 0
    elapsed_seconds: float = 0.0
    message: Optional[str] = None


@dataclass
class RunContext:
    """State shared by every file of a run.

    Holds the batch queue, the job store and the error corpus so that they are
    created once when the run starts and flushed once when it ends.
    """

    settings: SubsAIConfig
    provider: TranslationProvider
    estimator: TokenEstimator
    corpus: ErrorCorpus
    batches: Optional[BatchJobManager] = None
    segments_cache: Dict[pathlib.Path, List[Segment]] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        settings: SubsAIConfig,
        *,
        batch: bool = False,
        provider: Optional[TranslationProvider] = None,
        estimator: Optional[TokenEstimator] = None,
    ) -> "RunContext":
        provider = provider or build_provider(settings)
        batches = (
            BatchJobManager(JobStore(settings.CACHE_PATH), provider) if batch else None
        )
        return cls(
            settings=settings,
            provider=provider,
            estimator=estimator or TiktokenEstimator(settings.AI_MODEL),
            corpus=ErrorCorpus(settings.ERROR_CORPUS_PATH),
            batches=batches,
        )

    def flush(self) -> None:
        if self.batches is not None:
            self.batches.flush()


class TranslationRunner:
    """Coordinates extraction, grouping, translation and output per file."""

    def __init__(
        self,
        context: RunContext,
        *,
        ignore_existing: bool = False,
        table: bool = False,
    ) -> None:
        self.context = context
        self.settings = context.settings
        self.ignore_existing = ignore_existing
        self.client = TranslationClient(
            provider=context.provider,
            settings=context.settings,
            batches=context.batches,
        )
        self.reconciler = GroupReconciler(
            self.client,
            max_tries=self.settings.MAX_TRIES,
            error_threshold=self.settings.ERROR_THRESHOLD,
            corpus=context.corpus,
            table=table,
        )
        self.group_builder = GroupBuilder(self.settings.MAX_TOKENS, context.estimator)
        # Rendered group inputs per file, used to release batch results.
        self._request_keys: Dict[pathlib.Path, List[str]] = {}

    async def run(self, paths: Sequence[pathlib.Path], *, wait: bool = False) -> List[FileSummary]:
        batches = self.context.batches
        if batches is not None and batches.pending_jobs():
            await self._poll(batches)

        summaries = await self._run_files(paths)

        if batches is not None:
            submitted = await self._submit(batches)
            while submitted and wait and batches.pending_jobs():
                await asyncio.sleep(self.settings.POLL_INTERVAL)
                await self._poll(batches)
                if batches.pending_jobs():
                    continue
                waiting = [s.input_path for s in summaries if s.status is FileStatus.QUEUED]
                if not waiting:
                    break
                finished = {s.input_path: s for s in await self._run_files(waiting)}
                summaries = [finished.get(s.input_path, s) for s in summaries]
                submitted = await self._submit(batches)
            await self._release(batches, summaries)

        self.context.flush()
        return summaries

    @staticmethod
    async def _poll(batches: BatchJobManager) -> None:
        try:
            await batches.poll()
        except JobPollError as exc:
            logger.error("{}", exc)

    async def _release(self, batches: BatchJobManager, summaries: Sequence[FileSummary]) -> None:
        """Release results used only by files whose output has been written."""

        written: Set[str] = set()
        held: Set[str] = set()
        for summary in summaries:
            keys = self._request_keys.get(summary.input_path, [])
            if summary.status is FileStatus.TRANSLATED:
                written.update(keys)
            else:
                held.update(keys)
        if written - held:
            await batches.release(written - held)

    @staticmethod
    async def _submit(batches: BatchJobManager) -> bool:
        try:
            await batches.submit()
        except JobSubmissionError as exc:
            logger.error("{}", exc)
            return False
        return True

    async def _run_files(self, paths: Sequence[pathlib.Path]) -> List[FileSummary]:
        summaries: List[FileSummary] = []
        total = len(paths)
        for index, path in enumerate(paths, start=1):
            if not self.client.batch_mode:
                logger.info("[{}/{}] Started translation of: {}", index, total, path.name)
            try:
                summary = await self.translate_file(path)
            except SubsAIError as exc:
                logger.error("Failed to translate: {} {}", path.name, exc)
                summary = FileSummary(input_path=path, status=FileStatus.FAILED, message=str(exc))
            summaries.append(summary)
        return summaries

    async def translate_file(self, path: pathlib.Path) -> FileSummary:
        start_time = time.perf_counter()
        primary_language = self.settings.language_aliases[0]

        if not self.ignore_existing:
            existing = find_existing_translation(
                path, [*self.settings.language_aliases, self.settings.TARGET_LANGUAGE]
            )
            if existing is not None:
                logger.debug("Skipping, existing translation: {}", path.name)
                return FileSummary(
                    input_path=path,
                    status=FileStatus.SKIPPED,
                    output_path=existing,
                    message="existing translation",
                )

        document = SrtDocument(path)
        segments = self.context.segments_cache.get(path)
        if segments is None:
            segments = document.extract_segments()
            self.context.segments_cache[path] = segments

        # Regroup the full sequence so queued inputs render exactly as before.
        all_groups = self.group_builder.build(segments)
        self._request_keys[path] = [render_group(group.segments) for group in all_groups]
        groups = [
            group
            for group in all_groups
            if any(s.translated_content is None for s in group.segments)
        ]
        outcomes = await self.translate_groups(groups)

        summary = FileSummary(
            input_path=path,
            status=FileStatus.TRANSLATED,
            total_segments=len(segments),
            total_groups=len(groups),
            translated_groups=sum(1 for o in outcomes if o.succeeded),
            queued_groups=sum(1 for o in outcomes if o.kind is OutcomeKind.QUEUED),
        )

        failed = [o for o in outcomes if o.kind is OutcomeKind.FAILED]
        if failed:
            first = failed[0]
            raise GroupTranslationError(
                first.group.group_id,
                first.observed,
                first.expected or len(first.group),
            )

        if any(segment.translated_content is None for segment in segments):
            summary.status = FileStatus.QUEUED
            summary.message = f"{summary.queued_groups} groups waiting on batch jobs"
            return summary

        output_path = derive_output_path(path, primary_language)
        document.save(segments, output_path)
        self.context.segments_cache.pop(path, None)
        summary.output_path = output_path
        summary.elapsed_seconds = time.perf_counter() - start_time
        logger.info(
            "Successfully translated: {} in {:.2f} seconds",
            path.name,
            summary.elapsed_seconds,
        )
        return summary

    async def translate_groups(self, groups: Sequence[Group]) -> List[ReconcileOutcome]:
        """Translate groups in fixed windows, letting each window settle fully."""

        outcomes: List[ReconcileOutcome] = []
        window = self.settings.CONCURRENCY
        errors: List[BaseException] = []
        for start in range(0, len(groups), window):
            results = await asyncio.gather(
                *(self.reconciler.reconcile(group) for group in groups[start : start + window]),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    errors.append(result)
                else:
                    outcomes.append(result)
            if errors:
                break
        if errors:
            raise errors[0]
        return outcomes
