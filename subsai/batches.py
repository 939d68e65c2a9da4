"""Durable store and lifecycle management for asynchronous batch jobs."""

from __future__ import annotations

import asyncio
import json
import os
import random
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from loguru import logger

from .errors import JobPollError
from .providers import CHAT_COMPLETIONS_URL, TranslationProvider
from .structures import BatchJob, BatchRequest, JobStatus


class JobStore:
    """Persists the whole job list as one JSON document."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> List[BatchJob]:
        if not self.path.exists():
            return []
        raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        return [BatchJob.from_dict(item) for item in raw]

    def save(self, jobs: List[BatchJob]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(
            json.dumps([job.to_dict() for job in jobs], ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        os.replace(tmp_path, self.path)


class BatchJobManager:
    """Owns the pending request list and the persisted jobs of a run.

    Requests are keyed by their verbatim rendered input, so an identical group
    is never queued twice while an earlier request for it is pending or
    resolved. Every mutation of the job list is written straight back to the
    store under a single lock.
    """

    def __init__(self, store: JobStore, provider: TranslationProvider) -> None:
        self.store = store
        self.provider = provider
        self.jobs: List[BatchJob] = store.load()
        self.pending: List[Tuple[BatchRequest, Dict[str, Any]]] = []
        self._carried: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    def lookup(self, content: str) -> Optional[BatchRequest]:
        """Return the stored or pending request for this input, if any."""

        for job in self.jobs:
            request = job.find(content)
            if request is not None:
                return request
        for request, _ in self.pending:
            if request.content == content:
                return request
        return None

    def attempts(self, content: str) -> int:
        """Batch rounds already spent on this input without a usable result."""

        request = self.lookup(content)
        if request is not None:
            return request.attempts
        return self._carried.get(content, 0)

    def enqueue(self, content: str, body: Dict[str, Any]) -> BatchRequest:
        existing = self.lookup(content)
        if existing is not None:
            return existing
        request = BatchRequest(
            content=content,
            id=self._new_request_id(),
            attempts=self._carried.pop(content, 0),
        )
        self.pending.append((request, body))
        return request

    async def requeue(self, content: str) -> None:
        """Drop an unusable result and charge it to the next request for it."""

        async with self._lock:
            for request in self._remove({content}):
                self._carried[content] = request.attempts + 1

    async def discard(self, content: str) -> None:
        """Forget a request whose result was unusable for good."""

        async with self._lock:
            self._remove({content})
            self._carried.pop(content, None)

    async def release(self, contents: Iterable[str]) -> None:
        """Drop resolved requests once every output using them is written."""

        async with self._lock:
            self._remove(set(contents), resolved_only=True)

    def _remove(self, contents: Set[str], *, resolved_only: bool = False) -> List[BatchRequest]:
        removed: List[BatchRequest] = []
        for job in list(self.jobs):
            kept = []
            for request in job.requests:
                if request.content in contents and (
                    request.result is not None or not resolved_only
                ):
                    removed.append(request)
                else:
                    kept.append(request)
            if len(kept) == len(job.requests):
                continue
            job.requests = kept
            if not job.requests:
                self.jobs.remove(job)
        if removed:
            self.store.save(self.jobs)
        return removed

    def pending_jobs(self) -> List[BatchJob]:
        return [job for job in self.jobs if not job.finished]

    async def submit(self) -> Optional[BatchJob]:
        """Send every pending request as one remote batch and persist it."""

        async with self._lock:
            if not self.pending:
                return None
            logger.info("Batching {} requests", len(self.pending))
            lines = [
                {
                    "custom_id": request.id,
                    "method": "POST",
                    "url": CHAT_COMPLETIONS_URL,
                    "body": body,
                }
                for request, body in self.pending
            ]
            remote = await self.provider.create_batch(lines)
            job = BatchJob(
                id=remote.id,
                status=JobStatus.PENDING,
                requests=[request for request, _ in self.pending],
            )
            self.jobs.append(job)
            self.store.save(self.jobs)
            self.pending.clear()
        logger.info("Successfully batched a job with: {} requests", len(job.requests))
        return job

    async def poll(self) -> None:
        """Check every unfinished job once and reconcile finished results."""

        async with self._lock:
            if not self.pending_jobs():
                logger.info("No pending jobs")
                return
            logger.info("Checking jobs in progress")
            dropped: List[str] = []
            for job in list(self.jobs):
                if job.finished:
                    continue
                try:
                    await self._poll_job(job)
                except JobPollError as exc:
                    logger.error("Job {} dropped: {}", job.id, exc)
                    self.jobs.remove(job)
                    dropped.append(job.id)
            self.store.save(self.jobs)
        if dropped:
            raise JobPollError("Could not poll batch jobs: " + ", ".join(dropped))

    async def _poll_job(self, job: BatchJob) -> None:
        remote = await self.provider.retrieve_batch(job.id)
        status = JobStatus.from_remote(remote.status)

        if status is JobStatus.COMPLETED:
            if not remote.output_file_id:
                if remote.error_file_id:
                    errors = await self.provider.file_text(remote.error_file_id)
                    for record in _parse_lines(errors):
                        logger.error("{}", _error_message(record) or record)
                logger.error("Job {} completed without results", job.id)
                self.jobs.remove(job)
                return
            output = await self.provider.file_text(remote.output_file_id)
            self._apply_results(job, _parse_lines(output))
            job.status = JobStatus.COMPLETED
            job.finished = True
            logger.info("Job completed: {}", job.id)
            if not job.requests:
                self.jobs.remove(job)
        elif status is JobStatus.FAILED:
            logger.error("Job failed: {} ({})", job.id, remote.status)
            self.jobs.remove(job)
        else:
            logger.info("Job in progress: {} ({})", job.id, remote.status)

    def _apply_results(self, job: BatchJob, records: List[Dict[str, Any]]) -> None:
        by_id = {request.id: request for request in job.requests}
        matched_by_id = bool(records) and all(
            record.get("custom_id") in by_id for record in records
        )
        for index, record in enumerate(records):
            if matched_by_id:
                request = by_id[record["custom_id"]]
            elif index < len(job.requests):
                request = job.requests[index]
            else:
                break
            request.result = _result_text(record)

        unresolved = [request for request in job.requests if request.result is None]
        if unresolved:
            logger.warning(
                "Job {} returned no result for {} requests, they will be queued again",
                job.id,
                len(unresolved),
            )
            for request in unresolved:
                self._carried[request.content] = request.attempts + 1
            job.requests = [r for r in job.requests if r.result is not None]

    def _new_request_id(self) -> str:
        taken = {request.id for job in self.jobs for request in job.requests}
        taken.update(request.id for request, _ in self.pending)
        while True:
            candidate = str(random.randint(0, 999_999_999))
            if candidate not in taken:
                return candidate

    def flush(self) -> None:
        self.store.save(self.jobs)


def _parse_lines(text: str) -> List[Dict[str, Any]]:
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def _error_message(record: Dict[str, Any]) -> Optional[str]:
    error = record.get("error")
    if not error:
        response = record.get("response") or {}
        error = (response.get("body") or {}).get("error") or response.get("error")
    if isinstance(error, dict):
        return error.get("message")
    return None


def _result_text(record: Dict[str, Any]) -> Optional[str]:
    try:
        choice = record["response"]["body"]["choices"][0]
        if choice.get("finish_reason") != "stop":
            return None
        return choice["message"]["content"]
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
