"""Count verification of translated groups and whole-group retries."""

from __future__ import annotations

import re
from typing import List, Optional, Sequence

from loguru import logger

from .client import TranslationClient, render_group
from .corpus import ErrorCorpus, ErrorRecord
from .errors import CountMismatchError, EndpointError
from .structures import Group, OutcomeKind, ReconcileOutcome, Segment

ORDINAL_PATTERN = re.compile(r"^\d+\. ")
TABLE_WIDTH = 50


def parse_translation(raw: str) -> List[str]:
    """Split a numbered response back into one fragment per line."""

    fragments = [ORDINAL_PATTERN.sub("", line.strip()) for line in raw.split("\n")]
    if fragments and fragments[-1] == "":
        fragments.pop()
    return fragments


def verify_count(fragments: Sequence[str], expected: int) -> None:
    if len(fragments) != expected:
        raise CountMismatchError(observed=len(fragments), expected=expected)


def print_table(segments: Sequence[Segment], fragments: Sequence[str]) -> None:
    for segment, fragment in zip(segments, fragments):
        print(
            segment.content[:TABLE_WIDTH].ljust(TABLE_WIDTH)
            + " | "
            + fragment[:TABLE_WIDTH].ljust(TABLE_WIDTH)
        )


class GroupReconciler:
    """Drives a group until its response has one line per segment.

    A mismatch gives no signal about which line went wrong, so the whole group
    is asked again with the same instructions rather than realigned. In batch
    mode each round of a request counts as one attempt, and the count survives
    between passes. Responses seen after ``error_threshold`` attempts are kept
    in the error corpus.
    """

    def __init__(
        self,
        client: TranslationClient,
        *,
        max_tries: int,
        error_threshold: int,
        corpus: Optional[ErrorCorpus] = None,
        table: bool = False,
    ) -> None:
        self.client = client
        self.max_tries = max_tries
        self.error_threshold = error_threshold
        self.corpus = corpus
        self.table = table

    async def reconcile(self, group: Group, attempt: int = 0) -> ReconcileOutcome:
        text = render_group(group.segments)
        expected = len(group.segments)
        batches = self.client.batches
        if batches is not None:
            attempt = max(attempt, batches.attempts(text))
            if attempt > self.max_tries:
                raise EndpointError(
                    f"Group {group.group_id} got no usable batch result after {attempt} tries"
                )

        while True:
            try:
                translated = await self.client.translate_text(text)
            except EndpointError as exc:
                if attempt >= self.max_tries:
                    raise
                logger.warning(
                    "Group {} attempt {} failed ({}), trying again...",
                    group.group_id,
                    attempt,
                    exc,
                )
                attempt += 1
                continue

            if not isinstance(translated, str):
                return ReconcileOutcome(group=group, kind=OutcomeKind.QUEUED, attempts=attempt)

            if attempt > self.error_threshold and self.corpus is not None:
                self.corpus.append(
                    ErrorRecord(prompt=self.client.system_prompt, input=text, output=translated)
                )

            fragments = parse_translation(translated)
            if self.table:
                print_table(group.segments, fragments)

            try:
                verify_count(fragments, expected)
            except CountMismatchError as exc:
                if attempt >= self.max_tries:
                    if batches is not None:
                        await batches.discard(text)
                    logger.error(
                        "Failed to translate, translation length mismatch: {}/{}",
                        exc.observed,
                        exc.expected,
                    )
                    return ReconcileOutcome(
                        group=group,
                        kind=OutcomeKind.FAILED,
                        attempts=attempt,
                        observed=exc.observed,
                        expected=exc.expected,
                    )
                logger.debug(
                    "Translation length mismatch ({}/{}), trying again...",
                    exc.observed,
                    exc.expected,
                )
                if batches is not None:
                    await batches.requeue(text)
                attempt += 1
                continue

            for segment, fragment in zip(group.segments, fragments):
                segment.translated_content = fragment
            return ReconcileOutcome(
                group=group,
                kind=OutcomeKind.SUCCESS,
                attempts=attempt,
                observed=expected,
                expected=expected,
            )
