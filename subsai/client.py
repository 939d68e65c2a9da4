"""Rendering groups into prompts and sending them to the endpoint."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Union

from loguru import logger

from .batches import BatchJobManager
from .configuration import SubsAIConfig
from .providers import TranslationProvider
from .structures import Group, Segment


class _Queued:
    """Marker for a group whose translation is waiting on a batch job."""

    def __repr__(self) -> str:
        return "QUEUED"


QUEUED = _Queued()

TranslationResult = Union[str, _Queued]


def render_group(segments: Sequence[Segment]) -> str:
    """Number each segment's content, one per line, starting at 1."""

    return "\n".join(
        f"{index}. {segment.content}" for index, segment in enumerate(segments, start=1)
    )


def build_system_prompt(target_language: str, extra_specification: str = "") -> str:
    prompt = f"""You are an experienced semantic translator.
Follow the instructions carefully.
You will receive user messages containing a subtitle SRT file (for a TV show or movie) formatted like this:

\"\"\"
1. Message 1
2. Message 2
...
N. Message N
\"\"\"

You should respond in the same format and with the same number of points but translated to {target_language}.

- ALWAYS remove non-text content from the subtitles, like HTML tags, or anything that is not readable by a human.
- ALWAYS return the SAME number of points.
- NEVER skip any point.
- NEVER combine points.
- ALWAYS remove branding, ads or urls that are not related to the content.

You are translating a subtitle, so remember each point is something said in a timestamp and cannot be split or merged with other points. To improve how natural translations sound, you can make it not as literal. Each point is related and in order; you can use the context to make a better translation.

Remember not to merge points; the last point should be exactly the same number as the input. If the input's last number is 7, the output you generate should also end with 7."""
    if extra_specification:
        prompt += f"\n\n{extra_specification}"
    return prompt


def resolve_model(settings: SubsAIConfig) -> str:
    if settings.LLM_PROVIDER == "azure_openai" and settings.AZURE_OPENAI_DEPLOYMENT_NAME:
        return settings.AZURE_OPENAI_DEPLOYMENT_NAME
    return settings.AI_MODEL


class TranslationClient:
    """Sends a group either straight to the endpoint or into the batch queue."""

    def __init__(
        self,
        *,
        provider: TranslationProvider,
        settings: SubsAIConfig,
        batches: Optional[BatchJobManager] = None,
    ) -> None:
        self.provider = provider
        self.settings = settings
        self.batches = batches
        self.model = resolve_model(settings)
        self.system_prompt = build_system_prompt(
            settings.TARGET_LANGUAGE, settings.EXTRA_SPECIFICATION
        )

    @property
    def batch_mode(self) -> bool:
        return self.batches is not None

    def build_body(self, text: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": text},
            ],
            "temperature": self.settings.TEMPERATURE,
            "top_p": 1,
            "n": 1,
            "presence_penalty": 0,
            "frequency_penalty": 0,
        }

    async def translate_group(self, group: Group) -> TranslationResult:
        return await self.translate_text(render_group(group.segments))

    async def translate_text(self, text: str) -> TranslationResult:
        if self.batches is not None:
            request = self.batches.lookup(text)
            if request is not None:
                return request.result if request.result is not None else QUEUED
            request = self.batches.enqueue(text, self.build_body(text))
            logger.debug("Queued request {} for batching", request.id)
            return QUEUED

        return await self.provider.complete(self.build_body(text))
