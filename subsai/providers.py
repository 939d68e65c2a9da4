"""Translation endpoint adapters."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from loguru import logger
from openai import AsyncAzureOpenAI, AsyncOpenAI, OpenAIError

from .configuration import SubsAIConfig
from .errors import (
    EndpointError,
    JobPollError,
    JobSubmissionError,
    TranslationProviderConfigurationError,
)

CHAT_COMPLETIONS_URL = "/v1/chat/completions"
COMPLETION_WINDOW = "24h"


@dataclass
class RemoteBatch:
    """The fields of a remote batch that the job manager acts on."""

    id: str
    status: str
    output_file_id: Optional[str] = None
    error_file_id: Optional[str] = None


class TranslationProvider(ABC):
    """Abstract adapter for translation endpoints."""

    @abstractmethod
    async def complete(self, body: Dict[str, Any]) -> str:
        """Run one chat completion and return the assistant text."""

    @abstractmethod
    async def create_batch(self, lines: Sequence[Dict[str, Any]]) -> RemoteBatch:
        """Upload request lines and start a remote batch over them."""

    @abstractmethod
    async def retrieve_batch(self, batch_id: str) -> RemoteBatch:
        """Fetch the current state of a remote batch."""

    @abstractmethod
    async def file_text(self, file_id: str) -> str:
        """Download a results or error artifact as text."""


class EchoTranslationProvider(TranslationProvider):
    """A provider that returns the original text (useful for testing)."""

    def __init__(self) -> None:
        # batch id -> output file id
        self._batches: Dict[str, str] = {}
        self._files: Dict[str, str] = {}

    def reply(self, text: str) -> str:
        return text

    async def complete(self, body: Dict[str, Any]) -> str:
        return self.reply(body["messages"][-1]["content"])

    async def create_batch(self, lines: Sequence[Dict[str, Any]]) -> RemoteBatch:
        batch_id = f"batch_echo_{len(self._batches) + 1}"
        output_id = f"file_echo_{len(self._files) + 1}"
        self._batches[batch_id] = output_id
        self._files[output_id] = "\n".join(
            json.dumps(
                {
                    "custom_id": line["custom_id"],
                    "response": {
                        "status_code": 200,
                        "body": {
                            "choices": [
                                {
                                    "message": {
                                        "role": "assistant",
                                        "content": self.reply(
                                            line["body"]["messages"][-1]["content"]
                                        ),
                                    },
                                    "finish_reason": "stop",
                                }
                            ]
                        },
                    },
                },
                ensure_ascii=False,
            )
            for line in lines
        )
        return RemoteBatch(id=batch_id, status="validating", output_file_id=output_id)

    async def retrieve_batch(self, batch_id: str) -> RemoteBatch:
        if batch_id not in self._batches:
            raise JobPollError(f"Unknown batch '{batch_id}'.")
        return RemoteBatch(
            id=batch_id,
            status="completed",
            output_file_id=self._batches[batch_id],
        )

    async def file_text(self, file_id: str) -> str:
        try:
            return self._files[file_id]
        except KeyError as exc:
            raise JobPollError(f"Unknown file '{file_id}'.") from exc


class OpenAITranslationProvider(TranslationProvider):
    """Translation provider that uses OpenAI chat models and the Batch API."""

    def __init__(self, settings: SubsAIConfig) -> None:
        self.settings = settings
        self.provider_kind = settings.LLM_PROVIDER
        self._client = self._build_client()

    def _build_client(self) -> Any:
        if self.provider_kind == "azure_openai":
            return self._build_azure_client()

        return self._build_openai_client()

    def _build_openai_client(self) -> Any:
        if not self.settings.OPENAI_API_KEY:
            raise TranslationProviderConfigurationError(
                "OpenAI configuration missing. Set OPENAI_API_KEY or choose a "
                "different provider."
            )
        return AsyncOpenAI(api_key=self.settings.OPENAI_API_KEY)

    def _build_azure_client(self) -> Any:
        settings = self.settings
        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": settings.AZURE_OPENAI_API_KEY,
                "AZURE_OPENAI_ENDPOINT": settings.AZURE_OPENAI_ENDPOINT,
                "AZURE_OPENAI_API_VERSION": settings.AZURE_OPENAI_API_VERSION,
            }.items()
            if not value
        ]
        if missing:
            raise TranslationProviderConfigurationError(
                "Azure OpenAI configuration incomplete. Please set: "
                + ", ".join(missing)
                + "."
            )

        return AsyncAzureOpenAI(
            api_key=settings.AZURE_OPENAI_API_KEY,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,  # type: ignore[arg-type]
        )

    async def complete(self, body: Dict[str, Any]) -> str:
        logger.debug("provider.request.payload: {}", _dump(body))
        try:
            response = await self._client.chat.completions.create(**body)
        except OpenAIError as exc:
            raise EndpointError(
                f"Translation service temporarily unavailable: {exc}"
            ) from exc
        logger.debug("provider.response.raw: {}", self._safe_dump_response(response))

        if not response.choices:
            raise EndpointError("Translation provider returned no choices.")
        choice = response.choices[0]
        if choice.finish_reason != "stop":
            raise EndpointError(
                f"Failed to translate, translation stopped: {choice.finish_reason}"
            )
        return choice.message.content or ""

    async def create_batch(self, lines: Sequence[Dict[str, Any]]) -> RemoteBatch:
        payload = "\n".join(json.dumps(line, ensure_ascii=False) for line in lines)
        try:
            upload = await self._client.files.create(
                file=("subsai-batch.jsonl", payload.encode("utf-8")),
                purpose="batch",
            )
            batch = await self._client.batches.create(
                input_file_id=upload.id,
                endpoint=CHAT_COMPLETIONS_URL,
                completion_window=COMPLETION_WINDOW,
            )
        except OpenAIError as exc:
            raise JobSubmissionError(f"Could not create batch job: {exc}") from exc
        return self._to_remote(batch)

    async def retrieve_batch(self, batch_id: str) -> RemoteBatch:
        try:
            batch = await self._client.batches.retrieve(batch_id)
        except OpenAIError as exc:
            raise JobPollError(f"Could not retrieve batch job {batch_id}: {exc}") from exc
        return self._to_remote(batch)

    async def file_text(self, file_id: str) -> str:
        try:
            content = await self._client.files.content(file_id)
        except OpenAIError as exc:
            raise JobPollError(f"Could not download file {file_id}: {exc}") from exc
        return content.text

    @staticmethod
    def _to_remote(batch: Any) -> RemoteBatch:
        return RemoteBatch(
            id=batch.id,
            status=batch.status,
            output_file_id=getattr(batch, "output_file_id", None),
            error_file_id=getattr(batch, "error_file_id", None),
        )

    def _safe_dump_response(self, response: Any) -> Any:
        """Best-effort conversion of SDK objects into JSON-friendly data."""

        dump = getattr(response, "model_dump", None)
        if dump is not None:
            try:
                return _dump(dump())
            except (TypeError, ValueError):
                pass
        return str(response)


def _dump(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=str)


def build_provider(settings: SubsAIConfig) -> TranslationProvider:
    """Factory to create providers from the configured name."""

    if settings.LLM_PROVIDER in {"openai", "azure_openai"}:
        return OpenAITranslationProvider(settings)
    if settings.LLM_PROVIDER == "echo":
        return EchoTranslationProvider()
    raise TranslationProviderConfigurationError(
        f"Unknown translation provider '{settings.LLM_PROVIDER}'."
    )
