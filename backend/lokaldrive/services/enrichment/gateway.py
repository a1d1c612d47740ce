"""Enrichment gateway: AI description/tags for file records.

Every enrichment ends with the record marked enriched. When the provider is
missing, fails, times out or answers with nothing usable, local fallback
metadata is written instead, so a file is never left waiting for analysis.
"""
import asyncio
import logging
from typing import Any, Optional, Protocol

from lokaldrive.errors import EnrichmentUnavailable, RecordNotFoundError
from lokaldrive.schemas.file import EnrichmentResult, FileCategory, FileRecord, FileUpdate
from lokaldrive.services.enrichment.llm_base import BaseLLMProvider
from lokaldrive.services.metadata_index import MetadataIndex

logger = logging.getLogger(__name__)

MAX_TAGS = 10
MAX_TAG_LENGTH = 40

ENRICHMENT_SCHEMA = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["description", "tags"],
}

ENRICHMENT_PROMPT = """Analyze this filename: "{name}" and file type: "{category}".
Provide a short, professional 1-sentence description of what this file likely contains.
Also provide 3 short relevant tags."""


class MetadataEnricher(Protocol):
    async def analyze(self, name: str, category: FileCategory) -> EnrichmentResult:
        ...


class LLMMetadataEnricher:
    """Asks an LLM provider for a description and tags, as structured JSON."""

    def __init__(self, provider: BaseLLMProvider):
        self.provider = provider

    async def analyze(self, name: str, category: FileCategory) -> EnrichmentResult:
        prompt = ENRICHMENT_PROMPT.format(name=name, category=category.value)
        data = await self.provider.generate_json(prompt, json_schema=ENRICHMENT_SCHEMA)
        return EnrichmentResult.model_validate(data)


def offline_fallback(record: FileRecord) -> EnrichmentResult:
    """Used when no provider is configured."""
    return EnrichmentResult(
        description=f"Auto-generated description for {record.name}. (AI unavailable)",
        tags=["local", record.type.value, "offline"],
    )


def failure_fallback(record: FileRecord) -> EnrichmentResult:
    """Used when the provider errored, timed out or returned nothing usable."""
    return EnrichmentResult(description="Analysis failed or timed out.", tags=["error", "manual-review"])


def sanitize_result(result: Any) -> Optional[EnrichmentResult]:
    """Trim the description and normalize tags: non-empty, deduplicated in order,
    at most MAX_TAGS of at most MAX_TAG_LENGTH chars. None if there is no description."""
    if not isinstance(result, EnrichmentResult):
        return None
    description = result.description.strip()
    if not description:
        return None

    tags: list[str] = []
    seen: set[str] = set()
    for tag in result.tags:
        tag = tag.strip()[:MAX_TAG_LENGTH].strip()
        if not tag or tag.lower() in seen:
            continue
        seen.add(tag.lower())
        tags.append(tag)
        if len(tags) == MAX_TAGS:
            break
    return EnrichmentResult(description=description, tags=tags)


class EnrichmentGateway:
    """Runs enrichment for file records and writes the outcome through the index.

    At most one enrichment per file id runs at a time; a request for an id
    that is already being enriched waits for that run and gets its result.
    """

    def __init__(self, index: MetadataIndex, enricher: Optional[MetadataEnricher], timeout: float):
        self.index = index
        self.enricher = enricher
        self.timeout = timeout
        self._in_flight: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()

    def in_flight(self, file_id: str) -> bool:
        return file_id in self._in_flight

    async def enrich(self, file_id: str) -> FileRecord:
        """Enrich one record and return it updated.

        Raises RecordNotFoundError if the file does not exist or is deleted
        before the result is written. Provider problems never surface here.
        """
        task = self._in_flight.get(file_id)
        if task is None:
            task = asyncio.create_task(self._enrich(file_id), name=f"enrich-{file_id}")
            self._in_flight[file_id] = task
            task.add_done_callback(lambda t: self._forget(file_id, t))
        else:
            logger.info("Enrichment already running for %s, joining it", file_id)
        # A disconnecting caller must not cancel a run other callers share
        return await asyncio.shield(task)

    def _forget(self, file_id: str, task: asyncio.Task) -> None:
        if self._in_flight.get(file_id) is task:
            del self._in_flight[file_id]
        # Every waiter may have been cancelled; mark the outcome as retrieved
        if not task.cancelled():
            task.exception()

    async def _enrich(self, file_id: str) -> FileRecord:
        record = await self.index.get(file_id)
        try:
            result = await self._analyze(record)
        except EnrichmentUnavailable as e:
            logger.warning("Enrichment unavailable for %s (%s), using fallback: %s", record.name, file_id, e)
            result = offline_fallback(record) if self.enricher is None else failure_fallback(record)

        updated = await self.index.update(
            file_id, FileUpdate(description=result.description, tags=result.tags, enriched=True)
        )
        logger.info("Enriched %s (%s) with %d tag(s)", record.name, file_id, len(updated.tags))
        return updated

    async def _analyze(self, record: FileRecord) -> EnrichmentResult:
        if self.enricher is None:
            raise EnrichmentUnavailable("No enrichment provider configured")
        try:
            raw = await asyncio.wait_for(
                self.enricher.analyze(record.name, record.type), timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise EnrichmentUnavailable(f"Enrichment timed out after {self.timeout}s") from e
        except Exception as e:
            raise EnrichmentUnavailable(f"{type(e).__name__}: {e}") from e

        result = sanitize_result(raw)
        if result is None:
            raise EnrichmentUnavailable("Enrichment returned no usable description")
        return result

    def schedule(self, record: FileRecord) -> Optional[asyncio.Task]:
        """Start enrichment in the background without waiting for it.

        Returns the task, or None when the record is already enriched.
        """
        if record.enriched:
            return None
        task = asyncio.create_task(self._run_background(record.id), name=f"auto-enrich-{record.id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_background(self, file_id: str) -> None:
        try:
            await self.enrich(file_id)
        except RecordNotFoundError:
            logger.info("File %s was deleted before background enrichment finished", file_id)
        except Exception:
            logger.exception("Background enrichment failed for %s", file_id)

    async def aclose(self) -> None:
        """Cancel outstanding enrichment on shutdown."""
        tasks = [*self._background, *self._in_flight.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
