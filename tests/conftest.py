"""Shared fakes for the external collaborators."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from voicedesc.config import Settings
from voicedesc.errors import ExternalServiceError
from voicedesc.models.media import AnalysisResponse, Chunk, VideoSegment, VisionAnalysis

CHUNK_RESPONSE = json.dumps(
    {
        "description": "A person walks through a sunny park.",
        "visual_elements": ["person", "park"],
        "actions": ["walking"],
        "context": "outdoor park scene in daylight",
        "confidence": 0.9,
    }
)


class FakeStorage:
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        self.objects[key] = data
        return key

    async def get(self, ref: str) -> bytes:
        if ref not in self.objects:
            raise ExternalServiceError(f"Object not found: {ref}", service="storage")
        return self.objects[ref]

    async def exists(self, ref: str) -> bool:
        return ref in self.objects


class FakeSegmentation:
    def __init__(
        self,
        segments: list[VideoSegment] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.segments = (
            segments
            if segments is not None
            else [
                VideoSegment(start_time=0.0, end_time=10.0),
                VideoSegment(start_time=10.0, end_time=20.0),
                VideoSegment(start_time=20.0, end_time=30.0),
            ]
        )
        self.error = error
        self.delay = delay
        self.calls: list[str] = []
        self.active = 0
        self.peak = 0

    async def segment(self, ref: str) -> list[VideoSegment]:
        self.calls.append(ref)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return list(self.segments)
        finally:
            self.active -= 1


class FakeChunker:
    def __init__(self, count: int = 3, duration: float = 10.0, error: Exception | None = None) -> None:
        self.count = count
        self.duration = duration
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def chunk(
        self,
        ref: str,
        hints: list[VideoSegment] | None = None,
        max_chunk_duration: float | None = None,
    ) -> list[Chunk]:
        self.calls.append({"ref": ref, "hints": hints, "max_chunk_duration": max_chunk_duration})
        if self.error is not None:
            raise self.error
        return [
            Chunk(
                chunk_id=f"chunk_{i:03d}",
                index=i,
                ref=f"chunks/chunk_{i:03d}.jpg",
                start_time=i * self.duration,
                end_time=(i + 1) * self.duration,
                content_hash=f"{ref}#{i}",
                size=1024,
            )
            for i in range(self.count)
        ]


class FakeVision:
    def __init__(
        self,
        text: str = "A person walks through a sunny park.",
        labels: tuple[str, ...] = ("person", "park"),
        confidence: float = 0.9,
        error: Exception | None = None,
    ) -> None:
        self.text = text
        self.labels = list(labels)
        self.confidence = confidence
        self.error = error
        self.calls: list[str] = []

    async def analyze(self, ref: str, options: dict[str, Any] | None = None) -> VisionAnalysis:
        self.calls.append(ref)
        if self.error is not None:
            raise self.error
        return VisionAnalysis(text=self.text, confidence=self.confidence, labels=self.labels)


class FakeMeteredBackend:
    def __init__(
        self,
        text: str = CHUNK_RESPONSE,
        prompt_tokens: int = 400,
        completion_tokens: int = 200,
        fail_refs: set[str] | None = None,
        fail_all: bool = False,
        crash_refs: set[str] | None = None,
    ) -> None:
        self.text = text
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.fail_refs = fail_refs or set()
        self.fail_all = fail_all
        self.crash_refs = crash_refs or set()
        self.calls: list[tuple[str, str, str]] = []

    async def analyze(self, ref: str, prompt: str, model: str) -> AnalysisResponse:
        self.calls.append((ref, prompt, model))
        if self.fail_all or ref in self.fail_refs:
            raise ExternalServiceError(f"analysis failed for {ref}", service="llm")
        if ref in self.crash_refs:
            raise RuntimeError(f"backend crashed on {ref}")
        return AnalysisResponse(
            text=self.text,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            model=model,
        )


class FakeSpeech:
    def __init__(self, audio: bytes = b"ID3-fake-mp3", error: Exception | None = None) -> None:
        self.audio = audio
        self.error = error
        self.calls: list[str] = []

    async def synthesize(self, text: str, voice: str | None = None) -> bytes:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.audio


class FakePersistentStore:
    def __init__(self, fail_reads: bool = False, fail_writes: bool = False) -> None:
        self.data: dict[str, dict[str, Any]] = {}
        self.fail_reads = fail_reads
        self.fail_writes = fail_writes
        self.ttls: dict[str, int] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        if self.fail_reads:
            raise ExternalServiceError("read failed", service="redis")
        return self.data.get(key)

    async def put(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        if self.fail_writes:
            raise ExternalServiceError("write failed", service="redis")
        self.data[key] = value
        self.ttls[key] = ttl_seconds


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        llm_requests_per_minute=100000,
        llm_tokens_per_minute=100000000,
        external_call_timeout_seconds=5.0,
    )


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def segmentation() -> FakeSegmentation:
    return FakeSegmentation()


@pytest.fixture
def chunker() -> FakeChunker:
    return FakeChunker()


@pytest.fixture
def vision() -> FakeVision:
    return FakeVision()


@pytest.fixture
def metered_backend() -> FakeMeteredBackend:
    return FakeMeteredBackend()


@pytest.fixture
def speech() -> FakeSpeech:
    return FakeSpeech()
