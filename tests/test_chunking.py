"""Tests for chunk planning, the FFmpeg chunker and local storage."""

from pathlib import Path

import pytest

from voicedesc.errors import ExternalServiceError, ValidationError
from voicedesc.models.media import VideoSegment
from voicedesc.services.chunking import FFmpegChunker, plan_chunks
from voicedesc.services.storage import LocalMediaStorage


def _make_segments(*bounds: tuple[float, float]) -> list[VideoSegment]:
    return [VideoSegment(start_time=s, end_time=e) for s, e in bounds]


def _assert_covers(windows: list[tuple[float, float]], duration: float) -> None:
    assert windows[0][0] == 0.0
    assert windows[-1][1] == duration
    for (_, prev_end), (start, _) in zip(windows, windows[1:]):
        assert start <= prev_end


class TestPlanChunks:
    def test_fixed_windows_overlap(self) -> None:
        windows = plan_chunks(70.0, max_chunk=30.0, overlap=2.0)
        assert windows == [(0.0, 30.0), (28.0, 58.0), (56.0, 70.0)]

    def test_short_video_is_one_chunk(self) -> None:
        assert plan_chunks(12.0) == [(0.0, 12.0)]

    def test_zero_duration(self) -> None:
        assert plan_chunks(0.0) == []

    def test_overlap_must_be_smaller_than_chunk(self) -> None:
        with pytest.raises(ValidationError):
            plan_chunks(60.0, max_chunk=2.0, overlap=2.0)

    def test_hints_group_scenes_on_cuts(self) -> None:
        hints = _make_segments((0, 10), (10, 20), (20, 35), (35, 50), (50, 60))
        windows = plan_chunks(60.0, max_chunk=30.0, hints=hints)
        assert windows == [(0.0, 20.0), (20.0, 50.0), (50.0, 60.0)]
        _assert_covers(windows, 60.0)

    def test_long_scene_is_split(self) -> None:
        hints = _make_segments((0, 10), (10, 80))
        windows = plan_chunks(80.0, max_chunk=30.0, overlap=2.0, hints=hints)
        assert windows[0] == (0.0, 10.0)
        assert all(end - start <= 30.0 for start, end in windows)
        _assert_covers(windows, 80.0)

    def test_tail_after_last_hint_is_covered(self) -> None:
        hints = _make_segments((0, 20))
        windows = plan_chunks(50.0, max_chunk=30.0, hints=hints)
        _assert_covers(windows, 50.0)

    def test_short_last_window_is_merged(self) -> None:
        hints = _make_segments((0, 20))
        windows = plan_chunks(25.0, max_chunk=30.0, min_chunk=10.0, hints=hints)
        assert windows == [(0.0, 25.0)]

    def test_gap_before_first_hint_is_covered(self) -> None:
        hints = _make_segments((5, 15), (15, 25))
        windows = plan_chunks(25.0, max_chunk=30.0, hints=hints)
        _assert_covers(windows, 25.0)


class TestLocalMediaStorage:
    @pytest.mark.asyncio
    async def test_put_get_exists(self, tmp_path: Path) -> None:
        storage = LocalMediaStorage(tmp_path)
        ref = await storage.put("uploads/a.mp4", b"video")
        assert ref == "uploads/a.mp4"
        assert await storage.exists(ref)
        assert await storage.get(ref) == b"video"

    @pytest.mark.asyncio
    async def test_missing_object(self, tmp_path: Path) -> None:
        storage = LocalMediaStorage(tmp_path)
        assert not await storage.exists("uploads/none.mp4")
        with pytest.raises(ExternalServiceError):
            await storage.get("uploads/none.mp4")

    def test_rejects_escaping_keys(self, tmp_path: Path) -> None:
        storage = LocalMediaStorage(tmp_path / "root")
        with pytest.raises(ValidationError):
            storage.resolve("../outside.mp4")


class TestFFmpegChunker:
    @pytest.mark.asyncio
    async def test_chunk_stores_one_sheet_per_window(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        storage = LocalMediaStorage(tmp_path)
        await storage.put("uploads/clip.mp4", b"video")
        chunker = FFmpegChunker(storage, max_chunk_duration=30.0, overlap=2.0)
        rendered: list[tuple[float, float]] = []

        async def _probe(path: Path) -> float:
            return 70.0

        async def _render(input_path: Path, output_path: Path, start: float, duration: float) -> Path:
            rendered.append((start, duration))
            output_path.write_bytes(f"sheet-{start}".encode())
            return output_path

        monkeypatch.setattr(chunker, "probe_duration", _probe)
        monkeypatch.setattr(chunker, "render_contact_sheet", _render)

        chunks = await chunker.chunk("uploads/clip.mp4")

        assert [c.chunk_id for c in chunks] == ["chunk_000", "chunk_001", "chunk_002"]
        assert chunks[1].start_time == 28.0
        assert chunks[0].ref == "chunks/clip/chunk_000.jpg"
        assert await storage.exists(chunks[2].ref)
        assert len({c.content_hash for c in chunks}) == 3
        assert rendered[0] == (0.0, 30.0)
