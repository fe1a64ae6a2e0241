"""Video chunking: window planning and an FFmpeg-backed chunker."""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
import tempfile
from pathlib import Path, PurePosixPath

from voicedesc.config import Settings
from voicedesc.errors import ExternalServiceError, ValidationError
from voicedesc.models.media import Chunk, VideoSegment
from voicedesc.services.cache.keys import fingerprint_bytes
from voicedesc.services.storage import LocalMediaStorage

logger = logging.getLogger(__name__)

# Frames sampled per chunk and tiled into one contact-sheet image.
FRAMES_PER_CHUNK = 4


def plan_chunks(
    duration: float,
    max_chunk: float = 30.0,
    min_chunk: float = 10.0,
    overlap: float = 2.0,
    hints: list[VideoSegment] | None = None,
) -> list[tuple[float, float]]:
    """Plan ``(start, end)`` windows covering ``[0, duration]``.

    Without hints the video is cut into fixed windows of ``max_chunk``
    seconds, each starting ``overlap`` seconds before the previous one
    ended. With scene hints, consecutive scenes are grouped so that chunk
    boundaries fall on scene cuts; a scene longer than ``max_chunk`` is
    split into fixed windows and a trailing group shorter than
    ``min_chunk`` is folded into its predecessor when the merge still
    fits in ``max_chunk``.
    """
    if duration <= 0:
        return []
    if max_chunk <= 0 or overlap >= max_chunk:
        raise ValidationError("max_chunk must be positive and larger than overlap")

    if not hints:
        return _fixed_windows(0.0, duration, max_chunk, overlap)

    windows: list[tuple[float, float]] = []
    group_start: float | None = None
    # Windows are contiguous from 0; gaps between hints join the next scene.
    cursor = 0.0
    for segment in sorted(hints, key=lambda s: s.start_time):
        end = min(segment.end_time, duration)
        if end <= cursor:
            continue
        if end - cursor > max_chunk:
            if group_start is not None:
                windows.append((group_start, cursor))
                group_start = None
            windows.extend(_fixed_windows(cursor, end, max_chunk, overlap))
            cursor = end
            continue
        if group_start is None:
            group_start = cursor
        elif end - group_start > max_chunk:
            windows.append((group_start, cursor))
            group_start = cursor
        cursor = end

    if group_start is not None:
        windows.append((group_start, cursor))
    if cursor < duration:
        windows.extend(_fixed_windows(cursor, duration, max_chunk, overlap))

    if len(windows) > 1:
        last_start, last_end = windows[-1]
        prev_start, _ = windows[-2]
        if last_end - last_start < min_chunk and last_end - prev_start <= max_chunk:
            windows[-2:] = [(prev_start, last_end)]
    return windows


def _fixed_windows(start: float, end: float, size: float, overlap: float) -> list[tuple[float, float]]:
    windows = []
    current = start
    while current < end:
        window_end = min(current + size, end)
        windows.append((current, window_end))
        if window_end >= end:
            break
        current = window_end - overlap
    return windows


class FFmpegChunker:
    """Renders each planned window as a tiled keyframe image.

    Each chunk becomes a single JPEG contact sheet of evenly spaced frames,
    which is the form the multimodal backend accepts.
    """

    def __init__(
        self,
        storage: LocalMediaStorage,
        max_chunk_duration: float = 30.0,
        min_chunk_duration: float = 10.0,
        overlap: float = 2.0,
        work_dir: Path | None = None,
    ) -> None:
        self.storage = storage
        self.max_chunk_duration = max_chunk_duration
        self.min_chunk_duration = min_chunk_duration
        self.overlap = overlap
        self.work_dir = work_dir

    @classmethod
    def from_settings(cls, storage: LocalMediaStorage, settings: Settings) -> FFmpegChunker:
        return cls(
            storage,
            max_chunk_duration=settings.chunk_max_duration_seconds,
            min_chunk_duration=settings.chunk_min_duration_seconds,
            overlap=settings.chunk_overlap_seconds,
            work_dir=settings.work_dir,
        )

    async def chunk(
        self,
        ref: str,
        hints: list[VideoSegment] | None = None,
        max_chunk_duration: float | None = None,
    ) -> list[Chunk]:
        source = self.storage.resolve(ref)
        duration = await self.probe_duration(source)
        windows = plan_chunks(
            duration,
            max_chunk=max_chunk_duration or self.max_chunk_duration,
            min_chunk=self.min_chunk_duration,
            overlap=self.overlap,
            hints=hints,
        )
        logger.info("Chunking %s (%.1fs) into %d chunk(s)", ref, duration, len(windows))

        stem = PurePosixPath(ref).stem
        chunks = []
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="voicedesc_chunks_", dir=self.work_dir) as tmp:
            for index, (start, end) in enumerate(windows):
                frame_path = Path(tmp) / f"chunk_{index:03d}.jpg"
                await self.render_contact_sheet(source, frame_path, start, end - start)
                data = frame_path.read_bytes()
                chunk_ref = await self.storage.put(
                    f"chunks/{stem}/chunk_{index:03d}.jpg", data, content_type="image/jpeg"
                )
                chunks.append(
                    Chunk(
                        chunk_id=f"chunk_{index:03d}",
                        index=index,
                        ref=chunk_ref,
                        start_time=start,
                        end_time=end,
                        content_hash=fingerprint_bytes(data),
                        size=len(data),
                    )
                )
        return chunks

    async def probe_duration(self, path: Path) -> float:
        cmd = [
            "ffprobe",
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            str(path),
        ]
        result = await asyncio.to_thread(subprocess.run, cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise ExternalServiceError(f"ffprobe failed: {result.stderr}", service="ffprobe")
        data = json.loads(result.stdout)
        return float(data.get("format", {}).get("duration", 0))

    async def render_contact_sheet(
        self,
        input_path: Path,
        output_path: Path,
        start: float,
        duration: float,
    ) -> Path:
        rate = FRAMES_PER_CHUNK / max(duration, 0.001)
        cmd = [
            "ffmpeg",
            "-y",
            "-ss", f"{start:.3f}",
            "-t", f"{duration:.3f}",
            "-i", str(input_path),
            "-vf", f"fps={rate:.4f},scale=640:-2,tile=2x2",
            "-frames:v", "1",
            "-q:v", "3",
            str(output_path),
        ]
        result = await asyncio.to_thread(subprocess.run, cmd, capture_output=True, text=True)
        if result.returncode != 0:
            raise ExternalServiceError(f"ffmpeg failed: {result.stderr}", service="ffmpeg")
        return output_path
