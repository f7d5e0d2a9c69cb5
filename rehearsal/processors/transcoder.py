import asyncio
import json
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

import aiofiles
import structlog

from ..core.config import Settings
from ..core.exceptions import ConversionError, ConversionFailed, ConversionNotRequired
from ..core.results import Result
from .format_inspector import CanonicalFormat, file_extension, is_preferred_format

logger = structlog.get_logger(__name__)


@dataclass
class MediaInfo:
    duration_seconds: float
    width: Optional[int] = None
    height: Optional[int] = None
    has_audio: bool = False


class Transcoder:
    """
    Runs FFmpeg and FFprobe over recordings: MP4 conversion, audio extraction
    for transcription and duration probing.

    Every run works in a private temporary directory. Cancelling the task that
    awaits a call kills the child process and removes the directory, so
    nothing half-written outlives the call.
    """
    def __init__(
        self,
        ffmpeg_binary: str = "ffmpeg",
        timeout_seconds: Optional[float] = 300.0,
        work_dir: Optional[str] = None,
        ffprobe_binary: str = "ffprobe",
    ):
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.timeout_seconds = timeout_seconds
        self.work_dir = work_dir

    @classmethod
    def from_settings(cls, settings: Settings) -> "Transcoder":
        return cls(
            ffmpeg_binary=settings.FFMPEG_BINARY,
            ffprobe_binary=settings.FFPROBE_BINARY,
            timeout_seconds=settings.CONVERSION_TIMEOUT_SECONDS,
        )

    def build_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self.ffmpeg_binary,
            "-y",                       # Overwrite output file if exists
            "-i", str(input_path),
            "-c:v", "libx264",          # H.264 video
            "-c:a", "aac",              # AAC audio
            "-movflags", "+faststart",  # Index up front for seeking
            str(output_path),
        ]

    def build_audio_command(self, input_path: Path, output_path: Path) -> List[str]:
        return [
            self.ffmpeg_binary,
            "-y",
            "-i", str(input_path),
            "-vn",                      # No video
            "-acodec", "pcm_s16le",     # PCM 16-bit little-endian
            "-ar", "16000",             # 16 kHz sample rate
            "-ac", "1",                 # Mono channel
            str(output_path),
        ]

    def build_metadata_command(self, input_path: Path) -> List[str]:
        return [
            self.ffprobe_binary,
            "-v", "error",
            "-show_entries", "format=duration:stream=codec_type,width,height",
            "-of", "json",
            str(input_path),
        ]

    async def convert(self, blob: bytes, from_format: CanonicalFormat) -> Result[bytes, ConversionError]:
        """
        Convert a recording to MP4.

        Args:
            blob: Original payload. It is never modified.
            from_format: Format reported by the format inspector

        Returns:
            Result holding the MP4 bytes, or the reason conversion did not happen.
        """
        if is_preferred_format(from_format):
            return Result.failure(ConversionNotRequired(f"Recording is already {from_format.value}"))

        logger.info("conversion_started", from_format=from_format.value, size_bytes=len(blob))
        with self._workspace("rehearsal-convert-") as tmp:
            input_path = await self._write_input(tmp, blob, from_format)
            output_path = tmp / "output.mp4"
            result = await self._run(self.build_command(input_path, output_path))
            if not result.ok:
                return result
            converted = await self._read_output(output_path)

        if not converted:
            return Result.failure(ConversionFailed("FFmpeg produced no output"))
        logger.info("conversion_finished", size_bytes=len(converted))
        return Result.success(converted)

    async def extract_audio(
        self,
        blob: bytes,
        from_format: CanonicalFormat = CanonicalFormat.UNKNOWN,
    ) -> Result[bytes, ConversionError]:
        """Extract the audio track as 16 kHz mono WAV, ready for transcription."""
        logger.info("audio_extraction_started", from_format=from_format.value, size_bytes=len(blob))
        with self._workspace("rehearsal-audio-") as tmp:
            input_path = await self._write_input(tmp, blob, from_format)
            output_path = tmp / "audio.wav"
            result = await self._run(self.build_audio_command(input_path, output_path))
            if not result.ok:
                return result
            audio = await self._read_output(output_path)

        if not audio:
            return Result.failure(ConversionFailed("No audio track could be extracted"))
        logger.info("audio_extraction_finished", size_bytes=len(audio))
        return Result.success(audio)

    async def read_metadata(
        self,
        blob: bytes,
        from_format: CanonicalFormat = CanonicalFormat.UNKNOWN,
    ) -> Result[MediaInfo, ConversionError]:
        """Read duration, frame size and audio presence with FFprobe."""
        with self._workspace("rehearsal-metadata-") as tmp:
            input_path = await self._write_input(tmp, blob, from_format)
            result = await self._run(self.build_metadata_command(input_path))
        if not result.ok:
            return result

        try:
            report = json.loads(result.value.decode("utf-8", errors="ignore") or "{}")
            duration = float(report["format"]["duration"])
        except (ValueError, KeyError, TypeError) as e:
            # MediaRecorder WebM often carries no duration at all
            logger.warning("duration_unavailable", error=str(e))
            return Result.failure(ConversionFailed("FFprobe reported no usable duration"))

        streams = report.get("streams") or []
        video = next((s for s in streams if s.get("codec_type") == "video"), {})
        return Result.success(
            MediaInfo(
                duration_seconds=duration,
                width=video.get("width"),
                height=video.get("height"),
                has_audio=any(s.get("codec_type") == "audio" for s in streams),
            )
        )

    @contextmanager
    def _workspace(self, prefix: str) -> Iterator[Path]:
        with tempfile.TemporaryDirectory(prefix=prefix, dir=self.work_dir) as tmp:
            yield Path(tmp)

    async def _write_input(self, tmp: Path, blob: bytes, from_format: CanonicalFormat) -> Path:
        suffix = file_extension(from_format) if from_format is not CanonicalFormat.UNKNOWN else "bin"
        input_path = tmp / f"input.{suffix}"
        async with aiofiles.open(input_path, "wb") as f:
            await f.write(blob)
        return input_path

    async def _read_output(self, output_path: Path) -> bytes:
        try:
            async with aiofiles.open(output_path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return b""

    async def _run(self, cmd: List[str]) -> Result[bytes, ConversionError]:
        """Run one FFmpeg/FFprobe command and return its stdout."""
        binary = cmd[0]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE
            )
        except OSError as e:
            logger.error("ffmpeg_unavailable", binary=binary, error=str(e))
            return Result.failure(ConversionFailed(f"Could not start {binary}: {e}"))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            await self._terminate(process)
            logger.error("ffmpeg_timed_out", binary=binary, timeout_seconds=self.timeout_seconds)
            return Result.failure(ConversionFailed(f"{Path(binary).name} timed out after {self.timeout_seconds:g}s"))
        except asyncio.CancelledError:
            await self._terminate(process)
            logger.info("ffmpeg_cancelled", binary=binary)
            raise

        if process.returncode != 0:
            error_msg = stderr.decode("utf-8", errors="ignore").strip()
            logger.error("ffmpeg_failed", binary=binary, returncode=process.returncode, stderr=error_msg[-500:])
            return Result.failure(ConversionFailed(f"{Path(binary).name} exited with code {process.returncode}"))
        return Result.success(stdout)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        # Reap the child; shielded so a second cancel cannot leave a zombie
        await asyncio.shield(process.wait())
