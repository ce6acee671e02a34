"""
Video transcoding service

Probes uploads with ffprobe and converts them with ffmpeg into the exact
vertical frame each platform expects: scale to cover the target box, then
center-crop to it, so the output never carries padding.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from dualcast.core.config import settings
from dualcast.services.video_processing.platform_specs import PlatformSpec

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

_TIME_PATTERN = re.compile(r"time=(\d{2}):(\d{2}):(\d{2}\.\d{2})")
COMMON_VIDEO_CODECS = {"h264", "hevc", "vp8", "vp9"}
MIN_WIDTH = 640
MIN_HEIGHT = 480


class TranscodeError(Exception):
    """Raised when probing or converting a video fails"""
    def __init__(self, message: str, platform: str = "", original_error: Exception = None):
        self.message = message
        self.platform = platform
        self.original_error = original_error
        super().__init__(self.message)


class VideoValidationError(TranscodeError):
    """Raised when an upload cannot be processed at all"""
    pass


@dataclass
class VideoProbe:
    width: int
    height: int
    duration: float
    codec: str
    fps: int = 0
    size: int = 0
    audio_codec: Optional[str] = None

    @property
    def is_vertical(self) -> bool:
        return self.height > self.width

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass
class ValidationResult:
    probe: VideoProbe
    warnings: List[str] = field(default_factory=list)


def parse_fps(value: Optional[str]) -> int:
    if not value:
        return 0
    num, _, den = value.partition("/")
    try:
        denominator = float(den or 1)
        return round(float(num) / denominator) if denominator else 0
    except ValueError:
        return 0


def parse_progress_time(text: str) -> Optional[float]:
    """Seconds of output written, from the last ffmpeg `time=` marker in text"""
    matches = _TIME_PATTERN.findall(text)
    if not matches:
        return None
    hours, minutes, seconds = matches[-1]
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def build_filter_chain(spec: PlatformSpec) -> str:
    w, h = spec.width, spec.height
    return f"scale={w}:{h}:force_original_aspect_ratio=increase,crop={w}:{h},setsar=1"


def _double_bitrate(bitrate: str) -> str:
    match = re.fullmatch(r"(\d+)([kKmM]?)", bitrate.strip())
    if not match:
        return bitrate
    return f"{int(match.group(1)) * 2}{match.group(2)}"


class VideoTranscoder:
    """Service for converting uploads into platform-ready renditions"""

    def __init__(self, ffmpeg_path: str = None, ffprobe_path: str = None):
        self.ffmpeg_path = ffmpeg_path or settings.FFMPEG_PATH
        self.ffprobe_path = ffprobe_path or settings.FFPROBE_PATH

    async def probe(self, video_path) -> VideoProbe:
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(video_path),
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscodeError(f"ffprobe not found at {self.ffprobe_path}", original_error=e)
        except OSError as e:
            raise TranscodeError(f"Could not run ffprobe: {e}", original_error=e)

        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            raise TranscodeError(f"ffprobe failed: {stderr.decode(errors='replace').strip()}")

        try:
            metadata = json.loads(stdout.decode())
        except ValueError as e:
            raise TranscodeError(f"Failed to parse ffprobe output: {e}", original_error=e)

        streams = metadata.get("streams", [])
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
        if not video_stream:
            raise VideoValidationError("No video stream found")

        format_info = metadata.get("format", {})
        duration = float(format_info.get("duration") or video_stream.get("duration") or 0)
        size = int(format_info.get("size") or 0)
        if not size and os.path.exists(video_path):
            size = os.path.getsize(video_path)

        return VideoProbe(
            width=int(video_stream.get("width", 0)),
            height=int(video_stream.get("height", 0)),
            duration=duration,
            codec=video_stream.get("codec_name", "unknown"),
            fps=parse_fps(video_stream.get("r_frame_rate")),
            size=size,
            audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        )

    async def validate(self, video_path) -> ValidationResult:
        """Reject uploads that cannot be published; collect soft warnings for the rest"""
        probe = await self.probe(video_path)
        max_bytes = settings.MAX_VIDEO_SIZE_MB * 1024 * 1024

        if probe.size > max_bytes:
            raise VideoValidationError(
                f"Video is {probe.size / (1024 * 1024):.1f}MB, maximum is {settings.MAX_VIDEO_SIZE_MB}MB"
            )
        if probe.duration < settings.MIN_VIDEO_DURATION_SECONDS:
            raise VideoValidationError(
                f"Video duration is too short (minimum {settings.MIN_VIDEO_DURATION_SECONDS:g} second)"
            )

        warnings = []
        if probe.duration > settings.LONG_VIDEO_WARNING_SECONDS:
            warnings.append("Video duration exceeds 1 hour, may not be suitable for all platforms")
        if probe.width < MIN_WIDTH or probe.height < MIN_HEIGHT:
            warnings.append(f"Low resolution video ({probe.resolution}), output may look soft")
        if probe.codec not in COMMON_VIDEO_CODECS:
            warnings.append(f"Video codec {probe.codec} may need conversion")

        for warning in warnings:
            logger.warning(f"{video_path}: {warning}")
        return ValidationResult(probe=probe, warnings=warnings)

    def build_command(self, source_path, output_path, spec: PlatformSpec) -> List[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-y",
            "-i", str(source_path),
            "-vf", build_filter_chain(spec),
            "-c:v", spec.video_codec,
            "-preset", settings.FFMPEG_PRESET,
            "-crf", str(settings.FFMPEG_CRF),
            "-maxrate", spec.video_bitrate,
            "-bufsize", _double_bitrate(spec.video_bitrate),
            "-c:a", spec.audio_codec,
            "-b:a", spec.audio_bitrate,
            "-pix_fmt", spec.pixel_format,
            "-movflags", "+faststart",
            str(output_path),
        ]

    def default_output_path(self, source_path, spec: PlatformSpec) -> Path:
        output_dir = Path(settings.PROCESSED_DIR)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TranscodeError(f"Cannot create output directory {output_dir}: {e}", spec.name, e)
        return output_dir / f"{Path(source_path).stem}_{spec.name}.mp4"

    async def convert(
        self,
        source_path,
        spec: PlatformSpec,
        output_path=None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Convert a source video to the platform's exact target frame

        Args:
            source_path: Path to the original upload
            spec: Platform target
            output_path: Where to write the rendition (defaults under PROCESSED_DIR)
            on_progress: Called with an increasing integer percentage

        Returns:
            Path of the verified output file
        """
        output_path = Path(output_path) if output_path else self.default_output_path(source_path, spec)
        source = await self.probe(source_path)
        logger.info(
            f"Transcoding {source_path} ({source.resolution}, {source.duration:.1f}s) "
            f"to {spec.name} {spec.resolution}"
        )
        if source.duration > spec.max_duration:
            logger.warning(
                f"{source_path} is {source.duration:.1f}s, longer than the {spec.max_duration:g}s "
                f"{spec.name} limit; the platform may reject or reclassify it"
            )

        cmd = self.build_command(source_path, output_path, spec)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TranscodeError(f"ffmpeg not found at {self.ffmpeg_path}", spec.name, e)
        except OSError as e:
            raise TranscodeError(f"Could not run ffmpeg: {e}", spec.name, e)

        try:
            stderr_tail = await self._consume_progress(process.stderr, source.duration, on_progress)
            returncode = await process.wait()
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if returncode != 0:
            logger.error(f"ffmpeg failed for {spec.name}: {stderr_tail[-1000:]}")
            raise TranscodeError(f"ffmpeg conversion failed with code {returncode}", spec.name)

        output = await self.probe(output_path)
        if output.width != spec.width or output.height != spec.height:
            raise TranscodeError(
                f"Output video is not exactly {spec.resolution}, got {output.resolution}",
                spec.name,
            )

        if on_progress:
            on_progress(100)
        logger.info(f"Transcoded {spec.name} rendition verified at {output.resolution}: {output_path}")
        return str(output_path)

    async def _consume_progress(
        self,
        stream: asyncio.StreamReader,
        duration: float,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        """Read ffmpeg stderr, report progress, return the tail for error messages"""
        tail = ""
        last_reported = -1
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            # Keep enough history that a time= marker split across reads still matches
            tail = (tail + chunk.decode(errors="replace"))[-4000:]
            if not on_progress or duration <= 0:
                continue
            elapsed = parse_progress_time(tail[-512:])
            if elapsed is None:
                continue
            percentage = min(int(round(elapsed / duration * 100)), 100)
            if percentage > last_reported:
                last_reported = percentage
                on_progress(percentage)
        return tail

    async def check_available(self) -> bool:
        """Check that ffmpeg can be executed"""
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path, "-version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return False
        return await process.wait() == 0


_transcoder: Optional[VideoTranscoder] = None


def get_transcoder() -> VideoTranscoder:
    """Get global transcoder instance"""
    global _transcoder
    if _transcoder is None:
        _transcoder = VideoTranscoder()
    return _transcoder
