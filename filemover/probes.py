"""
Content probers.

Two external tools inspect uploaded files:
- ffprobe (part of ffmpeg) reports audio streams, duration and bitrate
- libmagic (python-magic) reports the real MIME type from magic bytes

Both are wrapped behind small interfaces (AudioProber, ImageSniffer) so the
validators can be exercised with fakes. Every call is bounded by a timeout;
a hung prober is reported as ProbeTimeoutError instead of stalling the batch.
"""

import json
import logging
import mimetypes
import shutil
import subprocess
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Callable, List, Optional, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Executor for bounding blocking in-process probes (libmagic reads)
_probe_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="probe")

# libmagic answers for "no idea"
_UNKNOWN_MIME_TYPES = {"", "application/octet-stream", "inode/x-empty", "application/x-empty"}

# libmagic spellings that differ between versions
_MIME_ALIASES = {"image/x-ms-bmp": "image/bmp", "image/jpg": "image/jpeg"}


class ProbeError(Exception):
    """Base exception for prober failures."""
    pass


class AudioProbeError(ProbeError):
    """Raised when ffprobe fails or its output cannot be parsed."""
    pass


class ProbeTimeoutError(ProbeError):
    """Raised when a prober does not answer within its timeout."""

    def __init__(self, tool: str, timeout: float):
        self.tool = tool
        self.timeout = timeout
        super().__init__(f"{tool} timed out after {timeout:g}s")


class ProbeUnavailableError(ProbeError):
    """Raised when the probing tool itself is not installed."""
    pass


class ProbeStream(BaseModel):
    """One stream as reported by ffprobe."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    codec_type: Optional[str] = None
    codec_name: Optional[str] = None


class AudioProbe(BaseModel):
    """Container level view of an audio file."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    streams: List[ProbeStream] = []
    duration: Optional[float] = None
    bit_rate: Optional[int] = None

    @property
    def audio_streams(self) -> List[ProbeStream]:
        return [s for s in self.streams if s.codec_type == "audio"]


class SniffResult(BaseModel):
    """True file type detected from magic bytes."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    mime: str
    ext: Optional[str] = None


class AudioProber(Protocol):
    def probe(self, path: Path) -> AudioProbe: ...


class ImageSniffer(Protocol):
    def sniff(self, path: Path) -> Optional[SniffResult]: ...


def call_with_timeout(func: Callable[[], T], timeout: Optional[float], tool: str) -> T:
    """
    Run a blocking call on the probe executor and wait at most `timeout` seconds.

    The worker thread cannot be interrupted; on timeout it is abandoned and
    finishes in the background.
    """
    if timeout is None:
        return func()
    future = _probe_executor.submit(func)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        raise ProbeTimeoutError(tool, timeout)


def _parse_float(value) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


class FFprobeAudioProber:
    """
    Audio prober backed by the ffprobe executable.

    Runs:
        ffprobe -v error -print_format json -show_format -show_streams <file>
    """

    def __init__(self, ffprobe_path: str = "ffprobe", timeout: Optional[float] = 60.0):
        self.ffprobe_path = ffprobe_path
        self.timeout = timeout

    def is_available(self) -> bool:
        return shutil.which(self.ffprobe_path) is not None

    def probe(self, path: Path) -> AudioProbe:
        """
        Probe stream and container metadata.

        Raises:
            AudioProbeError: If ffprobe exits non-zero or prints invalid JSON
            ProbeTimeoutError: If ffprobe does not finish within the timeout
            ProbeUnavailableError: If the ffprobe executable is missing
        """
        cmd = [
            self.ffprobe_path,
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise ProbeTimeoutError("ffprobe", self.timeout)
        except FileNotFoundError:
            raise ProbeUnavailableError(f"ffprobe not found: {self.ffprobe_path}")
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise AudioProbeError(stderr[:200] or f"ffprobe exited with code {e.returncode}")

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as e:
            raise AudioProbeError(f"Failed to parse ffprobe output: {e}")

        return parse_ffprobe_output(data)


def parse_ffprobe_output(data: dict) -> AudioProbe:
    """Translate ffprobe's JSON document into an AudioProbe."""
    fmt = data.get("format") or {}
    streams = [
        ProbeStream(codec_type=s.get("codec_type"), codec_name=s.get("codec_name"))
        for s in data.get("streams") or []
    ]
    return AudioProbe(
        streams=streams,
        duration=_parse_float(fmt.get("duration")),
        bit_rate=_parse_int(fmt.get("bit_rate")),
    )


class MagicImageSniffer:
    """
    File type sniffer backed by libmagic.

    Only the file header is inspected; the extension is never consulted.
    """

    def __init__(self, timeout: Optional[float] = 60.0):
        self.timeout = timeout

    def is_available(self) -> bool:
        """True when python-magic imports and libmagic can load its database."""
        try:
            import magic
        except ImportError as e:
            logger.debug(f"python-magic unavailable: {e}")
            return False
        try:
            magic.Magic(mime=True)
        except magic.MagicException as e:
            logger.debug(f"libmagic unusable: {e}")
            return False
        return True

    def sniff(self, path: Path) -> Optional[SniffResult]:
        """
        Detect the MIME type of a file.

        Returns:
            SniffResult, or None when libmagic cannot identify the content

        Raises:
            ProbeTimeoutError: If detection does not finish within the timeout
            OSError: If the file cannot be read
        """
        import magic

        mime = call_with_timeout(
            lambda: magic.from_file(str(path), mime=True),
            self.timeout,
            "libmagic",
        )
        mime = (mime or "").strip().lower()
        if mime in _UNKNOWN_MIME_TYPES:
            return None
        mime = _MIME_ALIASES.get(mime, mime)

        ext = mimetypes.guess_extension(mime)
        return SniffResult(mime=mime, ext=ext.lstrip(".") if ext else None)
