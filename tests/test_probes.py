"""
Tests for the ffprobe and libmagic wrappers.

subprocess.run and magic.from_file are mocked; the e2e tests at the bottom
run the real ffprobe binary and skip when it is not installed.
"""

import json
import shutil
import subprocess
import sys
import threading
import wave
from pathlib import Path
from unittest import mock

import pytest

from filemover.probes import (
    AudioProbeError,
    FFprobeAudioProber,
    MagicImageSniffer,
    ProbeTimeoutError,
    ProbeUnavailableError,
    call_with_timeout,
    parse_ffprobe_output,
)
from filemover.validators import AudioValidator


FFPROBE_OUTPUT = {
    "streams": [
        {"index": 0, "codec_type": "audio", "codec_name": "flac", "sample_rate": "44100"},
        {"index": 1, "codec_type": "video", "codec_name": "mjpeg"},
    ],
    "format": {"duration": "241.573000", "bit_rate": "912345", "format_name": "flac"},
}


# -----------------------------------------------------------------------------
# ffprobe output parsing
# -----------------------------------------------------------------------------

class TestParseFfprobeOutput:
    """Tests for parse_ffprobe_output()."""

    def test_parses_streams_and_format(self):
        probe = parse_ffprobe_output(FFPROBE_OUTPUT)

        assert probe.duration == pytest.approx(241.573)
        assert probe.bit_rate == 912345
        assert len(probe.streams) == 2
        assert [s.codec_name for s in probe.audio_streams] == ["flac"]

    def test_missing_sections(self):
        probe = parse_ffprobe_output({})

        assert probe.streams == []
        assert probe.duration is None
        assert probe.bit_rate is None

    def test_unparseable_numbers(self):
        probe = parse_ffprobe_output({"format": {"duration": "N/A", "bit_rate": "N/A"}})

        assert probe.duration is None
        assert probe.bit_rate is None


# -----------------------------------------------------------------------------
# FFprobeAudioProber
# -----------------------------------------------------------------------------

class TestFFprobeAudioProber:
    """Tests for FFprobeAudioProber with subprocess mocked."""

    def test_probe_runs_ffprobe(self, tmp_path):
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=json.dumps(FFPROBE_OUTPUT))

        with mock.patch("filemover.probes.subprocess.run", return_value=completed) as run:
            probe = FFprobeAudioProber(ffprobe_path="/opt/ffmpeg/ffprobe", timeout=5).probe(
                tmp_path / "a.flac"
            )

        cmd = run.call_args[0][0]
        assert cmd[0] == "/opt/ffmpeg/ffprobe"
        assert "-show_streams" in cmd
        assert cmd[-1] == str(tmp_path / "a.flac")
        assert run.call_args[1]["timeout"] == 5
        assert probe.audio_streams[0].codec_name == "flac"

    def test_timeout(self, tmp_path):
        with mock.patch(
            "filemover.probes.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="ffprobe", timeout=5),
        ):
            with pytest.raises(ProbeTimeoutError) as exc_info:
                FFprobeAudioProber(timeout=5).probe(tmp_path / "a.mp3")

        assert exc_info.value.tool == "ffprobe"
        assert str(exc_info.value) == "ffprobe timed out after 5s"

    def test_missing_executable(self, tmp_path):
        with mock.patch("filemover.probes.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(ProbeUnavailableError):
                FFprobeAudioProber().probe(tmp_path / "a.mp3")

    def test_non_zero_exit(self, tmp_path):
        error = subprocess.CalledProcessError(
            1, "ffprobe", stderr="a.mp3: Invalid data found when processing input\n"
        )
        with mock.patch("filemover.probes.subprocess.run", side_effect=error):
            with pytest.raises(AudioProbeError, match="Invalid data found"):
                FFprobeAudioProber().probe(tmp_path / "a.mp3")

    def test_non_zero_exit_without_stderr(self, tmp_path):
        error = subprocess.CalledProcessError(183, "ffprobe", stderr="")
        with mock.patch("filemover.probes.subprocess.run", side_effect=error):
            with pytest.raises(AudioProbeError, match="exited with code 183"):
                FFprobeAudioProber().probe(tmp_path / "a.mp3")

    def test_invalid_json(self, tmp_path):
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="not json")
        with mock.patch("filemover.probes.subprocess.run", return_value=completed):
            with pytest.raises(AudioProbeError, match="Failed to parse"):
                FFprobeAudioProber().probe(tmp_path / "a.mp3")

    def test_is_available(self):
        with mock.patch("filemover.probes.shutil.which", return_value="/usr/bin/ffprobe"):
            assert FFprobeAudioProber().is_available()
        with mock.patch("filemover.probes.shutil.which", return_value=None):
            assert not FFprobeAudioProber().is_available()


# -----------------------------------------------------------------------------
# call_with_timeout
# -----------------------------------------------------------------------------

class TestCallWithTimeout:
    """Tests for bounding blocking calls."""

    def test_returns_value(self):
        assert call_with_timeout(lambda: 42, timeout=5, tool="test") == 42

    def test_no_timeout_runs_inline(self):
        caller = threading.current_thread()
        assert call_with_timeout(lambda: threading.current_thread(), None, "test") is caller

    def test_propagates_exceptions(self):
        def boom():
            raise OSError("unreadable")

        with pytest.raises(OSError, match="unreadable"):
            call_with_timeout(boom, timeout=5, tool="test")

    def test_times_out(self):
        release = threading.Event()
        try:
            with pytest.raises(ProbeTimeoutError) as exc_info:
                call_with_timeout(lambda: release.wait(5), timeout=0.05, tool="libmagic")
            assert exc_info.value.tool == "libmagic"
        finally:
            release.set()


# -----------------------------------------------------------------------------
# MagicImageSniffer
# -----------------------------------------------------------------------------

class TestMagicImageSniffer:
    """Tests for MagicImageSniffer with libmagic mocked."""

    @pytest.fixture(autouse=True)
    def _require_magic(self):
        pytest.importorskip("magic")

    def test_detects_mime(self, tmp_path):
        with mock.patch("magic.from_file", return_value="image/png") as from_file:
            result = MagicImageSniffer(timeout=5).sniff(tmp_path / "a.png")

        from_file.assert_called_once_with(str(tmp_path / "a.png"), mime=True)
        assert result.mime == "image/png"
        assert result.ext == "png"

    def test_normalizes_aliases(self, tmp_path):
        with mock.patch("magic.from_file", return_value="image/x-ms-bmp"):
            result = MagicImageSniffer(timeout=None).sniff(tmp_path / "a.bmp")

        assert result.mime == "image/bmp"

    @pytest.mark.parametrize("mime", ["application/octet-stream", "inode/x-empty", ""])
    def test_unknown_content(self, tmp_path, mime):
        with mock.patch("magic.from_file", return_value=mime):
            assert MagicImageSniffer().sniff(tmp_path / "a.jpg") is None

    def test_detects_real_png_header(self, tmp_path):
        path = tmp_path / "pixel.png"
        path.write_bytes(
            b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
            b"\x08\x06\x00\x00\x00\x1f\x15\xc4\x89" + b"\x00" * 200
        )

        assert MagicImageSniffer().sniff(path).mime == "image/png"

    def test_available_when_libmagic_loads(self):
        assert MagicImageSniffer().is_available()

    def test_unavailable_when_database_cannot_load(self):
        import magic

        with mock.patch("magic.Magic", side_effect=magic.MagicException("could not find any valid magic files")):
            assert not MagicImageSniffer().is_available()


class TestMagicImageSnifferMissing:
    """Without python-magic installed the sniffer reports itself unavailable."""

    def test_unavailable_without_python_magic(self):
        with mock.patch.dict(sys.modules, {"magic": None}):
            assert not MagicImageSniffer().is_available()


# -----------------------------------------------------------------------------
# End-to-end with the real ffprobe
# -----------------------------------------------------------------------------

def _write_wav(path: Path, seconds: float) -> Path:
    with wave.open(str(path), "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(8000)
        wav.writeframes(b"\x00\x00" * int(8000 * seconds))
    return path


@pytest.mark.e2e
@pytest.mark.skipif(shutil.which("ffprobe") is None, reason="ffprobe not installed")
class TestFFprobeEndToEnd:
    """Real ffprobe runs against generated files."""

    def test_probes_wav(self, tmp_path):
        path = _write_wav(tmp_path / "tone.wav", 1.5)

        probe = FFprobeAudioProber(timeout=30).probe(path)

        assert len(probe.audio_streams) == 1
        assert probe.duration == pytest.approx(1.5, abs=0.05)

    def test_validator_rejects_garbage(self, tmp_path):
        path = tmp_path / "fake.mp3"
        path.write_bytes(b"this is not audio" * 50)

        result = AudioValidator(FFprobeAudioProber(timeout=30)).validate(path, path.stat().st_size)

        assert not result.valid
