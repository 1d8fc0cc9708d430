"""Tests for the ffmpeg child-process wrapper.

WHY: The coordinator relies on the transcoder to tell an encoder that
rejected its input apart from an encoder that is not installed, and to
carry the encoder's diagnostics back for the error response.

HOW: Shell scripts from conftest stand in for ffmpeg, so a real child
process is spawned with the real argument vector.
"""

from __future__ import annotations

import asyncio

import pytest

from audio_converter.config import AudioFormat
from audio_converter.errors import EncoderUnavailableError, TranscodeError
from audio_converter.transcoder import (
    ProcessFailure,
    SpawnFailure,
    Transcoder,
    TranscodeSuccess,
    build_command,
)


class TestBuildCommand:

    @pytest.mark.parametrize(
        "fmt, codec",
        [
            (AudioFormat.MP3, "libmp3lame"),
            (AudioFormat.AAC, "aac"),
            (AudioFormat.WAV, "pcm_s16le"),
        ],
    )
    def test_codec_follows_format(self, tmp_path, fmt, codec):
        cmd = build_command("ffmpeg", tmp_path / "in.webm", tmp_path / "out", fmt, "128k")
        assert cmd[cmd.index("-acodec") + 1] == codec

    def test_fixed_rate_channels_and_overwrite(self, tmp_path):
        out = tmp_path / "out.mp3"
        cmd = build_command("ffmpeg", tmp_path / "in.webm", out, AudioFormat.MP3, "128k")
        assert cmd[0] == "ffmpeg"
        assert cmd[1:3] == ["-i", str(tmp_path / "in.webm")]
        assert cmd[cmd.index("-ar") + 1] == "44100"
        assert cmd[cmd.index("-ac") + 1] == "2"
        assert "-y" in cmd
        assert cmd[-1] == str(out)

    def test_bitrate_passed_through_untouched(self, tmp_path):
        cmd = build_command("ffmpeg", tmp_path / "in", tmp_path / "out", AudioFormat.AAC, "not-a-bitrate")
        assert cmd[cmd.index("-ab") + 1] == "not-a-bitrate"

    def test_accepts_plain_string_format(self, tmp_path):
        cmd = build_command("ffmpeg", tmp_path / "in", tmp_path / "out", "wav", "128k")
        assert cmd[cmd.index("-acodec") + 1] == "pcm_s16le"


class TestRunOutcome:

    def test_success(self, copy_encoder, tmp_path):
        src = tmp_path / "in.webm"
        src.write_bytes(b"audio")
        out = tmp_path / "out.mp3"
        outcome = asyncio.run(Transcoder(copy_encoder).run(src, out, AudioFormat.MP3, "128k"))
        assert outcome == TranscodeSuccess()
        assert out.read_bytes() == b"audio"

    def test_process_failure_carries_exit_code_and_stderr(self, failing_encoder, tmp_path):
        src = tmp_path / "in.webm"
        src.write_bytes(b"audio")
        outcome = asyncio.run(
            Transcoder(failing_encoder).run(src, tmp_path / "out.mp3", AudioFormat.MP3, "128k")
        )
        assert isinstance(outcome, ProcessFailure)
        assert outcome.exit_code == 1
        assert "Invalid data found" in outcome.diagnostics

    def test_spawn_failure_when_binary_missing(self, missing_encoder, tmp_path):
        outcome = asyncio.run(
            Transcoder(missing_encoder).run(tmp_path / "in", tmp_path / "out.mp3", AudioFormat.MP3, "128k")
        )
        assert isinstance(outcome, SpawnFailure)
        assert outcome.reason


class TestTranscode:

    def test_success_returns_none(self, copy_encoder, tmp_path):
        src = tmp_path / "in.webm"
        src.write_bytes(b"audio")
        out = tmp_path / "out.wav"
        assert asyncio.run(Transcoder(copy_encoder).transcode(src, out, AudioFormat.WAV, "128k")) is None
        assert out.is_file()

    def test_input_left_in_place(self, copy_encoder, tmp_path):
        src = tmp_path / "in.webm"
        src.write_bytes(b"audio")
        asyncio.run(Transcoder(copy_encoder).transcode(src, tmp_path / "out.mp3", AudioFormat.MP3, "128k"))
        assert src.exists()

    def test_nonzero_exit_raises_transcode_error(self, failing_encoder, tmp_path):
        src = tmp_path / "in.webm"
        src.write_bytes(b"audio")
        with pytest.raises(TranscodeError) as excinfo:
            asyncio.run(
                Transcoder(failing_encoder).transcode(src, tmp_path / "out.mp3", AudioFormat.MP3, "128k")
            )
        err = excinfo.value
        assert not isinstance(err, EncoderUnavailableError)
        assert err.exit_code == 1
        assert "code 1" in err.message
        assert "Invalid data found" in err.diagnostics

    def test_missing_binary_raises_encoder_unavailable(self, missing_encoder, tmp_path):
        with pytest.raises(EncoderUnavailableError) as excinfo:
            asyncio.run(
                Transcoder(missing_encoder).transcode(tmp_path / "in", tmp_path / "out.mp3", AudioFormat.MP3, "128k")
            )
        assert excinfo.value.exit_code is None
        assert "unavailable" in excinfo.value.message

    def test_exit_zero_without_output_is_not_an_error_here(self, silent_encoder, tmp_path):
        """Verification is the coordinator's job; the transcoder trusts the exit code."""
        out = tmp_path / "out.mp3"
        asyncio.run(Transcoder(silent_encoder).transcode(tmp_path / "in", out, AudioFormat.MP3, "128k"))
        assert not out.exists()
