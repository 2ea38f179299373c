"""
Tests for the ffmpeg command synthesizer.

These tests verify that validated tool calls are turned into the exact
ffmpeg argument lists and output names the executors run.
"""

import pytest

from models.media_models import MediaInfo
from utils.ffmpeg_builder import (
    SynthesisError,
    _build_atempo_chain,
    _escape_drawtext,
    _fmt,
    speed_factors,
    synthesize,
)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def out_dir(tmp_path):
    return tmp_path / "output"


@pytest.fixture
def fixed_id():
    return lambda: "1"


def _probe_for(infos: dict[str, MediaInfo]):
    return lambda path: infos.get(path)


def _info(duration=10.0, width=1920, height=1080, fps=30.0) -> MediaInfo:
    return MediaInfo(duration=duration, width=width, height=height, bitrate=4_000_000, fps=fps)


# =============================================================================
# HELPERS
# =============================================================================


class TestHelpers:
    def test_fmt_drops_trailing_zeros(self):
        assert _fmt(2) == "2"
        assert _fmt(2.0) == "2"
        assert _fmt(0.5) == "0.5"
        assert _fmt(1 / 3) == "0.333333"

    def test_speed_factors(self):
        assert speed_factors(2) == (0.5, 2.0)
        assert speed_factors(0.5) == (2.0, 0.5)

    @pytest.mark.parametrize("speed", [2, 1.5, 0.25, 3])
    def test_speed_round_trip_restores_duration(self, speed):
        fast_pts, fast_tempo = speed_factors(speed)
        back_pts, back_tempo = speed_factors(1 / speed)

        assert 10.0 * fast_pts * back_pts == pytest.approx(10.0)
        assert fast_tempo * back_tempo == pytest.approx(1.0)

    @pytest.mark.parametrize("speed", [0, -1])
    def test_speed_factors_reject_non_positive(self, speed):
        with pytest.raises(SynthesisError):
            speed_factors(speed)

    def test_atempo_chain_within_range(self):
        assert _build_atempo_chain(2.0) == ["atempo=2"]
        assert _build_atempo_chain(1.5) == ["atempo=1.5"]

    def test_atempo_chain_splits_extremes(self):
        assert _build_atempo_chain(4.0) == ["atempo=2", "atempo=2"]
        assert _build_atempo_chain(0.25) == ["atempo=0.5", "atempo=0.5"]

    def test_escape_drawtext(self):
        assert _escape_drawtext("It's 10:30") == "It\\'s 10\\:30"


# =============================================================================
# COMMANDS
# =============================================================================


class TestSimpleCommands:
    def test_trim(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_trim",
            {"startTime": "0", "endTime": "10"},
            {"inputFile": "/p/input/beach.mp4"},
            out_dir,
            id_source=fixed_id,
        )

        assert command.output_path == str(out_dir / "trimmed_1.mp4")
        assert command.output_name == "trimmed_1.mp4"
        assert command.args == [
            "-y", "-i", "/p/input/beach.mp4", "-ss", "0", "-to", "10", "-c", "copy", command.output_path,
        ]

    def test_filter_uses_default_value(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_filter",
            {"filterName": "brightness"},
            {"inputFile": "/p/in.mp4"},
            out_dir,
            id_source=fixed_id,
        )

        assert command.args[command.args.index("-vf") + 1] == "eq=brightness=0.1"
        assert command.args[-3:-1] == ["-c:a", "copy"]
        assert command.output_name == "filtered_1.mp4"

    def test_filter_with_value(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_filter",
            {"filterName": "blur", "value": 10},
            {"inputFile": "/p/in.mp4"},
            out_dir,
            id_source=fixed_id,
        )

        assert "boxblur=10" in command.args

    def test_scale(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_scale", {"width": 1280, "height": -1}, {"inputFile": "/p/in.mp4"}, out_dir, id_source=fixed_id
        )

        assert "scale=1280:-1" in command.args

    def test_speed_graph(self, out_dir, fixed_id):
        command = synthesize("ffmpeg_speed", {"speed": 2}, {"inputFile": "/p/in.mp4"}, out_dir, id_source=fixed_id)

        graph = command.args[command.args.index("-filter_complex") + 1]
        assert graph == "[0:v]setpts=0.5*PTS[v];[0:a]atempo=2[a]"
        assert command.args[-5:-1] == ["-map", "[v]", "-map", "[a]"]

    def test_slow_motion_chains_atempo(self, out_dir, fixed_id):
        command = synthesize("ffmpeg_speed", {"speed": 0.25}, {"inputFile": "/p/in.mp4"}, out_dir, id_source=fixed_id)

        graph = command.args[command.args.index("-filter_complex") + 1]
        assert graph == "[0:v]setpts=4*PTS[v];[0:a]atempo=0.5,atempo=0.5[a]"

    def test_crop(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_crop",
            {"width": 640, "height": 480, "x": 10, "y": 20},
            {"inputFile": "/p/in.mp4"},
            out_dir,
            id_source=fixed_id,
        )

        assert "crop=640:480:10:20" in command.args
        assert command.output_name == "cropped_1.mp4"

    def test_text_is_escaped_and_windowed(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_text",
            {"text": "Day 1: Beach", "x": "(w-text_w)/2", "y": "50", "startTime": 0, "endTime": 3},
            {"inputFile": "/p/in.mp4"},
            out_dir,
            id_source=fixed_id,
        )

        drawtext = command.args[command.args.index("-vf") + 1]
        assert drawtext == (
            "drawtext=text='Day 1\\: Beach':fontsize=48:fontcolor=white"
            ":x=(w-text_w)/2:y=50:enable='between(t,0,3)'"
        )

    def test_text_numeric_position(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_text",
            {"text": "Hi", "x": 20, "y": 40.0},
            {"inputFile": "/p/in.mp4"},
            out_dir,
            id_source=fixed_id,
        )

        drawtext = command.args[command.args.index("-vf") + 1]
        assert drawtext == "drawtext=text='Hi':fontsize=48:fontcolor=white:x=20:y=40"

    def test_overlay_with_window(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_overlay",
            {"x": 10, "y": 10, "startTime": 2, "duration": 3},
            {"baseFile": "/p/base.mp4", "overlayFile": "/p/logo.png"},
            out_dir,
            id_source=fixed_id,
        )

        assert command.args[:6] == ["-y", "-i", "/p/base.mp4", "-i", "/p/logo.png", "-filter_complex"]
        assert command.args[6] == "overlay=10:10:enable='between(t,2,5)'"

    def test_unknown_tool_raises(self, out_dir):
        with pytest.raises(SynthesisError):
            synthesize("get_video_info", {}, {"inputFile": "/p/in.mp4"}, out_dir)


class TestAudioCommands:
    def test_mute(self, out_dir, fixed_id):
        command = synthesize("ffmpeg_audio", {"action": "mute"}, {"inputFile": "/p/in.mp4"}, out_dir, id_source=fixed_id)

        assert command.args[-3:-1] == ["copy", "-an"]
        assert command.output_name == "muted_1.mp4"

    def test_volume(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_audio", {"action": "volume", "value": 1.5}, {"inputFile": "/p/in.mp4"}, out_dir, id_source=fixed_id
        )

        assert "volume=1.5" in command.args

    def test_extract_writes_mp3(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_audio", {"action": "extract"}, {"inputFile": "/p/in.mp4"}, out_dir, id_source=fixed_id
        )

        assert command.output_name == "audio_1.mp3"
        assert "-vn" in command.args

    def test_replace_maps_both_inputs(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_audio",
            {"action": "replace"},
            {"inputFile": "/p/in.mp4", "audioFile": "/p/song.mp3"},
            out_dir,
            id_source=fixed_id,
        )

        assert command.args[:5] == ["-y", "-i", "/p/in.mp4", "-i", "/p/song.mp3"]
        assert "-shortest" in command.args
        assert command.output_name == "audio_replaced_1.mp4"

    def test_replace_without_audio_raises(self, out_dir):
        with pytest.raises(SynthesisError):
            synthesize("ffmpeg_audio", {"action": "replace"}, {"inputFile": "/p/in.mp4"}, out_dir)


class TestConcat:
    def test_manifest_lists_files_in_order(self, out_dir, fixed_id):
        command = synthesize(
            "ffmpeg_concat",
            {},
            {"inputFiles": ["/p/a.mp4", "/p/b's.mp4"]},
            out_dir,
            id_source=fixed_id,
        )

        assert command.manifest_path == str(out_dir / "concat_list_1.txt")
        assert command.manifest_content == "file '/p/a.mp4'\nfile '/p/b'\\''s.mp4'"
        assert command.args == [
            "-y", "-f", "concat", "-safe", "0", "-i", command.manifest_path, "-c", "copy", command.output_path,
        ]

    def test_empty_concat_raises(self, out_dir):
        with pytest.raises(SynthesisError):
            synthesize("ffmpeg_concat", {}, {"inputFiles": []}, out_dir)


class TestProbeDependentCommands:
    def test_zoom_in(self, out_dir, fixed_id):
        probe = _probe_for({"/p/in.mp4": _info(fps=30)})

        command = synthesize(
            "ffmpeg_zoom",
            {"zoomDirection": "in", "zoomAmount": 1.5, "duration": 2},
            {"inputFile": "/p/in.mp4"},
            out_dir,
            probe=probe,
            id_source=fixed_id,
        )

        zoompan = command.args[command.args.index("-vf") + 1]
        assert zoompan.startswith("zoompan=z='zoom+0.00833333':d=60:")
        assert zoompan.endswith(":s=1920x1080")
        assert command.output_name == "zoompan_1.mp4"

    def test_zoom_out(self, out_dir, fixed_id):
        probe = _probe_for({"/p/in.mp4": _info(fps=25)})

        command = synthesize(
            "ffmpeg_zoom",
            {"zoomDirection": "out", "zoomAmount": 2, "duration": 4},
            {"inputFile": "/p/in.mp4"},
            out_dir,
            probe=probe,
            id_source=fixed_id,
        )

        zoompan = command.args[command.args.index("-vf") + 1]
        assert zoompan.startswith("zoompan=z='2-0.01*on':d=100:")

    def test_zoom_without_probe_fails(self, out_dir):
        with pytest.raises(SynthesisError):
            synthesize(
                "ffmpeg_zoom",
                {"zoomDirection": "in", "zoomAmount": 1.5, "duration": 2},
                {"inputFile": "/p/in.mp4"},
                out_dir,
                probe=lambda path: None,
            )

    def test_fade_transition_offset(self, out_dir, fixed_id):
        probe = _probe_for({"/p/a.mp4": _info(duration=8), "/p/b.mp4": _info(duration=5)})

        command = synthesize(
            "ffmpeg_transition",
            {"transitionType": "fade", "duration": 1},
            {"inputFile1": "/p/a.mp4", "inputFile2": "/p/b.mp4"},
            out_dir,
            probe=probe,
            id_source=fixed_id,
        )

        graph = command.args[command.args.index("-filter_complex") + 1]
        assert graph == (
            "[0:v]fade=t=out:st=7:d=1[v0];"
            "[1:v]fade=t=in:st=0:d=1[v1];"
            "[v0][v1]concat=n=2:v=1:a=0[outv]"
        )
        assert command.args[-3:-1] == ["-map", "[outv]"]

    @pytest.mark.parametrize("kind, xfade", [("wipe", "wipeleft"), ("dissolve", "fade"), ("zoom", "zoomin")])
    def test_xfade_transitions(self, out_dir, fixed_id, kind, xfade):
        probe = _probe_for({"/p/a.mp4": _info(duration=6.5), "/p/b.mp4": _info(duration=5)})

        command = synthesize(
            "ffmpeg_transition",
            {"transitionType": kind, "duration": 0.5},
            {"inputFile1": "/p/a.mp4", "inputFile2": "/p/b.mp4"},
            out_dir,
            probe=probe,
            id_source=fixed_id,
        )

        graph = command.args[command.args.index("-filter_complex") + 1]
        assert graph == f"[0:v][1:v]xfade=transition={xfade}:duration=0.5:offset=6[outv]"

    def test_transition_longer_than_first_clip_fails(self, out_dir):
        probe = _probe_for({"/p/a.mp4": _info(duration=1), "/p/b.mp4": _info(duration=5)})

        with pytest.raises(SynthesisError):
            synthesize(
                "ffmpeg_transition",
                {"transitionType": "fade", "duration": 2},
                {"inputFile1": "/p/a.mp4", "inputFile2": "/p/b.mp4"},
                out_dir,
                probe=probe,
            )

    def test_transition_needs_both_probes(self, out_dir):
        probe = _probe_for({"/p/a.mp4": _info(duration=8)})

        with pytest.raises(SynthesisError):
            synthesize(
                "ffmpeg_transition",
                {"transitionType": "fade", "duration": 1},
                {"inputFile1": "/p/a.mp4", "inputFile2": "/p/missing.mp4"},
                out_dir,
                probe=probe,
            )


def test_command_string_quotes_spaced_arguments(out_dir, fixed_id):
    command = synthesize(
        "ffmpeg_trim",
        {"startTime": "0", "endTime": "5"},
        {"inputFile": "/p/my clip.mp4"},
        out_dir,
        id_source=fixed_id,
    )

    assert command.build_command_string().startswith('ffmpeg -y -i "/p/my clip.mp4" -ss 0')
