import argparse
from fractions import Fraction

import pytest
from PIL import Image

import mkhls
from hlsbundle.command import AUDIO_ONLY_VARIANT, TARGET_POSTER, TARGET_PREVIEWS
from hlsbundle.driver import ProgressEvent
from hlsbundle.errors import TranscodeError
from hlsbundle.probe import AudioStream, SourceMediaInfo, VideoStream

INFO = SourceMediaInfo(120.0, VideoStream(0, 1920, 1080, Fraction(30), 3600), AudioStream(1, 2, 48000))


@pytest.fixture
def media(tmp_path):
    src = tmp_path / "media"
    src.mkdir()
    clip = src / "Demo Clip.mp4"
    clip.write_bytes(b"\x00")
    return clip


@pytest.fixture
def fake_tools(monkeypatch):
    """Stand in for ffprobe/ffmpeg: probe returns ``INFO``, the encoder writes the frames it was asked for."""
    state = {"info": INFO, "jobs": [], "error": None}
    monkeypatch.delenv("MKHLS_METRICS_PORT", raising=False)
    monkeypatch.setattr(mkhls.shutil, "which", lambda name: f"/usr/bin/{name}")
    monkeypatch.setattr(mkhls, "inspect_media", lambda path, ffprobe_cmd, count_frames: state["info"])

    def fake_run(job, cmd="ffmpeg", on_progress=None):
        state["jobs"].append(job)
        if state["error"] is not None:
            raise state["error"]
        poster = job.target(TARGET_POSTER)
        if poster is not None:
            Image.new("RGB", (1920, 1080), "navy").save(poster.path)
        previews = job.target(TARGET_PREVIEWS)
        if previews is not None:
            for i in range(previews.options["frames:v"]):
                Image.new("RGB", (256, 144), "gray").save(previews.path % (i + 1))
        on_progress(ProgressEvent(job.info.duration, 100.0, finished=True))

    monkeypatch.setattr(mkhls, "run_transcode", fake_run)
    return state


def test_packages_1080p_source(media, tmp_path, fake_tools):
    out = tmp_path / "out"
    assert mkhls.main([str(media), "-o", str(out), "-s"]) == 0

    bundle = out / "demo-clip"
    (job,) = fake_tools["jobs"]
    assert job.args().count("-i") == 1
    assert [r.name for r in job.renditions] == ["1080p", "720p", "480p", "360p", "240p"]
    for name in ("1080p", "720p", "480p", "360p", "240p"):
        assert (bundle / name).is_dir()
    assert not (bundle / "2160p").exists()
    assert not (bundle / "_tmp").exists()

    with Image.open(bundle / "poster.webp") as poster:
        assert poster.size == (1920, 1080)
    with Image.open(bundle / "seek" / "storyboard.webp") as sprite:
        assert sprite.size == (6 * 256, 10 * 144)

    vtt = (bundle / "seek" / "thumbnails.vtt").read_text()
    assert vtt.startswith(
        "WEBVTT\n\n0:00:00.000 --> 0:00:02.000\n/demo-clip/seek/storyboard.webp#xywh=0,0,256,144\n\n"
    )
    assert vtt.count(" --> ") == 60
    assert "0:01:58.000 --> 0:02:00.000\n/demo-clip/seek/storyboard.webp#xywh=1280,1296,256,144\n" in vtt


def test_output_prefix_and_jpeg(media, tmp_path, fake_tools):
    out = tmp_path / "out"
    assert mkhls.main([str(media), "-o", str(out), "--output-prefix", "videos", "--image-format", "jpeg", "-s"]) == 0
    bundle = out / "videos" / "demo-clip"
    assert (bundle / "poster.jpg").is_file()
    assert "/videos/demo-clip/seek/storyboard.jpg#xywh=" in (bundle / "seek" / "thumbnails.vtt").read_text()


def test_audio_only_source(media, tmp_path, fake_tools):
    fake_tools["info"] = SourceMediaInfo(215.3, None, AudioStream(0, 2, 44100))
    out = tmp_path / "out"
    assert mkhls.main([str(media), "-o", str(out), "-s"]) == 0
    bundle = out / "demo-clip"
    assert (bundle / AUDIO_ONLY_VARIANT).is_dir()
    assert fake_tools["jobs"][0].target("hls").options["var_stream_map"] == f"a:0,name:{AUDIO_ONLY_VARIANT}"
    assert not (bundle / "poster.webp").exists()
    assert not (bundle / "seek").exists()


def test_batch_continues_after_failure(media, tmp_path, fake_tools):
    out = tmp_path / "out"
    missing = tmp_path / "media" / "missing.mp4"
    assert mkhls.main([str(missing), str(media), "-o", str(out), "-s"]) == 1
    assert (out / "demo-clip" / "seek" / "thumbnails.vtt").is_file()


def test_dry_run_writes_nothing(media, tmp_path, fake_tools):
    out = tmp_path / "out"
    assert mkhls.main([str(media), "-o", str(out), "--dry-run", "-s"]) == 0
    assert not out.exists()
    assert fake_tools["jobs"] == []


def test_existing_output_requires_overwrite(media, tmp_path, fake_tools):
    out = tmp_path / "out"
    (out / "demo-clip").mkdir(parents=True)
    assert mkhls.main([str(media), "-o", str(out), "-s"]) == 1
    assert fake_tools["jobs"] == []
    assert mkhls.main([str(media), "-o", str(out), "--overwrite", "-s"]) == 0
    assert "-y" in fake_tools["jobs"][0].args()


def test_source_below_every_rendition(media, tmp_path, fake_tools):
    fake_tools["info"] = SourceMediaInfo(30.0, VideoStream(0, 256, 144, Fraction(25)), None)
    out = tmp_path / "out"
    assert mkhls.main([str(media), "-o", str(out), "-s"]) == 1
    assert not out.exists()


def test_encoder_failure_cleans_up(media, tmp_path, fake_tools):
    fake_tools["error"] = TranscodeError("ffmpeg exited with code 69", exit_code=69)
    out = tmp_path / "out"
    assert mkhls.main([str(media), "-o", str(out), "-s"]) == 69
    assert not (out / "demo-clip" / "_tmp").exists()


def test_missing_binaries(media, monkeypatch):
    monkeypatch.setattr(mkhls.shutil, "which", lambda name: None)
    assert mkhls.main([str(media), "-s"]) == mkhls.USAGE_EXIT_CODE


def test_invalid_configuration(media, fake_tools):
    args = [str(media), "--timeline-preview-interval-min", "10", "--timeline-preview-interval-max", "2", "-s"]
    assert mkhls.main(args) == mkhls.USAGE_EXIT_CODE


def test_parse_resolution_list():
    assert mkhls.parse_resolution_list("1080p, 720,480") == [1080, 720, 480]
    with pytest.raises(argparse.ArgumentTypeError):
        mkhls.parse_resolution_list("1080,big")
    with pytest.raises(argparse.ArgumentTypeError):
        mkhls.parse_resolution_list(" , ")


def test_build_config_from_arguments(tmp_path):
    args = mkhls.parse_args([
        "clip.mp4",
        "--video-bitrates", "5M,3000",
        "--video-profiles", "high",
        "--no-hls",
        "--no-audio",
        "--hls-type", "fmp4",
        "--preserve-dirs-from", str(tmp_path),
    ])
    config = mkhls.build_config(args)
    assert config.video.bitrates == ("5000k", "3000k")
    assert config.video.profiles == ("high",)
    assert config.video.resolutions == (2160, 1440, 1080, 720, 480, 360, 240)
    assert not config.hls_enabled
    assert config.fallback_enabled and config.previews_enabled
    assert config.audio.mute
    assert config.hls.type == "fmp4"
    assert config.preserve_dirs_from == tmp_path.resolve()


def test_duplicate_resolutions_exit_with_usage_error(media, tmp_path, fake_tools):
    out = tmp_path / "out"
    assert mkhls.main([str(media), "-o", str(out), "--video-resolutions", "720,720", "-s"]) == mkhls.USAGE_EXIT_CODE
    assert fake_tools["jobs"] == []
    assert not out.exists()
