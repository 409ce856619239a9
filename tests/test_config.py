import pytest

from hlsbundle.config import (
    AudioOptions,
    HlsOptions,
    PackagerConfig,
    PreviewOptions,
    VideoOptions,
    bitrate_kbps,
    parse_bitrate,
)


@pytest.mark.parametrize(
    "value, expected",
    [(3000, "3000k"), ("3000", "3000k"), ("800k", "800k"), ("1.5M", "1500k"), (" 256K ", "256k")],
)
def test_parse_bitrate(value, expected):
    assert parse_bitrate(value) == expected


@pytest.mark.parametrize("value", ["fast", "", "-5k", "0", "10kbps"])
def test_parse_bitrate_rejects_garbage(value):
    with pytest.raises(ValueError):
        parse_bitrate(value)


def test_bitrate_kbps():
    assert bitrate_kbps("2M") == 2000


def test_defaults():
    config = PackagerConfig()
    assert config.hls.type == "mpegts"
    assert config.hls.segment_extension == "ts"
    assert config.hls.root_playlist_name == "manifest.m3u8"
    assert config.image_format == "webp"
    assert config.audio == AudioOptions(False, "aac", "aac_low", "256k")
    assert config.preview.max_images == 180
    assert HlsOptions(type="fmp4").segment_extension == "m4s"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"image_format": "gif"},
        {"hls": HlsOptions(type="dash")},
        {"hls": HlsOptions(interval=0)},
        {"preview": PreviewOptions(columns=0)},
        {"preview": PreviewOptions(interval_min=6.0, interval_max=5.0)},
        {"video": VideoOptions(resolutions=())},
        {"video": VideoOptions(levels=())},
    ],
)
def test_invalid_config_is_rejected(kwargs):
    with pytest.raises(ValueError):
        PackagerConfig(**kwargs)


def test_duplicate_resolutions_are_rejected():
    with pytest.raises(ValueError, match="720p"):
        PackagerConfig(video=VideoOptions(resolutions=(1080, 720, 720), bitrates=("6000k", "3000k", "1500k")))


def test_tile_height_must_be_positive():
    with pytest.raises(ValueError, match="tile height"):
        PackagerConfig(preview=PreviewOptions(tile_height=0))
