import pytest

from hlsbundle.previews import (
    CueEntry,
    build_cues,
    layout_sprite,
    plan_preview_sprite,
    render_webvtt,
)


@pytest.mark.parametrize(
    "duration, count, interval",
    [
        (30, 30, 1.0),
        (300, 60, 5.0),
        (3600, 180, 20.0),
        (1000, 100, 10.0),
    ],
)
def test_plan_tiers(duration, count, interval):
    spec = plan_preview_sprite(duration, 1.0, 10.0, 180)
    assert spec.frame_count == count
    assert spec.frame_interval == pytest.approx(interval)


def test_plan_with_default_bounds():
    spec = plan_preview_sprite(120, 1.0, 5.0, 180)
    assert (spec.frame_count, spec.frame_interval) == (60, 2.0)


def test_short_media_gets_one_frame():
    spec = plan_preview_sprite(0.5, 1.0, 5.0, 180)
    assert spec.frame_count == 1
    assert spec.frame_interval == 0.5


def test_interval_stays_within_bounds():
    for duration in (30.5, 59, 61, 299, 301, 599.5, 900, 1005):
        spec = plan_preview_sprite(duration, 1.0, 5.0, 180)
        if 1.0 <= duration <= 900:
            assert 1.0 <= spec.frame_interval <= 5.0


def test_plan_invariants():
    for duration in (0.01, 1, 7.3, 59.9, 60, 61, 299.9, 300, 301, 899, 900, 901, 7200, 86400):
        spec = plan_preview_sprite(duration, 1.0, 5.0, 180)
        assert 1 <= spec.frame_count <= 180
        assert spec.frame_interval * spec.frame_count == pytest.approx(duration)


def test_plan_rejects_empty_media():
    with pytest.raises(ValueError):
        plan_preview_sprite(0, 1.0, 5.0, 180)


def test_layout_full_grid_has_no_gaps_or_overlaps():
    layout = layout_sprite(18, 6, 256, 144)
    assert (layout.rows, layout.total_width, layout.total_height) == (3, 1536, 432)
    cells = {(t.x, t.y) for t in layout.placements}
    assert len(cells) == 18
    assert sum(t.width * t.height for t in layout.placements) == layout.total_width * layout.total_height
    for t in layout.placements:
        assert t.x + t.width <= layout.total_width
        assert t.y + t.height <= layout.total_height


def test_layout_partial_last_row():
    layout = layout_sprite(17, 6, 256, 144)
    assert layout.rows == 3
    last = layout.placements[-1]
    assert (last.index, last.column, last.row, last.x, last.y) == (16, 4, 2, 1024, 288)
    assert len({(t.x, t.y) for t in layout.placements}) == 17


def test_layout_single_frame():
    layout = layout_sprite(1, 6, 100, 50)
    assert (layout.columns, layout.rows, layout.total_width, layout.total_height) == (6, 1, 600, 50)


def test_cues_are_contiguous():
    spec = plan_preview_sprite(3600 / 7, 1.0, 5.0, 180)
    layout = layout_sprite(spec.frame_count, 6, 256, 144)
    cues = build_cues(layout.placements, spec.frame_interval, "/media/seek/storyboard.webp")
    assert cues[0].start == 0
    for prev, cur in zip(cues, cues[1:]):
        assert prev.end == cur.start
    assert cues[-1].end == pytest.approx(3600 / 7)
    rendered = [c.render().splitlines()[0].split(" --> ") for c in cues]
    for prev, cur in zip(rendered, rendered[1:]):
        assert prev[1] == cur[0]


def test_render_webvtt():
    cues = [
        CueEntry(0, 2, "/clip/seek/storyboard.webp", 0, 0, 256, 144),
        CueEntry(2, 4, "/clip/seek/storyboard.webp", 256, 0, 256, 144),
    ]
    assert render_webvtt(cues) == (
        "WEBVTT\n\n"
        "0:00:00.000 --> 0:00:02.000\n/clip/seek/storyboard.webp#xywh=0,0,256,144\n\n"
        "0:00:02.000 --> 0:00:04.000\n/clip/seek/storyboard.webp#xywh=256,0,256,144\n"
    )
