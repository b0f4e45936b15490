from pinchpad.config import OcclusionConfig
from pinchpad.occlusion import OcclusionDebouncer, OcclusionEvent


def _feed(debouncer, samples):
    """Feed (time_ms, ratio) pairs; return the (time, event) pairs that fired."""
    events = []
    for t, ratio in samples:
        update = debouncer.update(ratio, t)
        if update.event is not None:
            events.append((t, update.event))
    return events


def test_short_dip_is_ignored():
    debouncer = OcclusionDebouncer()
    samples = [(0, 1.0), (100, 0.0), (200, 0.0), (350, 0.0), (390, 1.0), (800, 1.0)]

    assert _feed(debouncer, samples) == []
    assert debouncer.is_visible


def test_sustained_dip_fires_once_when_delay_elapses():
    debouncer = OcclusionDebouncer()
    samples = [(t, 0.0) for t in range(1000, 2000, 20)]

    events = _feed(debouncer, samples)

    assert events == [(1300, OcclusionEvent.OCCLUDED)]
    assert not debouncer.is_visible
    assert debouncer.occlusion_timestamp == 1000


def test_reappearance_is_debounced():
    debouncer = OcclusionDebouncer()
    _feed(debouncer, [(0, 0.0), (300, 0.0)])
    assert not debouncer.is_visible

    # Flicker shorter than the reappearance delay
    assert _feed(debouncer, [(400, 1.0), (500, 1.0), (600, 0.0)]) == []
    assert not debouncer.is_visible

    events = _feed(debouncer, [(700, 1.0), (900, 1.0), (1000, 1.0)])
    assert events == [(1000, OcclusionEvent.REAPPEARED)]
    assert debouncer.is_visible
    assert debouncer.occlusion_timestamp is None


def test_separate_delays():
    debouncer = OcclusionDebouncer(OcclusionConfig(occlusion_delay_ms=100, reappearance_delay_ms=500))
    events = _feed(debouncer, [(0, 0.0), (100, 0.0), (200, 1.0), (600, 1.0), (700, 1.0)])
    assert events == [(100, OcclusionEvent.OCCLUDED), (700, OcclusionEvent.REAPPEARED)]


def test_threshold_is_strict():
    debouncer = OcclusionDebouncer()
    update = debouncer.update(0.5, 0)
    assert not update.raw_occluded
    assert debouncer.update(0.49, 10).raw_occluded


def test_pending_timestamp_reported_and_reset():
    debouncer = OcclusionDebouncer()
    update = debouncer.update(0.0, 50)
    assert update.is_visible
    assert update.occlusion_timestamp == 50

    debouncer.reset()
    assert debouncer.is_visible
    assert debouncer.occlusion_timestamp is None


def test_zero_delay_still_needs_a_second_frame():
    debouncer = OcclusionDebouncer(OcclusionConfig(occlusion_delay_ms=0, reappearance_delay_ms=0))

    first = debouncer.update(0.0, 100)
    assert first.event is None
    assert first.is_visible
    assert first.occlusion_timestamp == 100

    assert debouncer.update(0.0, 100).event is OcclusionEvent.OCCLUDED
    assert debouncer.update(1.0, 120).event is None
    assert debouncer.update(1.0, 140).event is OcclusionEvent.REAPPEARED
