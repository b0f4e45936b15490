#!/usr/bin/env python3
"""
End-to-end scenarios for the PinchPad pipeline

Tests the three drum-pad scenarios:
A. Hand Over Pad (occlusion -> TAP -> ENGAGED -> RELEASE -> DEFAULT)
B. Twisted Marker (30 degree rotation recovered from the homography)
C. Hand Brushes Past (short occlusion fires no events)
"""

import sys
import os
import math

import numpy as np
import cv2

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from pinchpad.config import PipelineConfig
from pinchpad.marker_state import MarkerState, MarkerStateChanged
from pinchpad.pipeline import RoiTrackingPipeline
from pinchpad.region import CircularROI


WIDTH, HEIGHT = 640, 480
BACKGROUND = 200


def create_marker_frame(seed: int = 7) -> np.ndarray:
    """Gray frame with a 64px textured marker at the center."""
    frame = np.full((HEIGHT, WIDTH, 3), BACKGROUND, dtype=np.uint8)
    rng = np.random.default_rng(seed)
    x0, y0 = WIDTH // 2 - 32, HEIGHT // 2 - 32
    for row in range(8):
        for col in range(8):
            frame[y0 + row * 8:y0 + row * 8 + 8, x0 + col * 8:x0 + col * 8 + 8] = int(rng.integers(0, 256))
    cv2.rectangle(frame, (x0, y0), (x0 + 63, y0 + 63), (0, 0, 0), 3)
    return frame


def cover_pad(frame: np.ndarray) -> np.ndarray:
    """Simulate a hand resting flat over the pad."""
    covered = frame.copy()
    covered[HEIGHT // 2 - 110:HEIGHT // 2 + 110, WIDTH // 2 - 110:WIDTH // 2 + 110] = 90
    return covered


def make_pipeline(config: PipelineConfig = None):
    pipeline = RoiTrackingPipeline(config or PipelineConfig())
    events = []
    pipeline.events.subscribe(events.append, MarkerStateChanged)
    pipeline.set_roi(CircularROI.create(center=(0.5, 0.5), radius=0.1, roi_id="pad", created_at=0.0))
    return pipeline, events


def test_hand_over_pad():
    """
    Test Case A: Hand Over Pad

    Scenario:
    - Marker visible for 1s (reference captured on the first frame)
    - Hand covers the pad for 1s
    - Hand lifts, pad visible for 1s

    Assertions:
    - TAP fires 300ms after the hand arrives (occlusion delay)
    - ENGAGED fires 500ms after TAP
    - RELEASE fires 300ms after the hand lifts, DEFAULT 300ms later
    """
    print("\n" + "=" * 60)
    print("TEST A: Hand Over Pad (Occlusion -> Marker States)")
    print("=" * 60)

    pipeline, events = make_pipeline()
    visible = create_marker_frame()
    hidden = cover_pad(visible)

    timeline = (
        [(t, visible) for t in range(0, 1000, 20)]
        + [(t, hidden) for t in range(1000, 2000, 20)]
        + [(t, visible) for t in range(2000, 3000, 20)]
    )
    for t, frame in timeline:
        result = pipeline.process_frame(frame, now=t)["pad"]
        if t % 500 == 0:
            print(f"  t={t:4d}ms: state={result.marker.state_code} visible={result.is_visible} "
                  f"ratio={result.visibility_ratio} tracked={result.tracking.is_tracked}")

    sequence = [(e.new_state, e.timestamp) for e in events]
    print("\nTransitions:")
    for state, t in sequence:
        print(f"  {t:6.0f}ms -> {state.value}")

    assert sequence == [
        (MarkerState.TAP, 1300),
        (MarkerState.ENGAGED, 1800),
        (MarkerState.RELEASE, 2300),
        (MarkerState.DEFAULT, 2600),
    ], f"Unexpected transitions: {sequence}"
    assert pipeline.markers.get_state_code("pad") == "D"

    print("\n✓ TEST A PASSED: Hand Over Pad")


def test_twisted_marker():
    """
    Test Case B: Twisted Marker

    Scenario:
    - ROI at (0.5, 0.5), radius 0.1 on a 640x480 frame
    - Marker rotated 30 degrees about the ROI center

    Assertions:
    - is_tracked with confidence >= match threshold
    - rotation ~0.524 rad, center stays at the ROI center
    """
    print("\n" + "=" * 60)
    print("TEST B: Twisted Marker (Homography Pose)")
    print("=" * 60)

    pipeline, _ = make_pipeline()
    frame = create_marker_frame()
    M = cv2.getRotationMatrix2D((WIDTH / 2, HEIGHT / 2), 30, 1.0)
    twisted = cv2.warpAffine(frame, M, (WIDTH, HEIGHT), borderValue=(BACKGROUND,) * 3)

    pipeline.process_frame(frame, now=0)
    tracking = pipeline.process_frame(twisted, now=33)["pad"].tracking

    print(f"  tracked={tracking.is_tracked} confidence={tracking.confidence:.2f} "
          f"matches={tracking.match_count} inliers={tracking.inlier_count}")
    print(f"  rotation={tracking.rotation:.3f} rad ({math.degrees(tracking.rotation):.1f} deg)")
    print(f"  center=({tracking.center[0]:.1f}, {tracking.center[1]:.1f})")

    assert tracking.is_tracked, "Rotated marker should still be tracked"
    assert tracking.confidence >= pipeline.config.features.match_threshold
    assert abs(tracking.rotation - math.radians(30)) < 0.1, f"Rotation off: {tracking.rotation:.3f}"
    assert math.hypot(tracking.center[0] - WIDTH / 2, tracking.center[1] - HEIGHT / 2) < 4.0

    print("\n✓ TEST B PASSED: Twisted Marker")


def test_hand_brushes_past():
    """
    Test Case C: Hand Brushes Past

    Scenario:
    - Hand covers the pad for 200ms only, twice

    Assertions:
    - No marker events, pad stays visible and DEFAULT
    """
    print("\n" + "=" * 60)
    print("TEST C: Hand Brushes Past (Debounce)")
    print("=" * 60)

    pipeline, events = make_pipeline()
    visible = create_marker_frame()
    hidden = cover_pad(visible)

    for t in range(0, 2000, 20):
        brushing = 500 <= t < 700 or 1200 <= t < 1400
        result = pipeline.process_frame(hidden if brushing else visible, now=t)["pad"]

    print(f"  events={len(events)} final state={result.marker.state_code} visible={result.is_visible}")

    assert events == [], f"Brief occlusion should not fire events: {events}"
    assert result.is_visible
    assert result.marker.state is MarkerState.DEFAULT

    print("\n✓ TEST C PASSED: Hand Brushes Past")


def _run(name: str, test) -> bool:
    try:
        test()
        return True
    except AssertionError as e:
        print(f"\n✗ {name} FAILED: {e}")
    except Exception as e:
        print(f"\n✗ {name} ERROR: {e}")
        import traceback
        traceback.print_exc()
    return False


def main():
    print("\n" + "=" * 60)
    print("PINCHPAD PIPELINE - SCENARIO TESTS")
    print("=" * 60)

    results = [
        ("Test A: Hand Over Pad", _run("TEST A", test_hand_over_pad)),
        ("Test B: Twisted Marker", _run("TEST B", test_twisted_marker)),
        ("Test C: Hand Brushes Past", _run("TEST C", test_hand_brushes_past)),
    ]

    # Summary
    print("\n" + "=" * 60)
    print("TEST SUMMARY")
    print("=" * 60)
    for name, passed in results:
        status = "✓ PASSED" if passed else "✗ FAILED"
        print(f"  {name}: {status}")

    all_passed = all(result for _, result in results)
    print("\n" + ("=" * 60))
    if all_passed:
        print("✓ ALL TESTS PASSED")
    else:
        print("✗ SOME TESTS FAILED")
    print("=" * 60 + "\n")

    return 0 if all_passed else 1


if __name__ == "__main__":
    sys.exit(main())
