#!/usr/bin/env python3
"""
PinchPad - Webcam Drum Pad Demo

Demonstrates the ROI tracking and marker state pipeline:
1. Opens webcam feed (or a video file)
2. User drags with the mouse to "pinch-draw" a circle around a marker
3. The marker is tracked: outline, rotation and confidence are drawn
4. Covering the marker with a hand fires TAP, then ENGAGED if held
5. Uncovering it fires RELEASE, then the marker returns to DEFAULT

Usage:
    python main_demo.py

Controls:
    - LEFT DRAG: Draw a circle around a marker (stands in for the pinch gesture)
    - RIGHT CLICK: Remove the nearest ROI
    - R: Reset all ROIs (recapture references)
    - C: Clear all ROIs
    - Q/ESC: Quit
"""

import sys
import math
import logging
import argparse
from typing import Dict, Optional, Tuple

import cv2
import numpy as np

# Add src to path
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from pinchpad.config import load_config
from pinchpad.gestures import PinchEvent, PinchRoiBuilder
from pinchpad.marker_state import MarkerState, MarkerStateChanged
from pinchpad.pipeline import RoiFrameResult, RoiTrackingPipeline
from pinchpad.video_pipeline import ThreadedFrameSource
from pinchpad.annotation_layer import RoiOverlayRenderer


DRUM_SOUNDS = {
    MarkerState.TAP: "TAP  - snare hit",
    MarkerState.ENGAGED: "HOLD - sustained note",
    MarkerState.RELEASE: "LIFT - note off",
}


class PinchPadDemo:
    """
    Interactive demo of the PinchPad pipeline.
    """

    WINDOW_NAME = "PinchPad Demo"

    def __init__(
            self,
            pipeline: RoiTrackingPipeline,
            source: int | str = 0,
            resolution: Optional[Tuple[int, int]] = None,
            loop: bool = False
    ):
        self.pipeline = pipeline
        self.source = source
        self.resolution = resolution
        self.loop = loop

        self.video: Optional[ThreadedFrameSource] = None
        self.builder: Optional[PinchRoiBuilder] = None
        self.renderer = RoiOverlayRenderer()
        self._results: Dict[str, RoiFrameResult] = {}
        self._mouse_down = False
        self._running = False

        self.logger = logging.getLogger("PinchPadDemo")
        self.pipeline.events.subscribe(self._on_marker_change, MarkerStateChanged)

    def _on_marker_change(self, event: MarkerStateChanged):
        sound = DRUM_SOUNDS.get(event.new_state)
        if sound:
            print(f"  [{event.state_code}] ROI {event.marker_id}: {sound} "
                  f"at ({event.position[0]:.2f}, {event.position[1]:.2f})")

    def _mouse_callback(self, event, x, y, flags, param):
        if self.builder is None:
            return
        if event == cv2.EVENT_LBUTTONDOWN:
            self._mouse_down = True
            self.builder.feed(PinchEvent(True, (x, y)))
        elif event == cv2.EVENT_MOUSEMOVE and self._mouse_down:
            self.builder.feed(PinchEvent(True, (x, y)))
        elif event == cv2.EVENT_LBUTTONUP and self._mouse_down:
            self._mouse_down = False
            roi = self.builder.feed(PinchEvent(False, (x, y)))
            if roi is not None:
                self.pipeline.set_roi(roi)
        elif event == cv2.EVENT_RBUTTONDOWN:
            self._remove_nearest(x, y)

    def _remove_nearest(self, x: int, y: int):
        w, h = self.builder.frame_size
        nearest = None
        best = math.inf
        for roi in self.pipeline.rois:
            d = math.hypot(roi.center[0] * w - x, roi.center[1] * h - y)
            if d < best:
                nearest, best = roi, d
        if nearest is not None:
            self.pipeline.remove_roi(nearest.roi_id)
            self._results.pop(nearest.roi_id, None)

    def _handle_key(self, key: int):
        if key == ord('q') or key == 27:
            self._running = False
        elif key == ord('r'):
            for roi in self.pipeline.rois:
                self.pipeline.reset_roi(roi.roi_id)
            self._results.clear()
        elif key == ord('c'):
            self.pipeline.clear()
            self._results.clear()

    def _draw_pinch_path(self, frame: np.ndarray):
        path = self.builder.current_path()
        if len(path) > 1:
            pts = np.array(path, dtype=np.int32).reshape(-1, 1, 2)
            cv2.polylines(frame, [pts], False, (255, 255, 0), 2, cv2.LINE_AA)

    def run(self):
        """Run the demo."""
        self.logger.info("Starting PinchPad Demo...")

        self.video = ThreadedFrameSource(source=self.source, resolution=self.resolution, loop=self.loop)
        if not self.video.start():
            self.logger.error("Failed to start video capture")
            return

        cv2.namedWindow(self.WINDOW_NAME)
        cv2.setMouseCallback(self.WINDOW_NAME, self._mouse_callback)
        self._running = True

        try:
            while self._running:
                frame = self.video.get_current_frame()
                if frame is None:
                    if not self.video.is_running:
                        self.logger.info("Video source ended")
                        break
                    cv2.waitKey(10)
                    continue

                h, w = frame.shape[:2]
                if self.builder is None or self.builder.frame_size != (w, h):
                    self.builder = PinchRoiBuilder((w, h))

                results = self.pipeline.process_frame(frame)
                self._results.update(results)

                output = cv2.cvtColor(frame, cv2.COLOR_RGBA2BGR)
                rois = {roi.roi_id: roi for roi in self.pipeline.rois}
                self.renderer.render_all(output, rois, self._results)
                self._draw_pinch_path(output)
                self.pipeline.monitor.draw(output)

                cv2.imshow(self.WINDOW_NAME, output)
                self._handle_key(cv2.waitKey(1) & 0xFF)

        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.video.stop()
            self.pipeline.close()
            cv2.destroyAllWindows()
            self.logger.info("Demo stopped.")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="PinchPad ROI Tracking Demo",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Controls:
  LEFT DRAG    Draw a circle around a marker
  RIGHT CLICK  Remove nearest ROI
  R            Reset all ROIs
  C            Clear all ROIs
  Q/ESC        Quit

Settings:
  Tunables are read from .env / PINCHPAD_* variables, e.g.
    PINCHPAD_MATCH_THRESHOLD=0.5
    PINCHPAD_ENGAGEMENT_DURATION_MS=400

Examples:
  python main_demo.py                       # Default webcam (0)
  python main_demo.py --source 1            # Webcam index 1
  python main_demo.py --source clip.mp4     # Video file
  python main_demo.py --max-rois 3 --parallel
        """
    )

    parser.add_argument(
        "--source", "-s",
        default=0,
        help="Video source: camera index (0, 1, ...) or file path"
    )
    parser.add_argument(
        "--resolution", "-r",
        type=str,
        default=None,
        help="Resolution as WxH (e.g., 1280x720)"
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Loop video files when they reach the end"
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Settings file (default: .env in the project or working directory)"
    )
    parser.add_argument(
        "--max-rois",
        type=int,
        default=None,
        help="Number of ROIs tracked at once"
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Run the shape and feature stages on worker threads"
    )
    parser.add_argument(
        "--calibrate",
        nargs=2,
        type=float,
        metavar=("CM", "PX"),
        default=None,
        help="Known length in cm and its measured length in pixels"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        source = int(args.source)
    except ValueError:
        source = args.source

    resolution = None
    if args.resolution:
        try:
            w, h = args.resolution.lower().split('x')
            resolution = (int(w), int(h))
        except ValueError:
            print(f"Invalid resolution format: {args.resolution}")
            sys.exit(1)

    try:
        config = load_config(args.env_file)
    except ValueError as e:
        print(f"Invalid settings: {e}")
        sys.exit(1)
    if args.max_rois is not None:
        config.max_rois = args.max_rois
    if args.parallel:
        config.parallel_stages = True

    pipeline = RoiTrackingPipeline(config)
    if args.calibrate:
        pipeline.update_pixel_to_cm_ratio(*args.calibrate)

    print("\n" + "=" * 60)
    print("  PinchPad - ROI Tracking & Marker States")
    print("=" * 60)
    print(f"  Source: {source}")
    print(f"  Max ROIs: {config.max_rois}")
    print(f"  Parallel stages: {'Enabled' if config.parallel_stages else 'Disabled'}")
    print(f"  Match threshold: {config.features.match_threshold}")
    print("=" * 60)
    print("\n  Drag around a marker to start tracking it.")
    print("  Cover it with your hand to tap, hold to engage.\n")

    demo = PinchPadDemo(
        pipeline=pipeline,
        source=source,
        resolution=resolution,
        loop=args.loop
    )
    demo.run()


if __name__ == "__main__":
    main()
