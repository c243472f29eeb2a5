"""
bobberwatch/reporter.py - Per-frame CSV/JSONL telemetry for tuning sessions.

One row per processed frame, written to
    <output_dir>/<session>_frames.csv
    <output_dir>/<session>_frames.jsonl
and a <session>_summary.json when the session ends.
"""

import csv
import json
import math
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional, List, TYPE_CHECKING

if TYPE_CHECKING:
    from .detector import VerboseDetectionResult
    from .vision import Region

FLUSH_EVERY = 25

COLUMNS = [
    "ts", "detected", "score", "pos_x", "pos_y", "match_w", "match_h",
    "bbox_x", "bbox_y", "patch_std", "scale", "v1", "v2", "mask_on_ratio",
    "jerk", "flow", "diff", "votes", "micro_move", "z_dy", "z_ripple",
    "dy", "ripple_energy", "hook_detected", "gate_open", "color_gate_ok",
    "template_id", "reason",
]


class FrameReporter:

    def __init__(self, output_dir: str = "analysis_output", session_name: str = "") -> None:
        self._lock = threading.Lock()
        self._dir = Path(output_dir)
        self._requested_name = session_name
        self.session_id = ""
        self.csv_path: Optional[Path] = None
        self.jsonl_path: Optional[Path] = None
        self._csv_file = None
        self._csv = None
        self._jsonl_file = None
        self._pending = 0
        self._frames = 0
        self._detections = 0
        self._hooks = 0
        self._scores: List[float] = []
        self._meta: dict = {}

    @property
    def active(self) -> bool:
        return self._csv is not None

    def start_session(self, template_path: str = "", region: Optional["Region"] = None,
                      confidence_threshold: Optional[float] = None) -> None:
        with self._lock:
            self._close_files()
            self.session_id = self._requested_name or f"session_{datetime.now():%Y%m%d_%H%M%S}"
            self._frames = self._detections = self._hooks = self._pending = 0
            self._scores = []
            self._meta = {
                "session": self.session_id,
                "started": datetime.now().isoformat(),
                "template": str(template_path),
                "region": [region.x, region.y, region.width, region.height] if region else None,
                "confidence_threshold": confidence_threshold,
            }
            try:
                self._dir.mkdir(parents=True, exist_ok=True)
                self.csv_path = self._dir / f"{self.session_id}_frames.csv"
                self.jsonl_path = self._dir / f"{self.session_id}_frames.jsonl"
                self._csv_file = open(self.csv_path, "w", newline="", encoding="utf-8")
                self._csv = csv.DictWriter(self._csv_file, fieldnames=COLUMNS)
                self._csv.writeheader()
                self._jsonl_file = open(self.jsonl_path, "w", encoding="utf-8")
            except OSError:
                self._close_files()

    def log_frame(self, result: "VerboseDetectionResult") -> None:
        row = {
            "ts": datetime.now().isoformat(timespec="milliseconds"),
            "detected": result.detected,
            "score": round(result.score, 4),
            "pos_x": round(result.x, 2),
            "pos_y": round(result.y, 2),
            "match_w": result.width,
            "match_h": result.height,
            "bbox_x": result.bbox_x,
            "bbox_y": result.bbox_y,
            "patch_std": round(result.patch_std, 3),
            "scale": result.scale,
            "v1": round(result.intensity_score, 4),
            "v2": round(result.gradient_score, 4),
            "mask_on_ratio": round(result.mask_on_ratio, 4),
            "jerk": result.jerk,
            "flow": result.flow,
            "diff": result.diff,
            "votes": result.votes,
            "micro_move": result.micro_move,
            "z_dy": round(result.z_dy, 4),
            "z_ripple": round(result.z_ripple, 4),
            "dy": result.dy,
            "ripple_energy": round(result.ripple_energy, 4),
            "hook_detected": result.hook_detected,
            "gate_open": result.gate_open,
            "color_gate_ok": result.color_gate_ok,
            "template_id": result.template_id,
            "reason": result.reason,
        }
        with self._lock:
            self._frames += 1
            if result.detected:
                self._detections += 1
            if result.hook_detected:
                self._hooks += 1
            self._scores.append(result.score)

            if not self.active:
                return
            try:
                self._csv.writerow(row)
                self._jsonl_file.write(json.dumps(row) + "\n")
                self._pending += 1
                if self._pending >= FLUSH_EVERY:
                    self._csv_file.flush()
                    self._jsonl_file.flush()
                    self._pending = 0
            except OSError:
                self._close_files()

    def summary(self) -> dict:
        with self._lock:
            return self._summary()

    def _summary(self) -> dict:
        scores = self._scores
        n = len(scores)
        mean = sum(scores) / n if n else 0.0
        std = math.sqrt(sum((s - mean) ** 2 for s in scores) / n) if n else 0.0
        return {
            **self._meta,
            "frames": self._frames,
            "detections": self._detections,
            "hooks": self._hooks,
            "detection_rate": self._detections / self._frames if self._frames else 0.0,
            "score_mean": mean,
            "score_std": std,
            "score_min": min(scores) if n else 0.0,
            "score_max": max(scores) if n else 0.0,
        }

    def end_session(self) -> dict:
        with self._lock:
            data = self._summary()
            data["ended"] = datetime.now().isoformat()
            self._close_files()
            if self.session_id:
                try:
                    with open(self._dir / f"{self.session_id}_summary.json", "w", encoding="utf-8") as f:
                        json.dump(data, f, indent=2)
                except OSError:
                    pass
            return data

    def _close_files(self) -> None:
        for handle in (self._csv_file, self._jsonl_file):
            if handle is not None:
                try:
                    handle.close()
                except OSError:
                    pass
        self._csv_file = None
        self._jsonl_file = None
        self._csv = None
