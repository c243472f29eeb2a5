# Dashboard UI

import json
import threading
from collections import deque
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional, TYPE_CHECKING
from rich.console import Console, Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.align import Align
from rich.rule import Rule

if TYPE_CHECKING:
    from .detector import VerboseDetectionResult

VERSION = "v0.2.0"

COLORS = {
    "border": "#334155",
    "muted": "#64748b",
    "text": "#e2e8f0",
    "text_dim": "#94a3b8",
    "heading": "#38bdf8",
    "success": "#10b981",
    "warning": "#f59e0b",
    "warn": "#f59e0b",
    "error": "#ef4444",
    "info": "#3b82f6",
    "strike": "#f43f5e",
    "idle": "#64748b",
    "active": "#10b981",
    "on": "#f43f5e",
    "off": "#475569",
}

HEADER_ART = (
    "█▄▄ █▀█ █▄▄ █▄▄ █▀▀ █▀█   █ █ █ ▄▀█ ▀█▀ █▀▀ █ █\n"
    "█▄█ █▄█ █▄█ █▄█ ██▄ █▀▄   ▀▄▀▄▀ █▀█  █  █▄▄ █▀█"
)
HEADER_COMPACT = "~~~ BOBBERWATCH ~~~"


class Stats:
    # Session stats with JSON persistence of the lifetime strike count
    STATS_FILE = "logs/stats.json"

    def __init__(self, stats_file: Optional[str] = None) -> None:
        self._lock = threading.Lock()
        self._file = Path(stats_file or self.STATS_FILE)
        self._start = datetime.now()
        self._paused_duration = timedelta(0)
        self._pause_start: Optional[datetime] = datetime.now()  # monitor starts paused
        self.frames = 0
        self.detections = 0
        self.strikes = 0
        self.errors = 0
        self._score_sum = 0.0
        self._fps = 0.0
        self._last_frame: Optional[datetime] = None
        self._total_strikes = 0

    def pause(self) -> None:
        with self._lock:
            if not self._pause_start:
                self._pause_start = datetime.now()
            self._last_frame = None

    def resume(self) -> None:
        with self._lock:
            if self._pause_start:
                self._paused_duration += datetime.now() - self._pause_start
                self._pause_start = None

    def record(self, detected: bool, score: float, strike: bool, failed: bool) -> None:
        with self._lock:
            now = datetime.now()
            if self._last_frame is not None:
                dt = (now - self._last_frame).total_seconds()
                if dt > 0:
                    # smoothed, so the panel doesn't flicker
                    self._fps = 0.9 * self._fps + 0.1 * (1.0 / dt) if self._fps else 1.0 / dt
            self._last_frame = now

            self.frames += 1
            if failed:
                self.errors += 1
            if detected:
                self.detections += 1
                self._score_sum += score
            if strike:
                self.strikes += 1
                self._total_strikes += 1

    def save(self) -> None:
        try:
            with self._lock:
                data = {
                    "total_strikes": self._total_strikes,
                    "last_save": datetime.now().isoformat()
                }
            self._file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._file, 'w', encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except OSError:
            pass

    def load(self) -> None:
        try:
            if self._file.exists():
                with open(self._file, 'r', encoding="utf-8") as f:
                    data = json.load(f)
                with self._lock:
                    self._total_strikes = int(data.get("total_strikes", 0))
        except (OSError, ValueError, AttributeError):
            pass

    def get(self) -> dict:
        """Returns dict with keys: runtime, runtime_sec, frames, detections,
        strikes, errors, detection_rate, mean_score, fps, total_strikes."""
        with self._lock:
            now = datetime.now()
            current_pause = timedelta(0)
            if self._pause_start:
                current_pause = now - self._pause_start
            total_active = (now - self._start) - (self._paused_duration + current_pause)
            total_sec = max(0, int(total_active.total_seconds()))
            h, rem = divmod(total_sec, 3600)
            m, s = divmod(rem, 60)

            return {
                "runtime": f"{h:02d}:{m:02d}:{s:02d}",
                "runtime_sec": total_sec,
                "frames": self.frames,
                "detections": self.detections,
                "strikes": self.strikes,
                "errors": self.errors,
                "detection_rate": (self.detections / self.frames * 100) if self.frames else 0.0,
                "mean_score": (self._score_sum / self.detections) if self.detections else 0.0,
                "fps": self._fps,
                "total_strikes": self._total_strikes
            }


class LogBuffer:
    def __init__(self, max_lines: int = 15) -> None:
        self._lines = deque(maxlen=max_lines)
        self._lock = threading.Lock()

    def add(self, message: str, level: str = "INFO") -> None:
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        with self._lock:
            self._lines.append((timestamp, level, message))

    def get_all(self):
        with self._lock: return list(self._lines)


class Dashboard:
    STATUS_IDLE = "idle"
    STATUS_WATCHING = "watching"
    STATUS_STRIKE = "strike"
    STATUS_ERROR = "error"

    # status -> (badge text, colour key)
    BADGES = {
        STATUS_IDLE: (" ● Idle ", "idle"),
        STATUS_WATCHING: (" ◉ Watching ", "active"),
        STATUS_STRIKE: (" ⚡ Strike ", "strike"),
        STATUS_ERROR: (" ✖ Error ", "error"),
    }

    def __init__(
        self, preset: str = "", night_hour: int = 20, refresh_ms: int = 100,
        pause_key: str = "f9", stop_key: str = "f10", reload_key: str = "f5",
        cycle_key: str = "f8", compact: bool = False, stats_file: Optional[str] = None
    ) -> None:
        self._live = None
        self._preset = preset
        self._night_hour = night_hour
        self._refresh_ms = max(10, refresh_ms)
        self._keys = [
            (pause_key.upper(), "Watch/Pause"),
            (reload_key.upper(), "Reload"),
            (cycle_key.upper(), "Preset"),
            (stop_key.upper(), "Quit"),
        ]
        self._compact = compact
        self._console = Console()
        self._stats = Stats(stats_file)
        self._events = LogBuffer(max_lines=50)
        self._status = self.STATUS_IDLE
        self._status_detail = ""
        self._template = ""
        self._last: Optional["VerboseDetectionResult"] = None
        self._lock = threading.Lock()

    @property
    def stats(self) -> Stats:
        return self._stats

    def log(self, message: str, level: str = "INFO") -> None:
        self._events.add(message, level)

    def set_status(self, status: str, detail: str = "") -> None:
        with self._lock:
            self._status, self._status_detail = status, detail

    def set_preset(self, name: str) -> None:
        with self._lock:
            self._preset = name

    def set_template(self, name: str) -> None:
        with self._lock:
            self._template = name

    def show_result(self, result: "VerboseDetectionResult") -> None:
        self._stats.record(result.detected, result.score, result.hook_detected, not result.ok)
        with self._lock:
            self._last = result

    def pause_timer(self) -> None:
        self._stats.pause()

    def resume_timer(self) -> None:
        self._stats.resume()

    def start(self) -> None:
        self._live = Live(
            self._render(), console=self._console,
            refresh_per_second=1000 // self._refresh_ms,
            screen=True, transient=False
        )
        self._live.start()

    def update(self) -> None:
        if self._live is not None:
            self._live.update(self._render())

    def stop(self) -> None:
        if self._live is not None:
            self._live.stop()
            self._live = None

    # -- rendering -----------------------------------------------------------

    def _panel(self, body, title: str, border: Optional[str] = None) -> Panel:
        return Panel(body, title=f"[{COLORS['heading']}]{title}[/]", border_style=border or COLORS['border'])

    def _render(self) -> Layout:
        layout = Layout()
        layout.split(
            Layout(self._render_header(), name="header", size=4 if self._compact else 6),
            Layout(name="middle", size=13),
            Layout(self._render_events(), name="events", ratio=1, minimum_size=5),
            Layout(self._render_footer(), name="footer", size=3)
        )
        layout["middle"].split_row(
            Layout(self._render_stats(), name="stats"),
            Layout(self._render_signals(), name="signals")
        )
        return layout

    def _render_header(self) -> Panel:
        label, color = self.BADGES.get(self._status, (f" ● {self._status} ", "muted"))
        line = Text()
        line.append(f"{VERSION}  │  Preset: ", style=COLORS['text_dim'])
        line.append(self._preset or "none", style=f"bold {COLORS['text']}")
        line.append("  │ ", style=COLORS['border'])
        line.append(label, style=f"bold {COLORS[color]}")
        if self._status_detail:
            line.append(f" {self._status_detail}", style=COLORS['text_dim'])

        art = Text(HEADER_COMPACT if self._compact else HEADER_ART, style=COLORS['heading'])
        return Panel(Group(Align.center(art), Align.center(line)), border_style=COLORS['border'])

    def _grid(self, value_style: str) -> Table:
        grid = Table.grid(padding=(0, 2), expand=True)
        grid.add_column(justify="right", style=COLORS['muted'])
        grid.add_column(justify="left", style=value_style)
        return grid

    def _render_stats(self) -> Panel:
        data = self._stats.get()
        rate = data["detection_rate"]
        rate_color = 'success' if rate >= 80 else 'warning' if rate >= 50 else 'error'

        grid = self._grid(f"bold {COLORS['text']}")
        rows = [
            ("Runtime", data["runtime"]),
            ("Frames", f"{data['frames']}  ({data['fps']:.1f} fps)"),
            ("Found", Text(f"{rate:.1f}%", style=f"bold {COLORS[rate_color]}")),
            ("Avg score", f"{data['mean_score']:.3f}"),
            ("Strikes", Text(f"{data['strikes']}  / {data['total_strikes']} lifetime", style=f"bold {COLORS['strike']}")),
        ]
        if data["errors"]:
            rows.append(("Errors", Text(str(data["errors"]), style=f"bold {COLORS['error']}")))
        for label, value in rows:
            grid.add_row(label, value)
        return self._panel(grid, "Session")

    def _render_signals(self) -> Panel:
        r = self._last
        if r is None:
            return self._panel(Align.center(Text("no frames yet", style=COLORS['muted'])), "Signals")

        flags = Text()
        for label, on in (("JERK", r.jerk), ("FLOW", r.flow), ("DIFF", r.diff),
                          ("MICRO", r.micro_move), ("GATE", r.gate_open)):
            flags.append(f" {label} ", style=f"bold {COLORS['on' if on else 'off']}")

        grid = self._grid(COLORS['text'])
        if r.detected:
            grid.add_row("Float", f"({r.x:.0f}, {r.y:.0f})  x{r.scale:.2f}")
        else:
            grid.add_row("Float", Text(r.reason or "not found", style=COLORS['text_dim']))
        grid.add_row("Score", f"{r.score:.3f}  (v1 {r.intensity_score:.2f} / v2 {r.gradient_score:.2f})")
        grid.add_row("Votes", f"{r.votes}/3")
        grid.add_row("zDy / zRip", f"{r.z_dy:+.2f} / {r.z_ripple:+.2f}")
        grid.add_row("dy / ripple", f"{r.dy:+.0f}px / {r.ripple_energy:.2f}")

        parts = [Align.center(flags), Rule(style=COLORS['border']), grid]
        if self._template:
            parts.append(Align.center(Text(f"Template: {self._template}", style=COLORS['text_dim'])))
        return self._panel(Group(*parts), "Signals", COLORS['strike'] if r.hook_detected else None)

    def _render_events(self) -> Panel:
        rows = self._events.get_all()[-max(3, self._console.size.height - 26):]
        if not rows:
            return self._panel(Align.center(Text("quiet so far", style=COLORS['muted'])), "Events")

        body = Text()
        for ts, level, message in rows:
            color = COLORS.get(level.lower(), COLORS['info'])
            body.append(f" {ts} ", style=COLORS['text_dim'])
            body.append(f"{level:<7}", style=f"bold {color}")
            body.append(f" {message}\n", style=COLORS['text'])
        return self._panel(Align(body, vertical="bottom"), "Events")

    def _render_footer(self) -> Panel:
        footer = Text()
        for key, action in self._keys:
            footer.append(f"  {key} ", style=f"bold {COLORS['text_dim']}")
            footer.append(action, style=COLORS['muted'])
        hour = datetime.now().hour
        if hour >= self._night_hour or hour < 6:
            footer.append("   🌙 Night Mode", style=COLORS['text_dim'])
        return Panel(Align.center(footer), border_style=COLORS['border'])


def make_logger(dash: Dashboard):
    # log_fn for the detector: event log + immediate redraw
    def log(msg: str, level: str = "INFO"):
        dash.log(msg, level)
        dash.update()
    return log
