# BobberWatch - live strike monitor
# Stares at the float so you don't have to

import sys
import time
import keyboard
from pathlib import Path
from typing import Optional

# Local imports
from bobberwatch import AppConfig, load_config
from bobberwatch.config import DEFAULT_CONFIG, DetectorConfig
from bobberwatch.detector import StrikeDetector
from bobberwatch.reporter import FrameReporter
from bobberwatch.vision import Region, ScreenCapture, TemplateError, monitor_region
from bobberwatch.ui import Dashboard, make_logger

# How long the header keeps shouting STRIKE after the hook flag drops
STRIKE_BANNER_SECONDS = 1.5


def resolve_region(cfg: AppConfig, screen: ScreenCapture, log) -> Region:
    # Config coordinates are relative to the chosen monitor
    cap = cfg.capture
    region = monitor_region(cap.region_x, cap.region_y, cap.region_width, cap.region_height,
                            screen.list_monitors(), cap.monitor)
    if region is None:
        log(f"Monitor {cap.monitor} not found, using absolute coordinates", "WARN")
        region = Region(cap.region_x, cap.region_y, cap.region_width, cap.region_height)
    return region


class StrikeWatch:
    # Main loop - capture, detect, show

    def __init__(self):
        # State Flags
        self.running: bool = True
        self.paused: bool = True  # Start paused, F9 to watch
        self.reload_requested: bool = False
        self.cycle_requested: bool = False

        # Runtime State
        self.region: Optional[Region] = None
        self.last_pause_state: bool = True
        self.last_strike: float = 0.0

        # Components (Lazy loaded)
        self.cfg: Optional[AppConfig] = None
        self.dash: Optional[Dashboard] = None
        self.log = lambda m, l: None  # Dummy logger until init
        self.screen: Optional[ScreenCapture] = None
        self.detector: Optional[StrikeDetector] = None
        self.reporter: Optional[FrameReporter] = None

    def bootstrap(self):
        # 1. Config First
        if not Path("config.yaml").exists():
            with open("config.yaml", "w", encoding="utf-8") as f:
                f.write(DEFAULT_CONFIG.strip())

        try:
            self.cfg = load_config()
        except Exception as e:
            print(f"CRITICAL: Config failed to load: {e}")
            sys.exit(1)

        # 2. UI
        self._init_ui()

        # 3. Core Systems
        self.screen = ScreenCapture(monitor_index=self.cfg.capture.monitor)
        self._reload_systems(initial=True)

        # 4. Hotkeys
        self._bind_hotkeys()

        self.log(f"Watching region {self.region.width}x{self.region.height} @ ({self.region.x},{self.region.y})", "SUCCESS")
        self.log(f"READY. Press {self.cfg.hotkeys.pause_bot.upper()} to START.", "WARN")

    def _bind_hotkeys(self):
        keyboard.add_hotkey(self.cfg.hotkeys.pause_bot, self._toggle_pause)
        keyboard.add_hotkey(self.cfg.hotkeys.stop_bot, self._stop)
        keyboard.add_hotkey(self.cfg.hotkeys.reload_bot, self._request_reload)
        keyboard.add_hotkey(self.cfg.hotkeys.cycle_preset, self._request_cycle)

    def _toggle_pause(self):
        self.paused = not self.paused

    def _stop(self):
        self.running = False

    def _request_reload(self):
        self.reload_requested = True

    def _request_cycle(self):
        self.cycle_requested = True

    def _init_ui(self):
        self.dash = Dashboard(
            preset=self.cfg.detector.preset_name,
            night_hour=self.cfg.ui.night_mode_hour,
            refresh_ms=self.cfg.ui.refresh_rate_ms,
            pause_key=self.cfg.hotkeys.pause_bot,
            stop_key=self.cfg.hotkeys.stop_bot,
            reload_key=self.cfg.hotkeys.reload_bot,
            cycle_key=self.cfg.hotkeys.cycle_preset
        )
        self.dash.stats.load()
        self.log = make_logger(self.dash)
        self.dash.start()

    def _reload_systems(self, initial: bool = False):
        # Fresh detector = fresh session; toggles are frozen per instance
        self.region = resolve_region(self.cfg, self.screen, self.log)

        if self.reporter is not None:
            self.reporter.end_session()
            self.reporter = None
        if self.cfg.report.enabled:
            self.reporter = FrameReporter(self.cfg.report.output_dir, self.cfg.report.session_name)
            self.reporter.start_session(
                self.cfg.matching.template_path, self.region, self.cfg.matching.confidence_threshold
            )
            self.log(f"Reporting to {self.reporter.csv_path}", "INFO")

        self.detector = StrikeDetector(
            config=self.cfg.detector,
            template_path=self.cfg.matching.template_path or None,
            frame_source=self.screen,
            reporter=self.reporter,
            debug_path=Path("logs/debug") if self.cfg.visual.debug_mode else None,
            log_fn=self.log
        )
        self.dash.set_preset(self.cfg.detector.preset_name)
        try:
            self.dash.set_template(self.detector.load().path.name)
        except TemplateError as e:
            # Not fatal: every frame will report it until the file shows up
            self.dash.set_template("missing")
            self.log(e.reason, "WARN")

        if not initial:
            self.log(f"System reloaded. Preset: {self.cfg.detector.preset_name.upper()}", "SUCCESS")

    def handle_reload(self):
        # Hot-reload config and systems
        self.reload_requested = False
        try:
            self.cfg = load_config()
            self._reload_systems()
        except Exception as e:
            self.log(f"Reload failed: {e}", "ERROR")

    def handle_cycle(self):
        # template-only <-> signal-enhanced
        self.cycle_requested = False
        try:
            if self.cfg.detector == DetectorConfig.signal_enhanced():
                self.cfg.detector = DetectorConfig.template_only()
            else:
                self.cfg.detector = DetectorConfig.signal_enhanced()
            self._reload_systems()
        except Exception as e:
            self.log(f"Cycle failed: {e}", "ERROR")

    def smart_sleep(self, duration: float):
        # Responsive sleep - keeps UI alive and checks hotkeys
        if duration <= 0: return

        end_time = time.monotonic() + duration
        while time.monotonic() < end_time:
            if self.reload_requested: self.handle_reload()
            if self.cycle_requested: self.handle_cycle()
            if not self.running or self.paused: break
            time.sleep(min(0.005, max(0.0, end_time - time.monotonic())))

    def run(self):
        self.bootstrap()

        try:
            while self.running:
                # 1. Input Handling
                if self.reload_requested: self.handle_reload()
                if self.cycle_requested: self.handle_cycle()

                # 2. Pause Logic
                if self.paused:
                    if not self.last_pause_state:
                        self.dash.set_status(Dashboard.STATUS_IDLE, "Paused")
                        self.dash.pause_timer()
                        self.log("PAUSED via Hotkey", "WARN")
                        self.last_pause_state = True

                    self.dash.update()
                    time.sleep(0.1)
                    continue

                if self.last_pause_state:
                    self.dash.resume_timer()
                    self.detector.reset_session()
                    self.log("WATCHING", "SUCCESS")
                    self.last_pause_state = False

                # 3. Core Loop
                started = time.monotonic()
                self._tick()

                # 4. Frame pacing
                budget = 1.0 / max(1, self.cfg.capture.target_fps)
                self.smart_sleep(budget - (time.monotonic() - started))

        except KeyboardInterrupt:
            pass
        except Exception as e:
            self.log(f"CRITICAL ERROR: {e}", "ERROR")
            import traceback
            traceback.print_exc()
            time.sleep(3.0)  # Give user time to see it
        finally:
            self.shutdown()

    def _tick(self):
        # One frame
        result = self.detector.detect_verbose(self.region, self.cfg.matching.confidence_threshold)
        self.dash.show_result(result)

        now = time.monotonic()
        if result.hook_detected:
            if now - self.last_strike > STRIKE_BANNER_SECONDS:
                self.dash.stats.save()
            self.last_strike = now

        if now - self.last_strike <= STRIKE_BANNER_SECONDS:
            self.dash.set_status(Dashboard.STATUS_STRIKE, f"score {result.score:.2f}")
        elif not result.ok:
            self.dash.set_status(Dashboard.STATUS_ERROR, result.reason)
        elif result.detected:
            self.dash.set_status(Dashboard.STATUS_WATCHING, f"float @ ({result.x:.0f},{result.y:.0f})")
        else:
            self.dash.set_status(Dashboard.STATUS_WATCHING, "searching...")
        self.dash.update()

    def shutdown(self):
        # Unregister hotkeys
        try:
            keyboard.unhook_all()
        except Exception:
            pass
        if self.reporter is not None:
            summary = self.reporter.end_session()
            self.reporter = None
        else:
            summary = None
        if self.screen:
            self.screen.close()
        if self.dash:
            self.dash.stats.save()
            self.dash.stop()
        if summary:
            print(f"Session {summary['session']}: {summary['frames']} frames, "
                  f"{summary['hooks']} strike frames, detection rate {summary['detection_rate']:.1%}")
        print("\nExiting BobberWatch...")


def diagnose() -> int:
    # One-shot pipeline check without the dashboard
    cfg = load_config()
    log = lambda m, l: print(f"[{l}] {m}")
    with ScreenCapture(monitor_index=cfg.capture.monitor) as screen:
        region = resolve_region(cfg, screen, log)
        detector = StrikeDetector(
            config=cfg.detector,
            template_path=cfg.matching.template_path or None,
            frame_source=screen,
            log_fn=log
        )
        report = detector.diagnose(region, cfg.matching.confidence_threshold,
                                   save_images=True, output_dir=Path("logs/diagnosis"))
    print(report.full_report())
    return 0 if report.success else 1


def main():
    if "--diagnose" in sys.argv[1:]:
        sys.exit(diagnose())
    watch = StrikeWatch()
    watch.run()


if __name__ == "__main__":
    main()
