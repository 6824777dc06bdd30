"""
Frame Scheduler - Fixed-rate tick loop for the canvas engine

STOPPED --start()--> RUNNING --stop()--> STOPPED

While RUNNING a daemon thread calls tick() once per frame interval:

    frame_start = now
    tick()                       # exceptions are logged, never fatal
    wait(max(0, interval - elapsed)) on the stop event

stop() lets the in-flight iteration finish; no new frame starts
afterwards. A restart while that iteration is still running starts a
new loop right away; the old one exits once its tick returns.

Overrunning frames simply start the next one immediately, there is no
catch-up.
"""

import logging
import threading
import time
from enum import Enum
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_TARGET_FPS = 30
# Seconds stop() waits for the loop thread
JOIN_TIMEOUT = 1.0


class SchedulerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class FrameScheduler:
    """Runs a tick callback at a fixed target frame rate"""

    def __init__(self, tick: Callable[[], None], target_fps: int = DEFAULT_TARGET_FPS,
                 name: str = "canvas-frame-scheduler"):
        if target_fps <= 0:
            raise ValueError(f"target_fps must be > 0, got {target_fps}")
        self._tick = tick
        self.target_fps = target_fps
        self.frame_interval = 1.0 / target_fps
        self._name = name

        self._state = SchedulerState.STOPPED
        self._state_lock = threading.Lock()
        self._stop_flag = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Stats
        self._frame_count = 0
        self._error_count = 0
        self._start_time = 0.0
        self._actual_fps = 0.0
        self._last_frame_ms = 0.0

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def actual_fps(self) -> float:
        return self._actual_fps

    @property
    def last_frame_ms(self) -> float:
        return self._last_frame_ms

    def start(self) -> bool:
        """Start the loop; False if already running"""
        with self._state_lock:
            if self._state == SchedulerState.RUNNING:
                return False
            self._state = SchedulerState.RUNNING
            # Each run gets its own stop event; a previous loop still finishing
            # a slow tick keeps polling its own, already set, event
            self._stop_flag = threading.Event()
            self._frame_count = 0
            self._actual_fps = 0.0
            self._start_time = time.monotonic()
            self._thread = threading.Thread(target=self._run_loop, args=(self._stop_flag,),
                                            name=self._name, daemon=True)
            self._thread.start()
        logger.info(f"Frame scheduler started at {self.target_fps} FPS")
        return True

    def stop(self) -> bool:
        """Stop the loop; False if already stopped"""
        with self._state_lock:
            if self._state == SchedulerState.STOPPED:
                return False
            self._state = SchedulerState.STOPPED
            self._stop_flag.set()
            thread = self._thread
            self._thread = None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=JOIN_TIMEOUT)
            if thread.is_alive():
                logger.warning(f"Frame scheduler thread did not exit within {JOIN_TIMEOUT}s")
        logger.info(f"Frame scheduler stopped after {self._frame_count} frames")
        return True

    def get_status(self) -> Dict:
        return {
            "state": self._state.value,
            "running": self.is_running,
            "target_fps": self.target_fps,
            "actual_fps": round(self._actual_fps, 1),
            "frame_count": self._frame_count,
            "last_frame_ms": round(self._last_frame_ms, 2),
            "tick_errors": self._error_count,
        }

    def _run_loop(self, stop_flag: threading.Event):
        """Main loop - runs at target FPS until stop_flag is set"""
        while not stop_flag.is_set():
            frame_start = time.monotonic()

            try:
                self._tick()
            except Exception:
                self._error_count += 1
                logger.exception("Frame tick failed")

            self._frame_count += 1
            frame_end = time.monotonic()
            frame_duration = frame_end - frame_start
            self._last_frame_ms = frame_duration * 1000.0

            total_elapsed = frame_end - self._start_time
            if total_elapsed > 0:
                self._actual_fps = self._frame_count / total_elapsed

            sleep_time = self.frame_interval - frame_duration
            if sleep_time > 0:
                stop_flag.wait(sleep_time)
