"""
Scheduler module for cl-vitality

Two independent background loops, each run in its own daemon thread:

- ChannelHealthLoop: runs a HealthCheckCycle every hour. Any cycle-level
  failure is alerted immediately; the tick interval never changes.
- ReachabilityLoop: runs the Amboss probe every 5 minutes. The first
  failure only switches to a short retry interval; sustained failures
  are alerted and the retry interval grows by a fixed step.

Every sleep is shutdown_event.wait() so `lightning-cli plugin stop`
ends the loops immediately instead of after their sleep timers.
"""

import os
import threading
import time
from typing import Any, Dict, Optional

from .config import Config
from .health_cycle import CycleResult, HealthCheckCycle
from .metrics import METRIC_HELP, MetricNames, PrometheusExporter
from .notifier import Notifier
from .reachability import ReachabilityProber


CHANNEL_CHECK_INTERVAL = 3600
CHANNEL_CHECK_STARTUP_DELAY = 600

PROBE_BASE_INTERVAL = 300
PROBE_RETRY_INTERVAL = 10
PROBE_BACKOFF_STEP = 10


def debug_mode_enabled() -> bool:
    """True if TEST_DEBUG is set to a true boolean (skips startup delays)."""
    return os.environ.get("TEST_DEBUG", "").strip().lower() in ('true', '1', 'yes', 'on')


class ChannelHealthLoop:
    """Drives HealthCheckCycle on a fixed interval."""

    name = "check_channels_loop"

    def __init__(self, cycle: HealthCheckCycle, plugin, config: Config, notifier: Notifier,
                 shutdown_event: threading.Event,
                 metrics: Optional[PrometheusExporter] = None,
                 interval: int = CHANNEL_CHECK_INTERVAL,
                 startup_delay: Optional[int] = None):
        self.cycle = cycle
        self.plugin = plugin
        self.config = config
        self.notifier = notifier
        self.shutdown_event = shutdown_event
        self.metrics = metrics
        self.interval = interval
        if startup_delay is None:
            startup_delay = 0 if debug_mode_enabled() else CHANNEL_CHECK_STARTUP_DELAY
        self.startup_delay = startup_delay

        self.last_result: Optional[CycleResult] = None
        self.last_error: Optional[str] = None
        self.last_run: Optional[int] = None

    def tick(self) -> int:
        """Run one cycle (if enabled) and return the seconds to sleep."""
        cfg = self.config.snapshot()
        if not cfg.channel_watch_enabled:
            self.plugin.log("check_channel: all channel checks disabled, skipping", level='debug')
            return self.interval

        self.last_run = int(time.time())
        try:
            self.last_result = self.cycle.run()
            self.last_error = None
            if self.metrics:
                self.metrics.set_gauge(
                    MetricNames.SYSTEM_LAST_RUN_TIMESTAMP, int(time.time()), {"task": "channels"},
                    METRIC_HELP[MetricNames.SYSTEM_LAST_RUN_TIMESTAMP]
                )
        except Exception as e:
            self.last_error = str(e)
            self.plugin.log(f"Error in check_channel: {e}", level='warn')
            if self.metrics:
                self.metrics.inc_counter(
                    MetricNames.CYCLE_FAILURES_TOTAL, 1, {"task": "channels"},
                    METRIC_HELP[MetricNames.CYCLE_FAILURES_TOTAL]
                )
            self.notifier.notify(self.config.snapshot(), "Channel check error", str(e))

        return self.interval

    def run(self) -> None:
        if self.startup_delay and self.shutdown_event.wait(self.startup_delay):
            self.plugin.log("Channel health loop cancelled during startup delay")
            return

        while not self.shutdown_event.is_set():
            sleep_time = self.tick()
            if self.shutdown_event.wait(sleep_time):
                self.plugin.log("Channel health loop stopping due to shutdown signal")
                break

    def status(self) -> Dict[str, Any]:
        return {
            "interval_seconds": self.interval,
            "last_run": self.last_run,
            "last_error": self.last_error,
            "last_result": self.last_result.to_dict() if self.last_result else None,
        }


class ReachabilityLoop:
    """
    Drives ReachabilityProber with backoff.

    interval starts at the baseline. A failure while at the baseline drops
    to the retry interval without alerting (single blips are common); a
    failure while already retrying alerts and grows the interval by
    PROBE_BACKOFF_STEP. Any success resets to the baseline.
    """

    name = "amboss_ping_loop"

    def __init__(self, prober: ReachabilityProber, plugin, config: Config, notifier: Notifier,
                 shutdown_event: threading.Event,
                 metrics: Optional[PrometheusExporter] = None,
                 base_interval: int = PROBE_BASE_INTERVAL,
                 retry_interval: int = PROBE_RETRY_INTERVAL,
                 backoff_step: int = PROBE_BACKOFF_STEP):
        self.prober = prober
        self.plugin = plugin
        self.config = config
        self.notifier = notifier
        self.shutdown_event = shutdown_event
        self.metrics = metrics
        self.base_interval = base_interval
        self.retry_interval = retry_interval
        self.backoff_step = backoff_step

        self.interval = base_interval
        self.last_success: Optional[int] = None
        self.last_error: Optional[str] = None

    def _record_interval(self) -> None:
        if self.metrics:
            self.metrics.set_gauge(
                MetricNames.PROBE_INTERVAL_SECONDS, self.interval, None,
                METRIC_HELP[MetricNames.PROBE_INTERVAL_SECONDS]
            )

    def tick(self) -> int:
        """Run one probe (if enabled) and return the seconds to sleep."""
        cfg = self.config.snapshot()
        if not cfg.amboss:
            self.interval = self.base_interval
            return self.interval

        try:
            self.prober.probe()
            self.interval = self.base_interval
            self.last_success = int(time.time())
            self.last_error = None
        except Exception as e:
            self.last_error = str(e)
            self.plugin.log(f"Error in amboss_ping: {e}", level='warn')
            if self.metrics:
                self.metrics.inc_counter(
                    MetricNames.PROBE_FAILURES_TOTAL, 1, None,
                    METRIC_HELP[MetricNames.PROBE_FAILURES_TOTAL]
                )

            if self.interval >= self.base_interval:
                self.interval = self.retry_interval
            else:
                self.notifier.notify(self.config.snapshot(), "Amboss error", str(e))
                self.interval += self.backoff_step

        self._record_interval()
        return self.interval

    def run(self) -> None:
        while not self.shutdown_event.is_set():
            sleep_time = self.tick()
            if self.shutdown_event.wait(sleep_time):
                self.plugin.log("Amboss ping loop stopping due to shutdown signal")
                break

    def status(self) -> Dict[str, Any]:
        return {
            "interval_seconds": self.interval,
            "last_success": self.last_success,
            "last_error": self.last_error,
        }


def run_supervised(loop, plugin, config: Config, notifier: Notifier) -> None:
    """
    Thread target: run loop.run() and alert if the loop itself dies.

    Per-iteration errors are handled inside the loops; this only catches
    what escapes them.
    """
    try:
        loop.run()
    except Exception as e:
        plugin.log(f"Error in {loop.name} thread: {e}", level='error')
        try:
            notifier.notify(config.snapshot(), f"ALARM: {loop.name} Error", str(e))
        except Exception as alarm_error:
            plugin.log(f"Could not send {loop.name} alarm: {alarm_error}", level='error')
