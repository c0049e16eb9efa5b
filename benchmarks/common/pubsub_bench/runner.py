"""
BenchmarkRunner - runs a driver and records the outcome.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from . import __version__
from .config import BenchConfig
from .driver import BenchmarkDriver
from .environment import Environment, collect_environment
from .metrics import Timer, measure_memory
from .report import ReportWriter

logger = logging.getLogger(__name__)


class BenchmarkRunner:
    """
    Benchmark execution wrapper.

    Provides:
    - Environment collection
    - Driver execution with signal handling
    - Result serialization to ``<results_dir>/<mode>_<name>.json``
    """

    def __init__(self, config: BenchConfig, report: ReportWriter | None = None):
        self.config = config
        self.report = report
        self.environment: Environment | None = None
        self.driver: BenchmarkDriver | None = None

    @property
    def result_name(self) -> str:
        return f"{self.config.mode}_{self.config.name or self.config.sender_id}"

    async def run_async(self) -> dict:
        """
        Run the benchmark and return its summary.

        Raises:
            ConfigurationError: invalid settings
            TransportError: the transport failed
        """
        self.driver = BenchmarkDriver(self.config, report=self.report, handle_signals=True)
        self.environment = collect_environment(self.config)

        start_time = datetime.now(timezone.utc)
        with Timer() as timer:
            metrics = await self.driver.run()
        duration = timer.elapsed_s()

        metrics["memory_rss_mb"] = round(measure_memory(), 2)
        logger.info("Benchmark %s completed in %.2fs", self.config.mode, duration)
        for metric, value in metrics.items():
            logger.info("   %s: %s", metric, value)

        if self.config.results_dir is not None:
            self.save(metrics, start_time, duration)
        return metrics

    def run(self) -> dict:
        return asyncio.run(self.run_async())

    def save(self, metrics: dict, start_time: datetime, duration: float) -> Path:
        output_path = Path(self.config.results_dir)
        output_path.mkdir(parents=True, exist_ok=True)
        result_file = output_path / f"{self.result_name}.json"

        cfg = self.config
        output = {
            "benchmark": {
                "mode": cfg.mode,
                "scenario": cfg.scenario,
                "name": cfg.name,
                "version": __version__,
                "timestamp": start_time.isoformat(),
                "duration_s": round(duration, 3),
                "payload_size": cfg.payload_size,
                "interval_s": cfg.interval,
                "sender_id": cfg.sender_id,
                "stopped_by": self.driver.token.reason if self.driver.token else None,
            },
            "environment": self.environment.to_dict(),
            "metrics": metrics,
        }

        with open(result_file, "w") as f:
            json.dump(output, f, indent=2, default=str)
        logger.info("Results saved to: %s", result_file)

        latest_link = output_path / "latest.json"
        if latest_link.exists() or latest_link.is_symlink():
            latest_link.unlink()
        latest_link.symlink_to(result_file.name)
        return result_file
