"""Scenario definitions and orchestration."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from config import RestoreConfig
from reporting import RunReport

logger = logging.getLogger(__name__)


@runtime_checkable
class Scenario(Protocol):
    """Protocol for scenario definitions.

    Class attributes:
        name: Scenario identifier (e.g., 'machine-network-restore')
        description: Human-readable description
    """
    name: str
    description: str

    def get_phases(self, config: RestoreConfig) -> list[tuple[str, Any, str]]:
        """Return list of (phase_name, action, description) tuples."""
        ...


class Orchestrator:
    """Runs one scenario against one target.

    Phases run strictly in order; the first failing phase stops the run.
    The context dict carries each phase's outputs to the next and is private
    to this orchestrator.
    """

    def __init__(
        self,
        scenario: Scenario,
        config: RestoreConfig,
        report_dir: Path,
        skip_phases: Optional[list[str]] = None,
        timeout: Optional[int] = None,
        dry_run: bool = False
    ):
        self.scenario = scenario
        self.config = config
        self.report_dir = report_dir
        self.skip_phases = skip_phases or []
        self.timeout = timeout  # Overall run timeout in seconds
        self.dry_run = dry_run
        self.report = RunReport(target=config.name, report_dir=report_dir, scenario=scenario.name)
        self.context: dict[str, Any] = {}

    def preview(self) -> bool:
        """Show what would be executed without running. Returns True."""
        phases = self.scenario.get_phases(self.config)
        query = self.config.discovery_query()

        print("")
        print(f"DRY-RUN: {self.scenario.name}")
        print(f"  Target: {self.config.name}")
        print(f"  Discovery: {query.describe()}")
        print(f"  Desired: {self.config.interface} {self.config.address} "
              f"gw {self.config.gateway} dns {', '.join(map(str, self.config.dns_servers))}")
        print("")
        print("Phases to execute:")
        for phase_name, action, description in phases:
            marker = 'SKIP' if phase_name in self.skip_phases else ' OK '
            print(f"  [{marker}] {phase_name}: {description}")
            print(f"         Action: {type(action).__name__}")
            if hasattr(action, 'playbook'):
                print(f"         Playbook: {action.playbook or self.config.playbook}")
        print("")
        print("Mode: DRY-RUN (no changes made)")
        print("")
        return True

    def run(self) -> bool:
        """Run all phases. Returns True if all passed."""
        if self.dry_run:
            return self.preview()

        timeout_msg = f" (timeout: {self.timeout}s)" if self.timeout else ""
        logger.info(f"Starting '{self.scenario.name}' for target: {self.config.name}{timeout_msg}")
        self.report.start()

        phases = self.scenario.get_phases(self.config)
        all_passed = True
        start_time = time.time()

        try:
            for phase_name, action, description in phases:
                # Checked between phases; a running phase is not interrupted
                if self.timeout:
                    elapsed = time.time() - start_time
                    if elapsed >= self.timeout:
                        logger.error(f"Run timeout ({self.timeout}s) exceeded after {elapsed:.1f}s")
                        self.report.fail_phase(
                            phase_name, f"Timeout exceeded ({elapsed:.1f}s >= {self.timeout}s)", 0, description)
                        all_passed = False
                        break

                if phase_name in self.skip_phases:
                    logger.info(f"Skipping phase: {phase_name}")
                    self.report.skip_phase(phase_name, description)
                    continue

                logger.info(f"Running phase: {phase_name} - {description}")
                self.report.start_phase(phase_name, description)

                try:
                    result = action.run(self.config, self.context)
                except Exception as e:
                    logger.exception(f"Phase {phase_name} raised exception")
                    self.report.fail_phase(phase_name, f"{type(e).__name__}: {e}", 0, description)
                    all_passed = False
                    break

                if result.success:
                    logger.info(f"Phase {phase_name} passed: {result.message}")
                    self.report.pass_phase(phase_name, result.message, result.duration, description)
                    self.context.update(result.context_updates or {})
                else:
                    logger.error(f"Phase {phase_name} failed: {result.message}")
                    self.report.fail_phase(phase_name, result.message, result.duration, description)
                    all_passed = False
                    break
        finally:
            total_time = time.time() - start_time
            logger.info(f"'{self.scenario.name}' for {self.config.name} completed in {total_time:.1f}s")
            self.report.finish(all_passed, self.context.get('outcome'))

        return all_passed


# Registry of available scenarios
_scenarios: dict[str, type[Scenario]] = {}


def register_scenario(cls: type[Scenario]) -> type[Scenario]:
    """Decorator to register a scenario class."""
    _scenarios[cls.name] = cls
    return cls


def get_scenario(name: str) -> Scenario:
    """Get a scenario instance by name."""
    if name not in _scenarios:
        available = list(_scenarios.keys())
        raise ValueError(f"Unknown scenario: {name}. Available: {available}")
    return _scenarios[name]()


def list_scenarios() -> list[str]:
    """List available scenario names."""
    return sorted(_scenarios.keys())


def run_targets(
    configs: list[RestoreConfig],
    scenario_name: str,
    report_dir: Path,
    workers: int = 1,
    **orchestrator_kwargs,
) -> dict[str, Orchestrator]:
    """Run one independent orchestrator per target config.

    Runs share nothing: each gets its own scenario instance, context and
    report. With workers > 1 they execute concurrently.

    Returns:
        Mapping of target name to its finished orchestrator
    """
    orchestrators = {
        config.name: Orchestrator(get_scenario(scenario_name), config, report_dir, **orchestrator_kwargs)
        for config in configs
    }

    if workers <= 1 or len(orchestrators) <= 1:
        for orchestrator in orchestrators.values():
            orchestrator.run()
        return orchestrators

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='restore') as pool:
        futures = {name: pool.submit(o.run) for name, o in orchestrators.items()}
        for name, future in futures.items():
            future.result()
            logger.debug(f"Run for {name} finished")
    return orchestrators


# Import scenarios to trigger registration
from scenarios import restore  # noqa: E402, F401
