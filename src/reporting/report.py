"""Run reporting."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional


@dataclass
class PhaseResult:
    """Result of a workflow phase."""
    name: str
    description: str
    status: str  # 'passed', 'failed', 'skipped'
    message: str = ''
    duration: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class RunReport:
    """Collects phase results for one restore run and writes report files."""
    target: str
    report_dir: Path
    scenario: str = ''
    phases: list[PhaseResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    success: bool = False
    outcome: Optional[str] = None  # 'changed' / 'unchanged' on success

    _phase_start: Optional[datetime] = field(default=None, repr=False)

    def start(self):
        """Mark run start."""
        self.started_at = datetime.now()
        self.report_dir.mkdir(parents=True, exist_ok=True)

    def start_phase(self, name: str, _description: str):
        """Mark phase start."""
        self._phase_start = datetime.now()

    def pass_phase(self, name: str, message: str = '', duration: float = 0.0, description: str = ''):
        """Record passed phase."""
        self._record_phase(name, 'passed', message, duration, description)

    def fail_phase(self, name: str, message: str = '', duration: float = 0.0, description: str = ''):
        """Record failed phase."""
        self._record_phase(name, 'failed', message, duration, description)

    def skip_phase(self, name: str, description: str):
        """Record skipped phase."""
        self.phases.append(PhaseResult(
            name=name,
            description=description,
            status='skipped'
        ))

    def _record_phase(self, name: str, status: str, message: str, duration: float, description: str):
        now = datetime.now()
        if duration == 0.0 and self._phase_start:
            duration = (now - self._phase_start).total_seconds()

        self.phases.append(PhaseResult(
            name=name,
            description=description or name,
            status=status,
            message=message,
            duration=duration,
            started_at=self._phase_start,
            finished_at=now
        ))
        self._phase_start = None

    @property
    def duration(self) -> float:
        if self.finished_at and self.started_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    @property
    def error(self) -> Optional[str]:
        """Message of the first failed phase."""
        for p in self.phases:
            if p.status == 'failed' and p.message:
                return p.message
        return None

    def finish(self, success: bool, outcome: Optional[str] = None):
        """Finalize report and write files."""
        self.finished_at = datetime.now()
        self.success = success
        self.outcome = outcome if success else None
        self._write_json()
        self._write_markdown()

    def _write_json(self):
        data = {
            'scenario': self.scenario,
            'target': self.target,
            'success': self.success,
            'outcome': self.outcome,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'duration': self.duration,
            'phases': [
                {
                    'name': p.name,
                    'description': p.description,
                    'status': p.status,
                    'message': p.message,
                    'duration': p.duration
                }
                for p in self.phases
            ]
        }
        with open(self._report_filename('json'), 'w', encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def _write_markdown(self):
        status = 'PASSED' if self.success else 'FAILED'

        lines = [
            f"# {self.scenario}",
            "",
            f"**Target**: {self.target}",
            f"**Status**: {status}",
        ]
        if self.outcome:
            lines.append(f"**Outcome**: {self.outcome}")
        lines.extend([
            f"**Date**: {self.started_at.strftime('%Y-%m-%d %H:%M:%S') if self.started_at else 'N/A'}",
            f"**Duration**: {self.duration:.1f}s",
            "",
            "## Phases",
            "",
            "| Phase | Status | Duration | Message |",
            "|-------|--------|----------|---------|",
        ])

        for p in self.phases:
            message = p.message.replace('|', '\\|').replace('\n', ' ')
            lines.append(f"| {p.name} | {p.status} | {p.duration:.1f}s | {message} |")

        lines.extend(["", "---", f"Generated: {datetime.now().isoformat()}"])

        with open(self._report_filename('md'), 'w', encoding="utf-8") as f:
            f.write('\n'.join(lines))

    def _report_filename(self, ext: str) -> Path:
        """Generate report filename.

        Includes target name so concurrent runs never collide.
        """
        timestamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        status = 'passed' if self.success else 'failed'
        target_slug = self.target.replace('/', '-')
        return self.report_dir / f"{timestamp}.{target_slug}.{self.scenario or 'run'}.{status}.{ext}"

    def to_dict(self, context: Optional[dict] = None) -> dict:
        """Return report as dictionary for JSON output.

        Args:
            context: Optional context dict to include in output.
                     Only JSON-serializable values are included.
        """
        result = {
            'target': self.target,
            'scenario': self.scenario,
            'success': self.success,
            'outcome': self.outcome,
            'duration_seconds': round(self.duration, 1),
            'phases': [
                {
                    'name': p.name,
                    'status': p.status,
                    'duration': round(p.duration, 1),
                }
                for p in self.phases
            ]
        }

        if not self.success and self.error:
            result['error'] = self.error

        if context:
            serializable_context = {}
            for key, value in context.items():
                if key.startswith('_'):
                    continue
                try:
                    json.dumps(value)
                    serializable_context[key] = value
                except (TypeError, ValueError):
                    pass
            if serializable_context:
                result['context'] = serializable_context

        return result
