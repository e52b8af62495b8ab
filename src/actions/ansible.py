"""Ansible playbook remediation action."""

import json
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from common import ActionResult, run_command
from config import RestoreConfig
from remediation import CHANGED, UNCHANGED

logger = logging.getLogger(__name__)

_RECAP_PAIR = re.compile(r'(\w+)=(\d+)')


def parse_play_recap(output: str, host: str) -> Optional[dict[str, int]]:
    """Extract the PLAY RECAP counters for host.

    Example line:
        rhel-dr : ok=5 changed=1 unreachable=0 failed=0 skipped=0 rescued=0 ignored=0
    """
    _, sep, recap = output.rpartition('PLAY RECAP')
    if not sep:
        return None
    for line in recap.splitlines():
        name, colon, counters = line.partition(':')
        if colon and name.strip() == host:
            return {k: int(v) for k, v in _RECAP_PAIR.findall(counters)}
    return None


@dataclass
class AnsibleRemediateAction:
    """Run a remediation playbook against the discovered target.

    The run's inventory is written to a temporary file (host vars carry the
    desired machine-network params) and removed afterwards. The outcome is
    read from the PLAY RECAP changed counter.
    """
    name: str
    playbook: str = ''  # defaults to config.playbook
    extra_vars: dict = field(default_factory=dict)
    target_context_key: str = 'target'
    timeout: int = 600

    def run(self, config: RestoreConfig, context: dict) -> ActionResult:
        """Execute the playbook limited to the target host."""
        start = time.time()

        target = context.get(self.target_context_key)
        inventory = context.get('inventory')
        if not target or inventory is None:
            return ActionResult(
                success=False,
                message=f"No {self.target_context_key} in context (discovery must run first)",
                duration=time.time() - start
            )

        playbook = Path(self.playbook or config.playbook).expanduser().resolve()
        if not playbook.is_file():
            return ActionResult(
                success=False,
                message=f"Playbook not found: {playbook}",
                duration=time.time() - start
            )

        with tempfile.NamedTemporaryFile(
                'w', prefix='netrestore-inv-', suffix='.yml', delete=False, encoding='utf-8') as f:
            yaml.safe_dump(inventory.to_ansible(), f, default_flow_style=False)
            inventory_file = f.name

        cmd = [
            'ansible-playbook',
            '-i', inventory_file,
            str(playbook),
            '--limit', target.name,
        ]
        for key, value in self.extra_vars.items():
            if isinstance(value, (list, dict)):
                cmd.extend(['-e', f'{key}={json.dumps(value)}'])
            elif isinstance(value, bool):
                cmd.extend(['-e', f'{key}={str(value).lower()}'])
            else:
                cmd.extend(['-e', f'{key}={value}'])

        logger.info(f"[{self.name}] Running {playbook.name} on {target.address}...")
        try:
            rc, out, err = run_command(cmd, cwd=playbook.parent, timeout=self.timeout)
        finally:
            os.unlink(inventory_file)

        recap = parse_play_recap(out, target.name)
        if rc != 0 or recap is None or recap.get('failed') or recap.get('unreachable'):
            kind = 'ConnectFailure' if recap and recap.get('unreachable') else 'ApplyFailure'
            # Truncate error message for readability
            error_msg = err[-500:] if err.strip() else out[-500:]
            return ActionResult(
                success=False,
                message=(
                    f"{kind}: {playbook.name} failed on {target.address}: {error_msg} "
                    f"[target={target.name}, interface={config.interface}]"
                ),
                duration=time.time() - start
            )

        outcome = CHANGED if recap.get('changed', 0) > 0 else UNCHANGED
        return ActionResult(
            success=True,
            message=f"{config.interface} on {target.address}: {outcome} ({playbook.name})",
            duration=time.time() - start,
            context_updates={'outcome': outcome}
        )
