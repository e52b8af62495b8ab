"""Per-run inventory of remediation targets.

A discovered address is registered under a name together with connection
settings and desired-state params, producing a RemediationTarget that is
handed directly to the remediation stage. Each run owns its own Inventory.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemediationTarget:
    """Addressable guest for one run: discovered address plus credentials.

    ssh_key is a path passed to ssh; its contents are never read.
    """
    name: str
    address: str
    user: str
    ssh_key: Optional[Path] = None
    port: int = 22
    connect_timeout: int = 30
    params: dict = field(default_factory=dict, hash=False, compare=False)


@dataclass
class Inventory:
    """In-memory host registry for a single run."""
    user: str
    ssh_key: Optional[Path] = None
    port: int = 22
    connect_timeout: int = 30
    group: str = 'restore_targets'
    hosts: dict[str, RemediationTarget] = field(default_factory=dict)

    def register(self, name: str, address: str, params: Optional[dict] = None) -> RemediationTarget:
        """Register a discovered address as a named target and return it."""
        target = RemediationTarget(
            name=name,
            address=address,
            user=self.user,
            ssh_key=self.ssh_key,
            port=self.port,
            connect_timeout=self.connect_timeout,
            params=dict(params or {}),
        )
        if name in self.hosts:
            logger.debug(f"Replacing inventory entry {name} ({self.hosts[name].address} -> {address})")
        self.hosts[name] = target
        logger.debug(f"Registered {name} at {address}")
        return target

    def to_ansible(self) -> dict:
        """Render as an Ansible YAML inventory structure."""
        hosts = {}
        for name, target in self.hosts.items():
            host_vars = {
                'ansible_host': target.address,
                'ansible_user': target.user,
                'ansible_port': target.port,
                'ansible_ssh_common_args': '-o StrictHostKeyChecking=no -o UserKnownHostsFile=/dev/null',
            }
            if target.ssh_key:
                host_vars['ansible_ssh_private_key_file'] = str(target.ssh_key)
            host_vars.update(target.params)
            hosts[name] = host_vars
        return {'all': {'children': {self.group: {'hosts': hosts}}}}
