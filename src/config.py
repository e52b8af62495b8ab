"""Restore target configuration management.

Configuration is loaded from a config directory of YAML files:
- site.yaml: Site-wide defaults (connection, orchestration API, retry policy)
- targets/*.yaml: One file per VM to restore (discovery, desired, remediation)

The merge order is: site defaults → target file. Secret material is never
read here: the SSH key is a path handed to ssh, and the API token is named
by an environment variable resolved at query time.

Example target file:

    discovery:
      namespace: dr-recovery
      selector: app=rhel-dr
    desired:
      interface: eth1
      address: 192.168.160.120/24
      gateway: 192.168.160.1
      dns: [8.8.8.8]
    remediation:
      method: nmcli
"""

import ipaddress
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from discovery import RESOURCE_KINDS, DiscoveryQuery, RetryPolicy
from netstate import DesiredInterfaceState, parse_cidr

REMEDIATION_METHODS = ('nmcli', 'ansible')


class ConfigError(Exception):
    """Configuration error."""


@dataclass
class RestoreConfig:
    """Configuration for one VM restore run.

    Holds the discovery query inputs, the desired machine-network interface
    state and the connection settings used by the remediation stage.
    """
    name: str
    config_file: Path

    # Connection to the recovered guest
    ssh_user: str = 'cloud-user'
    ssh_key: Optional[Path] = None
    ssh_port: int = 22
    connect_timeout: int = 30

    # Orchestration API (CLI backend unless api_endpoint is set)
    kube_cli: str = 'oc'
    kube_context: str = ''
    api_endpoint: str = ''
    token_env: str = 'KUBE_TOKEN'
    verify_tls: bool = True

    # Discovery
    namespace: str = ''
    selector: str = ''
    kind: str = 'vmi'
    discovery_interface: str = 'default'
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    # Desired interface state (validated by validate())
    interface: str = ''
    address: str = ''
    prefix: Optional[int] = None
    gateway: str = ''
    dns_servers: list = field(default_factory=list)

    # Remediation
    method: str = 'nmcli'
    playbook: str = ''
    extra_vars: dict = field(default_factory=dict)  # passed to ansible-playbook as -e
    connection_name: str = ''

    def __post_init__(self):
        if isinstance(self.config_file, str):
            self.config_file = Path(self.config_file)
        if isinstance(self.ssh_key, str):
            self.ssh_key = Path(self.ssh_key).expanduser()

        if self.config_file.exists() and self.config_file.is_file():
            self._load_from_yaml()

    def _load_from_yaml(self):
        """Load site defaults, then overlay the target file."""
        config_dir = _config_dir_for(self.config_file)
        site_file = config_dir / 'site.yaml'
        defaults = {}
        if site_file.exists() and site_file != self.config_file:
            defaults = _parse_yaml(site_file).get('defaults') or {}

        target = _parse_yaml(self.config_file)

        self._apply_connection(defaults)
        self._apply_connection(target.get('connection') or {})

        if retry := {**(defaults.get('retry') or {}), **((target.get('discovery') or {}).get('retry') or {})}:
            try:
                self.retry = RetryPolicy(
                    attempts=int(retry.get('attempts', self.retry.attempts)),
                    delay=float(retry.get('delay', self.retry.delay)),
                    backoff=float(retry.get('backoff', self.retry.backoff)),
                    max_delay=float(retry.get('max_delay', self.retry.max_delay)),
                )
            except (TypeError, ValueError) as e:
                raise ConfigError(f"{self.config_file}: invalid retry policy: {e}") from e

        discovery = target.get('discovery') or {}
        self.namespace = str(discovery.get('namespace', self.namespace) or '')
        self.selector = str(discovery.get('selector', self.selector) or '')
        self.kind = str(discovery.get('kind', self.kind))
        self.discovery_interface = str(discovery.get('interface', self.discovery_interface))

        desired = target.get('desired') or {}
        self.interface = str(desired.get('interface', self.interface) or '')
        self.address = str(desired.get('address', self.address) or '')
        if (prefix := desired.get('prefix')) is not None:
            self.prefix = self._int('desired.prefix', prefix)
        self.gateway = str(desired.get('gateway', self.gateway) or '')
        # DNS: target > site
        dns = desired.get('dns', defaults.get('dns_servers', self.dns_servers))
        if isinstance(dns, str):
            dns = [dns]
        self.dns_servers = list(dns or [])

        remediation = target.get('remediation') or {}
        self.method = str(remediation.get('method', defaults.get('method', self.method)))
        self.playbook = str(remediation.get('playbook', defaults.get('playbook', self.playbook)) or '')
        self.connection_name = str(remediation.get('connection_name', self.connection_name) or '')
        extra_vars = remediation.get('extra_vars', defaults.get('extra_vars')) or {}
        if not isinstance(extra_vars, dict):
            raise ConfigError(f"{self.config_file}: remediation.extra_vars must be a mapping")
        self.extra_vars = dict(extra_vars)

    def _int(self, label: str, value) -> int:
        """Convert a config value to int, raising ConfigError on bad input."""
        if isinstance(value, bool):
            raise ConfigError(f"{self.config_file}: {label} must be an integer, got {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{self.config_file}: {label} must be an integer, got {value!r}") from e

    def _apply_connection(self, values: dict):
        """Apply connection/API settings from a defaults or connection mapping."""
        if ssh_user := values.get('ssh_user'):
            self.ssh_user = ssh_user
        if ssh_key := values.get('ssh_key'):
            self.ssh_key = Path(ssh_key).expanduser()
        if ssh_port := values.get('ssh_port'):
            self.ssh_port = self._int('ssh_port', ssh_port)
        if connect_timeout := values.get('connect_timeout'):
            self.connect_timeout = self._int('connect_timeout', connect_timeout)
        if kube_cli := values.get('kube_cli'):
            self.kube_cli = kube_cli
        if kube_context := values.get('kube_context'):
            self.kube_context = kube_context
        if api_endpoint := values.get('api_endpoint'):
            self.api_endpoint = api_endpoint
        if token_env := values.get('token_env'):
            self.token_env = token_env
        if 'verify_tls' in values:
            if not isinstance(values['verify_tls'], bool):
                raise ConfigError(
                    f"{self.config_file}: verify_tls must be true or false, got {values['verify_tls']!r}")
            self.verify_tls = values['verify_tls']

    def validate(self) -> list[str]:
        """Return every missing or invalid field (empty if valid)."""
        errors = []

        for attr, label in (
            ('namespace', 'discovery.namespace'),
            ('selector', 'discovery.selector'),
            ('interface', 'desired.interface'),
            ('address', 'desired.address'),
            ('gateway', 'desired.gateway'),
        ):
            if not getattr(self, attr):
                errors.append(f"{label} is required")

        if self.kind not in RESOURCE_KINDS:
            errors.append(f"discovery.kind must be one of {', '.join(RESOURCE_KINDS)}, got '{self.kind}'")

        if self.retry.attempts < 1:
            errors.append("retry.attempts must be at least 1")

        if self.address:
            try:
                parse_cidr(self.address, self.prefix)
            except ValueError as e:
                errors.append(f"desired.address invalid: {e}")

        if self.gateway:
            try:
                ipaddress.ip_address(self.gateway)
            except ValueError:
                errors.append(f"desired.gateway '{self.gateway}' is not an IP address")

        if not self.dns_servers:
            errors.append("desired.dns requires at least one name-server")
        for server in self.dns_servers:
            try:
                ipaddress.ip_address(str(server))
            except ValueError:
                errors.append(f"desired.dns entry '{server}' is not an IP address")

        if self.method not in REMEDIATION_METHODS:
            errors.append(f"remediation.method must be one of {', '.join(REMEDIATION_METHODS)}, got '{self.method}'")
        elif self.method == 'ansible' and not self.playbook:
            errors.append("remediation.playbook is required for the ansible method")

        return errors

    def discovery_query(self) -> DiscoveryQuery:
        return DiscoveryQuery(
            namespace=self.namespace,
            selector=self.selector,
            kind=self.kind,
            interface=self.discovery_interface,
        )

    def desired_state(self) -> DesiredInterfaceState:
        """Build the desired interface state.

        Raises:
            ConfigError: If address/prefix cannot be parsed
        """
        try:
            address, prefix = parse_cidr(self.address, self.prefix)
        except ValueError as e:
            raise ConfigError(f"Target '{self.name}': {e}") from e
        return DesiredInterfaceState(
            interface=self.interface,
            address=address,
            prefix=prefix,
            gateway=self.gateway,
            dns=tuple(str(d) for d in self.dns_servers),
        )


def _config_dir_for(config_file: Path) -> Path:
    """Config directory owning a target file (targets/x.yaml -> its parent's parent)."""
    if config_file.parent.name == 'targets':
        return config_file.parent.parent
    return config_file.parent


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def get_base_dir() -> Path:
    """Get the netrestore directory."""
    return Path(__file__).parent.parent  # src/ -> netrestore/


def get_config_dir() -> Path:
    """Discover the config directory.

    Resolution order:
    1. $NETRESTORE_CONFIG_DIR environment variable
    2. ../site-config/ sibling directory (dev workspace)
    3. /usr/local/etc/netrestore/
    """
    if env_path := os.environ.get('NETRESTORE_CONFIG_DIR'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"NETRESTORE_CONFIG_DIR={env_path} does not exist")

    sibling = get_base_dir().parent / 'site-config'
    if sibling.exists():
        return sibling

    fhs_path = Path('/usr/local/etc/netrestore')
    if fhs_path.exists():
        return fhs_path

    raise ConfigError(
        "Config directory not found. "
        "Set NETRESTORE_CONFIG_DIR or create ../site-config/targets/."
    )


def list_targets() -> list[str]:
    """List restore targets from the config directory."""
    try:
        config_dir = get_config_dir()
    except ConfigError:
        return []

    targets_dir = config_dir / 'targets'
    if not targets_dir.exists():
        return []
    return sorted(f.stem for f in targets_dir.glob('*.yaml') if f.is_file())


def _checked(config: RestoreConfig) -> RestoreConfig:
    if errors := config.validate():
        raise ConfigError(
            f"Invalid config for target '{config.name}' ({config.config_file}):\n  - "
            + "\n  - ".join(errors)
        )
    return config


def load_target_config(target: str) -> RestoreConfig:
    """Load and validate configuration for a named target.

    Raises:
        ConfigError: If the target is unknown or its config is incomplete
    """
    config_dir = get_config_dir()
    target_file = config_dir / 'targets' / f'{target}.yaml'
    if not target_file.exists():
        available = list_targets()
        raise ConfigError(
            f"Target '{target}' not found ({target_file}).\n"
            f"Available targets: {', '.join(available) if available else 'none configured'}"
        )
    return _checked(RestoreConfig(name=target, config_file=target_file))


def load_config_file(path: Path) -> RestoreConfig:
    """Load and validate a standalone target file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    return _checked(RestoreConfig(name=path.stem, config_file=path))
