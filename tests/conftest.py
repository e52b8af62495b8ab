"""Shared pytest fixtures for netrestore tests."""

import shlex
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


class FakeGuest:
    """Simulated NetworkManager guest answering the nmcli commands we issue."""

    def __init__(self, interfaces=('eth0', 'eth1')):
        self.devices = {
            name: {'addresses': [], 'gateway': '', 'dns': [], 'connected': False}
            for name in interfaces
        }
        self.connections: dict[str, dict] = {}
        self.commands: list[str] = []
        self.sessions: list['FakeSession'] = []

    def session(self, target):
        session = FakeSession(self, target)
        self.sessions.append(session)
        return session

    def _device_show(self, iface):
        if iface not in self.devices:
            return 10, '', f"Error: Device '{iface}' not found.\n"
        d = self.devices[iface]
        state = '100 (connected)' if d['connected'] else '30 (disconnected)'
        lines = [f'GENERAL.STATE:{state}']
        lines += [f'IP4.ADDRESS[{i}]:{a}' for i, a in enumerate(d['addresses'], 1)]
        lines.append(f"IP4.GATEWAY:{d['gateway']}")
        lines += [f'IP4.DNS[{i}]:{s}' for i, s in enumerate(d['dns'], 1)]
        return 0, '\n'.join(lines) + '\n', ''

    def _connection_list(self):
        lines = []
        for name, con in self.connections.items():
            escaped = name.replace(':', '\\:')
            lines.append(f"{escaped}:{con['device']}")
        return 0, '\n'.join(lines) + '\n', ''

    def _connection_up(self, name):
        con = self.connections.get(name)
        if con is None:
            return 10, '', f"Error: unknown connection '{name}'.\n"
        settings = con['settings']
        iface = settings.get('connection.interface-name', con['ifname'])
        if iface not in self.devices:
            return 10, '', f"Error: no device found for connection '{name}'.\n"
        for other in self.connections.values():
            if other['device'] == iface:
                other['device'] = ''
        self.devices[iface] = {
            'addresses': [settings['ipv4.addresses']],
            'gateway': settings.get('ipv4.gateway', ''),
            'dns': settings.get('ipv4.dns', '').split(),
            'connected': True,
        }
        con['device'] = iface
        return 0, f"Connection '{name}' successfully activated\n", ''

    def run(self, command):
        self.commands.append(command)
        argv = shlex.split(command)
        if argv[0] == 'sudo':
            argv = argv[1:]

        if argv[:2] == ['nmcli', '-t'] and argv[4:6] == ['device', 'show']:
            return self._device_show(argv[6])
        if argv[:2] == ['nmcli', '-t'] and argv[4:6] == ['connection', 'show']:
            return self._connection_list()
        if argv[1:3] == ['connection', 'add']:
            opts = dict(zip(argv[3::2], argv[4::2]))
            self.connections[opts['con-name']] = {'ifname': opts['ifname'], 'settings': {}, 'device': ''}
            return 0, '', ''
        if argv[1:3] == ['connection', 'modify']:
            name = argv[3]
            if name not in self.connections:
                return 10, '', f"Error: unknown connection '{name}'.\n"
            self.connections[name]['settings'].update(dict(zip(argv[4::2], argv[5::2])))
            return 0, '', ''
        if argv[1:3] == ['connection', 'up']:
            return self._connection_up(argv[3])
        return 127, '', f'unexpected command: {command}'


class FakeSession:
    """Context-managed session bound to a FakeGuest."""

    def __init__(self, guest, target):
        self.guest = guest
        self.target = target
        self.is_open = False
        self.closed = False

    def __enter__(self):
        self.is_open = True
        return self

    def __exit__(self, exc_type, exc, tb):
        self.is_open = False
        self.closed = True
        return False

    def run(self, command, timeout=60):
        assert self.is_open
        return self.guest.run(command)


class FakeQueryClient:
    """Query client returning scripted responses, one per call (last repeats)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def query(self, selector, namespace, kind):
        self.calls.append((selector, namespace, kind))
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def vmi(name, address=None, iface='default'):
    """Build a minimal VirtualMachineInstance resource."""
    interfaces = []
    if address is not None:
        interfaces.append({'name': iface, 'ipAddress': address, 'interfaceName': 'eth0'})
    return {
        'kind': 'VirtualMachineInstance',
        'metadata': {'name': name, 'namespace': 'dr-recovery'},
        'status': {'phase': 'Running', 'interfaces': interfaces},
    }


@pytest.fixture
def guest():
    """Fresh simulated guest with eth0 and an unconfigured eth1."""
    return FakeGuest()


@pytest.fixture
def config_dir(tmp_path):
    """Create temporary config directory.

    Creates:
    - site.yaml (defaults)
    - targets/rhel-dr.yaml (nmcli method)
    - targets/win-dr.yaml (ansible method)
    """
    (tmp_path / 'targets').mkdir()

    (tmp_path / 'site.yaml').write_text("""
defaults:
  ssh_user: cloud-user
  connect_timeout: 20
  kube_cli: oc
  dns_servers:
    - 198.51.100.53
  retry:
    attempts: 3
    delay: 1
    backoff: 2
    max_delay: 4
""")

    (tmp_path / 'targets/rhel-dr.yaml').write_text("""
discovery:
  namespace: dr-recovery
  selector: app=rhel-dr
desired:
  interface: eth1
  address: 192.168.160.120/24
  gateway: 192.168.160.1
  dns:
    - 8.8.8.8
remediation:
  method: nmcli
  connection_name: machine-net
""")

    (tmp_path / 'targets/win-dr.yaml').write_text("""
discovery:
  namespace: dr-recovery
  selector: app=win-dr
  retry:
    attempts: 5
desired:
  interface: Ethernet 2
  address: 192.168.160.121
  prefix: 24
  gateway: 192.168.160.1
remediation:
  method: ansible
  playbook: /tmp/windows-network.yml
connection:
  ssh_user: Administrator
  ssh_port: 2222
""")

    return tmp_path


@pytest.fixture
def rhel_config(config_dir):
    """Loaded config for the rhel-dr target."""
    from config import RestoreConfig
    return RestoreConfig(name='rhel-dr', config_file=config_dir / 'targets' / 'rhel-dr.yaml')
