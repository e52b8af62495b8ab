"""Machine-network restore scenarios.

Discovery and remediation always run together in one scenario: the
discovered address is only valid for the current boot of the VM, so there
is no remediate-only workflow.
"""

from actions import AnsibleRemediateAction, DiscoverEndpointAction, RemediateInterfaceAction
from config import RestoreConfig
from scenarios import register_scenario


@register_scenario
class MachineNetworkRestore:
    """Discover the VM's pod-network address and restore its static machine-network address."""

    name = 'machine-network-restore'
    description = 'Discover VM address, restore static address on secondary interface'

    def get_phases(self, config: RestoreConfig) -> list[tuple[str, object, str]]:
        """Return phases for discovery followed by remediation."""
        if config.method == 'ansible':
            remediate = AnsibleRemediateAction(name='remediate', extra_vars=dict(config.extra_vars))
            remediate_desc = f'Run {config.playbook} against {config.interface}'
        else:
            remediate = RemediateInterfaceAction(name='remediate')
            remediate_desc = f'Converge {config.interface} via NetworkManager'

        return [
            ('discover', DiscoverEndpointAction(
                name='discover',
            ), 'Discover transient VM address'),

            ('remediate', remediate, remediate_desc),
        ]


@register_scenario
class EndpointDiscover:
    """Read-only lookup of the VM's current address."""

    name = 'endpoint-discover'
    description = 'Discover VM address only (no changes)'

    def get_phases(self, config: RestoreConfig) -> list[tuple[str, object, str]]:
        """Return the single discovery phase."""
        return [
            ('discover', DiscoverEndpointAction(
                name='discover',
                register=False,
            ), 'Discover transient VM address'),
        ]
