"""Tests for discovery and remediation action classes."""

from unittest.mock import MagicMock, patch

from conftest import FakeQueryClient, vmi
from discovery import DiscoveredEndpoint, KubeApiClient, KubectlClient
from inventory import Inventory, RemediationTarget
from remediation import CHANGED, ConnectFailure, RemediationResult


class TestQueryClientFor:
    """Test backend selection."""

    def test_cli_backend_by_default(self, rhel_config):
        from actions.discovery import query_client_for

        client = query_client_for(rhel_config)
        assert isinstance(client, KubectlClient)
        assert client.cli == 'oc'

    def test_api_backend_when_endpoint_set(self, rhel_config):
        from actions.discovery import query_client_for

        rhel_config.api_endpoint = 'https://api.dr.example:6443'
        rhel_config.token_env = 'DR_TOKEN'
        client = query_client_for(rhel_config)
        assert isinstance(client, KubeApiClient)
        assert client.token_env == 'DR_TOKEN'


class TestDiscoverEndpointAction:
    """Test DiscoverEndpointAction."""

    def test_success_registers_target(self, rhel_config):
        from actions.discovery import DiscoverEndpointAction

        client = FakeQueryClient([vmi('rhel-dr-vm', '10.0.0.5')])
        with patch('actions.discovery.query_client_for', return_value=client):
            result = DiscoverEndpointAction(name='discover').run(rhel_config, {})

        assert result.success is True
        assert '10.0.0.5' in result.message
        updates = result.context_updates
        assert updates['endpoint'] == DiscoveredEndpoint('rhel-dr-vm', '10.0.0.5', 'dr-recovery')
        target = updates['target']
        assert target.name == 'rhel-dr'
        assert target.address == '10.0.0.5'
        assert target.user == 'cloud-user'
        assert target.params['machine_network_address'] == '192.168.160.120'
        assert updates['inventory'].hosts['rhel-dr'] is target

    def test_not_found_reports_selector_and_namespace(self, rhel_config):
        from actions.discovery import DiscoverEndpointAction

        with patch('actions.discovery.query_client_for', return_value=FakeQueryClient([])):
            result = DiscoverEndpointAction(name='discover').run(rhel_config, {})

        assert result.success is False
        assert result.message.startswith('NotFoundError')
        assert 'selector=app=rhel-dr' in result.message
        assert 'namespace=dr-recovery' in result.message
        assert result.context_updates == {}

    def test_ambiguous(self, rhel_config):
        from actions.discovery import DiscoverEndpointAction

        client = FakeQueryClient([vmi('a', '10.0.0.5'), vmi('b', '10.0.0.6')])
        with patch('actions.discovery.query_client_for', return_value=client):
            result = DiscoverEndpointAction(name='discover').run(rhel_config, {})

        assert result.success is False
        assert result.message.startswith('AmbiguousError')

    def test_read_only_does_not_register(self, rhel_config):
        from actions.discovery import DiscoverEndpointAction

        client = FakeQueryClient([vmi('rhel-dr-vm', '10.0.0.5')])
        with patch('actions.discovery.query_client_for', return_value=client):
            result = DiscoverEndpointAction(name='discover', register=False).run(rhel_config, {})

        assert result.success is True
        assert result.context_updates['endpoint_address'] == '10.0.0.5'
        assert 'target' not in result.context_updates

    def test_reuses_context_inventory(self, rhel_config):
        from actions.discovery import DiscoverEndpointAction

        inventory = Inventory(user='other')
        client = FakeQueryClient([vmi('rhel-dr-vm', '10.0.0.5')])
        with patch('actions.discovery.query_client_for', return_value=client):
            result = DiscoverEndpointAction(name='discover').run(rhel_config, {'inventory': inventory})

        assert result.context_updates['inventory'] is inventory
        assert result.context_updates['target'].user == 'other'


class TestRemediateInterfaceAction:
    """Test RemediateInterfaceAction."""

    TARGET = RemediationTarget(name='rhel-dr', address='10.0.0.5', user='cloud-user')

    def test_missing_target_returns_error(self, rhel_config):
        from actions.remediation import RemediateInterfaceAction

        result = RemediateInterfaceAction(name='remediate').run(rhel_config, {})
        assert result.success is False
        assert 'discovery must run first' in result.message

    def test_changed_then_unchanged_on_guest(self, rhel_config, guest):
        from actions.remediation import RemediateInterfaceAction

        action = RemediateInterfaceAction(name='remediate')
        context = {'target': self.TARGET}
        with patch('remediation.SSHSession', side_effect=guest.session):
            first = action.run(rhel_config, context)
            second = action.run(rhel_config, context)

        assert first.success and second.success
        assert first.context_updates['outcome'] == 'changed'
        assert second.context_updates['outcome'] == 'unchanged'
        assert 'machine-net' in guest.connections

    def test_connect_failure_message_has_context(self, rhel_config):
        from actions.remediation import RemediateInterfaceAction

        remediator = MagicMock()
        remediator.converge.side_effect = ConnectFailure('Cannot connect to cloud-user@10.0.0.5: timed out')
        with patch('actions.remediation.Remediator', return_value=remediator):
            result = RemediateInterfaceAction(name='remediate').run(rhel_config, {'target': self.TARGET})

        assert result.success is False
        assert result.message.startswith('ConnectFailure')
        assert 'interface=eth1' in result.message
        assert 'address=10.0.0.5' in result.message

    def test_changes_listed_in_message(self, rhel_config):
        from actions.remediation import RemediateInterfaceAction

        remediator = MagicMock()
        remediator.converge.return_value = RemediationResult(outcome=CHANGED, changes=['gateway'])
        with patch('actions.remediation.Remediator', return_value=remediator):
            result = RemediateInterfaceAction(name='remediate').run(rhel_config, {'target': self.TARGET})

        assert result.success is True
        assert 'changed (gateway)' in result.message
        assert result.context_updates == {'outcome': 'changed', 'changes': ['gateway']}
