"""Tests for validation module."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import requests

from validation import (
    format_preflight_results,
    required_tools,
    run_preflight_checks,
    validate_api_access,
    validate_readiness,
    validate_ssh_key,
    validate_tools,
)


class TestRequiredTools:
    """Tests for required_tools()."""

    def test_cli_backend_nmcli(self, rhel_config):
        assert required_tools(rhel_config) == ['oc', 'ssh']

    def test_api_backend_ansible(self, rhel_config):
        rhel_config.api_endpoint = 'https://api.dr.example:6443'
        rhel_config.method = 'ansible'
        assert required_tools(rhel_config) == ['ansible-playbook']

    @patch('validation.shutil.which', return_value=None)
    def test_missing_tool_reported(self, _mock_which, rhel_config):
        errors = validate_tools(rhel_config)
        assert errors == ["'oc' not found on PATH", "'ssh' not found on PATH"]

    @patch('validation.shutil.which', return_value='/usr/bin/x')
    def test_all_tools_present(self, _mock_which, rhel_config):
        assert validate_tools(rhel_config) == []


class TestValidateSSHKey:
    """Tests for SSH key path check."""

    def test_no_key_configured(self, rhel_config):
        assert validate_ssh_key(rhel_config) == []

    def test_missing_key(self, rhel_config, tmp_path):
        rhel_config.ssh_key = tmp_path / 'id_dr'
        errors = validate_ssh_key(rhel_config)
        assert len(errors) == 1
        assert 'SSH key not found' in errors[0]

    def test_existing_key(self, rhel_config, tmp_path):
        key = tmp_path / 'id_dr'
        key.write_text('unused')
        rhel_config.ssh_key = Path(key)
        assert validate_ssh_key(rhel_config) == []


class TestValidateApiAccess:
    """Tests for orchestration API reachability."""

    def _api_config(self, config):
        config.api_endpoint = 'https://api.dr.example:6443'
        config.token_env = 'DR_TOKEN'
        return config

    def test_cli_backend_skips_check(self, rhel_config):
        assert validate_api_access(rhel_config) == []

    def test_missing_token(self, rhel_config, monkeypatch):
        monkeypatch.delenv('DR_TOKEN', raising=False)
        errors = validate_api_access(self._api_config(rhel_config))
        assert len(errors) == 1
        assert '$DR_TOKEN' in errors[0]

    @patch('validation.requests.get')
    def test_success(self, mock_get, rhel_config, monkeypatch):
        monkeypatch.setenv('DR_TOKEN', 'sha256~secret')
        mock_get.return_value = MagicMock(status_code=200, json=lambda: {'gitVersion': 'v1.29.4'})

        assert validate_api_access(self._api_config(rhel_config)) == []
        args, kwargs = mock_get.call_args
        assert args[0] == 'https://api.dr.example:6443/version'
        assert kwargs['headers'] == {'Authorization': 'Bearer sha256~secret'}

    @patch('validation.requests.get')
    def test_rejected_token_is_not_echoed(self, mock_get, rhel_config, monkeypatch):
        monkeypatch.setenv('DR_TOKEN', 'sha256~secret')
        mock_get.return_value = MagicMock(status_code=401)

        errors = validate_api_access(self._api_config(rhel_config))
        assert len(errors) == 1
        assert 'rejected' in errors[0]
        assert 'sha256~secret' not in errors[0]

    @patch('validation.requests.get')
    def test_connection_error(self, mock_get, rhel_config, monkeypatch):
        monkeypatch.setenv('DR_TOKEN', 'sha256~secret')
        mock_get.side_effect = requests.exceptions.ConnectionError()

        errors = validate_api_access(self._api_config(rhel_config))
        assert 'Cannot connect' in errors[0]

    @patch('validation.requests.get')
    def test_non_json_body(self, mock_get, rhel_config, monkeypatch):
        monkeypatch.setenv('DR_TOKEN', 'sha256~secret')
        resp = MagicMock(status_code=200)
        resp.json.side_effect = ValueError('Expecting value')
        mock_get.return_value = resp

        errors = validate_api_access(self._api_config(rhel_config))
        assert len(errors) == 1
        assert 'not a version object' in errors[0]

    @patch('validation.requests.get')
    def test_timeout(self, mock_get, rhel_config, monkeypatch):
        monkeypatch.setenv('DR_TOKEN', 'sha256~secret')
        mock_get.side_effect = requests.exceptions.Timeout()

        errors = validate_api_access(self._api_config(rhel_config))
        assert 'Timeout' in errors[0]


class TestRunPreflightChecks:
    """Tests for the combined preflight run."""

    @patch('validation.shutil.which', return_value='/usr/bin/x')
    def test_all_pass(self, _mock_which, rhel_config):
        results = run_preflight_checks(rhel_config)
        assert set(results) == {'config', 'tools', 'ssh_key', 'api'}
        assert all(not cat['failed'] for cat in results.values())
        assert validate_readiness(rhel_config) == []

    def test_config_errors_stop_further_checks(self, rhel_config):
        rhel_config.selector = ''
        with patch('validation.shutil.which') as mock_which:
            results = run_preflight_checks(rhel_config)

        assert list(results) == ['config']
        assert results['config']['failed'] == ['rhel-dr: discovery.selector is required']
        mock_which.assert_not_called()

    def test_format(self, rhel_config):
        rhel_config.selector = ''
        output = format_preflight_results('rhel-dr', run_preflight_checks(rhel_config))
        assert "Preflight checks for target 'rhel-dr'" in output
        assert '✗ Configuration: rhel-dr: discovery.selector is required' in output
        assert output.endswith('Preflight checks failed')
