"""Pre-flight validation checks for restore runs.

Catches configuration and tooling problems before any network call to the
recovered guest, with actionable error messages.
"""

import logging
import os
import shutil

import requests
import urllib3

from config import RestoreConfig

# Suppress SSL warnings when verify_tls is disabled for self-signed API certs
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------

def validate_config(config: RestoreConfig) -> list[str]:
    """Required static inputs are present and well-formed."""
    return [f"{config.name}: {e}" for e in config.validate()]


# -----------------------------------------------------------------------------
# Local tooling
# -----------------------------------------------------------------------------

def required_tools(config: RestoreConfig) -> list[str]:
    """Executables the configured workflow will invoke."""
    tools = []
    if not config.api_endpoint:
        tools.append(config.kube_cli)
    if config.method == 'ansible':
        tools.append('ansible-playbook')
    else:
        tools.append('ssh')
    return tools


def validate_tools(config: RestoreConfig) -> list[str]:
    errors = []
    for tool in required_tools(config):
        if shutil.which(tool) is None:
            errors.append(f"'{tool}' not found on PATH")
    return errors


def validate_ssh_key(config: RestoreConfig) -> list[str]:
    """The configured key path exists (contents are not read)."""
    if config.ssh_key and not config.ssh_key.exists():
        return [
            f"SSH key not found: {config.ssh_key}\n"
            f"  Set connection.ssh_key or defaults.ssh_key, or omit it to use ssh-agent"
        ]
    return []


# -----------------------------------------------------------------------------
# Orchestration API
# -----------------------------------------------------------------------------

def validate_api_access(config: RestoreConfig) -> list[str]:
    """API endpoint reachable and token accepted (REST backend only)."""
    if not config.api_endpoint:
        return []

    token = os.environ.get(config.token_env)
    if not token:
        return [
            f"API token not set for {config.api_endpoint}\n"
            f"  Export ${config.token_env} (e.g., export {config.token_env}=$(oc whoami -t))"
        ]

    url = f"{config.api_endpoint.rstrip('/')}/version"
    try:
        resp = requests.get(
            url,
            headers={"Authorization": f"Bearer {token}"},
            verify=config.verify_tls,
            timeout=10
        )
    except requests.exceptions.ConnectionError:
        return [
            f"Cannot connect to {config.api_endpoint}\n"
            f"  Check: cluster is up, endpoint URL and port are correct"
        ]
    except requests.exceptions.Timeout:
        return [f"Timeout connecting to {config.api_endpoint}"]
    except requests.exceptions.RequestException as e:
        return [f"Error contacting {config.api_endpoint}: {e}"]

    if resp.status_code in (401, 403):
        return [
            f"API token in ${config.token_env} rejected by {config.api_endpoint} ({resp.status_code})\n"
            f"  Refresh with: oc login && export {config.token_env}=$(oc whoami -t)"
        ]
    if resp.status_code != 200:
        return [f"Unexpected API response from {url}: {resp.status_code}"]

    try:
        version = resp.json().get('gitVersion', 'unknown')
    except (ValueError, AttributeError):
        return [f"Unexpected API response from {url}: body is not a version object"]
    logger.info(f"API reachable at {config.api_endpoint} (Kubernetes {version})")
    return []


# -----------------------------------------------------------------------------
# Combined
# -----------------------------------------------------------------------------

CHECKS = {
    'config': ('Configuration', validate_config),
    'tools': ('Local tools', validate_tools),
    'ssh_key': ('SSH key', validate_ssh_key),
    'api': ('Orchestration API', validate_api_access),
}


def run_preflight_checks(config: RestoreConfig) -> dict:
    """Run all checks.

    Returns:
        {category: {'passed': [...], 'failed': [...]}}
    """
    results = {}
    for key, (label, check) in CHECKS.items():
        errors = check(config)
        results[key] = {
            'passed': [] if errors else [label],
            'failed': errors,
        }
        # Later checks assume a usable config
        if key == 'config' and errors:
            break
    return results


def validate_readiness(config: RestoreConfig) -> list[str]:
    """Flattened list of preflight errors (empty if ready)."""
    errors = []
    for category in run_preflight_checks(config).values():
        errors.extend(category['failed'])
    return errors


def format_preflight_results(target: str, results: dict) -> str:
    """Format preflight check results for display."""
    lines = [f"\nPreflight checks for target '{target}':\n"]

    for key, (label, _) in CHECKS.items():
        category = results.get(key)
        if not category:
            continue
        for item in category['passed']:
            lines.append(f"✓ {item}")
        for item in category['failed']:
            first_line, *rest = item.split('\n')
            lines.append(f"✗ {label}: {first_line}")
            lines.extend(f"  {line}" for line in rest)

    all_passed = all(not cat['failed'] for cat in results.values())
    lines.append("")
    lines.append("All checks passed" if all_passed else "Preflight checks failed")
    return '\n'.join(lines)
