"""Reusable restore actions."""

from actions.discovery import DiscoverEndpointAction
from actions.remediation import RemediateInterfaceAction
from actions.ansible import AnsibleRemediateAction

__all__ = [
    'DiscoverEndpointAction',
    'RemediateInterfaceAction',
    'AnsibleRemediateAction',
]
