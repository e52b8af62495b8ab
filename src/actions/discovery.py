"""Endpoint discovery actions."""

import logging
import time
from dataclasses import dataclass

from common import ActionResult
from config import ConfigError, RestoreConfig
from discovery import DiscoveryError, Discoverer, KubeApiClient, KubectlClient, QueryClient
from inventory import Inventory

logger = logging.getLogger(__name__)


def query_client_for(config: RestoreConfig) -> QueryClient:
    """REST client when an API endpoint is configured, else the oc/kubectl CLI."""
    if config.api_endpoint:
        return KubeApiClient(
            config.api_endpoint,
            token_env=config.token_env,
            verify_tls=config.verify_tls,
        )
    return KubectlClient(cli=config.kube_cli, context=config.kube_context or None)


def inventory_for(config: RestoreConfig, context: dict) -> Inventory:
    """The run's inventory from context, created on first use."""
    inventory = context.get('inventory')
    if inventory is None:
        inventory = Inventory(
            user=config.ssh_user,
            ssh_key=config.ssh_key,
            port=config.ssh_port,
            connect_timeout=config.connect_timeout,
        )
    return inventory


@dataclass
class DiscoverEndpointAction:
    """Find the VM's transient address and register it as the remediation target."""
    name: str
    target_context_key: str = 'target'
    register: bool = True  # False for read-only discovery

    def run(self, config: RestoreConfig, context: dict) -> ActionResult:
        """Query the orchestration API and register the single match."""
        start = time.time()
        query = config.discovery_query()

        logger.info(f"[{self.name}] Looking up {query.describe()}...")
        try:
            endpoint = Discoverer(query_client_for(config), config.retry).discover(query)
        except DiscoveryError as e:
            return ActionResult(
                success=False,
                message=f"{type(e).__name__}: {e} [selector={e.selector}, namespace={e.namespace}]",
                duration=time.time() - start
            )

        context_updates = {
            'endpoint': endpoint,
            'endpoint_name': endpoint.name,
            'endpoint_address': endpoint.address,
        }

        if self.register:
            try:
                desired = config.desired_state()
            except ConfigError as e:
                return ActionResult(
                    success=False,
                    message=str(e),
                    duration=time.time() - start
                )
            inventory = inventory_for(config, context)
            target = inventory.register(config.name, endpoint.address, desired.to_params())
            context_updates['inventory'] = inventory
            context_updates[self.target_context_key] = target

        return ActionResult(
            success=True,
            message=f"{endpoint.name} has address {endpoint.address}",
            duration=time.time() - start,
            context_updates=context_updates
        )
