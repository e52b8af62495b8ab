"""Endpoint discovery: find the transient address of a recovered VM.

Queries the orchestration API for exactly one resource matching a label
selector in a namespace and extracts its runtime-assigned address.

Policy:
- zero matches fails immediately (operator must confirm the VM is running)
- more than one match fails immediately (selector too broad)
- a single match without an address yet is retried with bounded backoff,
  since address assignment lags resource creation
"""

import ipaddress
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol

import requests

from common import run_command

logger = logging.getLogger(__name__)

# kind -> (API group path, plural resource name)
RESOURCE_KINDS = {
    'vmi': ('/apis/kubevirt.io/v1', 'virtualmachineinstances'),
    'pod': ('/api/v1', 'pods'),
}


class DiscoveryError(Exception):
    """Discovery failed for a selector/namespace."""

    def __init__(self, message: str, selector: str = '', namespace: str = ''):
        super().__init__(message)
        self.selector = selector
        self.namespace = namespace


class QueryError(DiscoveryError):
    """The orchestration API query itself failed."""


class NotFoundError(DiscoveryError):
    """No resource matched the selector."""


class AmbiguousError(DiscoveryError):
    """More than one resource matched the selector."""

    def __init__(self, message: str, selector: str = '', namespace: str = '',
                 names: Optional[list[str]] = None):
        super().__init__(message, selector, namespace)
        self.names = names or []


class MissingAddressError(DiscoveryError):
    """The matched resource never reported an address within the retry budget."""


@dataclass(frozen=True)
class DiscoveryQuery:
    """Label selector plus namespace identifying one live resource.

    Attributes:
        namespace: Namespace to search
        selector: Label selector (e.g., 'app=rhel-dr')
        kind: 'vmi' (VirtualMachineInstance) or 'pod'
        interface: VMI interface name whose address is wanted ('*' = first with an address)
    """
    namespace: str
    selector: str
    kind: str = 'vmi'
    interface: str = 'default'

    def describe(self) -> str:
        return f"{self.kind} selector '{self.selector}' in namespace '{self.namespace}'"


@dataclass(frozen=True)
class DiscoveredEndpoint:
    """Address bound to the single matched resource for this run."""
    name: str
    address: str
    namespace: str


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for the missing-address case."""
    attempts: int = 10
    delay: float = 5.0
    backoff: float = 2.0
    max_delay: float = 60.0

    def delays(self) -> Iterator[float]:
        """Yield the sleep before each retry (attempts - 1 values)."""
        delay = self.delay
        for _ in range(max(self.attempts - 1, 0)):
            yield min(delay, self.max_delay)
            delay *= self.backoff


class QueryClient(Protocol):
    """Read-only lookup of resources by namespace and label selector."""

    def query(self, selector: str, namespace: str, kind: str) -> list[dict]:
        ...


def resource_name(resource: dict) -> str:
    return (resource.get('metadata') or {}).get('name', '<unnamed>')


def _valid_ip(value) -> Optional[str]:
    if not value or not isinstance(value, str):
        return None
    try:
        return str(ipaddress.ip_interface(value.strip()).ip)
    except ValueError:
        return None


def extract_address(resource: dict, kind: str = 'vmi', interface: str = 'default') -> Optional[str]:
    """Extract the runtime-assigned address from a resource's status.

    For VMIs the address comes from status.interfaces[] (matched by name);
    for pods from status.podIP. Returns None if not populated yet.
    """
    status = resource.get('status') or {}

    if kind == 'pod':
        return _valid_ip(status.get('podIP'))

    for iface in status.get('interfaces') or []:
        if interface != '*' and iface.get('name') != interface:
            continue
        ip = _valid_ip(iface.get('ipAddress'))
        if ip:
            return ip
        for candidate in iface.get('ipAddresses') or []:
            ip = _valid_ip(candidate)
            if ip:
                return ip
    return None


class KubectlClient:
    """Query via the oc/kubectl CLI (uses the operator's kubeconfig)."""

    def __init__(self, cli: str = 'oc', context: Optional[str] = None, timeout: int = 60):
        self.cli = cli
        self.context = context
        self.timeout = timeout

    def query(self, selector: str, namespace: str, kind: str) -> list[dict]:
        _, plural = RESOURCE_KINDS[kind]
        cmd = [self.cli]
        if self.context:
            cmd += ['--context', self.context]
        cmd += ['get', plural, '-n', namespace, '-l', selector, '-o', 'json']

        rc, out, err = run_command(cmd, timeout=self.timeout)
        if rc != 0:
            raise QueryError(
                f"{self.cli} get {plural} failed: {err.strip() or out.strip()}",
                selector, namespace,
            )
        try:
            data = json.loads(out)
        except json.JSONDecodeError as e:
            raise QueryError(f"Invalid JSON from {self.cli}: {e}", selector, namespace) from e
        return data.get('items') or []


class KubeApiClient:
    """Query the Kubernetes REST API directly.

    The bearer token is read from the environment variable named by
    token_env on every call; it is never stored or logged.
    """

    def __init__(self, api_endpoint: str, token_env: str = 'KUBE_TOKEN',
                 verify_tls: bool = True, timeout: int = 10):
        self.api_endpoint = api_endpoint.rstrip('/')
        self.token_env = token_env
        self.verify_tls = verify_tls
        self.timeout = timeout

    def query(self, selector: str, namespace: str, kind: str) -> list[dict]:
        group, plural = RESOURCE_KINDS[kind]
        token = os.environ.get(self.token_env)
        if not token:
            raise QueryError(f"API token not set (${self.token_env})", selector, namespace)

        url = f"{self.api_endpoint}{group}/namespaces/{namespace}/{plural}"
        try:
            resp = requests.get(
                url,
                params={'labelSelector': selector},
                headers={'Authorization': f'Bearer {token}', 'Accept': 'application/json'},
                verify=self.verify_tls,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise QueryError(f"Timeout querying {url}", selector, namespace) from e
        except requests.exceptions.RequestException as e:
            raise QueryError(f"Cannot query {url}: {e}", selector, namespace) from e

        if resp.status_code in (401, 403):
            raise QueryError(
                f"API rejected token from ${self.token_env} ({resp.status_code})",
                selector, namespace,
            )
        if resp.status_code != 200:
            raise QueryError(
                f"Unexpected API response {resp.status_code}: {resp.text[:200]}",
                selector, namespace,
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise QueryError(f"Invalid JSON from {url}: {e}", selector, namespace) from e
        if not isinstance(body, dict):
            raise QueryError(f"Unexpected response body from {url}", selector, namespace)
        return body.get('items') or []


class Discoverer:
    """Resolve a DiscoveryQuery to exactly one DiscoveredEndpoint."""

    def __init__(self, client: QueryClient, retry: Optional[RetryPolicy] = None):
        self.client = client
        self.retry = retry or RetryPolicy()

    def _match_one(self, query: DiscoveryQuery) -> dict:
        items = self.client.query(query.selector, query.namespace, query.kind)
        if not items:
            raise NotFoundError(
                f"No {query.describe()} (is the VM running?)",
                query.selector, query.namespace,
            )
        if len(items) > 1:
            names = sorted(resource_name(i) for i in items)
            raise AmbiguousError(
                f"{len(items)} resources match {query.describe()}: {', '.join(names)}",
                query.selector, query.namespace, names=names,
            )
        return items[0]

    def discover(self, query: DiscoveryQuery) -> DiscoveredEndpoint:
        """Return the single matching endpoint, retrying only while its address is unset.

        Raises:
            NotFoundError, AmbiguousError: Immediately, no retry
            MissingAddressError: Address still unset after the retry budget
            QueryError: The query could not be executed
        """
        logger.info(f"Discovering {query.describe()}...")
        delays = self.retry.delays()
        attempt = 0
        while True:
            attempt += 1
            resource = self._match_one(query)
            name = resource_name(resource)
            address = extract_address(resource, query.kind, query.interface)
            if address:
                logger.info(f"Discovered {name} at {address}")
                return DiscoveredEndpoint(name=name, address=address, namespace=query.namespace)

            delay = next(delays, None)
            if delay is None:
                raise MissingAddressError(
                    f"{name} has no address on interface '{query.interface}' "
                    f"after {attempt} attempts ({query.describe()})",
                    query.selector, query.namespace,
                )
            logger.debug(f"{name} has no address yet, retrying in {delay:.0f}s...")
            time.sleep(delay)
