"""Interface remediation actions (NetworkManager over SSH)."""

import logging
import time
from dataclasses import dataclass

from common import ActionResult
from config import ConfigError, RestoreConfig
from remediation import NmcliBackend, RemediationError, Remediator

logger = logging.getLogger(__name__)


@dataclass
class RemediateInterfaceAction:
    """Converge the machine-network interface on the discovered target."""
    name: str
    target_context_key: str = 'target'
    timeout: int = 90  # per remote command

    def run(self, config: RestoreConfig, context: dict) -> ActionResult:
        """Connect to the target and apply the desired state if it differs."""
        start = time.time()

        target = context.get(self.target_context_key)
        if not target:
            return ActionResult(
                success=False,
                message=f"No {self.target_context_key} in context (discovery must run first)",
                duration=time.time() - start
            )

        try:
            desired = config.desired_state()
        except ConfigError as e:
            return ActionResult(
                success=False,
                message=str(e),
                duration=time.time() - start
            )

        logger.info(f"[{self.name}] Converging {desired.interface} on {target.address}...")
        remediator = Remediator(NmcliBackend(connection_name=config.connection_name, timeout=self.timeout))
        try:
            result = remediator.converge(target, desired)
        except RemediationError as e:
            return ActionResult(
                success=False,
                message=(
                    f"{type(e).__name__}: {e} "
                    f"[target={target.name}, address={target.address}, interface={desired.interface}]"
                ),
                duration=time.time() - start
            )

        detail = f" ({', '.join(result.changes)})" if result.changes else ''
        return ActionResult(
            success=True,
            message=f"{desired.interface} on {target.address}: {result.outcome}{detail}",
            duration=time.time() - start,
            context_updates={'outcome': result.outcome, 'changes': result.changes}
        )
