"""EKS glue around the stack walk: kubeconfig and managed add-ons."""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from common import ActionResult, client_error_code, run_command
from config import DriverConfig
from topology import OutputRef

logger = logging.getLogger(__name__)


def _eks_client(config: DriverConfig, client: Optional[Any]):
    return client or boto3.client('eks', region_name=config.region)


@dataclass
class UpdateKubeconfigAction:
    """Point the local kubeconfig at the cluster."""
    name: str = 'kubeconfig'
    timeout: int = 120

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        """Run 'aws eks update-kubeconfig' for the configured cluster."""
        start = time.time()
        logger.info(f"[{self.name}] Updating kubeconfig for {config.cluster_name}...")
        rc, out, err = run_command([
            'aws', 'eks', 'update-kubeconfig',
            '--name', config.cluster_name,
            '--region', config.region,
        ], timeout=self.timeout)

        if rc != 0:
            return ActionResult(
                success=False,
                message=f"update-kubeconfig failed: {err.strip() or out.strip()}",
                duration=time.time() - start,
            )
        return ActionResult(
            success=True,
            message=out.strip(),
            duration=time.time() - start,
        )


@dataclass
class EnsureAddonAction:
    """Create or update an EKS managed add-on and wait for ACTIVE.

    The service-account role ARN is read from the walk context
    ('stack.OutputKey' -> value) when role is set.
    """
    name: str
    addon: str
    role: Optional[OutputRef] = None
    wait_delay: int = 15
    wait_attempts: int = 40
    client: Optional[Any] = None

    def run(self, config: DriverConfig, context: dict) -> ActionResult:
        """Install or update the add-on."""
        start = time.time()
        eks = _eks_client(config, self.client)

        args: dict[str, Any] = {
            'clusterName': config.cluster_name,
            'addonName': self.addon,
            'resolveConflicts': 'OVERWRITE',
        }
        if self.role is not None:
            role_arn = context.get(str(self.role))
            if not role_arn:
                return ActionResult(
                    success=False,
                    message=f"Role output '{self.role}' not available for add-on {self.addon}",
                    duration=time.time() - start,
                )
            args['serviceAccountRoleArn'] = role_arn

        try:
            if self._exists(eks, config.cluster_name):
                logger.info(f"[{self.name}] Add-on {self.addon} exists, updating...")
                eks.update_addon(**args)
            else:
                logger.info(f"[{self.name}] Installing add-on {self.addon}...")
                eks.create_addon(**args)

            waiter = eks.get_waiter('addon_active')
            waiter.wait(
                clusterName=config.cluster_name,
                addonName=self.addon,
                WaiterConfig={'Delay': self.wait_delay, 'MaxAttempts': self.wait_attempts},
            )
        except (ClientError, BotoCoreError) as e:
            return ActionResult(
                success=False,
                message=f"Add-on {self.addon} failed: {e}",
                duration=time.time() - start,
            )

        return ActionResult(
            success=True,
            message=f"Add-on {self.addon} active",
            duration=time.time() - start,
        )

    def _exists(self, eks, cluster_name: str) -> bool:
        try:
            eks.describe_addon(clusterName=cluster_name, addonName=self.addon)
        except ClientError as e:
            if client_error_code(e) == 'ResourceNotFoundException':
                return False
            raise
        return True


@dataclass
class DeleteAddonAction:
    """Delete an EKS managed add-on before the cluster stack goes away."""
    name: str
    addon: str
    wait: bool = True
    client: Optional[Any] = None

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        """Delete the add-on; a missing add-on or cluster is a success."""
        start = time.time()
        eks = _eks_client(config, self.client)

        try:
            eks.delete_addon(clusterName=config.cluster_name, addonName=self.addon)
        except ClientError as e:
            if client_error_code(e) == 'ResourceNotFoundException':
                return ActionResult(
                    success=True,
                    message=f"Add-on {self.addon} does not exist",
                    duration=time.time() - start,
                )
            return ActionResult(
                success=False,
                message=f"Deleting add-on {self.addon} failed: {e}",
                duration=time.time() - start,
            )
        except BotoCoreError as e:
            return ActionResult(
                success=False,
                message=f"Deleting add-on {self.addon} failed: {e}",
                duration=time.time() - start,
            )

        logger.info(f"[{self.name}] Deleting add-on {self.addon}...")
        if self.wait:
            try:
                eks.get_waiter('addon_deleted').wait(
                    clusterName=config.cluster_name, addonName=self.addon)
            except BotoCoreError as e:
                return ActionResult(
                    success=False,
                    message=f"Add-on {self.addon} was not deleted: {e}",
                    duration=time.time() - start,
                )

        return ActionResult(
            success=True,
            message=f"Add-on {self.addon} deleted",
            duration=time.time() - start,
        )
