"""Post-destroy report of cluster resources CloudFormation does not own.

Load balancers created by the in-cluster controller and volumes created
by the CSI driver survive stack deletion. They are reported, never
deleted.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from common import ActionResult
from config import DriverConfig

logger = logging.getLogger(__name__)


def cluster_tag_filter(cluster_name: str) -> list[dict]:
    """EC2 filter for resources tagged as owned by the cluster."""
    return [{'Name': f'tag:kubernetes.io/cluster/{cluster_name}', 'Values': ['owned']}]


@dataclass
class ReportOrphansAction:
    """List leftover load balancers, volumes and security groups."""
    name: str = 'orphans'
    elbv2_client: Optional[Any] = None
    ec2_client: Optional[Any] = None

    def run(self, config: DriverConfig, _context: dict) -> ActionResult:
        """Report orphans as warnings; context_updates['orphans'] holds the IDs."""
        start = time.time()
        elbv2 = self.elbv2_client or boto3.client('elbv2', region_name=config.region)
        ec2 = self.ec2_client or boto3.client('ec2', region_name=config.region)

        try:
            orphans = {
                'load_balancers': self._load_balancers(elbv2, config.cluster_name),
                'volumes': self._volumes(ec2, config.cluster_name),
                'security_groups': self._security_groups(ec2, config.cluster_name),
            }
        except (ClientError, BotoCoreError) as e:
            return ActionResult(
                success=False,
                message=f"Orphan check failed: {e}",
                duration=time.time() - start,
                continue_on_failure=True,
            )

        for arn in orphans['load_balancers']:
            logger.warning(f"[{self.name}] Found load balancer: {arn} (delete it manually)")
        for volume_id in orphans['volumes']:
            logger.warning(f"[{self.name}] Found orphaned volume: {volume_id}")
        for group_id in orphans['security_groups']:
            logger.warning(f"[{self.name}] Found orphaned security group: {group_id} "
                           f"(delete it manually once its dependents are gone)")

        total = sum(len(v) for v in orphans.values())
        return ActionResult(
            success=True,
            message=f"{total} orphaned resource(s) found" if total else "No orphaned resources",
            duration=time.time() - start,
            context_updates={'orphans': orphans},
        )

    @staticmethod
    def _load_balancers(elbv2, cluster_name: str) -> list[str]:
        arns = []
        for page in elbv2.get_paginator('describe_load_balancers').paginate():
            for lb in page.get('LoadBalancers', []):
                if cluster_name in lb.get('LoadBalancerName', ''):
                    arns.append(lb['LoadBalancerArn'])
        return arns

    @staticmethod
    def _volumes(ec2, cluster_name: str) -> list[str]:
        ids = []
        paginator = ec2.get_paginator('describe_volumes')
        for page in paginator.paginate(Filters=cluster_tag_filter(cluster_name)):
            for volume in page.get('Volumes', []):
                if volume.get('State') == 'available':
                    ids.append(volume['VolumeId'])
        return ids

    @staticmethod
    def _security_groups(ec2, cluster_name: str) -> list[str]:
        ids = []
        paginator = ec2.get_paginator('describe_security_groups')
        for page in paginator.paginate(Filters=cluster_tag_filter(cluster_name)):
            for group in page.get('SecurityGroups', []):
                ids.append(group['GroupId'])
        return ids
