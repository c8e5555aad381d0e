"""Bucket purge before stack deletion.

CloudFormation cannot delete a stack whose bucket still holds objects,
and a versioned bucket is only empty once every payload version and
every delete marker is gone. The purger removes both with a bounded
worker pool. Per-object failures are logged and skipped; a bucket left
non-empty makes the following stack delete fail visibly.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from botocore.exceptions import BotoCoreError, ClientError

from stack_opr.client import ObjectVersion, ProvisioningClient
from stack_opr.errors import PurgeObjectError

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 10


@dataclass
class PurgeReport:
    """Counters for one bucket purge.

    Attributes:
        bucket: Bucket name
        versions: Payload versions deleted
        markers: Delete markers deleted
        remaining: Objects removed by the final unversioned pass
        failures: Entries that could not be deleted
    """
    bucket: str
    versions: int = 0
    markers: int = 0
    remaining: int = 0
    failures: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def removed(self) -> int:
        return self.versions + self.markers + self.remaining

    def record(self, entry: ObjectVersion, ok: bool) -> None:
        with self._lock:
            if not ok:
                self.failures += 1
            elif entry.is_delete_marker:
                self.markers += 1
            else:
                self.versions += 1


class BucketPurger:
    """Empties buckets (versions, delete markers, leftovers) before delete."""

    def __init__(self, client: ProvisioningClient, max_workers: int = DEFAULT_WORKERS):
        """Initialize the purger.

        Args:
            client: Provisioning backend (S3 side)
            max_workers: Concurrent delete calls per bucket
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")
        self.client = client
        self.max_workers = max_workers

    def purge(self, bucket: str) -> int:
        """Remove every object version and delete marker from a bucket.

        Args:
            bucket: Bucket name

        Returns:
            Number of entries removed (0 if the bucket does not exist)
        """
        return self.purge_report(bucket).removed

    def purge_report(self, bucket: str) -> PurgeReport:
        """Like purge(), but return the full counters."""
        report = PurgeReport(bucket=bucket)

        try:
            if not self.client.bucket_exists(bucket):
                logger.info(f"[purge] Bucket {bucket} does not exist, skipping")
                return report
            entries = self.client.list_object_versions(bucket)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"[purge] Could not list s3://{bucket}: {e}")
            return report

        # Two passes: payload versions first, then delete markers
        versions = [e for e in entries if not e.is_delete_marker]
        markers = [e for e in entries if e.is_delete_marker]
        logger.info(f"[purge] s3://{bucket}: {len(versions)} versions, "
                    f"{len(markers)} delete markers")

        self._delete_all(bucket, versions, report)
        self._delete_all(bucket, markers, report)

        try:
            report.remaining = self.client.remove_remaining_objects(bucket)
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"[purge] Final cleanup pass on s3://{bucket} failed: {e}")

        if report.failures:
            logger.warning(f"[purge] s3://{bucket}: {report.failures} entries could not be "
                           f"deleted, stack deletion will likely fail")
        logger.info(f"[purge] s3://{bucket}: removed {report.removed} entries")
        return report

    def _delete_all(self, bucket: str, entries: list[ObjectVersion],
                    report: PurgeReport) -> None:
        if not entries:
            return

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(self._delete_one, bucket, e, report) for e in entries]
            for future in as_completed(futures):
                future.result()

    def _delete_one(self, bucket: str, entry: ObjectVersion, report: PurgeReport) -> None:
        try:
            self.client.delete_object_version(bucket, entry.key, entry.version_id)
        except (PurgeObjectError, ClientError, BotoCoreError) as e:
            logger.warning(f"[purge] Skipping {entry.key} ({entry.version_id}): {e}")
            report.record(entry, ok=False)
            return
        report.record(entry, ok=True)
