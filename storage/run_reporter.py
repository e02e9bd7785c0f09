"""Best-effort audit log of pipeline runs in DynamoDB."""
import logging
import uuid
from datetime import datetime
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from processor.models import RunOutcome

logger = logging.getLogger(__name__)


class RunReporter:
    """Appends one audit record per run to a DynamoDB table."""

    def __init__(self, table_name: Optional[str], region_name: Optional[str] = None):
        """
        Initialize the reporter.

        Args:
            table_name: Audit table name; when empty outcomes are only logged
            region_name: AWS region (default: boto3 resolution)
        """
        self.table_name = table_name
        self.table = None
        if not table_name:
            return
        try:
            self.table = boto3.resource('dynamodb', region_name=region_name).Table(table_name)
        except BotoCoreError as e:
            logger.error(f"Run audit table {table_name} disabled: {e}")

    def record(self, outcome: RunOutcome) -> bool:
        """
        Write an audit record for a finished run.

        Failures are logged and never raised.

        Args:
            outcome: Summary of the run

        Returns:
            True if the record was written, False otherwise
        """
        logger.info(
            f"Run finished with status {outcome.status}",
            extra={'run_outcome': outcome.to_dict()}
        )

        if self.table is None:
            return False

        finished_at = outcome.finished_at or datetime.now()
        item = {
            'run_id': str(uuid.uuid4()),
            'status': outcome.status,
            'notes': outcome.notes,
            'found_count': outcome.found_count,
            'inserted_count': outcome.inserted_count,
            'updated_count': outcome.updated_count,
            'modified_count': outcome.modified_count,
            'error_count': outcome.error_count,
            'timestamp': finished_at.isoformat()
        }

        try:
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to write run audit record to {self.table_name}: {e}")
            return False

        return True
