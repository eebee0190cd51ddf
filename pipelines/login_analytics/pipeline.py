"""
Login analytics ETL pipeline

Extract: dbo.tbl_UserConnectionHistory and dbo.tbl_UserConnectionLog from
    every SQL Server shard, last 5 hours, newest first
Transform: validate each row as a UserConnection
Load: upsert into user_connection_history / user_connection_log keyed by
    (dealer_id, logon_logoff_time, entry_sequence)
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from core.exceptions import RowError, Stage
from core.logging import setup_logging
from etl.base import Record, StreamTransformer
from etl.cli import execute_with_signals
from etl.config_parser import load_config
from etl.extractors.sql_extractor import Shard, ShardedSQLExtractor
from etl.loaders.postgres_loader import PostgresUpsertLoader
from etl.orchestrator import Orchestrator
from schemas.pipeline_config import PipelineConfig
from schemas.user_connection import UserConnection

logger = logging.getLogger(__name__)

PIPELINE_DIR = Path(__file__).parent
CONFIG_PATH = PIPELINE_DIR / "config.yaml"

RECORD_KIND = "user_connection"

HISTORY_TABLE = "dbo.tbl_UserConnectionHistory"
LOG_TABLE = "dbo.tbl_UserConnectionLog"

# nLogonLogoffTime is unix seconds; keep the last 5 hours
SOURCE_QUERY = """
    SELECT
        sDealerId,
        sGroupId,
        sDealerCode,
        nLogonLogoffTime,
        nLoginAllowed,
        nSuccessFailure,
        cLogonLogoffFlag,
        sDetails,
        nModeOfConnection,
        nConnectioNumber,
        nEntrySequence,
        nOMSSequenceNo,
        sSessionId
    FROM {table}
    WHERE DATEADD(SECOND, nLogonLogoffTime, '1970-01-01') >= DATEADD(HOUR, -5, GETDATE())
"""

COLUMN_MAP = {
    "sDealerId": "dealer_id",
    "sGroupId": "group_id",
    "sDealerCode": "dealer_code",
    "nLogonLogoffTime": "logon_logoff_time",
    "nLoginAllowed": "login_allowed",
    "nSuccessFailure": "success_failure",
    "cLogonLogoffFlag": "logon_logoff_flag",
    "sDetails": "details",
    "nModeOfConnection": "mode_of_connection",
    "nConnectioNumber": "connection_number",
    "nEntrySequence": "entry_sequence",
    "nOMSSequenceNo": "oms_sequence_no",
    "sSessionId": "session_id",
}


class LoginExtractor(ShardedSQLExtractor):
    """Reads both connection tables from every shard"""

    record_kind = RECORD_KIND

    def build_query(self, table: Optional[str]) -> str:
        if self.config.source.query:
            return super().build_query(table)
        order_by = self.config.source.order_by or "nLogonLogoffTime DESC"
        return f"{SOURCE_QUERY.format(table=table).rstrip()}\n    ORDER BY {order_by}"

    def row_to_record(self, row: Dict[str, Any], shard: Shard, table: Optional[str]) -> Record:
        mapped = {COLUMN_MAP.get(key, key): value for key, value in row.items()}
        connection = UserConnection(**mapped)
        return Record(
            kind=self.record_kind,
            data=connection.model_dump(),
            source=table,
            shard=shard.index
        )


class LoginTransformer(StreamTransformer):
    """Re-validates records so malformed rows are counted, not loaded"""

    accepts = RECORD_KIND
    produces = RECORD_KIND

    def transform_record(self, record: Record) -> Record:
        try:
            connection = UserConnection(**record.data)
        except ValidationError as e:
            raise RowError(
                "Invalid user connection record",
                context={"record_source": record.source, "shard": record.shard},
                original_exception=e,
                stage=Stage.TRANSFORMATION
            )
        return record.model_copy(update={"data": connection.model_dump()})


class LoginLoader(PostgresUpsertLoader):
    """Upserts into the history/log table matching the record's source table"""

    accepts = RECORD_KIND


def build_pipeline(config: PipelineConfig) -> Orchestrator:
    return Orchestrator(config, LoginExtractor(), LoginTransformer(), LoginLoader())


async def main() -> int:
    setup_logging()
    load_dotenv(PIPELINE_DIR / ".env", override=False)

    logger.info("Starting login analytics pipeline...")
    try:
        config = load_config(CONFIG_PATH)
        result = await execute_with_signals(build_pipeline(config))
    except Exception as e:
        logger.error(f"Pipeline execution failed: {e}")
        return 1

    logger.info(
        f"Pipeline execution completed successfully: "
        f"loaded={result.records_loaded}, failed={result.records_failed}, "
        f"attempts={result.attempts}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
