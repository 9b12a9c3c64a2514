"""Orchestration of metadata deploys, record loads, bulk jobs and queries.

:class:`SalesforceService` owns at most one connection per API kind and
opens each one the first time an operation needs it. Results of every
record or metadata call are folded into a :class:`DeployResponse`; only
transport problems are raised.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .api import ServiceConfig
from .connections import (
    BulkApi,
    BulkConnection,
    ConnectorConfig,
    MetadataApi,
    MetadataConnection,
    PartnerApi,
    PartnerConnection,
)
from .endpoints import bulk_endpoint, metadata_url, normalize_server_url
from .exceptions import (
    BatchSubmissionFailure,
    BulkApiError,
    EncodingFailure,
    JobCreationFailure,
)
from .logging_config import enable_wire_trace
from .models import (
    ConcurrencyMode,
    ContentType,
    JobInfo,
    Metadata,
    Operation,
    Queue,
    SaveResult,
    SObject,
)
from .response import DeployResponse, fold_metadata_results, fold_record_results

_logger = logging.getLogger(__name__)

METADATA_BATCH_SIZE = 10
JOB_LIFETIME = timedelta(hours=12)
UNASSIGNED_QUEUE = "Unassigned"
UNASSIGNED_QUEUE_SOBJECT = "Case"
QUEUE_SOQL = "SELECT Id, Name FROM Group WHERE Type = 'Queue'"

MetadataFactory = Callable[[ConnectorConfig], MetadataApi]
PartnerFactory = Callable[[ConnectorConfig], PartnerApi]
BulkFactory = Callable[[ConnectorConfig], BulkApi]


def chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    """Yield consecutive slices of at most ``size`` items."""
    for start in range(0, len(items), size):
        yield items[start : start + size]


def unassigned_queue() -> Queue:
    """Queue that Case upserts fall back to when no owner queue matches."""
    return Queue(
        full_name=UNASSIGNED_QUEUE,
        name=UNASSIGNED_QUEUE,
        sobject_types=[UNASSIGNED_QUEUE_SOBJECT],
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        # keep every digit; the bulk API parses numeric strings
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_records(records: Sequence[Mapping[str, Any]]) -> bytes:
    """Serialize a bulk batch as UTF-8 JSON; NaN and infinities are rejected."""
    try:
        text = json.dumps(
            list(records), default=_json_default, ensure_ascii=False, allow_nan=False
        )
        return text.encode("utf-8")
    except (TypeError, ValueError, UnicodeEncodeError) as e:
        raise EncodingFailure(f"Cannot encode batch of {len(records)} records: {e}") from e


def _token_preview(token: str) -> str:
    return f"{token[:10]}...{token[-6:]}" if len(token) > 20 else "***"


class SalesforceService:
    """Per-org facade over the metadata, partner and bulk APIs.

    Not thread safe: use one instance per thread.
    """

    def __init__(
        self,
        cfg: Optional[ServiceConfig] = None,
        *,
        metadata_factory: Optional[MetadataFactory] = None,
        partner_factory: Optional[PartnerFactory] = None,
        bulk_factory: Optional[BulkFactory] = None,
    ) -> None:
        self.cfg = cfg or ServiceConfig.from_env()
        self.cfg.require()

        self._server_url = normalize_server_url(self.cfg.server_url or "")
        self._session_id = self.cfg.session_id or ""
        _logger.debug("Server URL %s normalized to %s", self.cfg.server_url, self._server_url)

        self._metadata_factory: MetadataFactory = metadata_factory or MetadataConnection
        self._partner_factory: PartnerFactory = partner_factory or PartnerConnection
        self._bulk_factory: BulkFactory = bulk_factory or BulkConnection

        self._mconn: Optional[MetadataApi] = None
        self._pconn: Optional[PartnerApi] = None
        self._bconn: Optional[BulkApi] = None

        self._metadata: List[Metadata] = []
        self._queues: Optional[Dict[str, str]] = None
        self.audit_fields_enabled = False

    # --------------------------- Endpoints ----------------------------

    @property
    def server_url(self) -> str:
        return self._server_url

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def metadata_url(self) -> str:
        return metadata_url(self._server_url)

    @property
    def bulk_endpoint(self) -> str:
        return bulk_endpoint(self._server_url)

    # --------------------------- Connections --------------------------

    def _connector_config(self, endpoint: str, trace: bool) -> ConnectorConfig:
        config = ConnectorConfig(
            endpoint=endpoint,
            session_id=self._session_id,
            compression=True,
            timeout=self.cfg.timeout,
        )
        if trace:
            config.enable_trace()
            enable_wire_trace()
        return config

    def ensure_metadata_connection(self) -> MetadataApi:
        if self._mconn is not None:
            return self._mconn

        config = self._connector_config(self.metadata_url, self.cfg.trace_metadata)
        conn = self._metadata_factory(config)
        # allow partial success
        conn.all_or_none = False
        self._mconn = conn
        _logger.info(
            "Metadata connection ready endpoint=%s session=%s",
            config.endpoint,
            _token_preview(self._session_id),
        )
        return conn

    def ensure_partner_connection(self) -> PartnerApi:
        if self._pconn is not None:
            return self._pconn

        config = self._connector_config(self._server_url, self.cfg.trace_partner)
        conn = self._partner_factory(config)
        conn.all_or_none = False
        # truncate values that are too long instead of failing the record
        conn.allow_field_truncation = True
        self._pconn = conn
        _logger.info("Partner connection ready endpoint=%s", config.endpoint)
        return conn

    def ensure_bulk_connection(self) -> BulkApi:
        if self._bconn is not None:
            return self._bconn

        config = self._connector_config(self.bulk_endpoint, self.cfg.trace_bulk)
        self._bconn = self._bulk_factory(config)
        _logger.info("Bulk connection ready endpoint=%s", config.endpoint)
        return self._bconn

    # --------------------------- Metadata -----------------------------

    @property
    def pending_metadata(self) -> List[Metadata]:
        return list(self._metadata)

    def enqueue_metadata(self, items: Iterable[Metadata]) -> None:
        """Queue metadata items (custom fields and the like) for :meth:`deploy`."""
        self._metadata.extend(items)

    add_custom_fields = enqueue_metadata

    def add_categories(self, groups: Iterable[Metadata]) -> None:
        self._metadata.extend(groups)

    def enqueue_queues(self, queues: Iterable[Queue]) -> None:
        """Queue queue definitions plus the synthetic ``Unassigned`` Case queue.

        The synthetic queue is appended on every call; calling this twice
        deploys it twice (the upsert is harmless for an existing queue).
        """
        self._metadata.extend(queues)
        self._metadata.append(unassigned_queue())

    add_queues = enqueue_queues

    def deploy(self) -> DeployResponse:
        """Upsert all queued metadata in chunks of ten and clear the queue."""
        dr = DeployResponse()
        conn = self.ensure_metadata_connection()

        try:
            for batch in chunked(self._metadata, METADATA_BATCH_SIZE):
                _logger.debug("upsertMetadata with %d item(s)", len(batch))
                dr = fold_metadata_results(dr, conn.upsert_metadata(list(batch)))
        finally:
            self._metadata.clear()

        _logger.info("Deploy finished: %d succeeded, %d failed", dr.success_count, dr.error_count)
        return dr

    def get_permission_set(self, name: str) -> Optional[Dict[str, Any]]:
        conn = self.ensure_metadata_connection()
        records = conn.read_metadata("PermissionSet", [name])
        return records[0] if records else None

    # --------------------------- Records ------------------------------

    def insert(
        self,
        records: Optional[Sequence[SObject]],
        all_or_none: bool = False,
        save_results: Optional[List[SaveResult]] = None,
    ) -> DeployResponse:
        """Create ``records`` in one partner call.

        ``save_results``, when given, is extended with the raw per-record
        results so callers can pick up the new ids.
        """
        dr = DeployResponse()
        conn = self.ensure_partner_connection()

        if not records:
            _logger.warning("An empty list of SObject was passed to insert()!")
            return dr

        _logger.info("Inserting %d records.", len(records))
        if all_or_none:
            conn.all_or_none = True
        try:
            results = conn.create(list(records))
        finally:
            if all_or_none:
                conn.all_or_none = False

        if save_results is not None:
            save_results.extend(results)

        return fold_record_results(dr, results, "insert")

    def upsert(
        self, external_id_field: str, records: Optional[Sequence[SObject]]
    ) -> DeployResponse:
        dr = DeployResponse()
        conn = self.ensure_partner_connection()

        if not records:
            _logger.warning("An empty list of SObject was passed to upsert()!")
            return dr

        _logger.info("Upserting %d records with Id field [%s].", len(records), external_id_field)
        results = conn.upsert(external_id_field, list(records))
        return fold_record_results(dr, results, "upsert")

    # --------------------------- Bulk jobs ----------------------------

    def create_job(
        self,
        object_type: str,
        upsert_field: Optional[str] = None,
        operation: Operation = Operation.INSERT,
    ) -> str:
        """Open a serial JSON bulk job and return its id."""
        _logger.info(
            "[BULK] Creating Bulk Job: object=[%s] unique field=[%s] operation=[%s]",
            object_type,
            upsert_field,
            operation.value,
        )
        conn = self.ensure_bulk_connection()

        job = JobInfo(
            object=object_type,
            operation=operation,
            concurrency_mode=ConcurrencyMode.SERIAL,
            content_type=ContentType.JSON,
            external_id_field_name=upsert_field,
        )
        try:
            created = conn.create_job(job)
        except BulkApiError as e:
            raise JobCreationFailure(e.message, exception_code=e.exception_code) from e

        if not created.id:
            raise JobCreationFailure(f"Bulk API returned no job id for {object_type}")
        _logger.info("Job created: %s", created.id)
        return created.id

    def attach_batch(self, job_id: str, records: Sequence[Mapping[str, Any]]) -> Optional[str]:
        """Add one JSON batch to an open job; returns the batch id."""
        _logger.info("[BULK] Adding [%d] records to job [%s].", len(records), job_id)
        payload = encode_records(records)
        conn = self.ensure_bulk_connection()
        try:
            batch = conn.create_batch(job_id, payload)
        except BulkApiError as e:
            raise BatchSubmissionFailure(e.message, exception_code=e.exception_code) from e
        return batch.get("id")

    def close_job(self, job_id: str) -> JobInfo:
        _logger.info("[BULK] Closing Bulk Job: [%s]", job_id)
        return self.ensure_bulk_connection().close_job(job_id)

    def is_job_stale(self, job_id: str, now: Optional[datetime] = None) -> bool:
        """True once the job is older than :data:`JOB_LIFETIME`.

        A naive ``now`` is taken as UTC.
        """
        _logger.info("[BULK] Getting Bulk Job Status: [%s]", job_id)
        job = self.ensure_bulk_connection().get_job_status(job_id)
        if job.created_date is None:
            raise BulkApiError(f"Job {job_id} has no creation date")

        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return (now - job.created_date) > JOB_LIFETIME

    # --------------------------- Queries ------------------------------

    def query(self, soql: str, follow_cursor: bool = True) -> List[Dict[str, Any]]:
        """Run SOQL; with ``follow_cursor`` keep calling queryMore until done."""
        _logger.info("[QUERY] %s", soql)
        conn = self.ensure_partner_connection()

        qr = conn.query(soql)
        results = list(qr.records)

        while follow_cursor and not qr.done:
            if not qr.query_locator:
                _logger.warning("[QUERY] Server reported more results without a locator.")
                break
            _logger.debug("[QUERY] Calling 'queryMore()' to retrieve more results...")
            qr = conn.query_more(qr.query_locator)
            results.extend(qr.records)

        _logger.info("[QUERY] Retrieved [%d] records.", len(results))
        return results

    def get_queues(self) -> Dict[str, str]:
        """Queue name -> Group id, queried once and cached."""
        if self._queues is None:
            self.refresh_queues()
        return dict(self._queues or {})

    def refresh_queues(self) -> None:
        self._queues = {r["Name"]: r["Id"] for r in self.query(QUEUE_SOQL) if r.get("Name")}
