import logging
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from sfmigrate.api import ServiceConfig
from sfmigrate.logging_config import WIRE_LOGGER
from sfmigrate.models import (
    ApiError,
    JobInfo,
    JobState,
    MetadataUpsertResult,
    QueryResult,
    SaveResult,
    UpsertResult,
)
from sfmigrate.service import SalesforceService

SERVER_URL = "https://na30.salesforce.com/services/Soap/u/36.0/00D36000000H5z4"
SESSION_ID = "00D36000000H5z4!AQ4AQFAKE-SESSION-TOKEN"


class FakeMetadata:
    """Records every upsertMetadata call; rejects items named in ``reject``."""

    def __init__(self, config, reject=()):
        self.config = config
        self.all_or_none = True
        self.reject = set(reject)
        self.calls = []
        self.read_calls = []
        self.records = {}

    def upsert_metadata(self, items):
        self.calls.append(list(items))
        results = []
        for item in items:
            if item.full_name in self.reject:
                err = ApiError("REQUIRED_FIELD_MISSING", "Required field is missing", ("label",))
                results.append(MetadataUpsertResult(False, item.full_name, errors=(err,)))
            else:
                results.append(MetadataUpsertResult(True, item.full_name, created=True))
        return results

    def read_metadata(self, type_name, full_names):
        self.read_calls.append((type_name, list(full_names)))
        return [self.records[n] for n in full_names if n in self.records]


class FakePartner:
    def __init__(self, config):
        self.config = config
        self.all_or_none = None
        self.allow_field_truncation = None
        self.header_during_call = []
        self.create_calls = []
        self.upsert_calls = []
        self.pages = []
        self.queries = []
        self.locators = []
        self.results = None

    def _results(self, sobjects, cls):
        if self.results is not None:
            return self.results
        return [cls(True, id=f"001{i:012d}") for i, _ in enumerate(sobjects)]

    def create(self, sobjects):
        self.header_during_call.append(self.all_or_none)
        self.create_calls.append(list(sobjects))
        return self._results(sobjects, SaveResult)

    def upsert(self, external_id_field, sobjects):
        self.upsert_calls.append((external_id_field, list(sobjects)))
        return self._results(sobjects, UpsertResult)

    def query(self, soql):
        self.queries.append(soql)
        return self.pages[0] if self.pages else QueryResult(records=[])

    def query_more(self, locator):
        self.locators.append(locator)
        return self.pages[int(locator)]


class FakeBulk:
    def __init__(self, config):
        self.config = config
        self.jobs = []
        self.batches = []
        self.closed = []
        self.created_date = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)

    def create_job(self, job):
        self.jobs.append(job)
        return JobInfo(
            object=job.object,
            operation=job.operation,
            id="750000000000001AAA",
            state=JobState.OPEN,
            created_date=self.created_date,
        )

    def create_batch(self, job_id, payload):
        self.batches.append((job_id, payload))
        return {"id": f"751{len(self.batches):015d}", "jobId": job_id, "state": "Queued"}

    def close_job(self, job_id):
        self.closed.append(job_id)
        return JobInfo(id=job_id, state=JobState.CLOSED, created_date=self.created_date)

    def get_job_status(self, job_id):
        return JobInfo(id=job_id, state=JobState.OPEN, created_date=self.created_date)


class FakeFactory:
    """Factory that remembers what it built and how often it was asked."""

    def __init__(self, cls, **kwargs):
        self.cls = cls
        self.kwargs = kwargs
        self.built = []

    def __call__(self, config):
        conn = self.cls(config, **self.kwargs)
        self.built.append(conn)
        return conn

    @property
    def conn(self):
        return self.built[-1]


@pytest.fixture
def config():
    return ServiceConfig(server_url=SERVER_URL, session_id=SESSION_ID)


@pytest.fixture
def factories():
    return {
        "metadata_factory": FakeFactory(FakeMetadata),
        "partner_factory": FakeFactory(FakePartner),
        "bulk_factory": FakeFactory(FakeBulk),
    }


@pytest.fixture
def service(config, factories):
    return SalesforceService(config, **factories)


@pytest.fixture
def fakes():
    """The fake connection classes, for tests that need to build their own."""
    return SimpleNamespace(
        Factory=FakeFactory,
        Metadata=FakeMetadata,
        Partner=FakePartner,
        Bulk=FakeBulk,
    )


@pytest.fixture(autouse=True)
def _reset_wire_logger():
    wire = logging.getLogger(WIRE_LOGGER)
    level, handlers = wire.level, list(wire.handlers)
    wire.setLevel(logging.NOTSET)
    yield
    wire.setLevel(level)
    wire.handlers[:] = handlers
