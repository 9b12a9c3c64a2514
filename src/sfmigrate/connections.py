"""Clients for the metadata (SOAP), partner (SOAP) and bulk (REST) APIs.

The two SOAP connections are zeep clients bound to the WSDLs shipped in
``sfmigrate/wsdl``; the bulk connection talks JSON over ``requests``.
Every connection owns one ``requests.Session`` configured from a
:class:`ConnectorConfig`.
"""

from __future__ import annotations

import gzip
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
from urllib.parse import urlsplit

import requests
from lxml import etree
from zeep import Client, Plugin, Settings
from zeep.exceptions import Error as ZeepError
from zeep.exceptions import Fault
from zeep.helpers import serialize_object
from zeep.transports import Transport

from .exceptions import BulkApiError, ConnectionFailure
from .logging_config import WIRE_LOGGER
from .models import (
    ApiError,
    JobInfo,
    JobState,
    Metadata,
    MetadataUpsertResult,
    QueryResult,
    SaveResult,
    SObject,
    UpsertResult,
)

_logger = logging.getLogger(__name__)
_wire = logging.getLogger(WIRE_LOGGER)

XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
PARTNER_NS = "urn:partner.soap.sforce.com"
SOBJECT_NS = "urn:sobject.partner.soap.sforce.com"
METADATA_NS = "http://soap.sforce.com/2006/04/metadata"

WSDL_DIR = Path(__file__).parent / "wsdl"
PARTNER_WSDL_FILE = str(WSDL_DIR / "partner.wsdl")
METADATA_WSDL_FILE = str(WSDL_DIR / "metadata.wsdl")

PARTNER_BINDING = f"{{{PARTNER_NS}}}SoapBinding"
METADATA_BINDING = f"{{{METADATA_NS}}}MetadataBinding"


@dataclass
class ConnectorConfig:
    """Per-connection settings; tracing is meant for debugging only."""

    endpoint: str
    session_id: str
    compression: bool = True
    trace_message: bool = False
    pretty_print: bool = False
    timeout: float = 120.0

    def enable_trace(self) -> None:
        self.trace_message = True
        self.pretty_print = True
        self.compression = False


# ----------------------------------------------------------------------
# Interfaces the service talks to (real connections or test doubles)
# ----------------------------------------------------------------------
class MetadataApi(Protocol):
    all_or_none: bool

    def upsert_metadata(self, items: Sequence[Metadata]) -> List[MetadataUpsertResult]: ...

    def read_metadata(self, type_name: str, full_names: Sequence[str]) -> List[Dict[str, Any]]: ...


class PartnerApi(Protocol):
    all_or_none: bool
    allow_field_truncation: bool

    def create(self, sobjects: Sequence[SObject]) -> List[SaveResult]: ...

    def upsert(self, external_id_field: str, sobjects: Sequence[SObject]) -> List[UpsertResult]: ...

    def query(self, soql: str) -> QueryResult: ...

    def query_more(self, query_locator: str) -> QueryResult: ...


class BulkApi(Protocol):
    def create_job(self, job: JobInfo) -> JobInfo: ...

    def create_batch(self, job_id: str, payload: bytes) -> Dict[str, Any]: ...

    def close_job(self, job_id: str) -> JobInfo: ...

    def get_job_status(self, job_id: str) -> JobInfo: ...


def _check_config(config: ConnectorConfig) -> None:
    parts = urlsplit(config.endpoint or "")
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConnectionFailure(f"Malformed endpoint: {config.endpoint!r}")
    if not config.session_id:
        raise ConnectionFailure("No session id configured.")


def _new_session(config: ConnectorConfig, session: Optional[requests.Session]) -> requests.Session:
    s = session or requests.Session()
    s.headers["Accept-Encoding"] = "gzip" if config.compression else "identity"
    return s


# ----------------------------------------------------------------------
# SOAP plumbing
# ----------------------------------------------------------------------
class _SessionTransport(Transport):
    """zeep transport over our session; gzips request bodies when asked to."""

    def __init__(self, config: ConnectorConfig, session: requests.Session):
        super().__init__(session=session, timeout=config.timeout, operation_timeout=config.timeout)
        self.compression = config.compression

    def post(self, address, message, headers):
        headers = dict(headers)
        if self.compression:
            if isinstance(message, str):
                message = message.encode("utf-8")
            message = gzip.compress(message)
            headers["Content-Encoding"] = "gzip"
        return self.session.post(
            address, data=message, headers=headers, timeout=self.operation_timeout
        )


class _WireTrace(Plugin):
    """Log every envelope going out and coming back on the wire logger."""

    def __init__(self, pretty: bool):
        self.pretty = pretty

    def _dump(self, envelope) -> str:
        return etree.tostring(envelope, pretty_print=self.pretty, encoding="unicode")

    def egress(self, envelope, http_headers, operation, binding_options):
        address = binding_options.get("address")
        _wire.debug(">>> %s %s\n%s", operation.name, address, self._dump(envelope))
        return envelope, http_headers

    def ingress(self, envelope, http_headers, operation):
        _wire.debug("<<< %s\n%s", operation.name, self._dump(envelope))
        return envelope, http_headers


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    return list(value) if isinstance(value, list) else [value]


def _errors(result: Any) -> tuple:
    return tuple(
        ApiError(
            status_code=e.statusCode or "",
            message=e.message or "",
            fields=tuple(f for f in _as_list(e.fields) if f is not None),
        )
        for e in _as_list(result.errors)
    )


def _to_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


class _SoapConnection:
    wsdl = ""
    binding = ""
    namespace = ""

    def __init__(self, config: ConnectorConfig, session: Optional[requests.Session] = None):
        _check_config(config)
        self.config = config
        self.session = _new_session(config, session)

        plugins = [_WireTrace(config.pretty_print)] if config.trace_message else []
        self.client = Client(
            self.wsdl,
            transport=_SessionTransport(config, self.session),
            settings=Settings(strict=False, xml_huge_tree=True),
            plugins=plugins,
        )
        self.service = self.client.create_service(self.binding, config.endpoint)

    def _header(self, name: str, **values: Any) -> Any:
        return self.client.get_element(f"{{{self.namespace}}}{name}")(**values)

    def _soap_headers(self) -> List[Any]:
        return [self._header("SessionHeader", sessionId=self.config.session_id)]

    def _invoke(self, operation: str, **kwargs: Any) -> Any:
        # header flags may change between calls
        self.client.set_default_soapheaders(self._soap_headers())
        try:
            return getattr(self.service, operation)(**kwargs)
        except Fault as e:
            _logger.error("%s fault %s: %s", operation, e.code, e.message)
            raise ConnectionFailure(e.message or "SOAP fault", fault_code=e.code) from e
        except (ZeepError, requests.RequestException) as e:
            _logger.error("%s against %s failed: %s", operation, self.config.endpoint, e)
            raise ConnectionFailure(
                f"{operation} against {self.config.endpoint} failed: {e}"
            ) from e


# ----------------------------------------------------------------------
# Metadata API
# ----------------------------------------------------------------------
def _metadata_record(component: Any) -> Dict[str, Any]:
    data = serialize_object(component, dict)
    return {k: v for k, v in data.items() if v is not None and not k.startswith("_")}


class MetadataConnection(_SoapConnection):
    wsdl = METADATA_WSDL_FILE
    binding = METADATA_BINDING
    namespace = METADATA_NS

    def __init__(self, config: ConnectorConfig, session: Optional[requests.Session] = None):
        super().__init__(config, session)
        self.all_or_none = False

    def _soap_headers(self) -> List[Any]:
        headers = super()._soap_headers()
        headers.append(self._header("AllOrNoneHeader", allOrNone=self.all_or_none))
        return headers

    def _component(self, item: Metadata) -> Any:
        xsd_type = self.client.get_type(f"{{{METADATA_NS}}}{item.xsi_type}")
        try:
            return xsd_type(**item.payload())
        except TypeError as e:
            raise ConnectionFailure(
                f"{item.xsi_type} {item.full_name!r} does not fit the metadata schema: {e}"
            ) from e

    def upsert_metadata(self, items: Sequence[Metadata]) -> List[MetadataUpsertResult]:
        components = [self._component(item) for item in items]
        results = self._invoke("upsertMetadata", metadata=components)
        return [
            MetadataUpsertResult(
                success=bool(res.success),
                full_name=res.fullName or "",
                created=bool(res.created),
                errors=_errors(res),
            )
            for res in _as_list(results)
        ]

    def read_metadata(self, type_name: str, full_names: Sequence[str]) -> List[Dict[str, Any]]:
        result = self._invoke("readMetadata", type=type_name, fullNames=list(full_names))
        records = _as_list(getattr(result, "records", None)) if result is not None else []
        return [_metadata_record(rec) for rec in records if rec is not None]


# ----------------------------------------------------------------------
# Partner API
# ----------------------------------------------------------------------
def _field_element(name: str, value: Any) -> etree._Element:
    el = etree.Element(f"{{{SOBJECT_NS}}}{name}")
    if isinstance(value, SObject):
        # relationship reference, e.g. Account by external id
        etree.SubElement(el, f"{{{SOBJECT_NS}}}type").text = value.type
        for key, sub in value.fields.items():
            if sub is not None:
                el.append(_field_element(key, sub))
    else:
        el.text = _to_text(value)
    return el


def _localname(el: etree._Element) -> str:
    return etree.QName(el).localname


def _field_value(el: etree._Element) -> Any:
    """Value of a raw sObject field: text, nested record or subquery rows."""
    if el.get(f"{{{XSI_NS}}}nil") == "true":
        return None
    children = [c for c in el if isinstance(c.tag, str)]
    if not children:
        return el.text or ""
    names = {_localname(c) for c in children}
    if "records" in names or "done" in names:
        return [_element_record(c) for c in children if _localname(c) == "records"]
    return _element_record(el)


def _element_record(el: etree._Element) -> Dict[str, Any]:
    record: Dict[str, Any] = {}
    for child in el:
        if not isinstance(child.tag, str):
            continue
        _put(record, _localname(child), _field_value(child))
    return record


def _put(record: Dict[str, Any], key: str, value: Any) -> None:
    # partner responses repeat Id; keep the populated one
    if record.get(key) is None:
        record[key] = value


def _sobject_record(obj: Any) -> Dict[str, Any]:
    record: Dict[str, Any] = {"type": obj.type, "Id": obj.Id}
    for el in _as_list(obj._value_1):
        _put(record, _localname(el), _field_value(el))
    return record


def _query_result(result: Any) -> QueryResult:
    records = [_sobject_record(r) for r in _as_list(result.records) if r is not None]
    return QueryResult(
        records=records,
        done=bool(result.done),
        query_locator=result.queryLocator,
        size=result.size if result.size is not None else len(records),
    )


class PartnerConnection(_SoapConnection):
    wsdl = PARTNER_WSDL_FILE
    binding = PARTNER_BINDING
    namespace = PARTNER_NS

    def __init__(self, config: ConnectorConfig, session: Optional[requests.Session] = None):
        super().__init__(config, session)
        self.all_or_none = False
        self.allow_field_truncation = False
        self._sobject_type = self.client.get_type(f"{{{SOBJECT_NS}}}sObject")

    def _soap_headers(self) -> List[Any]:
        headers = super()._soap_headers()
        headers.append(self._header("AllOrNoneHeader", allOrNone=self.all_or_none))
        headers.append(
            self._header(
                "AllowFieldTruncationHeader", allowFieldTruncation=self.allow_field_truncation
            )
        )
        return headers

    def _sobject(self, sobj: SObject) -> Any:
        nulls = [name for name, value in sobj.fields.items() if value is None and name != "Id"]
        fields = [
            _field_element(name, value)
            for name, value in sobj.fields.items()
            if value is not None and name != "Id"
        ]
        return self._sobject_type(type=sobj.type, fieldsToNull=nulls, Id=sobj.id, _value_1=fields)

    def create(self, sobjects: Sequence[SObject]) -> List[SaveResult]:
        results = self._invoke("create", sObjects=[self._sobject(s) for s in sobjects])
        return [
            SaveResult(success=bool(res.success), id=res.id, errors=_errors(res))
            for res in _as_list(results)
        ]

    def upsert(self, external_id_field: str, sobjects: Sequence[SObject]) -> List[UpsertResult]:
        results = self._invoke(
            "upsert",
            externalIDFieldName=external_id_field,
            sObjects=[self._sobject(s) for s in sobjects],
        )
        return [
            UpsertResult(
                success=bool(res.success),
                id=res.id,
                created=bool(res.created),
                errors=_errors(res),
            )
            for res in _as_list(results)
        ]

    def query(self, soql: str) -> QueryResult:
        return _query_result(self._invoke("query", queryString=soql))

    def query_more(self, query_locator: str) -> QueryResult:
        return _query_result(self._invoke("queryMore", queryLocator=query_locator))


# ----------------------------------------------------------------------
# Bulk (async) API
# ----------------------------------------------------------------------
def _pretty_json(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace")
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except ValueError:
        return text


class BulkConnection:
    error_cls: Callable[..., Exception] = BulkApiError

    def __init__(self, config: ConnectorConfig, session: Optional[requests.Session] = None):
        _check_config(config)
        self.config = config
        self.session = _new_session(config, session)

    def _trace(self, label: str, url: str, body: Optional[bytes]) -> None:
        if not self.config.trace_message:
            return
        payload = b"" if body is None else body
        text = (
            _pretty_json(payload)
            if self.config.pretty_print
            else payload.decode("utf-8", errors="replace")
        )
        _wire.debug("%s %s\n%s", label, url, text)

    def _send(self, method: str, url: str, *, body: Optional[bytes] = None) -> requests.Response:
        headers = {
            "X-SFDC-Session": self.config.session_id,
            "Content-Type": "application/json; charset=UTF-8",
            "Accept": "application/json",
        }
        self._trace(f">>> {method}", url, body)

        data = body
        if body is not None and self.config.compression:
            data = gzip.compress(body)
            headers["Content-Encoding"] = "gzip"

        try:
            r = self.session.request(
                method, url, data=data, headers=headers, timeout=self.config.timeout
            )
        except requests.RequestException as e:
            _logger.error("%s %s failed: %s", method, url, e)
            raise self.error_cls(f"{method} {url} failed: {e}") from e

        self._trace(f"<<< {r.status_code}", url, r.content)
        return r

    def _json(self, method: str, path: str, body: Optional[bytes] = None) -> Dict[str, Any]:
        url = f"{self.config.endpoint.rstrip('/')}/{path}"
        r = self._send(method, url, body=body)
        try:
            data = r.json()
        except ValueError:
            data = None

        if r.status_code >= 400:
            if isinstance(data, dict):
                raise BulkApiError(
                    data.get("exceptionMessage") or f"HTTP {r.status_code}",
                    exception_code=data.get("exceptionCode"),
                )
            raise BulkApiError(f"HTTP {r.status_code} for {url}: {r.text[:200]}")
        if not isinstance(data, dict):
            raise BulkApiError(f"Unexpected response from {url}: {r.text[:200]}")
        return data

    def create_job(self, job: JobInfo) -> JobInfo:
        body = json.dumps(job.to_json()).encode("utf-8")
        return JobInfo.from_json(self._json("POST", "job", body))

    def create_batch(self, job_id: str, payload: bytes) -> Dict[str, Any]:
        return self._json("POST", f"job/{job_id}/batch", payload)

    def close_job(self, job_id: str) -> JobInfo:
        body = json.dumps({"state": JobState.CLOSED.value}).encode("utf-8")
        return JobInfo.from_json(self._json("POST", f"job/{job_id}", body))

    def get_job_status(self, job_id: str) -> JobInfo:
        return JobInfo.from_json(self._json("GET", f"job/{job_id}"))
