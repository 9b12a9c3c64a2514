"""Aggregation of per-item API results into a single :class:`DeployResponse`.

Every fold takes a response and returns a new one; nothing is mutated, so a
batch loop reads ``dr = fold_xxx(dr, results)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Tuple, Union

from .exceptions import RemoteValidationFailure
from .models import ApiError, MetadataUpsertResult, SaveResult, UpsertResult

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployResponse:
    success_count: int = 0
    error_count: int = 0
    errors: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error_count == 0

    def with_success(self, n: int = 1) -> DeployResponse:
        return replace(self, success_count=self.success_count + n)

    def with_error(self, message: str) -> DeployResponse:
        return replace(self, error_count=self.error_count + 1, errors=self.errors + (message,))

    def merge(self, other: DeployResponse) -> DeployResponse:
        return DeployResponse(
            success_count=self.success_count + other.success_count,
            error_count=self.error_count + other.error_count,
            errors=self.errors + other.errors,
        )

    def raise_for_errors(self) -> None:
        """Raise :class:`RemoteValidationFailure` if any item was rejected."""
        if self.ok:
            return
        raise RemoteValidationFailure(
            "PARTIAL_FAILURE",
            f"{self.error_count} error(s), {self.success_count} success(es)",
            errors=list(self.errors),
        )


def format_metadata_error(err: ApiError) -> str:
    return "Status Code: [%s]\nMessage: [%s]\nFields: [%s]\n" % (
        err.status_code,
        err.message,
        ", ".join(err.fields),
    )


def format_record_error(err: ApiError) -> str:
    # partner errors only mention fields when there are some
    fields = "Fields: [%s]" % ", ".join(err.fields) if err.fields else ""
    return "Status Code: [%s]\nMessage: [%s]\n%s\n" % (err.status_code, err.message, fields)


def fold_metadata_results(
    dr: DeployResponse, results: Iterable[MetadataUpsertResult]
) -> DeployResponse:
    for result in results:
        if result.success:
            dr = dr.with_success()
            continue
        for err in result.errors:
            dr = dr.with_error(format_metadata_error(err))
    return dr


def fold_record_results(
    dr: DeployResponse,
    results: Iterable[Union[SaveResult, UpsertResult]],
    operation: str = "insert",
) -> DeployResponse:
    found_errors = False
    for result in results:
        if result.success:
            dr = dr.with_success()
            continue
        for err in result.errors:
            dr = dr.with_error(format_record_error(err))
        found_errors = True

    if found_errors:
        _logger.warning("'%s' resulted in errors! See log.", operation)
    return dr
