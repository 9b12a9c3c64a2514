"""Tests for the DeployResponse accumulator and result folding."""

import logging

import pytest

from sfmigrate.exceptions import RemoteValidationFailure
from sfmigrate.models import ApiError, MetadataUpsertResult, SaveResult, UpsertResult
from sfmigrate.response import (
    DeployResponse,
    fold_metadata_results,
    fold_record_results,
    format_metadata_error,
    format_record_error,
)

MISSING = ApiError("REQUIRED_FIELD_MISSING", "Required fields are missing: [Name]", ("Name",))


class TestDeployResponse:
    def test_empty(self):
        dr = DeployResponse()
        assert dr.success_count == 0
        assert dr.error_count == 0
        assert dr.errors == ()
        assert dr.ok

    def test_folds_return_new_values(self):
        base = DeployResponse()
        after = base.with_success().with_error("boom")

        assert base == DeployResponse()
        assert after.success_count == 1
        assert after.error_count == 1
        assert after.errors == ("boom",)

    def test_merge(self):
        a = DeployResponse(2, 1, ("x",))
        b = DeployResponse(3, 1, ("y",))
        assert a.merge(b) == DeployResponse(5, 2, ("x", "y"))

    def test_raise_for_errors(self):
        DeployResponse(success_count=4).raise_for_errors()

        with pytest.raises(RemoteValidationFailure) as exc_info:
            DeployResponse(1, 2, ("a", "b")).raise_for_errors()
        assert exc_info.value.errors == ["a", "b"]


class TestFormatting:
    def test_metadata_error(self):
        assert format_metadata_error(MISSING) == (
            "Status Code: [REQUIRED_FIELD_MISSING]\n"
            "Message: [Required fields are missing: [Name]]\n"
            "Fields: [Name]\n"
        )

    def test_metadata_error_without_fields(self):
        err = ApiError("DUPLICATE_DEVELOPER_NAME", "dup")
        assert format_metadata_error(err).endswith("Fields: []\n")

    def test_record_error_with_fields(self):
        err = ApiError("FIELD_INTEGRITY_EXCEPTION", "bad", ("AccountId", "OwnerId"))
        assert format_record_error(err) == (
            "Status Code: [FIELD_INTEGRITY_EXCEPTION]\nMessage: [bad]\nFields: [AccountId, OwnerId]\n"
        )

    def test_record_error_without_fields(self):
        err = ApiError("INVALID_CROSS_REFERENCE_KEY", "nope")
        assert format_record_error(err) == (
            "Status Code: [INVALID_CROSS_REFERENCE_KEY]\nMessage: [nope]\n\n"
        )


class TestFolding:
    def test_metadata_results(self):
        results = [
            MetadataUpsertResult(True, "A__c.F__c"),
            MetadataUpsertResult(False, "A__c.G__c", errors=(MISSING,)),
            MetadataUpsertResult(False, "A__c.H__c", errors=(MISSING,)),
        ]
        dr = fold_metadata_results(DeployResponse(), results)

        assert dr.success_count == 1
        assert dr.error_count == 2
        assert dr.errors == (format_metadata_error(MISSING),) * 2

    def test_each_field_error_counts(self):
        other = ApiError("STRING_TOO_LONG", "too long", ("Subject",))
        dr = fold_record_results(DeployResponse(), [SaveResult(False, errors=(MISSING, other))])
        assert dr.success_count == 0
        assert dr.error_count == 2

    def test_record_results_threaded_through_batches(self):
        dr = fold_record_results(DeployResponse(), [SaveResult(True, "001A")])
        dr = fold_record_results(dr, [UpsertResult(True, "001B", created=True)], "upsert")
        assert dr.success_count == 2
        assert dr.ok

    def test_warns_on_failure(self, caplog):
        with caplog.at_level(logging.WARNING, logger="sfmigrate.response"):
            fold_record_results(DeployResponse(), [UpsertResult(False, errors=(MISSING,))], "upsert")
        assert any("'upsert' resulted in errors" in rec.message for rec in caplog.records)
