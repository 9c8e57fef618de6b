# ==============================================================================
# Tests for the Ingestion Pipeline
# ==============================================================================
"""
Tests for IngestionPipeline.ingest(): envelope checks, per-event skipping,
geo attachment and store failures.
"""

import logging

import pytest

from conftest import ANON_A, ANON_B, FakeEventStore, FakeGeoDatabase, raw_event
from telemetry.base.repositories import StoreUnavailableError
from telemetry.core.geo_resolver import GeoResolver
from telemetry.core.models import GeoLocation
from telemetry.core.pipeline import IngestionPipeline, SchemaUnsupportedError, extract_events


def _pipeline(store, geo_database=None) -> IngestionPipeline:
    return IngestionPipeline(store, GeoResolver(geo_database))


class TestExtractEvents:
    """Tests for single vs batch envelopes."""

    def test_single_event(self):
        body = {"schema": "jwc.v1", **raw_event()}
        assert extract_events(body) == [body]

    def test_batch(self):
        body = {"schema": "jwc.v1", "batch": [raw_event(), raw_event()]}
        assert len(extract_events(body)) == 2

    def test_empty_batch(self):
        assert extract_events({"schema": "jwc.v1", "batch": []}) == []


class TestIngest:
    """Tests for per-request ingestion."""

    def test_single_event_accepted(self, store):
        result = _pipeline(store).ingest({"schema": "jwc.v1", **raw_event()}, {}, None)

        assert (result.accepted, result.skipped) == (1, 0)
        assert len(store.events) == 1
        assert store.events[0].anon_id == ANON_A

    def test_batch_with_bad_anon(self, store, caplog):
        """One malformed event is skipped; the rest of the batch is stored."""
        body = {
            "schema": "jwc.v1",
            "batch": [raw_event(), raw_event(anon="NOT-HEX"), raw_event(anon=ANON_B)],
        }
        with caplog.at_level(logging.WARNING, logger="telemetry.core.pipeline"):
            result = _pipeline(store).ingest(body, {}, None)

        assert (result.accepted, result.skipped) == (2, 1)
        assert [e.anon_id for e in store.events] == [ANON_A, ANON_B]
        assert "Event skipped: invalid" in caplog.text

    def test_non_object_batch_items_skipped(self, store):
        body = {"schema": "jwc.v1", "batch": ["ping", 42, raw_event()]}
        result = _pipeline(store).ingest(body, {}, None)
        assert (result.accepted, result.skipped) == (1, 2)

    @pytest.mark.parametrize(
        "body",
        [
            {"schema": "jwc.v2", "batch": []},
            {"batch": []},
            [{"schema": "jwc.v1"}],
            "jwc.v1",
        ],
    )
    def test_unsupported_schema(self, store, body):
        with pytest.raises(SchemaUnsupportedError):
            _pipeline(store).ingest(body, {}, None)
        assert store.events == []

    def test_schema_error_carries_value(self, store):
        with pytest.raises(SchemaUnsupportedError) as exc_info:
            _pipeline(store).ingest({"schema": "jwc.v0"}, {}, None)
        assert exc_info.value.got == "jwc.v0"

    def test_no_store(self):
        with pytest.raises(StoreUnavailableError):
            _pipeline(None).ingest({"schema": "jwc.v1", "batch": [raw_event()]}, {}, None)

    def test_store_becomes_unavailable(self):
        """Events written before the outage stay written; the request fails."""
        store = FakeEventStore()
        store.unavailable_after = 1
        body = {"schema": "jwc.v1", "batch": [raw_event(), raw_event(), raw_event()]}

        with pytest.raises(StoreUnavailableError):
            _pipeline(store).ingest(body, {}, None)
        assert len(store.events) == 1

    def test_rejected_write_skipped(self, store, caplog):
        store.reject_event_names = {"test.ping"}
        body = {"schema": "jwc.v1", "batch": [raw_event("test.ping"), raw_event()]}

        with caplog.at_level(logging.ERROR, logger="telemetry.core.pipeline"):
            result = _pipeline(store).ingest(body, {}, None)

        assert (result.accepted, result.skipped) == (1, 1)
        assert "store write failed" in caplog.text


class TestIngestGeo:
    """Tests for geography attached at ingestion."""

    def test_geo_from_database(self, store, geo_database):
        body = {"schema": "jwc.v1", "batch": [raw_event(), raw_event(anon=ANON_B)]}
        headers = {"x-forwarded-for": "10.0.0.5, 203.0.113.7"}

        _pipeline(store, geo_database).ingest(body, headers, "127.0.0.1")

        assert all(e.geo == GeoLocation(country="DE", region="BE") for e in store.events)
        # Resolved once for the whole batch
        assert geo_database.lookups == ["203.0.113.7"]

    def test_geo_from_header(self, store):
        db = FakeGeoDatabase()
        _pipeline(store, db).ingest(
            {"schema": "jwc.v1", **raw_event()}, {"cf-ipcountry": "jp"}, "203.0.113.7"
        )

        assert store.events[0].geo.country == "JP"
        assert db.lookups == []

    def test_client_supplied_geo_ignored(self, store):
        """Geography is only ever taken from the request, not the payload."""
        _pipeline(store).ingest({"schema": "jwc.v1", **raw_event(country="US")}, {}, None)
        assert store.events[0].geo.country == ""
