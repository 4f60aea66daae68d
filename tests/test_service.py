"""Tests for the trigger handlers."""

import asyncio

import pytest

from treemirror.replication import MigrationOrchestrator, MigrationScope
from treemirror.service import TriggerResponse, create_engines, handle_migrate, handle_verify
from treemirror.stores import InMemoryBlobStore, InMemoryRecordStore


class ExplodingRecordStore(InMemoryRecordStore):
    async def get(self, path):
        raise RuntimeError("driver crashed")


class KeyTrackingBlobStore(InMemoryBlobStore):
    """Slow uploads that record the most concurrent uploads seen for one key."""

    def __init__(self, *args, delay=0.05, **kwargs):
        super().__init__(*args, **kwargs)
        self.delay = delay
        self.in_flight = {}
        self.max_in_flight_per_key = 0

    async def upload(self, key, chunks):
        self.in_flight[key] = self.in_flight.get(key, 0) + 1
        self.max_in_flight_per_key = max(self.max_in_flight_per_key, self.in_flight[key])
        try:
            await asyncio.sleep(self.delay)
            await super().upload(key, chunks)
        finally:
            self.in_flight[key] -= 1


class TestHandleMigrate:
    def test_full_scope(self, orchestrator, target_records):
        response = asyncio.run(handle_migrate({"scope": "full"}, orchestrator))

        assert response.status == 200
        assert response.ok
        assert "full tree" in response.body
        assert target_records.tree["projects"]["p1"]["coverImageUrl"] == "B/img1"

    @pytest.mark.parametrize("payload", [
        {"scope": {"projectId": "p1"}},
        {"projectId": "p1"},
    ])
    def test_project_scope(self, orchestrator, payload):
        response = asyncio.run(handle_migrate(payload, orchestrator))

        assert response.status == 200
        assert "project 'p1'" in response.body

    @pytest.mark.parametrize("payload", [
        {},
        {"scope": {}},
        {"scope": "everything"},
        {"projectId": "a/b"},
        None,
        "full",
    ])
    def test_bad_request(self, orchestrator, target_records, payload):
        response = asyncio.run(handle_migrate(payload, orchestrator))

        assert response.status == 400
        assert target_records.writes == []

    def test_no_data(self, orchestrator):
        response = asyncio.run(handle_migrate({"projectId": "nope"}, orchestrator))

        assert response == TriggerResponse(404, "Project 'nope' not found in source")

    def test_transfer_failure_is_internal_error(self, orchestrator, source_blobs):
        del source_blobs.blobs["img1"]

        response = asyncio.run(handle_migrate({"scope": "full"}, orchestrator))

        assert response.status == 500
        assert "blob transfers failed" in response.body

    def test_unexpected_error_is_internal_error(self, source_blobs, target_records, target_blobs, fast_config):
        orchestrator = MigrationOrchestrator(
            ExplodingRecordStore(), source_blobs, target_records, target_blobs, config=fast_config,
        )

        response = asyncio.run(handle_migrate({"scope": "full"}, orchestrator))

        assert response.status == 500
        assert "driver crashed" in response.body


class TestHandleVerify:
    def test_defaults_to_full_scope(self, orchestrator, repair_engine):
        async def run():
            await handle_migrate({"scope": "full"}, orchestrator)
            return await handle_verify(None, repair_engine)

        response = asyncio.run(run())

        assert response.status == 200
        assert response.body["storageDiscrepancies"] == []
        assert response.body["databaseDiscrepancies"] == []
        assert response.body["scope"] == "full tree"

    def test_reports_and_repairs(self, repair_engine, target_blobs):
        response = asyncio.run(handle_verify({"projectId": "p1"}, repair_engine))

        assert response.status == 200
        assert {d["key"] for d in response.body["storageDiscrepancies"]} == {"img1", "doc1"}
        assert {d["reason"] for d in response.body["databaseDiscrepancies"]} == {"missing-in-target"}
        assert set(target_blobs.blobs) == {"img1", "doc1"}

    def test_missing_project(self, repair_engine):
        response = asyncio.run(handle_verify({"projectId": "nope"}, repair_engine))

        assert response.status == 404

    def test_bad_scope(self, repair_engine):
        response = asyncio.run(handle_verify({"scope": 7}, repair_engine))

        assert response.status == 400
        assert response.to_dict()["status"] == 400

    def test_empty_scope_object_rejected(self, orchestrator, repair_engine, target_records):
        async def run():
            await handle_migrate({"projectId": "p1"}, orchestrator)
            writes = list(target_records.writes)
            return writes, await handle_verify({"scope": {}}, repair_engine)

        writes, response = asyncio.run(run())

        assert response.status == 400
        assert "Missing scope id" in response.body
        assert target_records.writes == writes


class TestCreateEngines:
    def test_engines_share_transfer_engine(self, source_records, source_blobs, target_records, target_blobs):
        orchestrator, engine = create_engines(source_records, source_blobs, target_records, target_blobs)

        assert orchestrator.transfer_engine is engine.transfer_engine

    def test_concurrent_migrate_and_repair_serialise_target_keys(
        self, source_records, source_blobs, target_records, fast_config
    ):
        target = KeyTrackingBlobStore(bucket="B", name="target-blobs")
        orchestrator, engine = create_engines(
            source_records, source_blobs, target_records, target, config=fast_config,
        )

        async def run():
            return await asyncio.gather(
                orchestrator.migrate(MigrationScope.full()),
                engine.verify_and_repair(MigrationScope.full()),
            )

        result, report = asyncio.run(run())

        assert result.success, result.message
        assert report.repairs_failed == 0
        assert target.max_in_flight_per_key == 1
        # one upload per key; the second caller finds a matching checksum
        assert target.upload_calls == 2
        assert target.blobs == source_blobs.blobs
