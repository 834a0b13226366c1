"""
Document ingestion: segmentation, extraction, dedup, tag intake and the queue.
"""

import asyncio
import json

import pytest

from sop_engine.errors import ExtractionError, MalformedCandidateError
from sop_engine.extraction import (
    IngestMode,
    IngestionPipeline,
    JobStatus,
    LLMExtractor,
    ProcessingQueue,
    extract_text,
    keyword_score,
    segment_text,
)
from sop_engine.rules import NormalizationContext, RuleStatus, SOPService
from sop_engine.tags import TagStatus, TagType

DOCUMENT = (
    "Medicare modifier policy: add modifier 25 to office visit codes 99213 and 99214 "
    "when a separate procedure is documented in the chart.\n\n"
    "Medicare also requires removal of modifier 25 from 99213 for visits billed "
    "only with a procedure note.\n\n"
    "short line\n"
).encode("utf-8")

ADD_CANDIDATE = {
    "codes": "99213, 99214",
    "payers": "Medicare",
    "action_description": "Add modifier 25",
    "documentation_trigger": "separate procedure",
}
REMOVE_CANDIDATE = {
    "codes": "99213",
    "payers": "Medicare",
    "action_description": "Remove modifier 25",
    "documentation_trigger": "procedure note",
}


async def fake_extractor(segment, index, context):
    if "add modifier 25" in segment:
        return [ADD_CANDIDATE]
    return [REMOVE_CANDIDATE]


@pytest.fixture
def pipeline(registry):
    return IngestionPipeline(registry, extractor=fake_extractor)


def _ingest(pipeline, collection, mode=IngestMode.CREATE, **kwargs):
    return asyncio.run(pipeline.ingest_document(
        collection, "policy.txt", DOCUMENT, mode=mode, upload_date="2024-05-01", **kwargs
    ))


class TestSegmentation:

    def test_short_segments_are_dropped(self):
        segments = segment_text(DOCUMENT.decode("utf-8"))
        assert len(segments) == 2
        assert all("short line" not in s for s in segments)

    def test_segments_ordered_by_keyword_score(self):
        low = "The office is closed on public holidays and staff meetings are held on Monday."
        high = "Medicare payer policy: add modifier 25 to the procedure code with documentation."
        assert segment_text(f"{low}\n\n{high}") == [high]

    def test_nothing_scores_keeps_everything(self):
        text = ("The office is closed on public holidays and most weekends too.\n\n"
                "Staff meetings are held on Monday mornings in the large room.")
        assert len(segment_text(text)) == 2

    def test_keyword_score(self):
        assert keyword_score("Add modifier 25 for Medicare") >= 3

    def test_unsupported_file_type(self):
        with pytest.raises(ExtractionError):
            extract_text("policy.docx", b"data")

    def test_empty_text_file(self):
        with pytest.raises(ExtractionError):
            extract_text("policy.txt", b"   ")

    def test_csv_rows_become_rule_blocks(self):
        data = b"code,payer,action\n99213,Medicare,add modifier 25\n99214,Aetna,\n"
        text = extract_text("rules.csv", data)
        assert text.startswith("Rule 1:\n  code: 99213")
        assert "Rule 2:\n  code: 99214\n  payer: Aetna" in text


class TestCreateAndUpdate:

    def test_create(self, pipeline, collection):
        report = _ingest(pipeline, collection)

        assert report.segments == 2
        assert report.extracted == 2
        assert report.added == 2
        assert set(report.added_rule_ids) == {"ACME-MOD-0001", "ACME-MOD-0002"}
        assert all(r.status == RuleStatus.PENDING for r in collection.rules)
        assert {c.type.value for c in report.conflicts} == {"overlapping", "contradictory"}

    def test_update_skips_known_rules(self, pipeline, collection):
        _ingest(pipeline, collection)
        report = _ingest(pipeline, collection, mode=IngestMode.UPDATE)

        assert report.added == 0
        assert report.skipped_duplicates == 2
        assert len(collection.rules) == 2

    def test_create_again_appends_with_next_sequence(self, pipeline, collection):
        _ingest(pipeline, collection)
        report = _ingest(pipeline, collection)
        assert set(report.added_rule_ids) == {"ACME-MOD-0003", "ACME-MOD-0004"}

    def test_update_dedups_within_batch(self, registry, collection):
        pipeline = IngestionPipeline(registry)
        report = pipeline.apply_candidates(collection, [ADD_CANDIDATE, ADD_CANDIDATE],
                                           mode=IngestMode.UPDATE, upload_date="2024-05-01")
        assert report.added_rule_ids == ["ACME-MOD-0001"]
        assert report.skipped_duplicates == 1

    def test_rules_are_saved(self, registry, store):
        collection = store.create_sop("Urology", "URO")
        pipeline = IngestionPipeline(registry, store=store, extractor=fake_extractor)
        _ingest(pipeline, collection)
        assert len(store.load_collection(collection.sop_id).rules) == 2


class TestIsolation:

    def test_malformed_candidate_becomes_warning(self, registry, collection):
        pipeline = IngestionPipeline(registry)
        report = pipeline.apply_candidates(collection, [{"foo": "bar"}, ADD_CANDIDATE, "not json"])

        assert report.extracted == 3
        assert report.added_rule_ids == ["ACME-MOD-0001"]
        assert len(report.warnings) == 2
        assert report.warnings[0].startswith("Candidate 1 skipped")

    def test_shaped_candidate_with_wrong_types(self, registry, collection):
        pipeline = IngestionPipeline(registry)
        bad = {"rule": {"code": "99215", "action": "@ADD(@59)", "description": 5}}
        report = pipeline.apply_candidates(collection, [ADD_CANDIDATE, bad, REMOVE_CANDIDATE])

        assert report.added_rule_ids == ["ACME-MOD-0001", "ACME-MOD-0002"]
        assert len(report.warnings) == 1
        assert report.warnings[0].startswith("Candidate 2 skipped")

    def test_taken_rule_id_becomes_warning(self, registry, store, make_rule):
        collection = store.create_sop("Urology", "URO")
        collection.add(make_rule("URO-RULE-0001", code="99215"))
        store.save_collection(collection)
        taken = {"rule": {"rule_id": "URO-RULE-0001", "code": "99214", "action": "@ADD(@59)",
                          "description": 'For @MEDICARE payers @ADD(@59) when documented; '
                                         'the PROCEDURE_SECTION must include "distinct site".'}}

        pipeline = IngestionPipeline(registry, store=store)
        report = pipeline.apply_candidates(collection, [dict(ADD_CANDIDATE, payers="Tricare"), taken])

        assert report.added_rule_ids == ["URO-MOD-0002"]
        assert "URO-RULE-0001 already exists" in report.warnings[0]
        stored = store.load_collection(collection.sop_id)
        assert [r.rule_id for r in stored.rules] == ["URO-RULE-0001", "URO-MOD-0002"]
        assert registry.find("@TRICARE", TagType.PAYER_GROUP).origin_rule_id == "URO-MOD-0002"

    def test_failing_segment_becomes_warning(self, registry, collection):
        async def flaky(segment, index, context):
            if "add modifier 25" in segment:
                raise RuntimeError("quota exceeded")
            return [REMOVE_CANDIDATE]

        pipeline = IngestionPipeline(registry, extractor=flaky)
        report = _ingest(pipeline, collection)

        assert report.added == 1
        assert any("quota exceeded" in w for w in report.warnings)


class TestStoredIngestion:

    def test_rule_changes_during_extraction_are_kept(self, registry, store, make_rule):
        collection = store.create_sop("Urology", "URO")
        collection.add(make_rule("URO-RULE-0001", code="99215"))
        store.save_collection(collection)
        queue = ProcessingQueue()
        lock = queue.write_lock(collection.sop_id)

        async def main():
            started = asyncio.Event()
            release = asyncio.Event()

            async def slow(segment, index, context):
                started.set()
                await release.wait()
                return await fake_extractor(segment, index, context)

            pipeline = IngestionPipeline(registry, store=store, extractor=slow)
            task = asyncio.create_task(pipeline.ingest_stored(
                collection.sop_id, "policy.txt", DOCUMENT, lock, upload_date="2024-05-01",
            ))
            await started.wait()
            async with lock:
                service = SOPService(store.load_collection(collection.sop_id), registry, store)
                service.reject_rule("URO-RULE-0001", "superseded")
            release.set()
            return await task

        report = asyncio.run(main())

        stored = store.load_collection(collection.sop_id)
        assert stored.get("URO-RULE-0001").status == RuleStatus.REJECTED
        assert report.added_rule_ids == ["URO-MOD-0002", "URO-MOD-0003"]
        assert len(stored.rules) == 3

    def test_write_locks_are_per_sop(self):
        queue = ProcessingQueue()
        assert queue.write_lock("sop-a") is queue.write_lock("sop-a")
        assert queue.write_lock("sop-a") is not queue.write_lock("sop-b")


class TestTagIntake:

    def test_new_tags_wait_for_review(self, registry, collection):
        pipeline = IngestionPipeline(registry)
        report = pipeline.apply_candidates(collection, [dict(ADD_CANDIDATE, payers="Tricare")],
                                           trusted=False)
        assert report.new_tags[0]["tag"] == "@TRICARE"
        assert registry.find("@TRICARE", TagType.PAYER_GROUP).status == TagStatus.PENDING_REVIEW

    def test_trusted_ingestion_approves(self, registry, collection):
        pipeline = IngestionPipeline(registry)
        pipeline.apply_candidates(collection, [dict(ADD_CANDIDATE, payers="Tricare")], trusted=True)
        assert registry.find("@TRICARE", TagType.PAYER_GROUP).status == TagStatus.APPROVED

    def test_repeat_discovery_counts_usage(self, registry, collection):
        pipeline = IngestionPipeline(registry)
        pipeline.apply_candidates(collection, [
            dict(ADD_CANDIDATE, payers="Tricare"),
            dict(REMOVE_CANDIDATE, payers="Tricare"),
        ], trusted=False)
        entry = registry.find("@TRICARE", TagType.PAYER_GROUP)
        assert entry.usage_count == 2
        assert len(registry.pending()) == 1


class TestLLMExtractor:

    def _run(self, registry, response):
        async def call(prompt):
            assert "=== KNOWN VOCABULARY ===" in prompt
            assert "@MEDICARE" in prompt
            return response

        extractor = LLMExtractor(registry, call=call)
        context = NormalizationContext(upload_date="2024-05-01", file_name="policy.txt")
        return asyncio.run(extractor("Medicare adds modifier 25 to 99213.", 0, context))

    def test_fenced_array(self, registry):
        response = "```json\n" + json.dumps([ADD_CANDIDATE]) + "\n```"
        assert self._run(registry, response) == [ADD_CANDIDATE]

    def test_wrapped_array(self, registry):
        assert self._run(registry, json.dumps({"rules": [ADD_CANDIDATE]})) == [ADD_CANDIDATE]

    def test_invalid_json(self, registry):
        with pytest.raises(MalformedCandidateError):
            self._run(registry, "Sorry, I cannot help with that.")


class TestProcessingQueue:

    def test_jobs_run_one_at_a_time(self):
        queue = ProcessingQueue()
        events = []

        def work(name):
            async def run():
                events.append(f"start-{name}")
                await asyncio.sleep(0.01)
                events.append(f"end-{name}")
                return None
            return run

        async def main():
            await asyncio.gather(
                queue.submit("sop-a", "first.txt", work("first")),
                queue.submit("sop-b", "second.txt", work("second")),
            )

        asyncio.run(main())
        assert events == ["start-first", "end-first", "start-second", "end-second"]
        assert [j.status for j in queue.list()] == [JobStatus.COMPLETED, JobStatus.COMPLETED]
        assert [j.file_name for j in queue.list("sop-b")] == ["second.txt"]

    def test_failed_job_is_recorded(self):
        queue = ProcessingQueue()

        async def boom():
            raise ExtractionError("Unsupported file type: .docx")

        with pytest.raises(ExtractionError):
            asyncio.run(queue.submit("sop-a", "policy.docx", boom))

        job = queue.list()[0]
        assert job.status == JobStatus.FAILED
        assert job.error == "Unsupported file type: .docx"
        assert queue.get(job.job_id) is job
