"""Tests for the capture pipeline."""

from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from classfile_builder import app_class, build_class, helper_class, proxy_class
from classreplay.capture import CapturePipeline, CaptureState
from classreplay.classfile import ClassFile
from classreplay.diagnostics import DiagnosticsSink
from classreplay.errors import FormatViolation, LifecycleError
from classreplay.namer import HASHED_MARKER

APP = "com/example/App"
HELPER = "com/example/App$Helper3"
PROXY = "com/example/App$Proxy7"


def _observe_run(pipeline: CapturePipeline, proxy_ordinal: int = 7, helper_ordinal: int = 3) -> None:
    pipeline.transform(APP, app_class())
    pipeline.transform(f"com/example/App$Helper{helper_ordinal}", helper_class(helper_ordinal))
    pipeline.transform(f"com/example/App$Proxy{proxy_ordinal}", proxy_class(proxy_ordinal, helper_ordinal))


def _stored(root: Path) -> dict[str, bytes]:
    return {
        p.relative_to(root).as_posix(): p.read_bytes()
        for p in sorted(root.rglob("*.class"))
    }


class TestLifecycle:
    """RUNNING -> SHUTTING_DOWN -> DUMPED, one way only."""

    def test_initial_state(self, config):
        assert CapturePipeline(config).state is CaptureState.RUNNING

    def test_finish_reaches_dumped(self, config):
        pipeline = CapturePipeline(config)
        pipeline.finish()
        assert pipeline.state is CaptureState.DUMPED

    def test_dump_before_shutdown(self, config):
        with pytest.raises(LifecycleError):
            CapturePipeline(config).dump()

    def test_double_shutdown(self, config):
        pipeline = CapturePipeline(config)
        pipeline.shutdown()
        with pytest.raises(LifecycleError):
            pipeline.shutdown()

    def test_double_dump(self, config):
        pipeline = CapturePipeline(config)
        pipeline.finish()
        with pytest.raises(LifecycleError):
            pipeline.dump()

    def test_events_after_shutdown_are_ignored(self, config):
        pipeline = CapturePipeline(config)
        pipeline.shutdown()
        assert pipeline.transform(APP, app_class()) is None
        assert pipeline.ignored_events == 1
        assert APP not in pipeline.session.retained

    def test_unnamed_events_after_shutdown_are_not_parsed(self, config):
        """Bytes arriving after shutdown are ignored, even when malformed."""
        pipeline = CapturePipeline(config)
        pipeline.shutdown()
        assert pipeline.transform(None, b"junk") is None
        assert pipeline.ignored_events == 1


class TestObservation:
    def test_transform_never_replaces(self, config):
        pipeline = CapturePipeline(config)
        assert pipeline.transform(APP, app_class()) is None

    def test_name_taken_from_bytes(self, config):
        pipeline = CapturePipeline(config)
        pipeline.transform(None, helper_class(3))
        assert HELPER in pipeline.session.retained

    def test_tooling_classes_excluded(self, config):
        pipeline = CapturePipeline(config)
        pipeline.transform("classreplay/Agent", build_class("classreplay/Agent"))
        assert len(pipeline.session.retained) == 0


class TestDump:
    """Writing retained classes to the store."""

    def test_generated_classes_stored_under_identifiers(self, config, corpus_dir):
        pipeline = CapturePipeline(config)
        _observe_run(pipeline)
        report = pipeline.finish()

        helper = pipeline.session.namer.record_for(HELPER)
        proxy = pipeline.session.namer.record_for(PROXY)
        assert report.artifacts == [APP, helper.identifier, proxy.identifier]
        assert report.resolved == 2
        assert report.fresh == 3

        stored = _stored(corpus_dir)
        assert stored[f"{APP}.class"] == app_class()
        assert stored[f"{proxy.identifier}.class"] == proxy.rewritten_bytes
        assert f"{PROXY}.class" not in stored
        assert all(HASHED_MARKER in name for name in stored if name != f"{APP}.class")

        names = ClassFile.parse(stored[f"{proxy.identifier}.class"]).referenced_class_names()
        assert helper.identifier in names

    def test_runs_with_different_ordinals_store_identical_artifacts(self, config, tmp_path):
        first_dir, second_dir = tmp_path / "first", tmp_path / "second"
        first = CapturePipeline(dataclasses.replace(config, out_dir=str(first_dir)))
        _observe_run(first, 7, 3)
        first.finish()

        second = CapturePipeline(dataclasses.replace(config, out_dir=str(second_dir)))
        _observe_run(second, 2, 9)
        second.finish()

        assert _stored(first_dir) == _stored(second_dir)

    def test_overwrite_counted(self, config):
        first = CapturePipeline(config)
        _observe_run(first)
        first.finish()

        second = CapturePipeline(config)
        _observe_run(second)
        report = second.finish()
        assert report.fresh == 0
        assert report.overwritten == 3
        assert report.written == 3

    def test_dry_run_writes_nothing(self, config, corpus_dir):
        pipeline = CapturePipeline(dataclasses.replace(config, dry_run=True))
        _observe_run(pipeline)
        report = pipeline.finish()
        assert report.resolved == 2
        assert report.skipped == 3
        assert report.written == 0
        assert _stored(corpus_dir) == {}

    def test_unresolved_reference_skipped(self, config, corpus_dir):
        """A proxy whose helper was never observed is skipped; the rest is written."""
        pipeline = CapturePipeline(config)
        pipeline.transform(APP, app_class())
        pipeline.transform(PROXY, proxy_class(7, 3))
        report = pipeline.finish()

        assert report.skipped == 1
        assert report.fresh == 1
        assert HELPER in report.errors[0]
        assert list(_stored(corpus_dir)) == [f"{APP}.class"]

    def test_write_failure_counted(self, config, tmp_path):
        blocked = tmp_path / "blocked"
        blocked.write_bytes(b"not a directory")
        pipeline = CapturePipeline(dataclasses.replace(config, out_dir=str(blocked)))
        _observe_run(pipeline)
        report = pipeline.finish()

        assert report.io_failures == 3
        assert report.written == 0
        assert pipeline.state is CaptureState.DUMPED

    def test_format_violation_propagates(self, config):
        pipeline = CapturePipeline(config)
        pipeline.transform(HELPER, helper_class(4))
        pipeline.shutdown()
        with pytest.raises(FormatViolation):
            pipeline.dump()
        assert pipeline.state is CaptureState.DUMPED

    def test_report_to_dict(self, config):
        pipeline = CapturePipeline(config)
        _observe_run(pipeline)
        data = pipeline.finish().to_dict()
        assert data["written"] == 3
        assert data["resolved"] == 2
        assert data["errors"] == []

    def test_canonicalization_disabled(self, config, corpus_dir):
        pipeline = CapturePipeline(dataclasses.replace(config, canonicalize=False))
        _observe_run(pipeline)
        pipeline.finish()

        stored = _stored(corpus_dir)
        assert stored[f"{PROXY}.class"] == proxy_class(7, 3)
        assert stored[f"{HELPER}.class"] == helper_class(3)

    def test_diagnostics_records(self, config, tmp_path):
        path = tmp_path / "events.jsonl"
        pipeline = CapturePipeline(config, sink=DiagnosticsSink(path))
        _observe_run(pipeline)
        pipeline.finish()

        records = [json.loads(line) for line in path.read_text().splitlines()]
        proxy = pipeline.session.namer.record_for(PROXY)
        assert [r["outcome"] for r in records] == ["dumped"] * 3
        assert records[0] == {"name": APP, "outcome": "dumped", "modified": False, "reason": APP}
        assert records[2] == {"name": PROXY, "outcome": "dumped", "modified": True, "reason": proxy.identifier}
