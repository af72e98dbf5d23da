import json
import tempfile
import unittest
from pathlib import Path

from sessionkit.models import SummaryInfo
from sessionkit.parsers import parse_record
from sessionkit.store import SessionStore
from sessionkit.summaries import (
    build_identity_index,
    get_session_summaries,
    load_project_summaries,
    resolve_project_summaries,
    sort_summaries,
    summaries_for_session,
)


def _records(*lines: dict) -> list:
    return [parse_record(line) for line in lines]


class SummaryResolutionTests(unittest.TestCase):
    def test_summary_is_routed_to_the_log_holding_its_target(self) -> None:
        logs = {
            "x.jsonl": _records(
                {"type": "summary", "summary": "Refactor parser", "leafUuid": "t", "timestamp": "2026-02-16T09:00:00Z"},
                {"type": "user", "uuid": "x1", "parentUuid": None},
            ),
            "y.jsonl": _records({"type": "user", "uuid": "t", "parentUuid": None, "timestamp": "2026-02-16T08:00:00Z"}),
        }

        buckets = resolve_project_summaries(logs)
        self.assertNotIn("x", buckets)
        self.assertEqual([item.summary for item in buckets["y"]], ["Refactor parser"])
        self.assertEqual(buckets["y"][0].sourceFile, "x.jsonl")
        self.assertEqual(buckets["y"][0].timestamp, "2026-02-16T09:00:00Z")

    def test_dangling_summary_is_dropped(self) -> None:
        logs = {"x.jsonl": _records({"type": "summary", "summary": "Lost", "leafUuid": "nowhere"})}

        self.assertEqual(resolve_project_summaries(logs), {})

    def test_snapshot_targets_use_snapshot_timestamp(self) -> None:
        logs = {
            "x.jsonl": _records({"type": "summary", "summary": "Snap", "leafUuid": "m1"}),
            "z.jsonl": _records(
                {"type": "file-history-snapshot", "messageId": "m1", "snapshot": {"timestamp": "2026-02-10T00:00:00Z"}}
            ),
        }

        buckets = resolve_project_summaries(logs)
        self.assertEqual(buckets["z"][0].timestamp, "2026-02-10T00:00:00Z")

    def test_oldest_summary_is_displayed_first(self) -> None:
        logs = {
            "x.jsonl": _records(
                {"type": "summary", "summary": "Newer", "leafUuid": "t", "timestamp": "2026-02-16T12:00:00Z"},
                {"type": "summary", "summary": "Older", "leafUuid": "t", "timestamp": "2026-02-16T10:00:00Z"},
            ),
            "y.jsonl": _records({"type": "user", "uuid": "t", "parentUuid": None}),
        }

        buckets = resolve_project_summaries(logs)
        self.assertEqual([item.summary for item in buckets["y"]], ["Older", "Newer"])

    def test_timestamp_ties_prefer_larger_source_file(self) -> None:
        summaries = [
            SummaryInfo(summary="first", leafUuid="t", timestamp="2026-02-16T10:00:00Z", sourceFile="355e3718.jsonl"),
            SummaryInfo(summary="second", leafUuid="t", timestamp="2026-02-16T10:00:00Z", sourceFile="b878041c.jsonl"),
        ]

        self.assertEqual(sort_summaries(summaries)[0].sourceFile, "b878041c.jsonl")
        self.assertEqual(sort_summaries(list(reversed(summaries)))[0].sourceFile, "b878041c.jsonl")

    def test_identity_collision_resolves_to_last_file(self) -> None:
        logs = {
            "b.jsonl": _records({"type": "user", "uuid": "dup", "parentUuid": None}),
            "a.jsonl": _records({"type": "user", "uuid": "dup", "parentUuid": None}),
        }

        self.assertEqual(build_identity_index(logs)["dup"].session_id, "b")

    def test_single_log_path_prefers_target_timestamp(self) -> None:
        session = _records({"type": "user", "uuid": "t", "parentUuid": None, "timestamp": "2026-02-01T00:00:00Z"})
        logs = {
            "other.jsonl": _records(
                {"type": "summary", "summary": "About t", "leafUuid": "t", "timestamp": "2026-03-01T00:00:00Z"},
                {"type": "summary", "summary": "About else", "leafUuid": "u"},
            )
        }

        found = summaries_for_session(session, logs)
        self.assertEqual(len(found), 1)
        self.assertEqual(found[0].timestamp, "2026-02-01T00:00:00Z")


class ProjectSummaryLoadingTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.store = SessionStore(self.root / "projects", self.root / "todos")
        self.project_dir = self.root / "projects" / "proj"
        self.project_dir.mkdir(parents=True)

    def _write_jsonl(self, name: str, lines: list) -> Path:
        path = self.project_dir / name
        path.write_text("\n".join(line if isinstance(line, str) else json.dumps(line) for line in lines) + "\n", encoding="utf-8")
        return path

    async def test_load_project_summaries_reads_every_log(self) -> None:
        self._write_jsonl(
            "aaa.jsonl",
            [
                {"type": "summary", "summary": "Bucket for bbb", "leafUuid": "b1", "timestamp": "2026-02-16T10:00:00Z"},
                "not json at all",
                {"type": "user", "uuid": "a1", "parentUuid": None},
            ],
        )
        self._write_jsonl("bbb.jsonl", [{"type": "user", "uuid": "b1", "parentUuid": None}])
        self._write_jsonl(
            "agent-x.jsonl",
            [{"type": "summary", "summary": "From agent log", "leafUuid": "a1", "timestamp": "2026-02-16T11:00:00Z"}],
        )

        with self.assertLogs("sessionkit.store", level="WARNING"):
            buckets = await load_project_summaries(self.store, "proj")
        self.assertEqual([item.summary for item in buckets["bbb"]], ["Bucket for bbb"])
        self.assertEqual([item.summary for item in buckets["aaa"]], ["From agent log"])
        self.assertEqual(buckets["aaa"][0].sourceFile, "agent-x.jsonl")

    async def test_get_session_summaries_searches_sibling_logs(self) -> None:
        self._write_jsonl("s1.jsonl", [{"type": "user", "uuid": "t1", "parentUuid": None, "timestamp": "2026-02-16T08:00:00Z"}])
        self._write_jsonl(
            "s2.jsonl",
            [
                {"type": "summary", "summary": "Describes s1", "leafUuid": "t1"},
                {"type": "user", "uuid": "t2", "parentUuid": None},
            ],
        )

        found = await get_session_summaries(self.store, "proj", "s1")
        self.assertEqual([item.summary for item in found], ["Describes s1"])
        self.assertEqual(found[0].timestamp, "2026-02-16T08:00:00Z")
        self.assertEqual(await get_session_summaries(self.store, "proj", "s2"), [])

    async def test_missing_session_raises(self) -> None:
        with self.assertRaises(FileNotFoundError):
            await get_session_summaries(self.store, "proj", "missing")


if __name__ == "__main__":
    unittest.main()
