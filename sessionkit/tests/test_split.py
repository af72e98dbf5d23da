import json
import tempfile
import unittest
from pathlib import Path

from sessionkit.chain import validate_session_records
from sessionkit.heuristics import is_continuation_summary, rejection_reason
from sessionkit.models import SummaryRecord, TextBlock, chain_uuid
from sessionkit.parsers import parse_jsonl, parse_record
from sessionkit.split import CANNOT_SPLIT_AT_FIRST, MESSAGE_NOT_FOUND, plan_split, split_session
from sessionkit.store import SessionStore


def _lines(split_record: dict | None = None) -> list[dict]:
    split_record = split_record or {
        "type": "user",
        "uuid": "u2",
        "parentUuid": "a1",
        "sessionId": "s1",
        "message": {"role": "user", "content": "next topic"},
    }
    return [
        {"type": "summary", "summary": "Earlier topic", "leafUuid": "u1", "timestamp": "2026-02-16T09:00:00Z"},
        {"type": "user", "uuid": "u1", "parentUuid": None, "sessionId": "s1", "message": {"role": "user", "content": "hello"}},
        {"type": "assistant", "uuid": "a1", "parentUuid": "u1", "sessionId": "s1", "agentId": "ag1"},
        split_record,
        {"type": "assistant", "uuid": "a2", "parentUuid": "u2", "sessionId": "s1", "agentId": "ag2"},
    ]


def _records(lines: list[dict]) -> list:
    return [parse_record(line) for line in lines]


class PlanSplitTests(unittest.TestCase):
    def test_partitions_around_the_split_record(self) -> None:
        records = _records(_lines())

        plan = plan_split(records, "u2", "NEW")
        self.assertTrue(plan.ok)
        self.assertEqual([chain_uuid(r) for r in plan.newer], ["u2", "a2"])
        self.assertTrue(plan.newer[0].has_parent_field)
        self.assertIsNone(plan.newer[0].parentUuid)
        self.assertEqual({r.sessionId for r in plan.newer}, {"s1"})

        self.assertEqual([chain_uuid(r) for r in plan.older if chain_uuid(r)], ["u1", "a1"])
        self.assertEqual({r.sessionId for r in plan.older}, {"NEW"})
        self.assertEqual(plan.moved_count, 3)
        self.assertFalse(plan.duplicated_continuation)
        self.assertEqual(plan.moved_agent_ids, {"ag1"})

        original_ids = {chain_uuid(r) for r in records if chain_uuid(r)}
        split_ids = {chain_uuid(r) for r in plan.newer + plan.older if chain_uuid(r)}
        self.assertEqual(split_ids, original_ids)

    def test_last_summary_is_cloned_to_front_of_moved_log(self) -> None:
        plan = plan_split(_records(_lines()), "u2", "NEW")

        clone = plan.older[0]
        self.assertIsInstance(clone, SummaryRecord)
        self.assertEqual(clone.summary, "Earlier topic")
        self.assertEqual(clone.leafUuid, "u1")
        self.assertEqual(clone.sessionId, "NEW")

    def test_refuses_unknown_and_first_record(self) -> None:
        records = _records(_lines())[1:]

        self.assertEqual(plan_split(records, "nope", "NEW").error, MESSAGE_NOT_FOUND)
        self.assertEqual(plan_split(records, "u1", "NEW").error, CANNOT_SPLIT_AT_FIRST)
        self.assertFalse(plan_split(records, "u1", "NEW").ok)

    def test_compact_summary_is_duplicated_into_both_logs(self) -> None:
        split_record = {
            "type": "user",
            "uuid": "u2",
            "parentUuid": "a1",
            "sessionId": "s1",
            "isCompactSummary": True,
            "message": {"role": "user", "content": "Summary of the prior work"},
        }

        plan = plan_split(_records(_lines(split_record)), "u2", "NEW", make_uuid=lambda: "dup")
        self.assertTrue(plan.duplicated_continuation)
        self.assertEqual(plan.moved_count, 4)
        duplicate = plan.older[-1]
        self.assertEqual(duplicate.uuid, "dup")
        self.assertEqual(duplicate.parentUuid, "a1")
        self.assertEqual(duplicate.sessionId, "NEW")
        self.assertEqual(plan.newer[0].uuid, "u2")

    def test_continuation_text_prefix_is_duplicated(self) -> None:
        split_record = {
            "type": "user",
            "uuid": "u2",
            "parentUuid": "a1",
            "message": {
                "role": "user",
                "content": [{"type": "text", "text": "This session is being continued from a previous conversation."}],
            },
        }

        plan = plan_split(_records(_lines(split_record)), "u2", "NEW", make_uuid=lambda: "dup")
        self.assertTrue(plan.duplicated_continuation)
        self.assertEqual(chain_uuid(plan.older[-1]), "dup")

    def test_rejection_turn_becomes_plain_text(self) -> None:
        split_record = {
            "type": "user",
            "uuid": "u2",
            "parentUuid": "a1",
            "toolUseResult": "Error: The user doesn't want to proceed. "
            "The user provided the following reason for the rejection:  use pytest instead ",
            "message": {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "no"}]},
        }

        plan = plan_split(_records(_lines(split_record)), "u2", "NEW")
        head = plan.newer[0]
        self.assertNotIn("toolUseResult", head.to_wire())
        self.assertIsNone(head.parentUuid)
        blocks = head.blocks()
        self.assertEqual(len(blocks), 1)
        self.assertIsInstance(blocks[0], TextBlock)
        self.assertEqual(blocks[0].text, "use pytest instead")

    def test_both_partitions_validate_after_split(self) -> None:
        lines = [
            {"type": "user", "uuid": "u1", "parentUuid": None, "message": {"role": "user", "content": "list files"}},
            {
                "type": "assistant",
                "uuid": "a1",
                "parentUuid": "u1",
                "message": {"role": "assistant", "content": [{"type": "tool_use", "id": "t1", "name": "Bash", "input": {}}]},
            },
            {"type": "user", "uuid": "u2", "parentUuid": "a1", "message": {"role": "user", "content": "new topic"}},
            {
                "type": "user",
                "uuid": "u3",
                "parentUuid": "a1",
                "message": {
                    "role": "user",
                    "content": [{"type": "tool_result", "tool_use_id": "t1", "content": [{"type": "text", "text": "a.py"}]}],
                },
            },
        ]

        plan = plan_split(_records(lines), "u2", "NEW")
        self.assertTrue(validate_session_records(plan.newer).valid)
        self.assertTrue(validate_session_records(plan.older).valid)
        self.assertEqual(plan.newer[1].parentUuid, "u2")
        self.assertEqual(plan.relinked_count, 1)
        self.assertEqual(plan.detached_results, 1)
        self.assertEqual(plan.newer[1].message["content"], [{"type": "text", "text": "a.py"}])


class HeuristicTests(unittest.TestCase):
    def test_continuation_detection(self) -> None:
        assistant = parse_record(
            {"type": "assistant", "uuid": "a", "message": {"role": "assistant", "content": "This session is being continued from"}}
        )
        flagged = parse_record({"type": "assistant", "uuid": "b", "isCompactSummary": True})

        self.assertFalse(is_continuation_summary(assistant))
        self.assertTrue(is_continuation_summary(flagged))

    def test_rejection_reason_requires_marker(self) -> None:
        plain = parse_record({"type": "user", "uuid": "u", "toolUseResult": "Error: denied"})
        structured = parse_record({"type": "user", "uuid": "v", "toolUseResult": {"stdout": "ok"}})

        self.assertEqual(rejection_reason(plain), "")
        self.assertEqual(rejection_reason(structured), "")


class SplitSessionFileTests(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.store = SessionStore(self.root / "projects", self.root / "todos")
        self.project_dir = self.root / "projects" / "proj"
        self.project_dir.mkdir(parents=True)

    def _write_jsonl(self, name: str, lines: list[dict]) -> Path:
        path = self.project_dir / name
        path.write_text("\n".join(json.dumps(line) for line in lines) + "\n", encoding="utf-8")
        return path

    def _read(self, path: Path) -> list:
        return parse_jsonl(path.read_text(encoding="utf-8"))

    def test_split_writes_both_logs_and_reattaches_agents(self) -> None:
        session = self._write_jsonl("s1.jsonl", _lines())
        agent_one = self._write_jsonl(
            "agent-ag1.jsonl",
            [
                {"type": "user", "uuid": "g1", "parentUuid": None, "sessionId": "s1", "agentId": "ag1"},
                {"type": "assistant", "uuid": "g2", "parentUuid": "g1", "sessionId": "s1", "agentId": "ag1"},
            ],
        )
        agent_two = self._write_jsonl(
            "agent-ag2.jsonl",
            [{"type": "user", "uuid": "h1", "parentUuid": None, "sessionId": "s1", "agentId": "ag2"}],
        )
        agent_two_before = agent_two.read_text(encoding="utf-8")

        result = split_session(self.store, "proj", "s1", "u2")
        self.assertTrue(result.success)
        self.assertEqual(result.movedMessageCount, 3)
        self.assertFalse(result.duplicatedSummary)
        new_path = self.project_dir / f"{result.newSessionId}.jsonl"
        self.assertEqual(result.newSessionPath, str(new_path))

        remaining = self._read(session)
        self.assertEqual([chain_uuid(r) for r in remaining], ["u2", "a2"])
        self.assertIsNone(remaining[0].parentUuid)

        moved = self._read(new_path)
        self.assertIsInstance(moved[0], SummaryRecord)
        self.assertEqual({r.sessionId for r in moved}, {result.newSessionId})

        self.assertEqual({r.sessionId for r in self._read(agent_one)}, {result.newSessionId})
        self.assertEqual(agent_two.read_text(encoding="utf-8"), agent_two_before)

    def test_refused_split_leaves_files_untouched(self) -> None:
        session = self._write_jsonl("s1.jsonl", _lines()[1:])
        before = session.read_text(encoding="utf-8")

        result = split_session(self.store, "proj", "s1", "u1")
        self.assertFalse(result.success)
        self.assertEqual(result.error, CANNOT_SPLIT_AT_FIRST)
        self.assertEqual(session.read_text(encoding="utf-8"), before)
        self.assertEqual(self.store.list_session_ids("proj"), ["s1"])

    def test_missing_session_raises(self) -> None:
        with self.assertRaises(FileNotFoundError):
            split_session(self.store, "proj", "missing", "u2")


if __name__ == "__main__":
    unittest.main()
