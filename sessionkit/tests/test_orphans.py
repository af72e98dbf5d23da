import json
import tempfile
import unittest
from pathlib import Path

from sessionkit.orphans import (
    cleanup_orphans,
    delete_orphan_todos,
    find_orphan_agents,
    find_orphan_todos,
    preview_orphans,
)
from sessionkit.store import SessionStore


class OrphanCleanupTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.projects = self.root / "projects"
        self.todos = self.root / "todos"
        self.store = SessionStore(self.projects, self.todos)

        self.proj = self.projects / "proj"
        self._write_log(self.proj / "abc123.jsonl", "abc123", 2)
        self._write_log(self.proj / "agent-aa1.jsonl", "abc123", 3)
        self._write_log(self.proj / "agent-bb2.jsonl", "dead01", 2)
        self._write_log(self.proj / "agent-cc3.jsonl", "dead01", 3)
        self._write_log(self.proj / "dead02" / "subagents" / "agent-dd4.jsonl", "dead02", 1)
        self._write_log(self.proj / "dead03" / "subagents" / "agent-ee5.jsonl", "dead03", 1)
        (self.proj / "dead03" / "notes.txt").write_text("keep me", encoding="utf-8")
        self._write_log(self.proj / "abc123" / "subagents" / "agent-ff6.jsonl", "abc123", 1)

        self._write_log(self.projects / "other" / "dead09.jsonl", "dead09", 1)

        self.todos.mkdir()
        for name in ("abc123.json", "abc123-agent-abc123.json", "dead01-agent-dead01.json", "dead09.json", "README.json"):
            (self.todos / name).write_text("[]", encoding="utf-8")
        (self.todos / "notes.txt").write_text("", encoding="utf-8")

    def _write_log(self, path: Path, session_id: str, line_count: int) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        lines = [
            json.dumps({"type": "user", "uuid": f"{path.stem}-{index}", "parentUuid": None, "sessionId": session_id})
            for index in range(line_count)
        ]
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    async def test_finds_agents_whose_session_is_missing(self) -> None:
        orphans = await find_orphan_agents(self.store, "proj")

        self.assertEqual(
            [orphan.agentId for orphan in orphans],
            ["agent-bb2", "agent-cc3", "agent-dd4", "agent-ee5"],
        )
        self.assertEqual([orphan.lineCount for orphan in orphans], [2, 3, 1, 1])
        self.assertEqual(orphans[0].sessionId, "dead01")

    async def test_agent_with_unreadable_first_line_is_not_orphaned(self) -> None:
        (self.proj / "agent-zz9.jsonl").write_text("{broken\n", encoding="utf-8")

        with self.assertLogs("sessionkit.orphans", level="WARNING"):
            orphans = await find_orphan_agents(self.store, "proj")
        self.assertNotIn("agent-zz9", [orphan.agentId for orphan in orphans])

    async def test_cleanup_deletes_small_and_backs_up_large_agents(self) -> None:
        result = await cleanup_orphans(self.store, "proj")

        agent_result = result.agents["proj"]
        self.assertEqual(sorted(agent_result.deletedAgents), ["agent-bb2", "agent-dd4", "agent-ee5"])
        self.assertEqual(agent_result.backedUpAgents, ["agent-cc3"])
        self.assertEqual(agent_result.count, 4)
        self.assertEqual(result.deletedOrphanAgentCount, 4)
        self.assertIsNone(result.todos)

        self.assertTrue((self.proj / ".bak" / "agent-cc3.jsonl").is_file())
        self.assertFalse((self.proj / "agent-cc3.jsonl").exists())
        self.assertFalse((self.proj / "agent-bb2.jsonl").exists())
        self.assertTrue((self.proj / "agent-aa1.jsonl").is_file())
        self.assertTrue((self.proj / "abc123" / "subagents" / "agent-ff6.jsonl").is_file())

    async def test_backups_with_the_same_name_are_all_kept(self) -> None:
        self._write_log(self.proj / "dead04" / "subagents" / "agent-cc3.jsonl", "dead04", 4)

        result = await cleanup_orphans(self.store, "proj")
        self.assertEqual(result.agents["proj"].backedUpAgents, ["agent-cc3", "agent-cc3"])
        backups = self.proj / ".bak"
        self.assertEqual(len((backups / "agent-cc3.jsonl").read_text(encoding="utf-8").splitlines()), 3)
        self.assertEqual(len((backups / "agent-cc3-1.jsonl").read_text(encoding="utf-8").splitlines()), 4)

    async def test_cleanup_removes_emptied_folders(self) -> None:
        result = await cleanup_orphans(self.store, "proj")

        self.assertFalse((self.proj / "dead02").exists())
        self.assertFalse((self.proj / "dead03" / "subagents").exists())
        self.assertTrue((self.proj / "dead03" / "notes.txt").is_file())
        self.assertEqual(result.agents["proj"].cleanedFolderCount, 3)
        self.assertEqual(await find_orphan_agents(self.store, "proj"), [])

    async def test_orphan_todos_are_checked_against_every_project(self) -> None:
        self.assertEqual(find_orphan_todos(self.store), ["dead01-agent-dead01.json"])

        result = delete_orphan_todos(self.store)
        self.assertEqual(result.backedUpTodos, ["dead01-agent-dead01.json"])
        self.assertTrue((self.todos / ".bak" / "dead01-agent-dead01.json").is_file())
        self.assertTrue((self.todos / "dead09.json").is_file())
        self.assertTrue((self.todos / "README.json").is_file())
        self.assertEqual(find_orphan_todos(self.store), [])

    async def test_preview_reports_todos_once(self) -> None:
        previews = await preview_orphans(self.store)

        self.assertEqual([preview.project for preview in previews], ["other", "proj"])
        self.assertEqual(previews[0].orphanTodos, ["dead01-agent-dead01.json"])
        self.assertEqual(previews[0].orphanAgents, [])
        self.assertEqual(previews[1].orphanTodos, [])
        self.assertEqual(len(previews[1].orphanAgents), 4)

        self.assertEqual(await preview_orphans(self.store, "missing"), [])

    async def test_cleanup_with_todos_counts_both(self) -> None:
        result = await cleanup_orphans(self.store, todos=True)

        self.assertEqual(sorted(result.agents), ["other", "proj"])
        self.assertEqual(result.deletedOrphanAgentCount, 4)
        self.assertEqual(result.deletedOrphanTodoCount, 1)
        self.assertTrue(result.success)

    async def test_preview_does_not_touch_files(self) -> None:
        await preview_orphans(self.store, "proj")

        self.assertTrue((self.proj / "agent-bb2.jsonl").is_file())
        self.assertTrue((self.todos / "dead01-agent-dead01.json").is_file())


if __name__ == "__main__":
    unittest.main()
