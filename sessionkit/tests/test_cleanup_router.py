import json
import tempfile
import types
import unittest
from pathlib import Path

from sessionkit.routers import cleanup as cleanup_router
from sessionkit.store import SessionStore


class CleanupRouterTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        root = Path(tmpdir.name)
        self.store = SessionStore(root / "projects", root / "todos")
        self.request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace(session_store=self.store)))

        self.proj = root / "projects" / "proj"
        self.proj.mkdir(parents=True)
        self._write("abc123.jsonl", "abc123", 1)
        self._write("agent-1a.jsonl", "abc123", 1)
        self._write("agent-2b.jsonl", "fff000", 1)
        self._write("agent-3c.jsonl", "fff000", 4)

        self.todos = root / "todos"
        self.todos.mkdir()
        (self.todos / "abc123.json").write_text("[]", encoding="utf-8")
        (self.todos / "fff000.json").write_text("[]", encoding="utf-8")

    def _write(self, name: str, session_id: str, line_count: int) -> None:
        lines = [json.dumps({"type": "user", "uuid": f"{name}-{i}", "sessionId": session_id}) for i in range(line_count)]
        (self.proj / name).write_text("\n".join(lines) + "\n", encoding="utf-8")

    async def test_preview_lists_orphans_without_changes(self) -> None:
        previews = await cleanup_router.preview(self.request, project=None)

        self.assertEqual(len(previews), 1)
        self.assertEqual([a.agentId for a in previews[0].orphanAgents], ["agent-2b", "agent-3c"])
        self.assertEqual(previews[0].orphanTodos, ["fff000.json"])
        self.assertTrue((self.proj / "agent-2b.jsonl").is_file())

    async def test_cleanup_agents_only_by_default(self) -> None:
        body = cleanup_router.OrphanCleanupRequest(project="proj")

        with self.assertLogs("sessionkit.api", level="INFO"):
            result = await cleanup_router.cleanup(self.request, body)
        self.assertEqual(result.deletedOrphanAgentCount, 2)
        self.assertEqual(result.deletedOrphanTodoCount, 0)
        self.assertEqual(result.agents["proj"].deletedAgents, ["agent-2b"])
        self.assertEqual(result.agents["proj"].backedUpAgents, ["agent-3c"])
        self.assertTrue((self.todos / "fff000.json").is_file())

    async def test_cleanup_todos_only(self) -> None:
        body = cleanup_router.OrphanCleanupRequest(agents=False, todos=True)

        result = await cleanup_router.cleanup(self.request, body)
        self.assertEqual(result.agents, {})
        self.assertEqual(result.deletedOrphanTodoCount, 1)
        self.assertTrue((self.todos / ".bak" / "fff000.json").is_file())
        self.assertTrue((self.proj / "agent-2b.jsonl").is_file())

    async def test_session_cleanup_preview_and_clear(self) -> None:
        previews = await cleanup_router.preview_sessions(self.request, project=None)
        self.assertEqual(len(previews), 1)
        self.assertEqual(previews[0].emptySessions, [])
        self.assertEqual(previews[0].orphanAgentCount, 2)
        self.assertEqual(previews[0].orphanTodoCount, 1)

        body = cleanup_router.ClearSessionsRequest(project="proj", clearOrphanTodos=True)
        with self.assertLogs("sessionkit.api", level="INFO"):
            result = await cleanup_router.clear(self.request, body)
        self.assertEqual(result.deletedCount, 0)
        self.assertEqual(result.deletedOrphanAgentCount, 2)
        self.assertEqual(result.deletedOrphanTodoCount, 1)
        self.assertTrue((self.proj / "abc123.jsonl").is_file())


if __name__ == "__main__":
    unittest.main()
