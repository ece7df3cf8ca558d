from __future__ import annotations

import asyncio
import json

from fastmcp import Client

from notepad_server.backends import LocalBackend, RelayBackend
from notepad_server.bridge import NotepadBridge
from notepad_server.protocol import decode
from notepad_server.server import build_server
from notepad_server.sessions import SessionRegistry
from notepad_server.store import build_header
from notepad_server.watch import drain


async def _call(client, name, arguments=None):
    result = await client.call_tool(name, arguments or {})
    return json.loads(result.content[0].text)


def _run(mcp, name, arguments=None):
    async def scenario():
        async with Client(mcp) as client:
            return await _call(client, name, arguments)

    return asyncio.run(scenario())


def _local(tmp_path):
    path = tmp_path / "notepad.txt"
    backend = LocalBackend(path, poll_interval=0.02)
    return build_server(backend, "test-local"), path


def test_tools_are_registered(tmp_path):
    mcp, _ = _local(tmp_path)

    async def scenario():
        async with Client(mcp) as client:
            return sorted(tool.name for tool in await client.list_tools())

    assert asyncio.run(scenario()) == ["clear_notepad", "read_notepad", "watch_notepad", "write_to_notepad"]


async def _wait_for_banner(path):
    while not path.exists() or "[AGENT WAITING FOR INPUT]" not in path.read_text(encoding="utf-8"):
        await asyncio.sleep(0.01)


def test_local_watch_returns_prompt_already_in_file(tmp_path):
    mcp, path = _local(tmp_path)
    path.write_text(build_header(), encoding="utf-8")

    async def scenario():
        async with Client(mcp) as client:
            first = await _call(client, "watch_notepad", {"timeout_seconds": 0.05})
            with path.open("a", encoding="utf-8") as handle:
                handle.write("Hello\n\n")
            second = await _call(client, "watch_notepad", {"timeout_seconds": 1})
            return first, second

    first, second = asyncio.run(scenario())

    assert first["status"] == "waiting"
    assert second["status"] == "received"
    assert second["human_input"] == "Hello"
    assert second["file_path"] == str(path)
    assert second["timestamp"]


def test_local_watch_delivers_batched_prompts_one_per_call(tmp_path):
    mcp, path = _local(tmp_path)

    async def scenario():
        async with Client(mcp) as client:
            await _call(client, "watch_notepad", {"timeout_seconds": 0.05})
            with path.open("a", encoding="utf-8") as handle:
                handle.write("A\n\nB\n\nC\n\n")
            return [
                (await _call(client, "watch_notepad", {"timeout_seconds": 1}))["human_input"]
                for _ in range(3)
            ]

    assert asyncio.run(scenario()) == ["A", "B", "C"]


def test_local_watch_translates_stop(tmp_path):
    mcp, path = _local(tmp_path)

    async def scenario():
        async with Client(mcp) as client:
            task = asyncio.create_task(_call(client, "watch_notepad", {"timeout_seconds": 5}))
            await asyncio.wait_for(_wait_for_banner(path), timeout=2)
            with path.open("a", encoding="utf-8") as handle:
                handle.write("stop\n\n")
            return await task

    result = asyncio.run(scenario())

    assert result["status"] == "stopped"
    assert "human_input" not in result


def test_local_watch_timeout_writes_banner_with_message(tmp_path):
    mcp, path = _local(tmp_path)

    result = _run(mcp, "watch_notepad", {"timeout_seconds": 0.1, "message_to_user": "Which branch?"})

    content = path.read_text(encoding="utf-8")
    assert result["status"] == "waiting"
    assert "Call watch_notepad again" in result["message"]
    assert "[AGENT WAITING FOR INPUT]\nWhich branch?\n" in content


def test_local_multi_paragraph_agent_text_is_not_read_back(tmp_path):
    mcp, path = _local(tmp_path)

    async def scenario():
        async with Client(mcp) as client:
            await _call(client, "watch_notepad", {"timeout_seconds": 0.05})
            written = await _call(client, "write_to_notepad", {"message": "Step one done.\n\nShould I deploy?"})
            after_write = await _call(client, "watch_notepad", {"timeout_seconds": 0.1})
            after_banner = await _call(
                client, "watch_notepad", {"timeout_seconds": 0.1, "message_to_user": "Pick:\n\nA or B"}
            )
            return written, after_write, after_banner

    written, after_write, after_banner = asyncio.run(scenario())

    assert written["status"] == "written"
    assert after_write["status"] == "waiting"
    assert after_banner["status"] == "waiting"
    assert "[AGENT WAITING FOR INPUT]\nPick:\nA or B\n" in path.read_text(encoding="utf-8")


def test_watch_rejects_negative_timeout(tmp_path):
    mcp, _ = _local(tmp_path)

    assert _run(mcp, "watch_notepad", {"timeout_seconds": -1})["status"] == "error"


def test_local_write_requires_message(tmp_path):
    mcp, path = _local(tmp_path)

    assert _run(mcp, "write_to_notepad")["status"] == "error"
    assert _run(mcp, "write_to_notepad", {"message": "  "})["status"] == "error"

    result = _run(mcp, "write_to_notepad", {"message": "Build finished"})
    assert result["status"] == "written"
    assert "[AGENT MESSAGE - " in path.read_text(encoding="utf-8")


def test_local_read_and_clear(tmp_path):
    mcp, path = _local(tmp_path)

    assert _run(mcp, "read_notepad")["status"] == "not_found"

    _run(mcp, "watch_notepad", {"timeout_seconds": 0.05})
    with path.open("a", encoding="utf-8") as handle:
        handle.write("pending one\n\n")

    read = _run(mcp, "read_notepad")
    assert read["status"] == "read"
    assert read["pending_prompts"] == ["pending one"]
    assert "pending one" in read["content"]

    assert _run(mcp, "clear_notepad")["status"] == "cleared"
    after = _run(mcp, "read_notepad")
    assert after["pending_prompts"] == []
    assert after["content"].startswith("# Agent Notepad - Cleared at ")


def test_relay_tools_without_bridge_report_no_bridge():
    mcp = build_server(RelayBackend(SessionRegistry()), "test-relay")

    for name, arguments in (
        ("watch_notepad", {"timeout_seconds": 0.05}),
        ("write_to_notepad", {"message": "hi"}),
        ("clear_notepad", {}),
        ("read_notepad", {}),
    ):
        assert _run(mcp, name, arguments)["status"] == "no_bridge"


def _relay_with_bridge(tmp_path):
    """Relay tools wired to a bridge that answers in-process against a real file."""
    registry = SessionRegistry()
    bridge = NotepadBridge("ws://unused", tmp_path / "notepad.txt")
    bridge.store.ensure_exists(bridge.path)
    bridge.store.initialize_cursor(bridge.path)
    holder = {}

    async def send(envelope):
        reply = bridge.handle(decode(envelope.encode()))
        if reply is not None:
            registry.dispatch(holder["session"], decode(reply.encode()))

    holder["session"] = registry.open_session(send)
    registry.record_file_snapshot(holder["session"], str(bridge.path), bridge.path.read_text(encoding="utf-8"))
    mcp = build_server(RelayBackend(registry, request_timeout=1.0), "test-relay")
    return mcp, registry, holder["session"], bridge


def test_relay_watch_receives_prompt_from_bridge(tmp_path):
    mcp, registry, session, bridge = _relay_with_bridge(tmp_path)

    async def scenario():
        async with Client(mcp) as client:
            task = asyncio.create_task(
                _call(client, "watch_notepad", {"timeout_seconds": 5, "message_to_user": "Ready?"})
            )
            await asyncio.sleep(0.2)
            bridge.store.append(bridge.path, "Ship it\n\n")
            for prompt in drain(bridge.store, bridge.path):
                registry.record_prompt(session, prompt)
            return await task

    result = asyncio.run(scenario())

    assert result["status"] == "received"
    assert result["human_input"] == "Ship it"
    assert result["file_path"] == str(bridge.path)
    assert "[AGENT WAITING FOR INPUT]\nReady?\n" in bridge.path.read_text(encoding="utf-8")


def test_relay_watch_returns_buffered_prompt_and_stop(tmp_path):
    mcp, registry, session, _ = _relay_with_bridge(tmp_path)
    registry.record_prompt(session, "first")
    registry.record_prompt(session, "STOP")

    async def scenario():
        async with Client(mcp) as client:
            return [await _call(client, "watch_notepad", {"timeout_seconds": 1}) for _ in range(2)]

    first, second = asyncio.run(scenario())

    assert first["human_input"] == "first"
    assert second["status"] == "stopped"


def test_relay_watch_reports_disconnect(tmp_path):
    mcp, registry, session, _ = _relay_with_bridge(tmp_path)

    async def scenario():
        async with Client(mcp) as client:
            task = asyncio.create_task(_call(client, "watch_notepad", {"timeout_seconds": 5}))
            await asyncio.sleep(0.2)
            registry.close_session(session.id)
            return await task

    result = asyncio.run(scenario())

    assert result["status"] == "waiting"
    assert result["disconnected"] is True


def test_relay_write_read_and_clear_round_trip(tmp_path):
    mcp, registry, session, bridge = _relay_with_bridge(tmp_path)
    registry.record_prompt(session, "unclaimed")

    async def scenario():
        async with Client(mcp) as client:
            written = await _call(client, "write_to_notepad", {"message": "Halfway there"})
            read = await _call(client, "read_notepad")
            cleared = await _call(client, "clear_notepad")
            after = await _call(client, "read_notepad")
            return written, read, cleared, after

    written, read, cleared, after = asyncio.run(scenario())

    assert written["status"] == "written"
    assert read["status"] == "read"
    assert read["source"] == "bridge"
    assert "Halfway there" in read["content"]
    assert read["pending_prompts"] == ["unclaimed"]
    assert cleared["status"] == "cleared"
    assert after["pending_prompts"] == []
    assert after["content"].startswith("# Agent Notepad - Cleared at ")
    assert bridge.path.read_text(encoding="utf-8") == after["content"]


def test_relay_write_without_reply_is_an_error():
    registry = SessionRegistry()

    async def silent(envelope):
        return None

    registry.open_session(silent)
    mcp = build_server(RelayBackend(registry, request_timeout=0.05), "test-relay")

    result = _run(mcp, "write_to_notepad", {"message": "anyone there?"})

    assert result["status"] == "error"
    assert registry.sessions()[0].requests == {}


def test_relay_clear_without_reply_keeps_unclaimed_prompts():
    registry = SessionRegistry()

    async def silent(envelope):
        return None

    session = registry.open_session(silent)
    registry.record_prompt(session, "still wanted")
    mcp = build_server(RelayBackend(registry, request_timeout=0.05), "test-relay")

    result = _run(mcp, "clear_notepad")

    assert result["status"] == "error"
    assert list(session.pending) == ["still wanted"]
