import asyncio
import os
import shutil
import time

import pytest

from deckchat.kernel.errors import EnvironmentUnavailable
from deckchat.services.sandbox.base import escape_heredoc
from deckchat.services.sandbox.local import LocalSandboxProvider

pytestmark = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")

TRICKY = [
    "",
    "plain\n",
    "no trailing newline",
    "two trailing\n\n",
    "back\\slash \\n and \\\\ double\n",
    "price $HOME ${PATH} $(whoami) `date`\n",
    "line ending in backslash \\\nnext\n",
    "DECK_EOF\nEOF\n'quotes' \"double\"\n",
    "\ttab indented\n    spaces\n",
]


def _provider(tmp_path):
    return LocalSandboxProvider(str(tmp_path), timeout_sec=900)


def test_escape_heredoc():
    assert escape_heredoc("a\\b$c`d") == "a\\\\b\\$c\\`d"


def test_write_then_read_reproduces_bytes(tmp_path):
    async def go():
        env = await _provider(tmp_path).create(vcpus=2, timeout_sec=900, runtime="node22")
        out = []
        for content in TRICKY:
            w = await env.write_file("presentation.md", content)
            assert w.ok, w.stderr
            r = await env.read_file("presentation.md")
            out.append(r.stdout)
        return env, out

    env, out = asyncio.run(go())
    assert out == TRICKY
    assert (env.root / "presentation.md").read_bytes() == TRICKY[-1].encode()


def test_stdout_lines_are_streamed_in_order(tmp_path):
    async def go():
        env = await _provider(tmp_path).create(vcpus=2, timeout_sec=900, runtime="node22")
        seen = []

        async def on_line(line):
            seen.append(line)

        res = await env.bash("echo one; echo two >&2; echo three; exit 3", on_line=on_line)
        return res, seen

    res, seen = asyncio.run(go())
    assert seen == ["one", "three"]
    assert res.exit_code == 3
    assert res.stderr == "two\n"
    assert res.stdout == "one\nthree\n"


def test_environment_variables_and_home(tmp_path):
    async def go():
        env = await _provider(tmp_path).create(vcpus=2, timeout_sec=900, runtime="node22")
        res = await env.bash('printf "%s|%s" "$CURSOR_API_KEY" "$HOME"', env={"CURSOR_API_KEY": "k"})
        return env, res

    env, res = asyncio.run(go())
    assert res.stdout == f"k|{env.root}"


def test_missing_binary_is_exit_127(tmp_path):
    async def go():
        env = await _provider(tmp_path).create(vcpus=2, timeout_sec=900, runtime="node22")
        return await env.run("definitely-not-a-real-binary-xyz")

    assert asyncio.run(go()).exit_code == 127


def test_resolve_live_unknown_and_expired(tmp_path):
    provider = _provider(tmp_path)

    async def go():
        env = await provider.create(vcpus=2, timeout_sec=900, runtime="node22")
        again = await provider.resolve(env.id)
        assert again.root == env.root
        with pytest.raises(EnvironmentUnavailable):
            await provider.resolve("local_missing")
        with pytest.raises(EnvironmentUnavailable):
            await provider.resolve("../escape")

        stale = time.time() - 2000
        os.utime(env.root / ".lease", (stale, stale))
        with pytest.raises(EnvironmentUnavailable):
            await provider.resolve(env.id)
        return env

    env = asyncio.run(go())
    assert not env.root.exists()


def test_failing_line_handler_reaps_the_process(tmp_path):
    async def go():
        env = await _provider(tmp_path).create(vcpus=2, timeout_sec=900, runtime="node22")

        async def on_line(line):
            raise RuntimeError("handler broke")

        with pytest.raises(RuntimeError):
            await env.bash("echo first; exec sleep 30", on_line=on_line)
        # the shell was killed, not left sleeping in the background
        return [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]

    started = time.monotonic()
    assert asyncio.run(go()) == []
    assert time.monotonic() - started < 10
