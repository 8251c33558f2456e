# tests/conftest.py
import os, sys, pathlib
from typing import Dict, List, Optional

import pytest

# Keep tests away from real infrastructure
os.environ.setdefault("SANDBOX_PROVIDER", "local")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")

# Add <repo>/src to sys.path so `import deckchat...` works under pytest
ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from deckchat.kernel.errors import EnvironmentUnavailable  # noqa: E402
from deckchat.services.environments import EnvironmentManager, ReferenceFiles  # noqa: E402
from deckchat.services.sandbox.base import CommandResult, Environment, EnvironmentProvider  # noqa: E402
from deckchat.services.session_store import SessionStore  # noqa: E402


# ---------------------------------------------------------------- redis fake

class _FakePipeline:
    def __init__(self, redis: "FakeRedis"):
        self._redis = redis
        self._ops = []

    def rpush(self, key, *values):
        self._ops.append(("rpush", key, values))
        return self

    def ltrim(self, key, start, end):
        self._ops.append(("ltrim", key, (start, end)))
        return self

    def expire(self, key, ttl):
        self._ops.append(("expire", key, ttl))
        return self

    async def execute(self):
        out = []
        for op, key, arg in self._ops:
            if op == "rpush":
                self._redis.lists.setdefault(key, []).extend(arg)
                out.append(len(self._redis.lists[key]))
            elif op == "ltrim":
                start, end = arg
                lst = self._redis.lists.get(key, [])
                stop = None if end == -1 else end + 1
                self._redis.lists[key] = lst[start:stop]
                out.append(True)
            else:
                self._redis.ttls[key] = arg
                out.append(True)
        self._ops = []
        return out


class FakeRedis:
    """The slice of redis.asyncio.Redis (decode_responses=True) the session store uses."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.lists: Dict[str, List[str]] = {}
        self.ttls: Dict[str, Optional[int]] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        self.data.pop(key, None)
        self.lists.pop(key, None)
        return 1

    async def lrange(self, key, start, end):
        lst = self.lists.get(key, [])
        stop = None if end == -1 else end + 1
        return lst[start:stop]

    def pipeline(self, transaction=True):
        return _FakePipeline(self)


# ------------------------------------------------------- environment fakes

class FakeEnvironment(Environment):
    """In-memory files; the agent command replays scripted stdout lines."""

    def __init__(self, environment_id: str, provider: "FakeProvider"):
        super().__init__(environment_id)
        self.provider = provider
        self.files: Dict[str, str] = {}
        self.commands: List[tuple] = []

    async def write_file(self, path, content):
        self.commands.append(("write", path))
        if path in self.provider.fail_writes:
            return CommandResult(exit_code=1, stderr="disk full")
        self.files[path] = content
        return CommandResult(exit_code=0)

    async def read_file(self, path):
        self.commands.append(("read", path))
        if path not in self.files or self.provider.fail_reads:
            return CommandResult(exit_code=1, stderr=f"cat: {path}: No such file or directory")
        return CommandResult(exit_code=0, stdout=self.files[path])

    async def run(self, cmd, args=(), env=None, on_line=None):
        script = args[-1] if args else ""
        if cmd == "bash" and script == self.provider.install_cmd:
            self.commands.append(("install",))
            if self.provider.install_exit:
                return CommandResult(exit_code=self.provider.install_exit, stderr="install failed")
            return CommandResult(exit_code=0)

        self.commands.append(("agent", script, dict(env or {})))
        if self.provider.on_agent is not None:
            self.provider.on_agent(self)
        for line in self.provider.agent_lines:
            if on_line is not None:
                await on_line(line)
        return CommandResult(
            exit_code=self.provider.agent_exit,
            stdout="\n".join(self.provider.agent_lines),
            stderr=self.provider.agent_stderr,
        )


class FakeProvider(EnvironmentProvider):
    install_cmd = "install-agent"

    def __init__(self):
        self.environments: Dict[str, FakeEnvironment] = {}
        self.created = 0
        self.fail_create = False
        self.fail_writes: set = set()
        self.fail_reads = False
        self.install_exit = 0
        self.agent_lines: List[str] = []
        self.agent_exit = 0
        self.agent_stderr = ""
        self.on_agent = None

    async def create(self, *, vcpus, timeout_sec, runtime):
        if self.fail_create:
            raise EnvironmentUnavailable(detail="quota exceeded")
        self.created += 1
        env = FakeEnvironment(f"sbx_{self.created}", self)
        self.environments[env.id] = env
        return env

    async def resolve(self, environment_id):
        env = self.environments.get(environment_id)
        if env is None:
            raise EnvironmentUnavailable(detail=f"sandbox {environment_id} not found")
        return env

    def evict(self, environment_id):
        self.environments.pop(environment_id, None)


# ----------------------------------------------------------------- fixtures

@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return SessionStore(fake_redis)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def references():
    return ReferenceFiles(rules="# Rules\nindent visible text\n", sample="# Sample\n\n\tvisible\n")


@pytest.fixture
def manager(store, provider, references):
    return EnvironmentManager(
        store,
        provider,
        references,
        vcpus=2,
        timeout_sec=900,
        runtime="node22",
        handle_ttl=840,
        install_cmd=FakeProvider.install_cmd,
    )
