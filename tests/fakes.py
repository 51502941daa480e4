"""In-memory doubles for the object store and the compute sandbox."""

import asyncio
from typing import Callable

from coreason_workspace.exceptions import UpstreamFailure
from coreason_workspace.runtime import PtyProcess, SandboxRuntime


class InMemoryStorage:
    """Object store double keeping every object in a dict."""

    def __init__(self, objects: dict[str, str] | None = None):
        self.objects: dict[str, str] = dict(objects or {})
        self.fail_copy_after: int | None = None
        self.fail_puts = False
        self.fail_deletes = False
        self.copies = 0

    async def list_objects(self, prefix: str) -> list[str]:
        await asyncio.sleep(0)
        return sorted(key for key in self.objects if key.startswith(prefix))

    async def get_object(self, key: str) -> str:
        if key not in self.objects:
            raise UpstreamFailure(f"missing {key}")
        return self.objects[key]

    async def put_object(self, key: str, body: str) -> None:
        if self.fail_puts:
            raise UpstreamFailure("put rejected")
        self.objects[key] = body

    async def copy_object(self, source_key: str, dest_key: str) -> None:
        if self.fail_copy_after is not None and self.copies >= self.fail_copy_after:
            raise UpstreamFailure("copy rejected")
        self.copies += 1
        self.objects[dest_key] = self.objects[source_key]

    async def delete_objects(self, keys: list[str]) -> None:
        if self.fail_deletes:
            raise UpstreamFailure("delete rejected")
        for key in keys:
            self.objects.pop(key, None)


class FakeRuntime(SandboxRuntime):
    """Sandbox double with an in-memory filesystem and scriptable PTYs."""

    instances = 0

    def __init__(self, fail_start: bool = False):
        self.fail_start = fail_start
        self.running = False
        self.started = 0
        self.terminated = False
        self.timeout: float | None = None
        self.files: dict[str, str] = {}
        self.dirs: set[str] = set()
        self.on_data: dict[int, Callable[[bytes], None]] = {}
        self.inputs: list[tuple[int, bytes]] = []
        self.resizes: list[tuple[int, int, int]] = []
        self.killed: list[int] = []
        self._exits: dict[int, asyncio.Event] = {}
        self._next_pid = 100
        self._id: str | None = None

    @property
    def sandbox_id(self) -> str | None:
        return self._id

    async def start(self) -> None:
        self.started += 1
        await asyncio.sleep(0.01)
        if self.fail_start:
            raise UpstreamFailure("provider unavailable")
        FakeRuntime.instances += 1
        self._id = f"sbx-{FakeRuntime.instances}"
        self.running = True

    async def is_running(self) -> bool:
        return self.running

    async def set_timeout(self, seconds: float) -> None:
        self.timeout = seconds

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content

    async def make_dir(self, path: str) -> None:
        self.dirs.add(path)

    async def rename(self, old_path: str, new_path: str) -> None:
        for path in [p for p in self.files if p == old_path or p.startswith(old_path + "/")]:
            self.files[new_path + path[len(old_path) :]] = self.files.pop(path)

    async def remove(self, path: str) -> None:
        for existing in [p for p in self.files if p == path or p.startswith(path + "/")]:
            del self.files[existing]

    async def create_pty(
        self, cols: int, rows: int, on_data: Callable[[bytes], None], cwd: str | None = None
    ) -> PtyProcess:
        pid = self._next_pid
        self._next_pid += 1
        self.on_data[pid] = on_data
        self._exits[pid] = asyncio.Event()
        return PtyProcess(pid=pid)

    async def send_pty_input(self, pid: int, data: bytes) -> None:
        self.inputs.append((pid, data))

    async def resize_pty(self, pid: int, cols: int, rows: int) -> None:
        self.resizes.append((pid, cols, rows))

    async def kill_pty(self, pid: int) -> bool:
        exit_event = self._exits.get(pid)
        if exit_event is None or exit_event.is_set():
            return False
        exit_event.set()
        self.killed.append(pid)
        return True

    async def wait_pty(self, process: PtyProcess) -> None:
        await self._exits[process.pid].wait()

    def exit_pty(self, pid: int) -> None:
        self._exits[pid].set()

    async def terminate(self) -> None:
        self.running = False
        self.terminated = True
