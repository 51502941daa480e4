# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_workspace

import asyncio
import posixpath
from typing import Awaitable, Callable, Iterator

from loguru import logger

from coreason_workspace.exceptions import NotFound, SizeLimitExceeded, UpstreamFailure, ValidationError
from coreason_workspace.lock import LockManager
from coreason_workspace.models.files import ROOT_ID, FileNode, FolderNode, TreeNode
from coreason_workspace.runtime import SandboxRuntime
from coreason_workspace.storage import ObjectStorage

# Object written under a folder so that empty folders survive a reload from storage
FOLDER_MARKER = ".folder"


def _byte_size(text: str) -> int:
    return len(text.encode("utf-8"))


def validate_name(name: str, is_file: bool) -> None:
    """Check a single path segment used as a file or folder name.

    File names must contain a ``.``: that is how a reload from storage tells files from folders.

    Raises:
        ValidationError: If the name is empty, reserved, contains ``/`` or a file name has no
            extension-like marker.
    """
    if not name or name in (".", "..", FOLDER_MARKER) or "/" in name or name != name.strip():
        raise ValidationError(f"Invalid name: {name!r}")
    if is_file and "." not in name:
        raise ValidationError(f"File names need an extension: {name!r}")


class FileManager:
    """Owns the in-memory file-tree mirror of one sandbox.

    The object store is authoritative. Every mutation is written there first and applied to the
    in-memory tree only once storage accepted it; the compute sandbox's filesystem is then
    updated on a best-effort basis, since it is rebuilt from storage whenever a new sandbox is
    provisioned. Reads are served from memory.

    Mutations serialize through the LockManager under ``<sandboxId>:files``.
    """

    def __init__(
        self,
        sandbox_id: str,
        storage: ObjectStorage,
        lock_manager: LockManager,
        runtime: SandboxRuntime | None = None,
        prefix: str = "projects",
        project_dir: str = "/home/user/project",
        max_file_size: int = 5 * 1024 * 1024,
        max_project_size: int = 200 * 1024 * 1024,
        stale_keys: set[str] | None = None,
    ):
        """Initializes the FileManager.

        Args:
            sandbox_id: The sandbox whose project this manager mirrors.
            storage: The authoritative object store.
            lock_manager: Shared lock manager.
            runtime: Compute sandbox to mirror files into, if one is attached.
            prefix: Top-level key prefix of all projects in the store.
            project_dir: Project location inside the compute sandbox.
            max_file_size: Largest accepted file body, in bytes.
            max_project_size: Largest total content size before creation is refused, in bytes.
            stale_keys: Old keys of moved objects still waiting to be deleted. Shared with the
                session so pending cleanup outlives this manager.
        """
        self.sandbox_id = sandbox_id
        self.storage = storage
        self.lock_manager = lock_manager
        self.runtime = runtime
        self.prefix = prefix
        self.project_dir = project_dir
        self.max_file_size = max_file_size
        self.max_project_size = max_project_size

        self.base = f"{prefix}/{sandbox_id}"
        self.root = FolderNode(id=ROOT_ID, name=ROOT_ID)
        self.contents: dict[str, str] = {}
        self._lock_key = f"{sandbox_id}:files"
        self.stale_keys: set[str] = stale_keys if stale_keys is not None else set()

    @property
    def tree(self) -> list[TreeNode]:
        """The client view of the tree: the root folder's children."""
        return self.root.children

    @property
    def total_size(self) -> int:
        return sum(_byte_size(body) for body in self.contents.values())

    def _locked(self, task: Callable[[], Awaitable]) -> Awaitable:
        async def _run() -> object:
            await self._purge_stale()
            return await task()

        return self.lock_manager.acquire_lock(self._lock_key, _run)

    async def _put(self, key: str, body: str) -> None:
        self.stale_keys.discard(key)
        await self.storage.put_object(key, body)

    # Tree helpers

    def _key_of(self, folder: FolderNode) -> str:
        return self.base if folder.id == ROOT_ID else folder.id

    def _sandbox_path(self, node_id: str) -> str:
        if node_id == ROOT_ID:
            return self.project_dir
        return posixpath.join(self.project_dir, node_id[len(self.base) + 1 :])

    def _locate(self, node_id: str) -> tuple[FolderNode, TreeNode]:
        """Find a node and its parent by id."""
        if node_id == ROOT_ID:
            raise ValidationError("The root folder cannot be modified")
        parent = self.root
        while True:
            for child in parent.children:
                if child.id == node_id:
                    return parent, child
                if isinstance(child, FolderNode) and node_id.startswith(child.id + "/"):
                    parent = child
                    break
            else:
                raise NotFound(f"No such file or folder: {node_id}")

    def _folder(self, folder_id: str) -> FolderNode:
        if folder_id == ROOT_ID:
            return self.root
        _, node = self._locate(folder_id)
        if not isinstance(node, FolderNode):
            raise ValidationError(f"Not a folder: {folder_id}")
        return node

    @staticmethod
    def _walk_files(node: TreeNode) -> Iterator[FileNode]:
        if isinstance(node, FileNode):
            yield node
            return
        for child in node.children:
            yield from FileManager._walk_files(child)

    @staticmethod
    def _detach(parent: FolderNode, node: TreeNode) -> None:
        parent.children = [child for child in parent.children if child is not node]

    def _relabel(self, node: TreeNode, new_id: str) -> None:
        node.id = new_id
        node.name = new_id.rsplit("/", 1)[-1]
        if isinstance(node, FolderNode):
            for child in node.children:
                self._relabel(child, f"{new_id}/{child.name}")

    async def _keep_folder(self, parent: FolderNode, leaving: TreeNode) -> None:
        """Persist a marker for ``parent`` if ``leaving`` is its last child.

        Folders rebuilt from file keys have no marker of their own, so without one they
        would vanish from storage together with their last child.
        """
        if parent.id == ROOT_ID or any(child is not leaving for child in parent.children):
            return
        await self._put(f"{parent.id}/{FOLDER_MARKER}", "")

    async def _purge_stale(self) -> None:
        if not self.stale_keys:
            return
        keys = sorted(self.stale_keys)
        try:
            await self.storage.delete_objects(keys)
        except UpstreamFailure as e:
            logger.warning(f"Stale objects of {self.sandbox_id} still not deleted: {e}")
            return
        self.stale_keys.difference_update(keys)
        logger.info(f"Deleted {len(keys)} stale objects of {self.sandbox_id}")

    async def _mirror(self, action: str, operation: Callable[[SandboxRuntime], Awaitable[None]]) -> None:
        if self.runtime is None:
            return
        try:
            await operation(self.runtime)
        except Exception as e:
            logger.warning(f"Sandbox filesystem {action} failed for {self.sandbox_id}: {e}")

    def _build_tree(self, keys: list[str]) -> tuple[FolderNode, list[str]]:
        root = FolderNode(id=ROOT_ID, name=ROOT_ID)
        file_ids: list[str] = []

        for key in keys:
            parts = key.split("/")
            segments = parts[2:]
            if len(parts) < 3 or parts[0] != self.prefix or parts[1] != self.sandbox_id:
                logger.warning(f"Skipping object outside sandbox {self.sandbox_id}: {key}")
                continue
            if not all(segments):
                logger.warning(f"Skipping malformed object key: {key}")
                continue

            current = root
            for i, part in enumerate(segments):
                last = i == len(segments) - 1
                if last and part == FOLDER_MARKER:
                    break
                node_id = "/".join(parts[: i + 3])
                existing = current.find_child(part)

                if last and "." in part:
                    if existing is None:
                        current.children.append(FileNode(id=node_id, name=part))
                        file_ids.append(node_id)
                    elif isinstance(existing, FolderNode):
                        logger.warning(f"Object {key} collides with a folder of the same name")
                    break

                if existing is None:
                    existing = FolderNode(id=node_id, name=part)
                    current.children.append(existing)
                elif isinstance(existing, FileNode):
                    logger.warning(f"Object {key} is nested under a file; skipping")
                    break
                current = existing

        return root, file_ids

    # Operations

    async def initialize(self) -> list[TreeNode]:
        """Rebuild the mirror from the object store.

        Lists every object of the sandbox, reconstructs the tree from the key paths and fetches
        all file contents concurrently. The previous mirror is replaced only once everything
        has been fetched.

        Returns:
            list[TreeNode]: The reconstructed client tree.

        Raises:
            UpstreamFailure: If the listing or any content fetch fails.
        """

        async def _initialize() -> list[TreeNode]:
            listed = await self.storage.list_objects(self.base + "/")
            keys = [key for key in listed if key not in self.stale_keys]
            root, file_ids = self._build_tree(keys)
            bodies = await asyncio.gather(*(self.storage.get_object(file_id) for file_id in file_ids))

            self.root = root
            self.contents = dict(zip(file_ids, bodies))
            logger.info(
                f"Loaded project {self.sandbox_id}",
                files=len(file_ids),
                size_bytes=self.total_size,
            )
            return self.tree

        return await self._locked(_initialize)

    async def sync_to_sandbox(self) -> None:
        """Write every file (and every empty folder) into the compute sandbox."""
        if self.runtime is None:
            return

        operations: list[Awaitable[None]] = []
        pending: list[FolderNode] = [self.root]
        while pending:
            folder = pending.pop()
            if not folder.children and folder.id != ROOT_ID:
                path = self._sandbox_path(folder.id)
                operations.append(self._mirror("make_dir", lambda rt, p=path: rt.make_dir(p)))
            for child in folder.children:
                if isinstance(child, FolderNode):
                    pending.append(child)
                else:
                    path, body = self._sandbox_path(child.id), self.contents.get(child.id, "")
                    operations.append(self._mirror("write", lambda rt, p=path, b=body: rt.write_file(p, b)))

        await asyncio.gather(*operations)
        logger.info(f"Synced {len(operations)} entries into sandbox {self.sandbox_id}")

    async def get_file_content(self, file_id: str) -> str:
        try:
            return self.contents[file_id]
        except KeyError:
            raise NotFound(f"No such file: {file_id}") from None

    def list_folder(self, folder_id: str) -> list[str]:
        """Ids of every file under a folder, recursively."""
        return [node.id for node in self._walk_files(self._folder(folder_id))]

    def project_files(self) -> list[tuple[str, str]]:
        """Project-relative paths and contents of every file, for packaging."""
        return [(file_id[len(self.base) + 1 :], body) for file_id, body in self.contents.items()]

    async def save_file(self, file_id: str, body: str) -> None:
        """Persist new content for an existing file.

        Raises:
            SizeLimitExceeded: If the body or the resulting project is too large. Prior content
                is left untouched.
            NotFound: If the file does not exist.
            UpstreamFailure: If the object store rejects the write.
        """
        size = _byte_size(body)
        if size > self.max_file_size:
            raise SizeLimitExceeded("File size too large. Please reduce the file size.")

        async def _save() -> None:
            if file_id not in self.contents:
                raise NotFound(f"No such file: {file_id}")
            projected = self.total_size - _byte_size(self.contents[file_id]) + size
            if projected > self.max_project_size:
                raise SizeLimitExceeded("Project size exceeded. Please delete some files.")

            await self._put(file_id, body)
            self.contents[file_id] = body
            path = self._sandbox_path(file_id)
            await self._mirror("write", lambda rt: rt.write_file(path, body))

        await self._locked(_save)

    async def create_file(self, name: str) -> bool:
        """Create an empty file in the project root.

        Returns:
            bool: False if a file or folder with that name already exists.

        Raises:
            ValidationError: If the name is not a valid file name.
            SizeLimitExceeded: If the project is already over its size ceiling.
        """
        validate_name(name, is_file=True)

        async def _create() -> bool:
            if self.total_size > self.max_project_size:
                raise SizeLimitExceeded("Project size exceeded. Please delete some files.")
            if self.root.find_child(name) is not None:
                logger.warning(f"File {name} already exists in {self.sandbox_id}")
                return False

            file_id = f"{self.base}/{name}"
            await self._put(file_id, "")
            self.root.children.append(FileNode(id=file_id, name=name))
            self.contents[file_id] = ""
            path = self._sandbox_path(file_id)
            await self._mirror("write", lambda rt: rt.write_file(path, ""))
            return True

        return await self._locked(_create)

    async def create_folder(self, name: str) -> bool:
        """Create an empty folder in the project root.

        Returns:
            bool: False if a file or folder with that name already exists.
        """
        validate_name(name, is_file=False)

        async def _create() -> bool:
            if self.total_size > self.max_project_size:
                raise SizeLimitExceeded("Project size exceeded. Please delete some files.")
            if self.root.find_child(name) is not None:
                logger.warning(f"Folder {name} already exists in {self.sandbox_id}")
                return False

            folder_id = f"{self.base}/{name}"
            await self._put(f"{folder_id}/{FOLDER_MARKER}", "")
            self.root.children.append(FolderNode(id=folder_id, name=name))
            path = self._sandbox_path(folder_id)
            await self._mirror("make_dir", lambda rt: rt.make_dir(path))
            return True

        return await self._locked(_create)

    async def _relocate(self, node: TreeNode, new_id: str) -> None:
        """Give ``node`` (and its whole subtree) a new id, in storage first, then in memory.

        Every affected object is copied to its new key before anything else changes; if a copy
        fails, the copies made so far are removed and the tree is left as it was.
        """
        old_id = node.id
        moves: dict[str, str] = {}
        if isinstance(node, FolderNode):
            for key in await self.storage.list_objects(old_id + "/"):
                moves[key] = new_id + key[len(old_id) :]
        for file_node in self._walk_files(node):
            moves.setdefault(file_node.id, new_id + file_node.id[len(old_id) :])

        copied: list[str] = []
        try:
            for source, dest in moves.items():
                self.stale_keys.discard(dest)
                await self.storage.copy_object(source, dest)
                copied.append(dest)
        except UpstreamFailure:
            logger.error(f"Moving {old_id} failed after {len(copied)} of {len(moves)} objects; rolling back")
            try:
                await self.storage.delete_objects(copied)
            except UpstreamFailure as cleanup_error:
                logger.error(f"Rollback of {old_id} left orphaned copies: {cleanup_error}")
            raise

        self._relabel(node, new_id)
        self.contents = {moves.get(key, key): body for key, body in self.contents.items()}

        try:
            await self.storage.delete_objects(list(moves))
        except UpstreamFailure as e:
            # Retried before the next mutation and skipped by reloads until then
            logger.error(f"Stale objects left under {old_id} after move: {e}")
            self.stale_keys.update(moves)

        old_path, new_path = self._sandbox_path(old_id), self._sandbox_path(new_id)
        await self._mirror("rename", lambda rt: rt.rename(old_path, new_path))

    async def rename_file(self, file_id: str, new_name: str) -> list[TreeNode]:
        """Rename a file or folder in place. Descendant ids follow the new name.

        Raises:
            NotFound: If the node does not exist.
            ValidationError: If the name is invalid or already taken in the same folder.
            UpstreamFailure: If storage fails; the tree is left unchanged.
        """

        async def _rename() -> list[TreeNode]:
            parent, node = self._locate(file_id)
            validate_name(new_name, is_file=isinstance(node, FileNode))
            if new_name == node.name:
                return self.tree
            if parent.find_child(new_name) is not None:
                raise ValidationError(f"A file or folder named {new_name} already exists")

            await self._relocate(node, f"{self._key_of(parent)}/{new_name}")
            logger.info(f"Renamed {file_id} to {node.id}")
            return self.tree

        return await self._locked(_rename)

    async def move_file(self, file_id: str, folder_id: str) -> list[TreeNode]:
        """Move a file or folder into another folder (``/`` for the project root).

        Raises:
            NotFound: If the node or destination does not exist.
            ValidationError: If the destination holds the same name or lies inside the node.
            UpstreamFailure: If storage fails; the tree is left unchanged.
        """

        async def _move() -> list[TreeNode]:
            parent, node = self._locate(file_id)
            dest = self._folder(folder_id)
            if dest is parent:
                return self.tree
            if isinstance(node, FolderNode) and (dest.id == node.id or dest.id.startswith(node.id + "/")):
                raise ValidationError("Cannot move a folder into itself")
            if dest.find_child(node.name) is not None:
                raise ValidationError(f"A file or folder named {node.name} already exists there")

            await self._keep_folder(parent, node)
            await self._relocate(node, f"{self._key_of(dest)}/{node.name}")
            self._detach(parent, node)
            dest.children.append(node)
            logger.info(f"Moved {file_id} to {node.id}")
            return self.tree

        return await self._locked(_move)

    async def delete_file(self, file_id: str) -> list[TreeNode]:
        async def _delete() -> list[TreeNode]:
            parent, node = self._locate(file_id)
            if not isinstance(node, FileNode):
                raise ValidationError(f"Not a file: {file_id}")

            await self._keep_folder(parent, node)
            await self.storage.delete_objects([file_id])
            self._detach(parent, node)
            self.contents.pop(file_id, None)
            path = self._sandbox_path(file_id)
            await self._mirror("remove", lambda rt: rt.remove(path))
            return self.tree

        return await self._locked(_delete)

    async def delete_folder(self, folder_id: str) -> list[TreeNode]:
        """Delete a folder and everything under it."""

        async def _delete() -> list[TreeNode]:
            parent, node = self._locate(folder_id)
            if not isinstance(node, FolderNode):
                raise ValidationError(f"Not a folder: {folder_id}")

            file_ids = [file_node.id for file_node in self._walk_files(node)]
            await self._keep_folder(parent, node)
            keys = set(await self.storage.list_objects(folder_id + "/")) | set(file_ids)
            await self.storage.delete_objects(sorted(keys))

            self._detach(parent, node)
            for file_id in file_ids:
                self.contents.pop(file_id, None)
            path = self._sandbox_path(folder_id)
            await self._mirror("remove", lambda rt: rt.remove(path))
            logger.info(f"Deleted folder {folder_id}", files=len(file_ids))
            return self.tree

        return await self._locked(_delete)
