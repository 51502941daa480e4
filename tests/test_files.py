from typing import Any

import pytest
from coreason_workspace.exceptions import NotFound, SizeLimitExceeded, UpstreamFailure, ValidationError
from coreason_workspace.files import FileManager, validate_name
from coreason_workspace.lock import LockManager
from coreason_workspace.models.files import FileNode, FolderNode

from .fakes import FakeRuntime, InMemoryStorage

BASE = "projects/sbx"


def _names(nodes: list[Any]) -> list[str]:
    return sorted(node.name for node in nodes)


def _child(nodes: list[Any], name: str) -> Any:
    return next(node for node in nodes if node.name == name)


@pytest.fixture
def file_manager(storage: InMemoryStorage, lock_manager: LockManager, runtime: FakeRuntime) -> FileManager:
    return FileManager("sbx", storage, lock_manager, runtime=runtime)


@pytest.mark.asyncio
async def test_initialize_builds_tree_from_keys(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects.update(
        {
            f"{BASE}/index.js": "console.log(1)",
            f"{BASE}/src/app/main.py": "print('hi')",
            f"{BASE}/assets/.folder": "",
            "projects/other/secret.txt": "not ours",
        }
    )

    tree = await file_manager.initialize()

    assert _names(tree) == ["assets", "index.js", "src"]
    src = _child(tree, "src")
    assert isinstance(src, FolderNode)
    assert src.id == f"{BASE}/src"
    app = _child(src.children, "app")
    main = _child(app.children, "main.py")
    assert isinstance(main, FileNode)
    assert main.id == f"{BASE}/src/app/main.py"
    assert _child(tree, "assets").children == []
    assert await file_manager.get_file_content(f"{BASE}/src/app/main.py") == "print('hi')"
    assert "projects/other/secret.txt" not in file_manager.contents


@pytest.mark.asyncio
async def test_created_tree_survives_reload(storage: InMemoryStorage, file_manager: FileManager) -> None:
    assert await file_manager.create_folder("docs")
    assert await file_manager.create_file("main.py")
    await file_manager.save_file(f"{BASE}/main.py", "print('hello')")

    reloaded = FileManager("sbx", storage, LockManager())
    tree = await reloaded.initialize()

    assert [node.model_dump() for node in tree] == [node.model_dump() for node in file_manager.tree]
    assert reloaded.contents == {f"{BASE}/main.py": "print('hello')"}


@pytest.mark.asyncio
async def test_create_duplicate_returns_false(file_manager: FileManager) -> None:
    assert await file_manager.create_file("a.txt")
    assert not await file_manager.create_file("a.txt")
    assert not await file_manager.create_folder("a.txt")
    assert len(file_manager.tree) == 1


@pytest.mark.parametrize("name", ["", "..", "a/b.txt", "README", " x.txt", ".folder"])
def test_invalid_file_names(name: str) -> None:
    with pytest.raises(ValidationError):
        validate_name(name, is_file=True)


def test_folder_names_need_no_extension() -> None:
    validate_name("src", is_file=False)


@pytest.mark.asyncio
async def test_create_file_rejects_invalid_name(file_manager: FileManager, storage: InMemoryStorage) -> None:
    with pytest.raises(ValidationError):
        await file_manager.create_file("nested/file.txt")
    assert storage.objects == {}


@pytest.mark.asyncio
async def test_rename_folder_moves_descendants(
    storage: InMemoryStorage, file_manager: FileManager, runtime: FakeRuntime
) -> None:
    storage.objects[f"{BASE}/a/b/c.txt"] = "content"
    await file_manager.initialize()
    await file_manager.sync_to_sandbox()

    tree = await file_manager.rename_file(f"{BASE}/a/b", "d")

    a = _child(tree, "a")
    d = _child(a.children, "d")
    assert d.id == f"{BASE}/a/d"
    assert [child.id for child in d.children] == [f"{BASE}/a/d/c.txt"]
    assert storage.objects == {f"{BASE}/a/d/c.txt": "content"}
    assert await file_manager.get_file_content(f"{BASE}/a/d/c.txt") == "content"
    with pytest.raises(NotFound):
        await file_manager.get_file_content(f"{BASE}/a/b/c.txt")
    assert runtime.files == {"/home/user/project/a/d/c.txt": "content"}


@pytest.mark.asyncio
async def test_rename_to_taken_name_fails(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects.update({f"{BASE}/a.txt": "a", f"{BASE}/b.txt": "b"})
    await file_manager.initialize()

    with pytest.raises(ValidationError, match="already exists"):
        await file_manager.rename_file(f"{BASE}/a.txt", "b.txt")


@pytest.mark.asyncio
async def test_failed_copy_rolls_back_rename(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects.update({f"{BASE}/src/a.txt": "a", f"{BASE}/src/b.txt": "b"})
    await file_manager.initialize()
    before = dict(storage.objects)
    storage.fail_copy_after = 1

    with pytest.raises(UpstreamFailure):
        await file_manager.rename_file(f"{BASE}/src", "lib")

    assert storage.objects == before
    assert _names(file_manager.tree) == ["src"]
    assert set(file_manager.contents) == {f"{BASE}/src/a.txt", f"{BASE}/src/b.txt"}


@pytest.mark.asyncio
async def test_move_file_into_folder(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects.update({f"{BASE}/main.py": "x = 1", f"{BASE}/src/.folder": ""})
    await file_manager.initialize()

    tree = await file_manager.move_file(f"{BASE}/main.py", f"{BASE}/src")

    assert _names(tree) == ["src"]
    assert [child.id for child in _child(tree, "src").children] == [f"{BASE}/src/main.py"]
    assert storage.objects[f"{BASE}/src/main.py"] == "x = 1"
    assert f"{BASE}/main.py" not in storage.objects


@pytest.mark.asyncio
async def test_move_folder_into_itself_fails(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects[f"{BASE}/a/b/c.txt"] = "c"
    await file_manager.initialize()

    with pytest.raises(ValidationError, match="into itself"):
        await file_manager.move_file(f"{BASE}/a", f"{BASE}/a/b")


@pytest.mark.asyncio
async def test_save_oversized_file_keeps_content(storage: InMemoryStorage, lock_manager: LockManager) -> None:
    storage.objects[f"{BASE}/big.txt"] = "small"
    file_manager = FileManager("sbx", storage, lock_manager, max_file_size=10)
    await file_manager.initialize()

    with pytest.raises(SizeLimitExceeded):
        await file_manager.save_file(f"{BASE}/big.txt", "x" * 11)

    assert await file_manager.get_file_content(f"{BASE}/big.txt") == "small"
    assert storage.objects[f"{BASE}/big.txt"] == "small"


@pytest.mark.asyncio
async def test_save_over_project_ceiling(storage: InMemoryStorage, lock_manager: LockManager) -> None:
    storage.objects.update({f"{BASE}/a.txt": "12345", f"{BASE}/b.txt": "12345"})
    file_manager = FileManager("sbx", storage, lock_manager, max_project_size=12)
    await file_manager.initialize()

    with pytest.raises(SizeLimitExceeded, match="Project size"):
        await file_manager.save_file(f"{BASE}/a.txt", "1234567890")


@pytest.mark.asyncio
async def test_save_unknown_file(file_manager: FileManager) -> None:
    with pytest.raises(NotFound):
        await file_manager.save_file(f"{BASE}/missing.txt", "body")


@pytest.mark.asyncio
async def test_storage_failure_leaves_mirror_untouched(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects[f"{BASE}/a.txt"] = "old"
    await file_manager.initialize()
    storage.fail_puts = True

    with pytest.raises(UpstreamFailure):
        await file_manager.save_file(f"{BASE}/a.txt", "new")
    with pytest.raises(UpstreamFailure):
        await file_manager.create_file("b.txt")

    assert await file_manager.get_file_content(f"{BASE}/a.txt") == "old"
    assert _names(file_manager.tree) == ["a.txt"]


@pytest.mark.asyncio
async def test_save_writes_into_sandbox(storage: InMemoryStorage, file_manager: FileManager, runtime: FakeRuntime) -> None:
    storage.objects[f"{BASE}/a.txt"] = "old"
    await file_manager.initialize()

    await file_manager.save_file(f"{BASE}/a.txt", "new")

    assert runtime.files["/home/user/project/a.txt"] == "new"


@pytest.mark.asyncio
async def test_sandbox_mirror_failure_is_not_fatal(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects[f"{BASE}/a.txt"] = "old"
    await file_manager.initialize()

    async def broken_write(path: str, content: str) -> None:
        raise UpstreamFailure("sandbox gone")

    file_manager.runtime.write_file = broken_write  # type: ignore[union-attr, method-assign]
    await file_manager.save_file(f"{BASE}/a.txt", "new")

    assert storage.objects[f"{BASE}/a.txt"] == "new"


@pytest.mark.asyncio
async def test_delete_folder_removes_everything(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects.update(
        {f"{BASE}/src/a.txt": "a", f"{BASE}/src/lib/b.txt": "b", f"{BASE}/src/empty/.folder": "", f"{BASE}/k.md": ""}
    )
    await file_manager.initialize()

    tree = await file_manager.delete_folder(f"{BASE}/src")

    assert _names(tree) == ["k.md"]
    assert storage.objects == {f"{BASE}/k.md": ""}
    assert set(file_manager.contents) == {f"{BASE}/k.md"}


@pytest.mark.asyncio
async def test_delete_file(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects.update({f"{BASE}/a.txt": "a", f"{BASE}/b.txt": "b"})
    await file_manager.initialize()

    tree = await file_manager.delete_file(f"{BASE}/a.txt")

    assert _names(tree) == ["b.txt"]
    assert f"{BASE}/a.txt" not in storage.objects
    with pytest.raises(NotFound):
        await file_manager.delete_file(f"{BASE}/a.txt")


@pytest.mark.asyncio
async def test_root_cannot_be_deleted(file_manager: FileManager) -> None:
    with pytest.raises(ValidationError):
        await file_manager.delete_folder("/")


@pytest.mark.asyncio
async def test_list_folder_is_recursive(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects.update({f"{BASE}/src/a.txt": "a", f"{BASE}/src/lib/b.txt": "b", f"{BASE}/c.txt": "c"})
    await file_manager.initialize()

    assert sorted(file_manager.list_folder(f"{BASE}/src")) == [f"{BASE}/src/a.txt", f"{BASE}/src/lib/b.txt"]
    assert len(file_manager.list_folder("/")) == 3


@pytest.mark.asyncio
async def test_project_files_are_relative(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects.update({f"{BASE}/src/a.txt": "a", f"{BASE}/package.json": "{}"})
    await file_manager.initialize()

    assert sorted(file_manager.project_files()) == [("package.json", "{}"), ("src/a.txt", "a")]


@pytest.mark.asyncio
async def test_sync_to_sandbox(storage: InMemoryStorage, file_manager: FileManager, runtime: FakeRuntime) -> None:
    storage.objects.update({f"{BASE}/src/a.txt": "a", f"{BASE}/empty/.folder": ""})
    await file_manager.initialize()

    await file_manager.sync_to_sandbox()

    assert runtime.files == {"/home/user/project/src/a.txt": "a"}
    assert runtime.dirs == {"/home/user/project/empty"}


async def _reload(storage: InMemoryStorage) -> list[Any]:
    return await FileManager("sbx", storage, LockManager()).initialize()


@pytest.mark.asyncio
async def test_deleting_last_file_keeps_folder_after_reload(
    storage: InMemoryStorage, file_manager: FileManager
) -> None:
    storage.objects.update({f"{BASE}/src/a.js": "a", f"{BASE}/b.js": "b"})
    await file_manager.initialize()

    tree = await file_manager.delete_file(f"{BASE}/src/a.js")

    assert _names(tree) == ["b.js", "src"]
    assert f"{BASE}/src/.folder" in storage.objects
    reloaded = await _reload(storage)
    assert [node.model_dump() for node in reloaded] == [node.model_dump() for node in tree]


@pytest.mark.asyncio
async def test_moving_last_file_out_keeps_folder_after_reload(
    storage: InMemoryStorage, file_manager: FileManager
) -> None:
    storage.objects[f"{BASE}/src/a.js"] = "a"
    await file_manager.initialize()

    tree = await file_manager.move_file(f"{BASE}/src/a.js", "/")

    assert _names(tree) == ["a.js", "src"]
    assert _names(await _reload(storage)) == ["a.js", "src"]


@pytest.mark.asyncio
async def test_deleting_nested_folder_keeps_parent_after_reload(
    storage: InMemoryStorage, file_manager: FileManager
) -> None:
    storage.objects[f"{BASE}/src/lib/a.js"] = "a"
    await file_manager.initialize()

    await file_manager.delete_folder(f"{BASE}/src/lib")

    reloaded = await _reload(storage)
    assert _names(reloaded) == ["src"]
    assert _child(reloaded, "src").children == []


@pytest.mark.asyncio
async def test_folder_with_other_children_gets_no_marker(
    storage: InMemoryStorage, file_manager: FileManager
) -> None:
    storage.objects.update({f"{BASE}/src/a.js": "a", f"{BASE}/src/b.js": "b"})
    await file_manager.initialize()

    await file_manager.delete_file(f"{BASE}/src/a.js")

    assert storage.objects == {f"{BASE}/src/b.js": "b"}


@pytest.mark.asyncio
async def test_failed_cleanup_after_move_is_retried(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects[f"{BASE}/a.js"] = "a"
    await file_manager.initialize()
    storage.fail_deletes = True

    tree = await file_manager.rename_file(f"{BASE}/a.js", "b.js")

    assert _names(tree) == ["b.js"]
    assert f"{BASE}/a.js" in storage.objects
    # Reloading while the old key is still there does not duplicate the file
    assert _names(await file_manager.initialize()) == ["b.js"]

    storage.fail_deletes = False
    assert _names(await file_manager.initialize()) == ["b.js"]
    assert storage.objects == {f"{BASE}/b.js": "a"}
    assert file_manager.stale_keys == set()


@pytest.mark.asyncio
async def test_recreated_key_is_not_cleaned_up(storage: InMemoryStorage, file_manager: FileManager) -> None:
    storage.objects[f"{BASE}/a.js"] = "a"
    await file_manager.initialize()
    storage.fail_deletes = True
    await file_manager.rename_file(f"{BASE}/a.js", "b.js")

    assert await file_manager.create_file("a.js")
    storage.fail_deletes = False

    assert storage.objects == {f"{BASE}/a.js": "", f"{BASE}/b.js": "a"}
    assert file_manager.stale_keys == set()
    assert _names(await _reload(storage)) == ["a.js", "b.js"]
