"""Tests for the directory-scanning recipe source."""

from pathlib import Path

from hotswap.recipe import DirectoryRecipeSource, FileCategory, RecipeAggregator, RecipeEntry
from tests.conftest import FakeWatchService


def make_tree(root: Path) -> Path:
    src = root / "src"
    (src / "pkg").mkdir(parents=True)
    (src / "__pycache__").mkdir()
    (src / "app.py").write_text("def main(): pass\n")
    (src / "pkg" / "helpers.py").write_text("X = 1\n")
    (src / "__pycache__" / "app.cpython-312.pyc").write_bytes(b"\x00")
    (src / "settings.json").write_text("{}")
    (src / "notes.txt").write_text("ignored")
    return src


class TestDirectoryRecipeSource:
    """Tests for DirectoryRecipeSource."""

    def test_first_refresh_emits_recipe(self, tmp_path: Path, fake_watch: FakeWatchService):
        """The first refresh announces directories, files, and references."""
        src = make_tree(tmp_path)
        source = DirectoryRecipeSource(
            [RecipeEntry(directory=src, resource_filter=".json")],
            external_references=["json"],
        )
        aggregator = RecipeAggregator(source, fake_watch)

        source.refresh()

        assert set(aggregator.list_all_source_files()) == {src / "app.py", src / "pkg" / "helpers.py"}
        assert aggregator.list_all_resource_files() == [src / "settings.json"]
        assert aggregator.list_external_references() == ["json"]
        assert set(aggregator.list_directories()) == {src, src / "pkg"}
        aggregator.close()

    def test_refresh_emits_differences(self, tmp_path: Path, fake_watch: FakeWatchService):
        """Later refreshes only emit what changed."""
        src = make_tree(tmp_path)
        source = DirectoryRecipeSource([RecipeEntry(directory=src)])
        aggregator = RecipeAggregator(source, fake_watch)
        source.refresh()

        added: list[Path] = []
        source.source_file_added.connect(added.append)

        (src / "new.py").write_text("Y = 2\n")
        (src / "pkg" / "helpers.py").unlink()
        source.refresh()

        assert added == [src / "new.py"]
        assert set(aggregator.list_all_source_files()) == {src / "app.py", src / "new.py"}
        assert src / "pkg" not in aggregator.list_directories()
        aggregator.close()

    def test_exclusions(self, tmp_path: Path, fake_watch: FakeWatchService):
        """Excluded paths are left out of the recipe."""
        src = make_tree(tmp_path)
        source = DirectoryRecipeSource([RecipeEntry(directory=src, exclude=[src / "pkg" / "helpers.py"])])
        aggregator = RecipeAggregator(source, fake_watch)

        source.refresh()

        assert aggregator.list_all_source_files() == [src / "app.py"]
        aggregator.close()

    def test_missing_directory_is_skipped(self, tmp_path: Path, fake_watch: FakeWatchService):
        """A configured directory that does not exist contributes nothing."""
        source = DirectoryRecipeSource([RecipeEntry(directory=tmp_path / "missing")])
        aggregator = RecipeAggregator(source, fake_watch)

        source.refresh()

        assert aggregator.list_directories() == []
        aggregator.close()

    def test_entry_classifiers(self, tmp_path: Path):
        """Only categories with a filter get a classifier."""
        entry = RecipeEntry(directory=tmp_path, resource_filter=".json")
        classifiers = entry.classifiers()

        assert set(classifiers) == {FileCategory.SOURCE, FileCategory.RESOURCE}
        assert classifiers[FileCategory.SOURCE].includes(tmp_path / "a.py")

    def test_configured_directory_stays_watched_when_emptied(
        self, tmp_path: Path, fake_watch: FakeWatchService
    ):
        """Deleting the last file keeps the directory watched for new files."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "app.py").write_text("def main(): pass\n")
        source = DirectoryRecipeSource([RecipeEntry(directory=src)])
        aggregator = RecipeAggregator(source, fake_watch)
        source.refresh()

        (src / "app.py").unlink()
        source.refresh()

        assert aggregator.list_all_source_files() == []
        assert aggregator.list_directories() == [src]
        assert fake_watch.watched == {src}

        requests: list[bool] = []
        aggregator.rebuild_requested.connect(lambda: requests.append(True))
        (src / "new.py").write_text("def main(): pass\n")
        fake_watch.fire(src, src / "new.py", "created")

        assert requests == [True]
        aggregator.close()

    def test_editor_files_are_not_sources(self, tmp_path: Path, fake_watch: FakeWatchService):
        """Swap, backup, lock and stub files never become source modules."""
        src = tmp_path / "src"
        src.mkdir()
        for name in ["app.py", ".app.py.swp", "app.py~", ".#app.py", "app.pyi", "gui.pyw"]:
            (src / name).write_text("def main(): pass\n")
        source = DirectoryRecipeSource([RecipeEntry(directory=src)])
        aggregator = RecipeAggregator(source, fake_watch)

        source.refresh()

        assert aggregator.list_all_source_files() == [src / "app.py"]
        aggregator.close()

    def test_editor_swap_files_are_not_resources(self, tmp_path: Path, fake_watch: FakeWatchService):
        """Resource filters skip editor swap files too."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "settings.json").write_text("{}")
        (src / ".settings.json.swp").write_text("")
        source = DirectoryRecipeSource([RecipeEntry(directory=src, resource_filter=".json")])
        aggregator = RecipeAggregator(source, fake_watch)

        source.refresh()

        assert aggregator.list_all_resource_files() == [src / "settings.json"]
        aggregator.close()
