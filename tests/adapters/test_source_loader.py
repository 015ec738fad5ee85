import os
import subprocess
import sys
from pathlib import Path

import pytest

from agent_security.adapters import RetrievalError, SourceLoader
from agent_security.adapters.source_loader import NPM_INSTALL_ARGS
from agent_security.discovery import PathNotFound


class RecordingLoader(SourceLoader):
    def __init__(self, tmp_path: Path, *, package_json: bool = True, clone_error: bool = False):
        super().__init__(temp_root=tmp_path)
        self.package_json = package_json
        self.clone_error = clone_error
        self.cloned: list[tuple[str, Path]] = []
        self.commands: list[tuple[list[str], Path | None]] = []

    def _clone_repository(self, url, destination):
        self.cloned.append((url, destination))
        if self.clone_error:
            raise RetrievalError(f"Failed to clone {url}")
        destination.mkdir(parents=True)
        (destination / "index.js").write_text("module.exports = 1;\n", encoding="utf-8")
        if self.package_json:
            (destination / "package.json").write_text("{}", encoding="utf-8")

    def _run_command(self, args, *, cwd=None, env=None):
        self.commands.append((list(args), cwd))


@pytest.mark.parametrize(
    ("source", "expected"),
    [
        ("owner/repo", True),
        ("https://github.com/owner/repo", True),
        ("git@github.com:owner/repo.git", True),
        ("ssh://git@example.com/owner/repo.git", True),
        ("./plugins", False),
        ("/opt/plugins", False),
    ],
)
def test_is_remote(source, expected):
    assert SourceLoader().is_remote(source) is expected


def test_existing_directory_named_like_slug_is_local(tmp_path, monkeypatch):
    (tmp_path / "owner" / "repo").mkdir(parents=True)
    monkeypatch.chdir(tmp_path)

    assert SourceLoader().is_remote("owner/repo") is False


def test_clone_url_expands_github_shorthand():
    loader = SourceLoader(github_host="https://github.example.com/")

    assert loader.clone_url("owner/repo") == "https://github.example.com/owner/repo.git"
    assert loader.clone_url("owner/repo.git") == "https://github.example.com/owner/repo.git"
    assert loader.clone_url("https://gitlab.com/a/b.git") == "https://gitlab.com/a/b.git"


def test_local_source_is_used_in_place(tmp_path):
    (tmp_path / "plugin.js").write_text("x", encoding="utf-8")

    with SourceLoader().resolve(str(tmp_path)) as path:
        assert path == tmp_path.resolve()

    assert (tmp_path / "plugin.js").exists()


def test_missing_local_source_raises(tmp_path):
    with pytest.raises(PathNotFound):
        with SourceLoader().resolve(str(tmp_path / "missing")):
            pass


def test_remote_source_is_cloned_installed_and_removed(tmp_path):
    loader = RecordingLoader(tmp_path)

    with loader.resolve("owner/repo") as checkout:
        assert (checkout / "index.js").is_file()
        workdir = checkout.parent
        assert workdir.parent == tmp_path
        assert workdir.name.startswith("agent-security-vet-")

    assert loader.cloned[0][0] == "https://github.com/owner/repo.git"
    assert loader.commands == [(["npm", *NPM_INSTALL_ARGS], checkout)]
    assert "--ignore-scripts" in NPM_INSTALL_ARGS
    assert not workdir.exists()


def test_skip_deps_and_missing_package_json_skip_install(tmp_path):
    loader = RecordingLoader(tmp_path)
    with loader.resolve("owner/repo", skip_deps=True):
        pass

    no_manifest = RecordingLoader(tmp_path, package_json=False)
    with no_manifest.resolve("owner/repo"):
        pass

    assert loader.commands == []
    assert no_manifest.commands == []
    assert list(tmp_path.iterdir()) == []


def test_workspace_removed_when_clone_fails(tmp_path):
    loader = RecordingLoader(tmp_path, clone_error=True)

    with pytest.raises(RetrievalError):
        with loader.resolve("owner/repo"):
            pass

    assert list(tmp_path.iterdir()) == []


def test_workspace_removed_when_block_raises(tmp_path):
    loader = RecordingLoader(tmp_path)

    with pytest.raises(ValueError):
        with loader.resolve("owner/repo"):
            raise ValueError("scan failed")

    assert list(tmp_path.iterdir()) == []


def test_failed_install_does_not_abort(tmp_path):
    class FailingInstall(RecordingLoader):
        def _run_command(self, args, *, cwd=None, env=None):
            raise RetrievalError("npm exploded")

    loader = FailingInstall(tmp_path)
    with loader.resolve("owner/repo") as checkout:
        assert checkout.is_dir()


def test_run_command_reports_missing_executable(tmp_path):
    loader = SourceLoader(npm_bin="definitely-not-a-real-npm-binary")
    (tmp_path / "package.json").write_text("{}", encoding="utf-8")

    with pytest.raises(RetrievalError, match="Executable not found"):
        loader._run_command([loader.npm_bin, "install"], cwd=tmp_path)


def test_import_leaves_environment_untouched():
    env = {key: value for key, value in os.environ.items() if key != "GIT_PYTHON_REFRESH"}
    env["PYTHONPATH"] = str(Path(__file__).resolve().parents[2] / "src")
    script = (
        "import os\n"
        "import agent_security.adapters.source_loader\n"
        "print('GIT_PYTHON_REFRESH' in os.environ)\n"
    )

    completed = subprocess.run(
        [sys.executable, "-c", script], capture_output=True, text=True, env=env, check=True
    )

    assert completed.stdout.strip() == "False"
