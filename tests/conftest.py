import asyncio
import inspect
import json
import sys
import zipfile
from pathlib import Path

import pytest

from modman.config.settings import ManagerSettings, loadSettings
from modman.install.probes import RuntimeState, RuntimeStatus
from modman.repository.repository import ModRepository



def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addini(
        "asyncio_mode",
        "Execution mode for @pytest.mark.asyncio tests (only 'strict' is supported without pytest-asyncio).",
        default="strict",
    )
    parser.addini(
        "asyncio_default_fixture_loop_scope",
        "Scope for the event loop fixture (only 'function' is supported without pytest-asyncio).",
        default="function",
    )



def pytest_configure(config: pytest.Config) -> None:
    if sys.flags.optimize:
        raise RuntimeError("Assertions are disabled (optimize > 0)")

    mode = config.getini("asyncio_mode")
    if mode != "strict":
        raise pytest.UsageError(
            "tests/conftest.py only supports asyncio_mode='strict' without pytest-asyncio installed"
        )

    loop_scope = config.getini("asyncio_default_fixture_loop_scope")
    if loop_scope != "function":
        raise pytest.UsageError(
            "tests/conftest.py only supports asyncio_default_fixture_loop_scope='function'"
        )

    config.addinivalue_line("markers", "asyncio: mark a test to run inside an event loop")



@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function):
    # Runs `async def` tests marked asyncio in a fresh event loop
    if not inspect.iscoroutinefunction(pyfuncitem.obj) or pyfuncitem.get_closest_marker("asyncio") is None:
        return None
    kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
    asyncio.run(pyfuncitem.obj(**kwargs))
    return True



# ---- Fakes ---- #

class FakeProcessProbe:
    def __init__(self, running: bool = False) -> None:
        self.running = running
        self.calls = 0

    def isHostProcessRunning(self) -> bool:
        self.calls += 1
        return self.running



class FakeRuntimeStatus:
    def __init__(self, state: RuntimeState = RuntimeState.INSTALLED, version: str | None = "5.4.21") -> None:
        self.state = state
        self.version = version

    def status(self) -> RuntimeStatus:
        problems = () if self.state is RuntimeState.INSTALLED else ("missing 'BepInEx/core/BepInEx.dll'",)
        return RuntimeStatus(self.state, self.version, problems)



# ---- Fixtures ---- #

@pytest.fixture
def gameRoot(tmp_path: Path) -> Path:
    root = tmp_path / "game"
    (root / "BepInEx" / "plugins").mkdir(parents=True)
    return root


@pytest.fixture
def settings(gameRoot: Path) -> ManagerSettings:
    return loadSettings(overrides={
        "paths": {"gameRoot": str(gameRoot)},
        "install": {"ioRetries": 1, "ioRetryDelayMs": 0},
    })


@pytest.fixture
def processProbe() -> FakeProcessProbe:
    return FakeProcessProbe()


@pytest.fixture
def runtimeStatus() -> FakeRuntimeStatus:
    return FakeRuntimeStatus()


@pytest.fixture
def repository(settings, processProbe, runtimeStatus) -> ModRepository:
    return ModRepository(settings, processProbe=processProbe, runtimeStatus=runtimeStatus)


@pytest.fixture
def makePackage(tmp_path: Path):
    """
    Writes a zip package and returns its path.

        makePackage({"id": "author.mod", ...}, files={"Mod.dll": b"..."}, wrapDir="Mod-1.0.0")

    `manifest=None` leaves the manifest out; a str is written verbatim.
    """
    counter = {"n": 0}

    def _make(
        manifest: dict | str | None,
        files: dict[str, bytes] | None = None,
        *,
        wrapDir: str | None = None,
        manifestName: str = "manifest.json",
        rawEntries: dict[str, bytes] | None = None,
    ) -> Path:
        counter["n"] += 1
        archivePath = tmp_path / "packages" / f"package-{counter['n']}.zip"
        archivePath.parent.mkdir(parents=True, exist_ok=True)
        prefix = f"{wrapDir}/" if wrapDir else ""
        files = {"Plugin.dll": b"plugin-bytes"} if files is None else files

        with zipfile.ZipFile(archivePath, "w") as zf:
            if manifest is not None:
                text = manifest if isinstance(manifest, str) else json.dumps(manifest)
                zf.writestr(prefix + manifestName, text)
            for rel, data in files.items():
                zf.writestr(prefix + rel, data)
            for rel, data in (rawEntries or {}).items():
                zf.writestr(rel, data)
        return archivePath

    return _make


def manifestFor(modId: str, version: str = "1.0.0", **extra) -> dict:
    data = {"id": modId, "name": modId.title(), "version": version, "author": "tester"}
    data.update(extra)
    return data


@pytest.fixture
def manifestOf():
    return manifestFor


def treeSnapshot(root: Path) -> dict[str, bytes | None]:
    """Relative path -> file bytes (None for dirs)."""
    if not root.exists():
        return {}
    return {
        path.relative_to(root).as_posix(): (path.read_bytes() if path.is_file() else None)
        for path in sorted(root.rglob("*"))
    }


@pytest.fixture
def snapshot():
    return treeSnapshot
