"""
Pytest configuration and shared fixtures.
"""

import os
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from siteflow.orchestration import atomic


# ============== Event Recording ==============

class Recorder:
    """Thread-safe log of ("start" | "end", task name) events."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str]] = []
        self._lock = threading.Lock()
        self._active = 0
        self.max_active = 0

    def record(self, kind: str, name: str) -> None:
        with self._lock:
            self.events.append((kind, name))
            if kind == "start":
                self._active += 1
                self.max_active = max(self.max_active, self._active)
            else:
                self._active -= 1

    def step(
        self,
        name: str,
        delay: float = 0.0,
        error: Optional[BaseException] = None,
        timeout: Optional[float] = None,
    ):
        """Atomic task that records its start and end."""
        def fn():
            self.record("start", name)
            time.sleep(delay)
            self.record("end", name)
            if error is not None:
                raise error

        fn.__name__ = name
        return atomic(fn, name=name, timeout=timeout)

    def started(self) -> List[str]:
        return [name for kind, name in self.events if kind == "start"]

    def position(self, kind: str, name: str) -> int:
        return self.events.index((kind, name))


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


# ============== Environment ==============

@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SITEFLOW_ variables from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith("SITEFLOW_"):
            monkeypatch.delenv(key, raising=False)


# ============== Site Fixtures ==============

@pytest.fixture
def site(tmp_path: Path) -> Path:
    """A small static site project."""
    root = tmp_path / "site"
    files = {
        "src/index.html": "<html><body>{{ menus }}</body></html>",
        "src/about.html": "<html><body>about</body></html>",
        "src/assets/styles/main.scss": "body { color: red; }",
        "src/assets/styles/_vars.scss": "$red: red;",
        "src/assets/scripts/main.js": "console.log('hi')",
        "src/assets/images/logo.png": "PNG",
        "src/assets/images/icons/star.svg": "<svg/>",
        "src/assets/fonts/site.woff": "WOFF",
        "public/favicon.ico": "ICO",
    }
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def settings(site: Path):
    """Default settings rooted at the site fixture."""
    from siteflow.pipeline import load_settings
    return load_settings(root=site)
