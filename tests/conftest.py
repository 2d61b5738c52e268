from __future__ import annotations

import json
from pathlib import Path

import pytest

from counters_site import app


SAMPLE_HEROES = [
    {"name": "A", "type": "t", "win_rate": "80%", "image": "a.png", "countered_heroes": ["B"]},
    {"name": "B", "type": "t2", "win_rate": "N/A", "image": "b.png", "countered_heroes": []},
]


def write_heroes(root: Path, payload) -> Path:
    path = root / "hero_data.json"
    if isinstance(payload, str):
        path.write_text(payload, encoding="utf-8")
    else:
        path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setitem(app.config, "HERO_DATA_CACHE", False)
    return tmp_path


@pytest.fixture
def hero_file(workdir: Path) -> Path:
    return write_heroes(workdir, SAMPLE_HEROES)


@pytest.fixture
def client(workdir: Path):
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
