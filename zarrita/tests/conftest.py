from pathlib import Path

import pytest

from zarrita.storage import LocalStore, MemoryStore


@pytest.fixture(params=[str, Path])
def path_type(request):
    return request.param


@pytest.fixture(params=["memory", "local"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return LocalStore(tmp_path / "data.zr3")
