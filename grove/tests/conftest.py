from pathlib import Path

import pytest

from grove.config import config


@pytest.fixture(params=[str, Path])
def path_type(request):
    return request.param


@pytest.fixture
def strict_alignment():
    with config.set({'npy.strict_alignment': True}):
        yield
