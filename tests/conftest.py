from __future__ import annotations

import numpy as np
import pytest

from synthetic import make_context


@pytest.fixture
def flat_context():
    return make_context(np.full((5, 5), 100.0))
