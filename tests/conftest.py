import os
import sys

import pytest

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.append(project_root)

from scanner.config import ScanParams


@pytest.fixture
def params(tmp_path):
    """Parameters rooted in a temp dir, no backoff sleeps, one probe path."""
    return ScanParams(
        cache_dir=tmp_path / "cache",
        data_dir=tmp_path / "data",
        targets_dir=tmp_path / "targets",
        compensation_dir=tmp_path / "compensation",
        retry_delay=0.0,
        concurrent_domains=2,
        concurrent_measurements=4,
        probe_paths=("", "iems/"),
    )
