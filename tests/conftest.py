import os
import sys
import tempfile
from pathlib import Path

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep tests deterministic: no background timer threads, no writes to ./data.
os.environ.setdefault("TASKFLOW_DISABLE_SCHEDULER", "1")
os.environ.setdefault("TASKFLOW_DATA_DIR", tempfile.mkdtemp(prefix="taskflow-test-"))


@pytest.fixture(autouse=True)
def isolated_event_log(tmp_path, monkeypatch):
    import core.event_log as event_log

    log_path = tmp_path / "event_log.jsonl"
    monkeypatch.setattr(event_log, "EVENT_LOG_PATH", log_path)
    return log_path
