import os
import sys
import tempfile
from pathlib import Path

import pytest

# Ensure project root is on sys.path for imports like 'ledger.db' and 'tests.helpers'
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Keep the module-level app in ledger.main away from the real data/log dirs
_SCRATCH = Path(tempfile.mkdtemp(prefix="ledger-tests-"))
os.environ.setdefault("LEDGER_DATA_DIR", str(_SCRATCH / "data"))
os.environ.setdefault("LEDGER_LOG_DIR", str(_SCRATCH / "logs"))
os.environ.setdefault("RECURRING_SCHEDULER_ENABLED", "0")

from tests.helpers.fakes import FakeHolidays  # noqa: E402


@pytest.fixture()
def db_path(tmp_path):
    from ledger.db import initialise_database

    path = tmp_path / "ledger_test.sqlite3"
    initialise_database(path)
    return path


@pytest.fixture()
def app_client(db_path, tmp_path):
    from fastapi.testclient import TestClient

    from ledger.core.config import Settings
    from ledger.main import create_app

    settings = Settings(
        data_dir=tmp_path,
        db_path=db_path,
        log_dir=tmp_path / "logs",
        scheduler_enabled=False,
    )
    holidays = FakeHolidays()
    app = create_app(settings, holiday_oracle=holidays, start_scheduler=False, setup_logging=False)
    with TestClient(app) as client:
        client.holidays = holidays
        yield client
