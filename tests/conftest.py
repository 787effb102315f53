import os

import pytest

# In-memory service state for the API tests; set before the app module is imported
os.environ["DB_PATH"] = ""
os.environ["EVENT_LOG_BACKEND"] = "memory"
os.environ["CONTENT_STORE_BACKEND"] = "memory"
os.environ.setdefault("LOG_JSON", "false")

from concrete_passport_api import main  # noqa: E402

main._startup()


# Fresh registry and rate limiter before each test for isolation
@pytest.fixture(autouse=True)
def _reset_state():
    main.reset_state()
    yield
