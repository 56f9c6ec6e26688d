import pytest

from main import RPNCalculator

SETTINGS_ENV_VARS = ("RPN_CALC_LOG_LEVEL", "RPN_CALC_HISTORY_FILE", "RPN_CALC_VARIABLES_FILE")

@pytest.fixture
def calculator():
    return RPNCalculator()

@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so monkeypatch restores the variable as unset, even after load_dotenv writes it
    for name in SETTINGS_ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch

@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    report = outcome.get_result()
    if report.when == "call":
        print(f"TEST: {item.name} - {'PASSED' if report.passed else 'FAILED'}")
