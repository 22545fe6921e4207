import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--run-statistical",
        action="store_true",
        default=False,
        help="Run tests marked as statistical (slow, many sampler trials).",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "statistical: distribution checks that run many randomized trials"
    )


def pytest_collection_modifyitems(config, items):
    run_statistical = config.getoption("--run-statistical")
    if run_statistical:
        return

    skip_statistical = pytest.mark.skip(
        reason="statistical test (use --run-statistical to run)"
    )
    for item in items:
        if "statistical" in item.keywords:
            item.add_marker(skip_statistical)
