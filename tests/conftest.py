"""Root test configuration for CORS Proxify.

Clears every environment variable that load_config() reads so a developer's
shell (an exported HTTP_PROXY, PORT, ...) cannot leak into the suite, and runs
each test from an empty working directory so no ``.corsproxify/config.yaml``
is picked up.

Tests that exercise environment overrides set them with their own
``monkeypatch.setenv`` calls (these run after this fixture and win).
"""

import pytest

_CONFIG_ENV_VARS = (
    "CORSPROXIFY_CONFIG",
    "CORSPROXIFY_HOST",
    "CORSPROXIFY_PORT",
    "HOST",
    "PORT",
    "CORSPROXIFY_BLACKLIST",
    "CORSPROXIFY_WHITELIST",
    "CORSPROXIFY_RATELIMIT",
    "CORSPROXIFY_TLS_VERIFY",
    "NO_PROXY",
    "no_proxy",
    "HTTP_PROXY",
    "http_proxy",
    "HTTPS_PROXY",
    "https_proxy",
    "ALL_PROXY",
    "all_proxy",
)


@pytest.fixture(autouse=True)
def isolate_config_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Strip config-related env vars and chdir into an empty temp directory."""
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
