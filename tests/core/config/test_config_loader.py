"""
ConfigLoader: bundled defaults, user file overrides, environment.
"""

import pytest

from core.config import ConfigError, ConfigLoader, build_reconnect_config

DEFAULTS = """
retry:
  max_rate_limit_retries: 3
  max_5xx_retries: 1
timeout:
  http_timeout: 30s
reconnect:
  initial_delay: 2s
  max_delay: 30s
follow: {}
"""


@pytest.fixture
def defaults_file(tmp_path):
    path = tmp_path / "defaults.yaml"
    path.write_text(DEFAULTS)
    return path


def _loader(tmp_path, defaults_file, user_yaml=None, environ=None):
    user = tmp_path / "config.yaml"
    if user_yaml is not None:
        user.write_text(user_yaml)
    return ConfigLoader(user, defaults_path=defaults_file, environ=environ or {})


class TestConfigLoader:

    @pytest.mark.asyncio
    async def test_defaults_without_user_file(self, tmp_path, defaults_file):
        retry, timeout = await _loader(tmp_path, defaults_file).get_resilience_configs()
        assert retry.max_rate_limit_retries == 3
        assert timeout.http_timeout == 30

    @pytest.mark.asyncio
    async def test_user_file_merges_over_defaults(self, tmp_path, defaults_file):
        loader = _loader(tmp_path, defaults_file, "retry:\n  max_5xx_retries: 4\nreconnect:\n  max_delay: 1m\n")
        retry, _ = await loader.get_resilience_configs()
        reconnect = await loader.get_reconnect_config()

        assert retry.max_5xx_retries == 4
        assert retry.max_rate_limit_retries == 3
        assert reconnect.max_delay == 60
        assert reconnect.initial_delay == 2

    @pytest.mark.asyncio
    async def test_environment_wins(self, tmp_path, defaults_file):
        loader = _loader(tmp_path, defaults_file, "retry:\n  max_5xx_retries: 4\n",
                         environ={"CHATWOOT_MAX_5XX_RETRIES": "0"})
        retry, _ = await loader.get_resilience_configs()
        assert retry.max_5xx_retries == 0

    @pytest.mark.asyncio
    async def test_follow_defaults_normalized(self, tmp_path, defaults_file):
        loader = _loader(tmp_path, defaults_file, "follow:\n  max-batch: 5\n  debounce: 2s\n")
        assert await loader.get_follow_defaults() == {"max_batch": 5, "debounce": "2s"}

    @pytest.mark.asyncio
    async def test_invalid_yaml(self, tmp_path, defaults_file):
        with pytest.raises(ConfigError):
            await _loader(tmp_path, defaults_file, "retry: [unclosed\n").load()

    @pytest.mark.asyncio
    async def test_non_mapping_follow_section(self, tmp_path, defaults_file):
        with pytest.raises(ConfigError):
            await _loader(tmp_path, defaults_file, "follow: 3\n").get_follow_defaults()

    @pytest.mark.asyncio
    async def test_bad_reconnect_value(self, tmp_path, defaults_file):
        with pytest.raises(ConfigError):
            await _loader(tmp_path, defaults_file, "reconnect:\n  max_delay: soon\n").get_reconnect_config()

    def test_build_reconnect_ignores_unknown_keys(self):
        config = build_reconnect_config({"initial_delay": "500ms", "jitter": True})
        assert config.initial_delay == 0.5
        assert not hasattr(config, "jitter")
