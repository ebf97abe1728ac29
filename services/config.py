# services/config.py

from pathlib import Path

import services.util as u
import services.logger as log
import services.config_io as config_io

l = log.get_logger()

# Config keys whose values are credentials.  Matched as substrings against
# lower-cased key names.
_SENSITIVE_KEY_PATTERNS = ("token", "secret", "password", "api_key")

_DEFAULT_INSTANCE = "default"


def _collect_sensitive(obj, found: set[str]) -> None:
    """Recursively extract sensitive string values from the config dict."""
    if isinstance(obj, dict):
        for k, v in obj.items():
            if isinstance(v, str) and v and any(p in k.lower() for p in _SENSITIVE_KEY_PATTERNS):
                found.add(v)
            else:
                _collect_sensitive(v, found)
    elif isinstance(obj, list):
        for item in obj:
            _collect_sensitive(item, found)


def sensitive_values(raw: dict) -> frozenset[str]:
    found: set[str] = set()
    _collect_sensitive(raw, found)
    return frozenset(found)


def config_from_env() -> dict:
    """Build a raw config dict from the process environment.

    Used when the data directory holds no config file, so the bot can run
    from the same variables the hosting platform already sets.
    """
    raw: dict = {
        "vision": {
            "api_url": u.get_env("VISION_API_URL", ""),
            "api_key": u.get_env("VISION_API_KEY", ""),
        },
    }
    bot: dict = {
        "app_id":       u.get_env("MICROSOFT_APP_ID", ""),
        "app_password": u.get_env("MICROSOFT_APP_PASSWORD", ""),
    }
    port = u.get_env("port") or u.get_env("PORT")
    if port:
        bot["listen_port"] = port
    raw["botframework"] = {_DEFAULT_INSTANCE: bot}
    return raw


def load_raw_config(data_path: str | None = None) -> dict:
    """Load the raw config from the data directory, falling back to env vars."""
    directory = Path(data_path or u.get_data_path())
    config_path = config_io.find_config(directory)
    if config_path is None:
        l.info(f"No config file in {directory} (tried config.json / .yaml / .toml), using environment")
        return config_from_env()

    l.info(f"Loading config from: {config_path}")
    return config_io.load_config(config_path)
