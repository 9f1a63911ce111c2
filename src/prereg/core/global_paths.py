"""Platform directory paths for prereg.

Data, config, state, cache and log directories follow the platform
conventions (XDG on Linux) through platformdirs.
"""

import os
from pathlib import Path

from platformdirs import user_cache_dir, user_config_dir, user_data_dir, user_state_dir

APP_NAME = "prereg"


class GlobalPath:
    """Application directory lookup."""

    @classmethod
    def home(cls) -> str:
        """User home directory, overridable for tests."""
        return os.environ.get("PREREG_TEST_HOME", str(Path.home()))

    @classmethod
    def data(cls) -> str:
        return user_data_dir(APP_NAME)

    @classmethod
    def log(cls) -> str:
        return str(Path(cls.data()) / "log")

    @classmethod
    def cache(cls) -> str:
        return user_cache_dir(APP_NAME)

    @classmethod
    def config(cls) -> str:
        return user_config_dir(APP_NAME)

    @classmethod
    def state(cls) -> str:
        return user_state_dir(APP_NAME)

    @classmethod
    def ensure(cls) -> None:
        """Create the data, config, state and log directories."""
        for path in (cls.data(), cls.config(), cls.state(), cls.log()):
            Path(path).mkdir(parents=True, exist_ok=True)
