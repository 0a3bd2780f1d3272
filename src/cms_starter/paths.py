"""Unified path constants for cms-starter.

User-level state lives under ~/.config/cms-starter:
- ~/.config/cms-starter/config.json        # optional settings file
- ~/.config/cms-starter/credentials.json   # stored API tokens (0600)

Per-invocation state lives under the current working directory:
- .cms-starter/logs/                       # JSON provisioning run logs
"""

from pathlib import Path

# 用户级配置目录
CONFIG_DIR = Path.home() / ".config" / "cms-starter"
CONFIG_FILE = CONFIG_DIR / "config.json"
CREDENTIALS_FILE = CONFIG_DIR / "credentials.json"

# 运行日志（相对当前目录）
BASE_DIR = Path(".cms-starter")
LOGS_DIR = BASE_DIR / "logs"

# Token files written by the official Railway and GitHub CLIs
RAILWAY_CLI_CONFIG = Path.home() / ".railway" / "config.json"
GH_CLI_HOSTS = Path.home() / ".config" / "gh" / "hosts.yml"


def get_config_dir() -> Path:
    """获取配置目录路径（按需创建）."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    return CONFIG_DIR
