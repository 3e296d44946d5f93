"""sigrelay 环境变量配置管理。

环境变量:
    SIGRELAY_ENV: 子进程环境变量
        - 空/未设置 = 继承父进程环境
        - 逗号分割的 KEY=VALUE 列表
        - 例: "JANE=DOE,PATH=/usr/bin"

    SIGRELAY_ENV_MODE: 子进程环境的组合方式
        - replace = SIGRELAY_ENV 完全决定子进程环境 (默认)
        - extend = 在父进程环境基础上追加/覆盖

    SIGRELAY_SIGNAL_BUFFER: 信号缓冲区大小
        - 默认 16，限制在 2-1024 范围

    SIGRELAY_DEBUG: 调试模式
        - true/1/yes = 开启 (DEBUG 日志输出到 stderr)
        - false/0/no = 关闭 (默认)

    SIGRELAY_LOG_DEBUG: 日志调试模式
        - true/1/yes = 开启 (日志输出到临时文件)
        - false/0/no = 关闭 (默认，日志输出到 stderr)
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

__all__ = [
    "Config",
    "EnvMode",
    "get_config",
    "load_config",
    "parse_env_pairs",
    "reload_config",
]

DEFAULT_SIGNAL_BUFFER = 16
MIN_SIGNAL_BUFFER = 2
MAX_SIGNAL_BUFFER = 1024


class EnvMode(Enum):
    """子进程环境的组合方式。

    - REPLACE: 提供的变量完全决定子进程环境
    - EXTEND: 父进程环境 + 提供的变量（同名覆盖）
    """

    REPLACE = "replace"
    EXTEND = "extend"

    @classmethod
    def from_string(cls, value: str) -> "EnvMode":
        """从字符串解析模式。

        Args:
            value: 模式字符串 (replace/extend)

        Returns:
            对应的 EnvMode 枚举值，无效值返回 REPLACE
        """
        value = value.lower().strip()
        for mode in cls:
            if mode.value == value:
                return mode
        return cls.REPLACE  # 默认值


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """解析布尔值环境变量。"""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def parse_env_pairs(pairs: Iterable[str] | Mapping[str, str]) -> dict[str, str]:
    """解析 KEY=VALUE 列表。

    没有 "=" 或 KEY 为空的条目会被忽略；值中可以包含 "="。

    Args:
        pairs: KEY=VALUE 字符串序列，或已经是映射

    Returns:
        环境变量字典
    """
    if isinstance(pairs, Mapping):
        return {str(k): str(v) for k, v in pairs.items()}

    env: dict[str, str] = {}
    for item in pairs:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        env[key] = value
    return env


def _parse_env(value: str | None) -> dict[str, str] | None:
    """解析 SIGRELAY_ENV 环境变量。

    Returns:
        环境变量字典，未设置时返回 None（继承父进程环境）
    """
    if value is None or not value.strip():
        return None
    return parse_env_pairs(value.split(","))


def _parse_env_mode(value: str | None) -> EnvMode:
    """解析环境组合模式环境变量。"""
    if not value:
        return EnvMode.REPLACE
    return EnvMode.from_string(value)


def _parse_signal_buffer(value: str | None) -> int:
    """解析信号缓冲区大小环境变量。"""
    if not value:
        return DEFAULT_SIGNAL_BUFFER
    try:
        size = int(value)
        return max(MIN_SIGNAL_BUFFER, min(size, MAX_SIGNAL_BUFFER))
    except ValueError:
        return DEFAULT_SIGNAL_BUFFER


def _generate_log_file_path() -> str:
    """生成日志文件路径。

    Returns:
        临时目录下的日志文件绝对路径
    """
    log_dir = Path(tempfile.gettempdir()) / "sigrelay"
    log_dir.mkdir(parents=True, exist_ok=True)

    # 文件名带 pid，同一秒启动的多个 supervisor 不会互相覆盖
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"sigrelay_{timestamp}_{os.getpid()}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """sigrelay 配置。

    Attributes:
        child_env: 子进程环境变量，None 表示继承父进程环境
        env_mode: 子进程环境组合方式
        signal_buffer: 信号缓冲区大小
        debug: 调试模式（DEBUG 日志输出到 stderr）
        log_debug: 日志调试模式（输出到临时文件）
        log_file: 日志文件路径（当 log_debug=True 时自动设置）
    """

    child_env: dict[str, str] | None = None
    env_mode: EnvMode = EnvMode.REPLACE
    signal_buffer: int = DEFAULT_SIGNAL_BUFFER
    debug: bool = False
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        env_str = ",".join(sorted(self.child_env)) if self.child_env is not None else "inherit"
        return (
            f"Config(child_env={env_str}, "
            f"env_mode={self.env_mode.value}, "
            f"signal_buffer={self.signal_buffer}, "
            f"debug={self.debug}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """从环境变量加载配置。"""
    log_debug = _parse_bool(os.environ.get("SIGRELAY_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        child_env=_parse_env(os.environ.get("SIGRELAY_ENV")),
        env_mode=_parse_env_mode(os.environ.get("SIGRELAY_ENV_MODE")),
        signal_buffer=_parse_signal_buffer(os.environ.get("SIGRELAY_SIGNAL_BUFFER")),
        debug=_parse_bool(os.environ.get("SIGRELAY_DEBUG"), default=False),
        log_debug=log_debug,
        log_file=log_file,
    )


# 全局配置实例（延迟加载）
_config: Config | None = None


def get_config() -> Config:
    """获取全局配置实例。"""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """重新加载配置（用于测试）。"""
    global _config
    _config = load_config()
    return _config
