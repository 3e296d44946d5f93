"""Pytest 配置和 fixtures。"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# 项目根目录
PROJECT_ROOT = Path(__file__).parent.parent

# 添加 src 目录到 Python 路径
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# 测试用子进程脚本目录
FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch: pytest.MonkeyPatch):
    """每个测试使用不含 SIGRELAY_* 环境变量的干净配置。"""
    from sigrelay.config import reload_config

    for name in list(os.environ):
        if name.startswith("SIGRELAY_"):
            monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()


@pytest.fixture
def signal_catcher() -> Path:
    """打印收到的第一个信号名后退出的脚本。"""
    return FIXTURES_DIR / "signal_catcher.py"


@pytest.fixture
def python() -> str:
    """当前解释器路径（用作可移植的子进程程序）。"""
    return sys.executable
