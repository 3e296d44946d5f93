"""sigrelay 应用入口。

包含监督流程编排和主入口点：
    build_invocation -> launch -> (后台信号转发) -> wait

用法:
    sigrelay /path/to/program [args...]
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import Sequence
from typing import NoReturn

from .config import Config, EnvMode, get_config
from .errors import InvalidArgumentsError, LaunchError, RelayError, WaitError
from .invocation import build_invocation
from .runtime.process import ChildProcess, EnvBinding, StreamBinding
from .runtime.relay import SignalRelay, check_context

__all__ = ["supervise", "main"]

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# 初始化/启动/等待失败时的退出码
FAILURE_EXIT_CODE = 1


async def supervise(
    tokens: Sequence[str],
    *,
    stdin: StreamBinding = None,
    stdout: StreamBinding = None,
    stderr: StreamBinding = None,
    env: EnvBinding = None,
    env_mode: EnvMode | None = None,
    buffer_size: int | None = None,
) -> int:
    """启动子进程并转发信号，直到子进程退出。

    使用并发任务架构：
    - relay_task: 后台转发信号给子进程
    - 当前任务: 阻塞等待子进程退出，随后通过 cancel 事件停止 relay_task

    Args:
        tokens: 要执行的程序及其参数（不含宿主程序自身的名字）
        stdin: 子进程 stdin（None = 继承）
        stdout: 子进程 stdout（None = 继承）
        stderr: 子进程 stderr（None = 继承）
        env: 子进程环境变量（None = 继承父进程环境）
        env_mode: 环境组合方式（默认 REPLACE）
        buffer_size: 信号缓冲区大小（默认从配置读取）

    Returns:
        子进程的退出码（被信号 N 杀死时为 128 + N）

    Raises:
        InvalidArgumentsError: tokens 为空
        LaunchError: 子进程启动失败
        WaitError: 等待子进程失败
        RelayError: 无法在当前线程/平台上转发信号
    """
    invocation = build_invocation(tokens)
    # 无法转发信号时不启动子进程
    check_context()

    child = ChildProcess(
        invocation,
        stdin=stdin,
        stdout=stdout,
        stderr=stderr,
        env=env,
        env_mode=env_mode if env_mode is not None else EnvMode.REPLACE,
    )

    cancel = asyncio.Event()
    relay = SignalRelay(child, cancel, buffer_size=buffer_size)

    await child.start()
    logger.debug(f"Supervising {child!r}")
    relay_task = asyncio.create_task(relay.run(), name="signal-relay")

    # 等待信号订阅完成（或 relay 提前结束），缩小启动阶段信号丢失的窗口
    started_waiter = asyncio.create_task(relay.started.wait(), name="relay-started")
    try:
        await asyncio.wait(
            {relay_task, started_waiter},
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        if not started_waiter.done():
            started_waiter.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await started_waiter

    try:
        exit_code = await child.wait()
    finally:
        # 无论等待成功与否都停止 relay
        cancel.set()
        await relay_task

    logger.debug(f"child process exited with: {exit_code}")
    return exit_code


def _configure_logging(config: Config) -> None:
    """配置日志输出。"""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        # LOG_DEBUG 模式：输出到临时文件
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        # 默认模式：输出到 stderr
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.DEBUG if config.debug else logging.INFO

    # 配置 root logger（第三方库）为 WARNING，减少噪音
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    # 只对 sigrelay 命名空间启用详细日志
    logging.getLogger("sigrelay").setLevel(log_level)


def main(tokens: Sequence[str] | None = None) -> NoReturn:
    """主入口点。

    Args:
        tokens: 要执行的程序及其参数（默认 sys.argv[1:]）
    """
    config = get_config()
    _configure_logging(config)
    logger.debug(f"Starting sigrelay: {config}")

    if tokens is None:
        tokens = sys.argv[1:]

    try:
        exit_code = asyncio.run(
            supervise(
                tokens,
                env=config.child_env,
                env_mode=config.env_mode,
                buffer_size=config.signal_buffer,
            )
        )
    except InvalidArgumentsError as e:
        logger.error(f"failed to initialize command: {e}")
        sys.exit(FAILURE_EXIT_CODE)
    except LaunchError as e:
        logger.error(f"failed to start process: {e}")
        sys.exit(FAILURE_EXIT_CODE)
    except WaitError as e:
        logger.error(f"failed to wait for process to finish: {e}")
        sys.exit(FAILURE_EXIT_CODE)
    except RelayError as e:
        logger.error(f"failed to relay signals: {e}")
        sys.exit(FAILURE_EXIT_CODE)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
