"""sigrelay - 最小进程监督器。

启动一个子进程，把父进程收到的所有信号转发给它，并返回子进程的退出码。

环境变量:
    SIGRELAY_ENV: 子进程环境变量（KEY=VALUE，逗号分割；空=继承）
    SIGRELAY_ENV_MODE: replace | extend (默认 replace)
    SIGRELAY_DEBUG: DEBUG 日志 (默认 false)

用法:
    sigrelay /path/to/program [args...]
"""

__version__ = "0.1.0"

from .app import main, supervise
from .config import EnvMode
from .errors import (
    InvalidArgumentsError,
    LaunchError,
    RelayError,
    SigrelayError,
    WaitError,
)
from .invocation import Invocation, build_invocation
from .runtime import (
    ChildProcess,
    ProcessState,
    SignalRelay,
    catchable_signals,
    launch,
    relay_signals,
    wait,
)

__all__ = [
    "__version__",
    "ChildProcess",
    "EnvMode",
    "InvalidArgumentsError",
    "Invocation",
    "LaunchError",
    "ProcessState",
    "RelayError",
    "SignalRelay",
    "SigrelayError",
    "WaitError",
    "build_invocation",
    "catchable_signals",
    "launch",
    "main",
    "relay_signals",
    "supervise",
    "wait",
]
