"""sigrelay 入口点。

支持: python -m sigrelay /path/to/program [args...]
"""

from .app import main

if __name__ == "__main__":
    main()
