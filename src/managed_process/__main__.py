"""managed_process 入口点。

支持: python -m managed_process
"""

from .app import main

if __name__ == "__main__":
    main()
