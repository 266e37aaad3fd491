"""Package entry point for ``python -m jitscope``.

RULES:
- This file must exist for ``python -m jitscope`` to work
- Delegates to the CLI's main()
"""

from jitscope.cli import main

if __name__ == "__main__":
    main()
