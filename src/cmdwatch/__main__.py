"""cmdwatch entry point.

Supports: python -m cmdwatch
"""

from .app import main

if __name__ == "__main__":
    main()
