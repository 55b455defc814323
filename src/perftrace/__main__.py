"""CLI entry point for perftrace.

Allows running the package as a module:
    python -m perftrace
"""

from perftrace.cli import main

if __name__ == "__main__":
    main()
