"""Module entrypoint.

Allows:
    python -m multitail FILE [FILE ...]
"""

from __future__ import annotations

from multitail.cli import main

if __name__ == "__main__":
    main()
