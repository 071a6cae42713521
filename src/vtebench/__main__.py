"""Allow ``python -m vtebench``."""

from vtebench.cli import main

main()
