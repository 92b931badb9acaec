"""Allow ``python -m entrust``."""

from entrust.cli import main

main()
