"""Allow ``python -m greenhouse_hub``."""

from .cli import main

main()
