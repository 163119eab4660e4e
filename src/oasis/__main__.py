"""Allow ``python -m oasis``."""

from oasis.cli import main

if __name__ == "__main__":
    main()
