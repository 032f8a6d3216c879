"""Allow ``python -m alertsmith``."""

from alertsmith.cli import main

if __name__ == "__main__":
    main()
