"""Allow ``python -m shimbuild``."""

from shimbuild.cli import main

if __name__ == "__main__":
    main()
