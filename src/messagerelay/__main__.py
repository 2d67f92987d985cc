"""Entry point for running the relay directly."""

from .cli import main

if __name__ == "__main__":
    main()
