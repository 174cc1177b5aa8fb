"""Allow ``python -m agent_loop``."""

from .cli.main import main

if __name__ == "__main__":
    main()
