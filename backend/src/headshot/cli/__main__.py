"""CLI entry point for headshot.cli module.

Enables execution via: python -m headshot.cli JOB_ID --user-id USER
"""

from headshot.cli.poll import main

if __name__ == "__main__":
    raise SystemExit(main())
