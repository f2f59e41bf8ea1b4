"""
Entry point for running the client as a module.

Usage:
    python -m tbtc_client
"""

from tbtc_client.cli import main

if __name__ == "__main__":
    main()
