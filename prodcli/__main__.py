"""Main entry point when executing prodcli as a package.

This allows running the package using python -m prodcli.
"""

from prodcli.main import cli_entry_point

if __name__ == "__main__":
    cli_entry_point()
