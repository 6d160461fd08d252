"""
gentrust Entry Point — Run with: python -m gentrust

Usage:
    python -m gentrust [--json] [--home DIR] <command> [...]
"""

import sys


def main():
    """Main entry point for gentrust."""
    from gentrust.cli import main as cli_main
    return cli_main()


if __name__ == "__main__":
    sys.exit(main() or 0)
