"""Entry point for running wake-puppy as a module.

Usage: python -m wake_puppy [--run <id> | <command> ...]
"""

from wake_puppy.cli_runner import main_entry

if __name__ == "__main__":
    main_entry()
