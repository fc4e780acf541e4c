#!/usr/bin/env python
"""Management entrypoint for the example expo ticketing site."""

import os
import sys


def main() -> None:
    """Run administrative tasks against the example settings."""
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "settings")
    from django.core.management import execute_from_command_line

    execute_from_command_line(sys.argv)


if __name__ == "__main__":
    main()
