"""
Entry point for running survey_export as a module.

Usage:
    $ python -m survey_export run -s s1 -p p1 -a admin@example.com --env qa
    $ python -m survey_export serve --port 8080
    $ python -m survey_export check --probe
    $ python -m survey_export version
"""
from .main import run_cli

if __name__ == "__main__":
    run_cli()
