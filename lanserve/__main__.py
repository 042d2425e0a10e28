"""
Entry point for running lanserve as a module.
Usage: python -m lanserve  (configuration is read from lanserve.yaml or $LANSERVE_CONFIG)
"""

from .main import main_cli

if __name__ == "__main__":
    main_cli()
