"""Allow running as: python -m proxypal"""

from proxypal.cli import main

main()
