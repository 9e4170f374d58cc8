"""Allow running the package as a module: python -m vaulter_core"""

import sys

from vaulter_core.cli import main

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
