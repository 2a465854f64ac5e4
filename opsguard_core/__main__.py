import sys

from opsguard_core.cli import main

sys.exit(main())
