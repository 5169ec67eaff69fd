import sys

from fiction_mirror.cli import main

sys.exit(main())
