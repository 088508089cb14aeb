import sys

from pingwatch.server import main

sys.exit(main())
