import sys

from bluemap_edge.cli import main

sys.exit(main())
