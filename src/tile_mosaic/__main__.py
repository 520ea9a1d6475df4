import sys

from tile_mosaic.cli import main

sys.exit(main())
