import sys

from genrescope.cli import main

sys.exit(main())
