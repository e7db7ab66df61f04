import sys

from nvpage.cli import main

sys.exit(main())
