import sys

from soundstage.app.cli import main

sys.exit(main())
