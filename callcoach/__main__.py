import sys

from callcoach.main import main

sys.exit(main())
