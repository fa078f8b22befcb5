import sys

from specaudit.run import main

sys.exit(main())
