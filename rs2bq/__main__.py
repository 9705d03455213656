import sys

from rs2bq.cli import main

sys.exit(main())
