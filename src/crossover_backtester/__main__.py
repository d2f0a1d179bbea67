import sys

from crossover_backtester.cli import main

sys.exit(main())
