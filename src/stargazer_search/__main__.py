import sys

from stargazer_search.cli import main


sys.exit(main())
