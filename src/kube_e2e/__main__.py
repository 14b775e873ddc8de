import sys

from kube_e2e.cli import main

sys.exit(main())
