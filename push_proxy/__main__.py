import sys

from push_proxy.main import main

sys.exit(main())
