# Ensure tests import the package from this checkout, even when an older
# bluemap-edge is installed into the environment.
import os
import sys

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)
