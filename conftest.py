# Ensure tests import the local `edgeflow` package first, even when the suite
# is started from a parent directory or before an editable install.
import os
import sys

SERVICE_ROOT = os.path.dirname(__file__)

if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)
