# Infrastructure routes (intentionally unversioned)
# Update delivery routes are in v1/
from . import health as health, prometheus as prometheus
