"""Runtime configuration read from the environment."""

import os
from decimal import Decimal

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

OSRM_API_URL = os.getenv("OSRM_API_URL", "https://router.project-osrm.org/route/v1/")
ETA_TIMEOUT_SECONDS = float(os.getenv("ETA_TIMEOUT_SECONDS", "10"))

# Flat fee added to every order at submission time.
DELIVERY_FEE = Decimal(os.getenv("DELIVERY_FEE", "20.00"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
