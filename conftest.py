# Keep test runs from exporting spans to a collector configured in the
# developer's shell; the server module reads this at import time.
import os

os.environ.pop("OTLP_ENDPOINT", None)
