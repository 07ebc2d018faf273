import os
import tempfile

# Keep test runs from writing into the shared log directory
os.environ.setdefault("SUSHELL_LOG_DIR", tempfile.mkdtemp(prefix="sushell_logs_"))
