import os
from pathlib import Path

# Define the root directory of the project
ROOT_DIR = Path(__file__).resolve().parent

# Where workflows live on disk (one opencanvas_<id> directory per workflow)
STORAGE_ROOT = Path(os.environ.get("OPENCANVAS_HOME", Path.home() / ".opencanvas"))

# Scheme of workflow-scoped asset URIs: opencanvas://<workflowId>/assets/<file>
ASSET_SCHEME = "opencanvas"

# App Defaults - Persistence
AUTO_SAVE_DELAY = 2.0  # seconds of inactivity before an autosave fires
CREATION_GRACE_SECONDS = 5.0  # how long a finished create keeps its in-flight marker
DEFAULT_VIEWPORT = {"x": 0, "y": 0, "zoom": 1}

# App Defaults - HTTP server
API_HOST = "0.0.0.0"
API_PORT = 8000
