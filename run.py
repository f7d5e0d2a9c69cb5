import uvicorn
import sys
from pathlib import Path

# Add project root to Python path
project_root = str(Path(__file__).parent.absolute())
sys.path.insert(0, project_root)

from rehearsal.core.config import get_settings

if __name__ == "__main__":
    settings = get_settings()

    # Create the local data directories before the store scans them
    for directory in (settings.STORAGE_DIR, settings.SESSIONS_DIR, settings.PLAYBACK_DIR):
        directory.mkdir(parents=True, exist_ok=True)

    # Run the application
    uvicorn.run(
        "rehearsal.interface.api.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
