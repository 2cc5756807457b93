import uvicorn
from screencast.core.config import settings

if __name__ == "__main__":
    # Base URL / tunnel resolution happens in screencast/main.py (startup event)

    print(f"🚀 Starting Server on port {settings.API_PORT}")

    uvicorn.run("screencast.main:app", host="0.0.0.0", port=settings.API_PORT, reload=True)
