"""
Start the StockScan API server
"""
import os

import uvicorn
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))

    print("\n" + "=" * 60)
    print("🚀 Starting StockScan API Server")
    print("=" * 60)
    print(f"📍 URL: http://localhost:{port}")
    print(f"📚 Docs: http://localhost:{port}/docs")
    print(f"📡 Job stream: http://localhost:{port}/jobs/<job_id>/stream")
    print("=" * 60 + "\n")

    uvicorn.run(
        "stockscan.api.app:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("API_RELOAD", "false").lower() == "true",
        log_level="info",
    )
