#!/usr/bin/env python3
"""
Development server runner for the Ultron assistant API.

This script starts the FastAPI development server with hot reloading
and proper environment variable loading.
"""

import sys
from pathlib import Path

# Add the src directory to the Python path
project_root = Path(__file__).parent.parent
src_path = project_root / "src"
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = project_root / ".env"
if env_file.exists():
    load_dotenv(env_file)
    print(f"✓ Loaded environment variables from {env_file}")
else:
    print(f"⚠ No .env file found at {env_file}")
    print("  Copy .env-template to .env and fill in the Supabase, database and OpenRouter values")

# Import and run the FastAPI app
if __name__ == "__main__":
    import uvicorn
    from ultron_assistant.config import get_settings

    settings = get_settings()
    server_config = settings.server
    base_url = f"http://{server_config.host}:{server_config.port}"

    print("🚀 Starting Ultron assistant development server...")
    print(f"📊 API Documentation: {base_url}/docs")
    print(f"🔍 Health Check: {base_url}/health")
    print(f"💬 Assistant: POST {base_url}/assistant")
    print(f"🛡  Fallback mode: {'strict' if settings.assistant.fallback_strict else 'lenient'}, "
          f"table allowlist: {settings.assistant.table_allowlist_mode.value}")
    print()

    uvicorn.run(
        server_config.app_module,
        host=server_config.host,
        port=server_config.port,
        reload=server_config.reload,
        reload_dirs=[str(src_path)],
        log_config=None,  # Use our structured logging
        access_log=False  # We handle access logging via middleware
    )
