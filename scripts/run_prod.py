#!/usr/bin/env python3
"""
Production server runner for the Ultron assistant API.

Environment variables normally come from the deployment system; a .env
file is only loaded when present.
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

# Import and run the FastAPI app
if __name__ == "__main__":
    import uvicorn
    from pydantic import ValidationError
    from ultron_assistant.config import get_settings

    try:
        settings = get_settings()
    except ValidationError as e:
        missing = [".".join(str(part) for part in error["loc"]).upper().replace(".", "__") for error in e.errors()]
        print(f"✗ Invalid or missing configuration: {', '.join(missing)}")
        sys.exit(1)

    server_config = settings.server

    # Override development settings for production
    production_config = {
        "app": server_config.app_module,
        "host": server_config.host,
        "port": server_config.port,
        "workers": max(server_config.workers, 2),  # Minimum 2 workers
        "reload": False,  # Never reload in production
        "log_config": None,  # Use our structured logging
        "access_log": False,  # We handle access logging via middleware
        "server_header": False,  # Don't reveal server info
        "date_header": False,
    }

    print("🚀 Starting Ultron assistant production server...")
    print(f"🌐 Listening: {server_config.host}:{server_config.port}")
    print(f"👥 Workers: {production_config['workers']}")
    print(f"🔒 CORS origins: {', '.join(server_config.cors_allowed_origins)}")
    print()

    uvicorn.run(**production_config)
