# launch.py - starts the forecast API

import argparse
import os
import sys

import uvicorn


def get_project_root():
    """Gets the absolute path to the project's root directory (where launch.py is)."""
    return os.path.dirname(os.path.abspath(__file__))


def main():
    parser = argparse.ArgumentParser(description="Run the Diet election forecast API")
    parser.add_argument("--host", default=os.getenv("DIET_FORECAST_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("DIET_FORECAST_PORT", "8000")))
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args()

    backend_path = os.path.join(get_project_root(), "backend")
    if backend_path not in sys.path:
        sys.path.insert(0, backend_path)

    print(f"Starting forecast API on http://{args.host}:{args.port}")
    uvicorn.run(
        "diet_forecast.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        app_dir=backend_path,
    )


if __name__ == "__main__":
    main()
