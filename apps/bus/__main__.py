"""
Convenience entrypoint to run the bus vendor service with uvicorn.

Example:
  python -m apps.bus --reload
"""
import uvicorn
import os


def main() -> None:
    reload = os.getenv("BUS_RELOAD", "false").lower() == "true"
    host = os.getenv("BUS_HOST", "0.0.0.0")
    port = int(os.getenv("BUS_PORT", "8000"))
    uvicorn.run(
        "apps.bus.app.main:app",
        host=host,
        port=port,
        reload=reload,
        reload_dirs=["apps", "libs"] if reload else None,
    )


if __name__ == "__main__":
    main()
