"""
Deedkeeper Server Runner
========================
Run this directly: python run_server.py
"""
import os
import sys

# Fix console encoding for Windows
if sys.platform == 'win32':
    try:
        sys.stdout.reconfigure(encoding='utf-8', errors='replace')
        sys.stderr.reconfigure(encoding='utf-8', errors='replace')
    except (AttributeError, OSError):
        pass  # Older Python or redirected output


def main():
    # Environment variables win over these defaults
    os.environ.setdefault("DEBUG", "false")
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    backend = os.environ.get("STORE_BACKEND", "memory")

    print()
    print("=" * 60)
    print("  DEEDKEEPER SERVER")
    print("=" * 60)
    print()
    print(f"  Store backend:  {backend}")
    print(f"  API Docs:       http://localhost:{port}/api/docs")
    print(f"  Health:         http://localhost:{port}/healthz")
    print()
    print("  Press Ctrl+C to stop")
    print("=" * 60)
    print()

    import uvicorn
    uvicorn.run(
        "deedkeeper.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=False,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nServer stopped.")
        sys.exit(0)
