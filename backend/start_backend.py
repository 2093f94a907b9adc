#!/usr/bin/env python3
"""
Backend startup wrapper.
"""
import argparse
import os


def main() -> None:
    parser = argparse.ArgumentParser(description="Run the Chave Pix Club backend")
    parser.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args()

    import uvicorn

    print("[Backend] Starting Chave Pix Club backend")
    print(f"[Backend] Server: http://{args.host}:{args.port}")
    uvicorn.run(
        "backend.main:build_default_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
