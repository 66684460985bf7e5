"""Entry point: python -m whale_signals.web"""
import uvicorn


def main():
    uvicorn.run(
        "whale_signals.web.app:app",
        host="0.0.0.0",
        port=8080,
    )


if __name__ == "__main__":
    main()
