import uvicorn

from apiflow.common.settings import settings


def main(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
    """Starts the apiflow HTTP server."""
    uvicorn.run(
        "apiflow.api.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
