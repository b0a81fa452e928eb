# run.py
import uvicorn
import os
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()


def main():
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", 8080))

    # The SIGHUP key reload handler is only installed on the main thread,
    # so the server runs without the auto-reloader.
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host=host,
        port=port,
        server_header=False,  # no server information disclosure
    )


if __name__ == "__main__":
    main()
