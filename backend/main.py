import logging
import os

from nemy import create_app

logging.basicConfig(
    level=getattr(logging, (os.getenv("LOG_LEVEL") or "INFO").strip().upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=(os.getenv("NEMY_ENV", "dev") == "dev"))
