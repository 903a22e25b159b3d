# Точка входа для uvicorn / PaaS
import os

import uvicorn

from duxxan.main import create_app

app = create_app()
application = app

if __name__ == "__main__":
    uvicorn.run(
        "app:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
