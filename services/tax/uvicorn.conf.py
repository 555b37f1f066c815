import os

host = "0.0.0.0"
port = int(os.getenv("PORT", "9003"))
workers = int(os.getenv("UVICORN_WORKERS", "2"))
loop = "uvloop"  # needs uvicorn[standard]
http = "h11"
log_level = os.getenv("LOG_LEVEL", "info")
