import os

# Stock ledger service: `uvicorn main:app` with these settings
app = "main:app"
host = os.getenv("HOST", "0.0.0.0")
port = int(os.getenv("PORT", "9001"))
# Every reservation is a short DB transaction; workers scale with cores
workers = int(os.getenv("UVICORN_WORKERS", str(max(2, (os.cpu_count() or 1)))))
loop = "uvloop"  # requiere uvicorn[standard]
http = "h11"
timeout_keep_alive = int(os.getenv("UVICORN_KEEPALIVE", "5"))
log_level = os.getenv("LOG_LEVEL", "info")
