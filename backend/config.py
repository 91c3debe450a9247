import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_POOL_MIN = int(os.getenv("DB_POOL_MIN", "1"))
DB_POOL_MAX = int(os.getenv("DB_POOL_MAX", "10"))
DB_SSLMODE = os.getenv("DB_SSLMODE", "require")
DB_CONNECT_TIMEOUT = int(os.getenv("DB_CONNECT_TIMEOUT", "10"))

SESSION_SECRET = os.getenv("SESSION_SECRET", "")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "18000"))

ALGOD_ADDRESS = os.getenv("ALGORAND_ALGOD_ADDRESS", "")
ALGOD_TOKEN = os.getenv("ALGORAND_ALGOD_TOKEN", "")
SERVICE_MNEMONIC = os.getenv("ALGORAND_SERVICE_MNEMONIC", "")
TX_TIMEOUT_ROUNDS = int(os.getenv("ALGORAND_TX_TIMEOUT_ROUNDS", "12"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "5001"))
