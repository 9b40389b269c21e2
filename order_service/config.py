"""
Order Service — 設定

他サービスと同じく環境変数から読み込む。
"""

import os

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./orders.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")

# トランザクション全体のタイムアウト（秒）。PostgreSQL では lock_timeout にも使う。
ORDER_TX_TIMEOUT_SECONDS = float(os.environ.get("ORDER_TX_TIMEOUT_SECONDS", "5"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
