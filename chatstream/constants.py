# chatstream/constants.py

APP_NAME = "chatstream"
__version__ = "0.3.0"
DEFAULT_LOG_FILENAME = "app.log"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
DEFAULT_LOG_BACKUP_COUNT = 5

DEFAULT_CHAT_URL = "https://api.glyphscript.site/chat/stream"
DEFAULT_AGENTS_URL = "https://mastra.glyphscript.site/api/agents"
DEFAULT_TIMEOUT = 120
DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."
