import os
from dotenv import load_dotenv
load_dotenv()

class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///callcenter.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "local")
    LOCAL_STORAGE_DIR = os.getenv("LOCAL_STORAGE_DIR", "./storage")
    S3_ENDPOINT = os.getenv("S3_ENDPOINT")
    S3_REGION = os.getenv("S3_REGION")
    S3_BUCKET = os.getenv("S3_BUCKET")
    S3_ACCESS_KEY = os.getenv("S3_ACCESS_KEY")
    S3_SECRET_KEY = os.getenv("S3_SECRET_KEY")
    S3_PRESIGN_EXPIRES = int(os.getenv("S3_PRESIGN_EXPIRES", "3600"))
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    OPENAI_MAX_ATTEMPTS = int(os.getenv("OPENAI_MAX_ATTEMPTS", "3"))
    # shared secret for POST /api/process-call; unset = open (local dev)
    PROCESS_CALL_TOKEN = os.getenv("PROCESS_CALL_TOKEN")

    TRANSCRIPTION_MODELS = os.getenv(
        "TRANSCRIPTION_MODELS", "gpt-4o-mini-transcribe,gpt-4o-transcribe,whisper-1"
    ).split(",")
    TRANSCRIPTION_LANGUAGE = os.getenv("TRANSCRIPTION_LANGUAGE", "es")
    TRANSCRIPTION_MAX_ATTEMPTS = int(os.getenv("TRANSCRIPTION_MAX_ATTEMPTS", "3"))
    TRANSCRIPTION_HEAD_TIMEOUT = float(os.getenv("TRANSCRIPTION_HEAD_TIMEOUT", "15"))
    CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")
    EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

    AUDIO_MAX_MB = float(os.getenv("AUDIO_MAX_MB", "25"))
    AUDIO_SOFT_MAX_MB = float(os.getenv("AUDIO_SOFT_MAX_MB", "100"))
    AUDIO_HEAD_TIMEOUT = float(os.getenv("AUDIO_HEAD_TIMEOUT", "10"))
    BATCH_CONCURRENCY = int(os.getenv("BATCH_CONCURRENCY", "50"))

    VOICE_PRIMARY_PROVIDER = os.getenv("VOICE_PRIMARY_PROVIDER", "elevenlabs")
    VOICE_SECONDARY_PROVIDER = os.getenv("VOICE_SECONDARY_PROVIDER", "openai-realtime")
