import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Project root directory
ROOT_DIR = Path(__file__).parent.parent.parent

# GCS Configuration
GCS_CONFIG = {
    "project_id": os.getenv("GCS_PROJECT_ID"),
    "bucket_name": os.getenv("GCS_BUCKET_NAME"),
    "credentials_path": os.getenv("GOOGLE_APPLICATION_CREDENTIALS", "gcs-credentials.json"),
    "recordings_prefix": os.getenv("GCS_RECORDINGS_PREFIX", "recordings"),
}

def resolve_credentials_path(path: str) -> Path:
    """Relative credential paths are taken from the project root"""
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = ROOT_DIR / candidate
    return candidate

def validate_gcs_config():
    """Validate GCS configuration"""
    missing = []
    if not GCS_CONFIG["project_id"]:
        missing.append("GCS_PROJECT_ID")
    if not GCS_CONFIG["bucket_name"]:
        missing.append("GCS_BUCKET_NAME")
    if not resolve_credentials_path(GCS_CONFIG["credentials_path"]).exists():
        missing.append("Service Account Credentials File")

    if missing:
        raise ValueError(f"Missing required GCS configuration: {', '.join(missing)}")
