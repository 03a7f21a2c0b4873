from google.cloud import storage
from google.oauth2 import service_account
from datetime import datetime
import logging
from typing import Union
from callboard.config.storage_config import GCS_CONFIG, resolve_credentials_path

logger = logging.getLogger(__name__)

class CloudStorage:
    def __init__(self, config: dict = None):
        config = config or GCS_CONFIG
        try:
            creds_path = resolve_credentials_path(config["credentials_path"])
            if not creds_path.exists():
                raise FileNotFoundError(f"Credentials file not found at: {creds_path}")

            logger.info(f"Loading credentials from: {creds_path}")
            credentials = service_account.Credentials.from_service_account_file(
                str(creds_path),
                scopes=["https://www.googleapis.com/auth/cloud-platform"]
            )

            self.project_id = config.get("project_id")
            self.bucket_name = config.get("bucket_name")
            self.recordings_prefix = config.get("recordings_prefix") or "recordings"

            if not self.project_id:
                raise ValueError("GCS_PROJECT_ID not set in environment variables")
            if not self.bucket_name:
                raise ValueError("GCS_BUCKET_NAME not set in environment variables")

            logger.info(f"Using project_id: {self.project_id}, bucket_name: {self.bucket_name}")

            self.client = storage.Client(
                credentials=credentials,
                project=self.project_id
            )
            self.bucket = self.client.bucket(self.bucket_name)

        except Exception as e:
            logger.error(f"Storage initialization failed: {str(e)}")
            raise RuntimeError(f"Failed to initialize GCS storage: {str(e)}")

    def public_url(self, file_path: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{file_path}"

    def store_file(self, file_path: str, content: Union[str, bytes], content_type: str = 'text/plain') -> str:
        """Store a file in GCS and return its public URL"""
        try:
            blob = self.bucket.blob(file_path)

            if isinstance(content, str):
                content_bytes = content.encode('utf-8')
            else:
                content_bytes = content

            if not content_bytes:
                logger.warning(f"Content is empty for file: {file_path}")

            logger.info(f"Uploading {len(content_bytes)} bytes to {file_path}")
            blob.upload_from_string(content_bytes, content_type=content_type)

            url = self.public_url(file_path)
            logger.info(f"Successfully stored file at: {url}")
            return url
        except Exception as e:
            logger.error(f"Failed to store file {file_path}: {str(e)}")
            raise

    def store_recording(self, agent_id: str, audio: bytes, content_type: str = 'audio/webm') -> str:
        """Store a browser call recording under the agent's folder"""
        timestamp = int(datetime.now().timestamp() * 1000)
        file_path = f"{self.recordings_prefix}/{agent_id}/{timestamp}.webm"
        return self.store_file(file_path, audio, content_type or 'audio/webm')
