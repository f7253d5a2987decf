import os
import tempfile

from dotenv import load_dotenv

basedir = os.path.abspath(os.path.dirname(__file__))

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY") or "dev-secret-key"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER") or os.path.join(basedir, '..', 'uploads')
    MAX_CONTENT_LENGTH = 10 * 1024 * 1024
    ALLOWED_EXTENSIONS = {'pdf', 'doc', 'docx', 'jpg', 'jpeg', 'png'}
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    REPORTS_PER_PAGE = 10

    # Gunakan PostgreSQL jika DATABASE_URL diset, fallback ke SQLite
    SQLALCHEMY_DATABASE_URI = (
        os.environ.get("DATABASE_URL") or
        f"sqlite:///{os.path.join(basedir, '..', 'sitrack.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    UPLOAD_FOLDER = tempfile.mkdtemp(prefix="sitrack-uploads-")
    LOG_LEVEL = "WARNING"
