"""Common utilities: path management, text sanitization and id validation"""
import os
import re

# ⚠️ DO NOT import settings here - causes circular import with config.py

SIDECAR_SUFFIX = "-metadata"


# ============= Path Management =============

def get_project_root() -> str:
    """Returns the absolute path to the project's root directory."""
    return os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))


def get_log_file_path() -> str:
    """Creates the log directory if it doesn't exist and returns the full log file path."""
    project_root = get_project_root()
    log_dir = os.path.join(project_root, 'log')

    if not os.path.exists(log_dir):
        os.makedirs(log_dir, exist_ok=True)

    return os.path.join(log_dir, 'adaptive_rag.log')


# ============= Text Utilities =============

def sanitize_text(text: str, max_length: int = 10000) -> str:
    """Strip HTML tags, trim whitespace and cap length."""
    cleaned = re.sub(r'<[^>]*>', '', text or '')
    return cleaned.strip()[:max_length]


def validate_document_id(document_id: str) -> bool:
    """
    Document ids double as filename stems, so only word characters,
    dashes and dots are allowed, and the sidecar suffix is reserved.
    """
    if not document_id or len(document_id) > 200 or document_id.startswith('.'):
        return False
    if document_id.endswith(SIDECAR_SUFFIX):
        return False
    return bool(re.match(r'^[\w\-\.]+$', document_id))

