import os
from dotenv import load_dotenv

from text_layout import LayoutConfig

load_dotenv()

BASE_DIR = os.path.dirname(__file__)
UPLOAD_DIR = os.getenv('UPLOAD_DIR') or os.path.join(BASE_DIR, 'uploads')
PORT = int(os.getenv('PORT', '5001'))
MAX_UPLOAD_MB = int(os.getenv('MAX_UPLOAD_MB', '50'))
CORS_ORIGINS = [o.strip() for o in os.getenv('CORS_ORIGINS', '*').split(',') if o.strip()] or ['*']
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

def _env_float(name, default):
    raw = os.getenv(name)
    if raw is None or not raw.strip(): return default
    return float(raw)

def layout_config_from_env(env_prefix="LAYOUT_") -> LayoutConfig:
    # LAYOUT_HEADING_SIZE_RATIO=1.4 overrides LayoutConfig.heading_size_ratio, etc.
    defaults = LayoutConfig()
    overrides = {}
    for field_name, default in vars(defaults).items():
        value = _env_float(env_prefix + field_name.upper(), default)
        overrides[field_name] = type(default)(value)
    return LayoutConfig(**overrides)

LAYOUT = layout_config_from_env()
