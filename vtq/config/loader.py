import yaml
from pathlib import Path
from vtq.utils.formatting import parse_resolution
from .models import AppConfig

def load_config(config_path: Path) -> AppConfig:
    """Loads YAML config and parses it into AppConfig Pydantic model."""
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    # YAML has no tuple type; resolution may be written as "1280x720"
    encoding = data.get("encoding")
    if isinstance(encoding, dict) and isinstance(encoding.get("resolution"), str):
        parsed = parse_resolution(encoding["resolution"])
        if parsed is None:
            raise ValueError(f"Invalid resolution in {config_path}: {encoding['resolution']}")
        encoding["resolution"] = parsed

    return AppConfig(**data)
