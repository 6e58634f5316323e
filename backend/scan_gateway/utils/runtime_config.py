"""
Runtime configuration overrides stored in the system_config table
"""
import json
from typing import Any
from sqlalchemy.orm import Session

from scan_gateway.models import SystemConfig


def get_config_value(key: str, default: Any, db: Session) -> Any:
    """
    Get configuration value from database, falling back to a default

    Args:
        key: Configuration key
        default: Value returned when the key is not set
        db: Database session

    Returns:
        Value parsed according to the row's data_type
    """
    config = db.query(SystemConfig).filter(SystemConfig.key == key).first()
    if not config:
        return default

    # Parse based on data type
    if config.data_type == 'integer':
        return int(config.value)
    elif config.data_type == 'float':
        return float(config.value)
    elif config.data_type == 'boolean':
        return config.value.lower() in ('true', '1', 'yes')
    elif config.data_type == 'json':
        return json.loads(config.value)
    else:
        return config.value


def set_config_value(key: str, value: Any, data_type: str, db: Session, description: str = None) -> SystemConfig:
    """Create or update a configuration override"""
    if data_type == 'json':
        stored = json.dumps(value)
    elif data_type == 'boolean':
        stored = 'true' if value else 'false'
    else:
        stored = str(value)

    config = db.query(SystemConfig).filter(SystemConfig.key == key).first()
    if config:
        config.value = stored
        config.data_type = data_type
    else:
        config = SystemConfig(key=key, value=stored, data_type=data_type, description=description)
        db.add(config)

    db.commit()
    db.refresh(config)
    return config
