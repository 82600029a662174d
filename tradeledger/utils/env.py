"""
Environment variable utilities for the trade ledger.

Loads settings such as the database path, RPC endpoint and anomaly thresholds
from the process environment or a ``.env`` file, so deployment-specific values
are never hardcoded or committed to version control.

Usage:
    from tradeledger.utils.env import load_env, get_env

    load_env()
    rpc_url = get_env('SOLANA_RPC_URL', 'https://api.mainnet-beta.solana.com')
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

# Values loaded from the .env file
_ENV_CACHE: Dict[str, str] = {}
_ENV_LOADED = False

def _find_env_file() -> Optional[str]:
    current_dir = Path.cwd()
    while current_dir != current_dir.parent:
        env_path = current_dir / '.env'
        if env_path.exists():
            return str(env_path)
        current_dir = current_dir.parent
    return None

def _parse_line(line: str) -> Optional[tuple]:
    line = line.strip()
    if not line or line.startswith('#') or '=' not in line:
        return None
    key, value = line.split('=', 1)
    key = key.strip()
    if key.startswith('export '):
        key = key[len('export '):].strip()
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        value = value[1:-1]
    return key, value

def load_env(env_file: Optional[str] = None, force: bool = False) -> bool:
    """Load environment variables from a .env file.
    
    Variables already present in the process environment win over the file.
    
    Args:
        env_file: Path to .env file. If None, looks in the current directory
                 and its parents.
        force: Reload even if a file was loaded before.
                 
    Returns:
        bool: True if a .env file was found and loaded, False otherwise.
    """
    global _ENV_LOADED
    
    if _ENV_LOADED and not force:
        return True
        
    if env_file is None:
        env_file = _find_env_file()
    
    if not env_file or not Path(env_file).exists():
        logger.debug("No .env file found")
        return False

    with open(env_file, 'r') as f:
        for line in f:
            parsed = _parse_line(line)
            if parsed is None:
                continue
            key, value = parsed
            if key not in os.environ:
                os.environ[key] = value
            _ENV_CACHE[key] = value
                    
    logger.info(f"Loaded environment variables from {env_file}")
    _ENV_LOADED = True
    return True

def get_env(key: str, default: Any = None) -> Any:
    """Get an environment variable.
    
    Args:
        key: Environment variable name
        default: Default value if not found
        
    Returns:
        Environment variable value, or ``default`` when unset
    """
    if not _ENV_LOADED:
        load_env()
        
    value = os.environ.get(key)
    if value is None:
        value = _ENV_CACHE.get(key)
    if value is None:
        return default
    return value

def set_env(key: str, value: str) -> None:
    """Set an environment variable in memory (does not modify .env file).
    
    Args:
        key: Environment variable name
        value: Value to set
    """
    os.environ[key] = value
    _ENV_CACHE[key] = value
