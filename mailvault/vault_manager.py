import os
from typing import List, Optional
from . import config


def _config_dir(config_dir: Optional[str] = None) -> str:
    return config_dir or config.CONFIG_DIR


def default_vault_path(config_dir: Optional[str] = None) -> str:
    """Path of the vault used when none is given."""
    return os.path.join(_config_dir(config_dir), config.DEFAULT_VAULT_FILE)


def get_recent_vault_paths(config_dir: Optional[str] = None) -> List[str]:
    """
    Loads the list of recent vault paths from the configuration file.
    Filters out paths that no longer exist.
    """
    recent_file = os.path.join(_config_dir(config_dir), config.RECENT_VAULTS_FILE)

    recent_paths = []
    if os.path.exists(recent_file):
        with open(recent_file, 'r', encoding='utf-8') as f:
            for line in f:
                path = line.strip()
                if path and os.path.exists(path):
                    recent_paths.append(path)
    return recent_paths


def save_recent_vault_path(path: str, config_dir: Optional[str] = None):
    """
    Saves a vault path to the list of recent vaults.
    Ensures uniqueness and keeps the list limited to MAX_RECENT_VAULTS.
    """
    directory = _config_dir(config_dir)
    os.makedirs(directory, exist_ok=True)
    recent_file = os.path.join(directory, config.RECENT_VAULTS_FILE)

    path = os.path.abspath(path)
    recent = get_recent_vault_paths(directory)

    # Most recent first, no duplicates
    if path in recent:
        recent.remove(path)
    recent.insert(0, path)

    recent = recent[:config.MAX_RECENT_VAULTS]

    with open(recent_file, 'w', encoding='utf-8') as f:
        for p in recent:
            f.write(p + '\n')


def last_used_vault(config_dir: Optional[str] = None) -> Optional[str]:
    """Get the path of the last used vault."""
    recent = get_recent_vault_paths(config_dir)
    return recent[0] if recent else None
