import os
import json
import time

import yaml

CONFIG_DIR = os.path.expanduser("~/.config/portwarden")
DEBUG_LOG_PATH = os.path.join(CONFIG_DIR, "debug.log")
PROTECTED_FILENAME = "protected.yaml"

DEFAULT_COMMON_PORTS = [
    {"port": 3000, "label": "3000", "description": "React/Node"},
    {"port": 8080, "label": "8080", "description": "Spring/Tomcat"},
    {"port": 5000, "label": "5000", "description": "Flask"},
    {"port": 5432, "label": "5432", "description": "PostgreSQL"},
    {"port": 8000, "label": "8000", "description": "Django"},
    {"port": 4200, "label": "4200", "description": "Angular"},
    {"port": 3001, "label": "3001", "description": "Dev Server"},
    {"port": 5173, "label": "5173", "description": "Vite"},
]

CONFIG = {
    "poll_interval": 2.0,
    "change_ttl": 3.0,
    "confirm_timeout": 3.0,
    "notice_ttl": 3.0,
    "kill_refresh_delay": 0.5,
    "max_workers": 4,
    "export_dir": os.path.join(CONFIG_DIR, "exports"),
    "common_ports": list(DEFAULT_COMMON_PORTS),
}

# Fallback when protected.yaml is missing or unreadable
DEFAULT_PROTECTED = {
    "names": [
        "system", "svchost.exe", "csrss.exe", "explorer.exe", "wininit.exe",
        "winlogon.exe", "services.exe", "lsass.exe", "smss.exe", "dwm.exe",
        "taskmgr.exe", "systemd", "init", "launchd", "kernel_task", "sshd",
    ],
    "pids": [0, 1, 4],
}


def debug_log(msg):
    """Write a timestamped message to the debug log."""
    try:
        os.makedirs(os.path.dirname(DEBUG_LOG_PATH), exist_ok=True)
        with open(DEBUG_LOG_PATH, "a") as f:
            f.write(f"[{time.strftime('%Y-%m-%d %H:%M:%S')}] {msg}\n")
    except OSError:
        pass


def init_config(path=None):
    """Load config.json over the defaults, creating it on first run."""
    config_path = path or os.path.join(CONFIG_DIR, "config.json")
    if os.path.exists(config_path):
        try:
            with open(config_path, 'r') as f:
                saved = json.load(f)
            if isinstance(saved, dict):
                CONFIG.update(saved)
        except (OSError, ValueError) as e:
            debug_log(f"CONFIG: Error loading: {e}")
    else:
        save_config(config_path)
    return CONFIG


def save_config(path=None):
    config_path = path or os.path.join(CONFIG_DIR, "config.json")
    try:
        os.makedirs(os.path.dirname(config_path), exist_ok=True)
        with open(config_path, 'w') as f:
            json.dump(CONFIG, f, indent=2)
    except OSError as e:
        debug_log(f"CONFIG: Error saving: {e}")


def load_protected_rules(paths=None):
    """
    Return the protected process rules as {"names": set, "pids": set}.

    The user's copy in CONFIG_DIR wins over the packaged default.
    """
    if paths is None:
        paths = [
            os.path.join(CONFIG_DIR, PROTECTED_FILENAME),
            os.path.join(os.path.dirname(os.path.abspath(__file__)), PROTECTED_FILENAME),
        ]
    data = None
    for p in paths:
        if not os.path.exists(p):
            continue
        try:
            with open(p, 'r') as f:
                data = yaml.safe_load(f) or {}
            debug_log(f"CONFIG: Loaded protected rules from {p}")
            break
        except (OSError, yaml.YAMLError) as e:
            debug_log(f"CONFIG: Error loading protected rules from {p}: {e}")
    if not isinstance(data, dict):
        data = DEFAULT_PROTECTED
    names = {str(n).lower() for n in data.get("names") or []}
    pids = set()
    for p in data.get("pids") or []:
        try:
            pids.add(int(p))
        except (TypeError, ValueError):
            debug_log(f"CONFIG: Ignoring bad protected pid {p!r}")
    return {"names": names, "pids": pids}
