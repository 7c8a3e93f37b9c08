#!/usr/bin/env python3
"""
Config Generator for the MovieBox relay

Generates config.py from environment variables, e.g. inside a container
entrypoint before uvicorn starts.

Usage:
    # Reads MOVIEBOX_API_HOST, REQUEST_TIMEOUT ... (or VAR_* variants)
    python3 -m utils.config_generator

    # With custom output path
    python3 -m utils.config_generator --output /path/to/config.py

    # Dry run (print config without writing)
    python3 -m utils.config_generator --dry-run
"""

import os
import re
import json
import argparse
from typing import Any, Callable, Dict, List, Optional, Tuple

from utils.host_pool import DEFAULT_MIRROR_HOSTS, DEFAULT_PRIMARY_HOST
from utils.headers import DEFAULT_TIMEZONE


# =============================================================================
# Environment Variable Helpers
# =============================================================================

# Values that stand for "empty" where a platform does not allow empty variables
EMPTY_PLACEHOLDERS = ('__EMPTY__', '__NULL__', 'null', 'none', 'NULL', 'NONE')


def get_env(name: str, default: str = '') -> str:
    """Get an environment variable, preferring the ``VAR_`` prefixed name.

    ``__EMPTY__`` / ``__NULL__`` and friends read as the empty string.
    """
    val = os.environ.get(f'VAR_{name}', None)
    if val is None:
        val = os.environ.get(name, default)

    if val in EMPTY_PLACEHOLDERS:
        return ''
    return val or default


def get_env_int(name: str, default: int) -> int:
    val = get_env(name, str(default))
    if val == '':
        return default
    try:
        return int(val)
    except (ValueError, TypeError):
        return default


def get_env_float(name: str, default: float) -> float:
    val = get_env(name, str(default))
    if val == '':
        return default
    try:
        return float(val)
    except (ValueError, TypeError):
        return default


def get_env_bool(name: str, default: bool) -> bool:
    """Get an environment variable as boolean (true/1/yes, false/0/no)."""
    val = get_env(name, str(default)).lower()
    if val in ('true', '1', 'yes'):
        return True
    if val in ('false', '0', 'no'):
        return False
    return default


def get_env_json(name: str, default: Any) -> Any:
    """Get an environment variable as JSON; *default* when unset or invalid."""
    val = get_env(name, '')
    if val.strip():
        try:
            return json.loads(val)
        except json.JSONDecodeError:
            pass
    return default


def get_env_list(name: str, default: List[str]) -> List[str]:
    """A JSON array, or a comma-separated list of values."""
    val = get_env(name, '').strip()
    if not val:
        return list(default)
    if val.startswith('['):
        parsed = get_env_json(name, None)
        if isinstance(parsed, list):
            return [str(item) for item in parsed]
        return list(default)
    return [item.strip() for item in val.split(',') if item.strip()]


def format_python_value(value: Any) -> str:
    """Format a value as a Python literal for config.py."""
    if isinstance(value, str):
        return repr(value)
    elif isinstance(value, bool):
        return 'True' if value else 'False'
    elif isinstance(value, (list, dict)):
        return repr(value)
    elif value is None:
        return 'None'
    else:
        return str(value)


# =============================================================================
# Configuration Mapping
# =============================================================================

ConfigEntry = Tuple[str, str, Callable, Any, str]


def get_config_map() -> List[ConfigEntry]:
    """Get the configuration mapping.

    Format: ``(config_name, env_name, type_func, default_value, section)``
    """
    default_mirrors = [f"https://{host}" for host in DEFAULT_MIRROR_HOSTS
                       if f"https://{host}" != DEFAULT_PRIMARY_HOST]
    return [
        # Upstream hosts
        ('MOVIEBOX_API_HOST', 'MOVIEBOX_API_HOST', get_env, DEFAULT_PRIMARY_HOST, 'UPSTREAM HOSTS'),
        ('MIRROR_HOSTS', 'MIRROR_HOSTS', get_env_list, default_mirrors, 'UPSTREAM HOSTS'),
        # Requests
        ('REQUEST_TIMEOUT', 'REQUEST_TIMEOUT', get_env_int, 30, 'REQUEST CONFIGURATION'),
        ('REQUEST_MAX_RETRIES', 'REQUEST_MAX_RETRIES', get_env_int, 2, 'REQUEST CONFIGURATION'),
        ('RETRY_BACKOFF_SECONDS', 'RETRY_BACKOFF_SECONDS', get_env_float, 1.0, 'REQUEST CONFIGURATION'),
        ('CLIENT_TIMEZONE', 'CLIENT_TIMEZONE', get_env, DEFAULT_TIMEZONE, 'REQUEST CONFIGURATION'),
        # Media streaming
        ('MEDIA_TIMEOUT', 'MEDIA_TIMEOUT', get_env_int, 300, 'MEDIA STREAMING CONFIGURATION'),
        ('PROBE_TIMEOUT', 'PROBE_TIMEOUT', get_env_int, 8, 'MEDIA STREAMING CONFIGURATION'),
        ('STREAM_CHUNK_SIZE', 'STREAM_CHUNK_SIZE', get_env_int, 65536, 'MEDIA STREAMING CONFIGURATION'),
        ('REQUIRE_AVAILABLE_FLAG', 'REQUIRE_AVAILABLE_FLAG', get_env_bool, False, 'MEDIA STREAMING CONFIGURATION'),
        # Logging
        ('LOG_LEVEL', 'LOG_LEVEL', get_env, 'INFO', 'LOGGING CONFIGURATION'),
        ('SERVER_LOG_FILE', 'SERVER_LOG_FILE', get_env, 'logs/server.log', 'LOGGING CONFIGURATION'),
    ]


# =============================================================================
# Config Generation
# =============================================================================

def generate_config_content() -> str:
    """Render config.py content from the environment."""
    sections: Dict[str, List[Tuple[str, Any]]] = {}
    for config_name, env_name, type_func, default, section in get_config_map():
        sections.setdefault(section, []).append((config_name, type_func(env_name, default)))

    config_lines = [
        '# MovieBox relay - configuration',
        '# Auto-generated from environment variables',
        '',
    ]
    for section_name, configs in sections.items():
        config_lines.append('# ' + '=' * 75)
        config_lines.append(f'# {section_name}')
        config_lines.append('# ' + '=' * 75)
        config_lines.append('')
        for config_name, value in configs:
            config_lines.append(f'{config_name} = {format_python_value(value)}')
        config_lines.append('')

    return '\n'.join(config_lines)


def mask_sensitive_values(content: str) -> str:
    """Mask host names of the pool for safe display in CI logs."""
    masked = re.sub(r"(MIRROR_HOSTS\s*=\s*\[)[^\]]*(\])", r"\1***MASKED***\2", content)
    return masked


def write_config(output_path: str = 'config.py', dry_run: bool = False,
                 show_masked: bool = True) -> bool:
    """Write config.py.

    Returns:
        True if successful, False if the file could not be written
    """
    config_content = generate_config_content()

    if not dry_run:
        try:
            out_dir = os.path.dirname(output_path)
            if out_dir:
                os.makedirs(out_dir, exist_ok=True)
            with open(output_path, 'w', encoding='utf-8') as f:
                f.write(config_content)
        except OSError as e:
            print(f"✗ Failed to write {output_path}: {e}")
            return False
        print(f"✓ {output_path} generated successfully")
    else:
        print("✓ Dry run - config.py would be generated with the following content:")

    if show_masked:
        print("\nConfig file contents (mirror list masked):")
        print(mask_sensitive_values(config_content))

    return True


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Generate config.py from environment variables',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Generate config.py from environment variables
    python3 -m utils.config_generator

    # Dry run - show what would be generated
    python3 -m utils.config_generator --dry-run

    # Generate to custom path
    python3 -m utils.config_generator --output /path/to/config.py
        """
    )

    parser.add_argument('--output', '-o', type=str, default='config.py',
                        help='Output path for config.py (default: config.py)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Print config without writing to file')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Do not print config content')

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_arguments(argv)
    success = write_config(
        output_path=args.output,
        dry_run=args.dry_run,
        show_masked=not args.quiet,
    )
    return 0 if success else 1


if __name__ == '__main__':
    exit(main())
