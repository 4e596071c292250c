#!/usr/bin/env python3
"""
Path management module for the OpenConnect panel.
All paths are loaded from environment variables with sensible defaults.
"""
import os

class VPNPaths:
    """Centralized path management using environment variables."""
    
    @staticmethod
    def get_project_root():
        """Get project root directory."""
        return os.environ.get('PROJECT_ROOT', '/etc/ocpanel')

    @staticmethod
    def get_env_file():
        """Get the dotenv file loaded at startup."""
        return os.environ.get('OCPANEL_ENV_FILE', os.path.join(VPNPaths.get_project_root(), '.env'))
    
    @staticmethod
    def get_database_file():
        """Get database file path."""
        return os.environ.get('DATABASE_FILE', '/etc/ocpanel/data/ocpanel.db')
    
    @staticmethod
    def get_cert_dir():
        """Get the directory holding CA and server certificates."""
        return os.environ.get('VPN_CERT_DIR', '/etc/ocpanel/certs')

# Create a global instance for easy access
paths = VPNPaths()
