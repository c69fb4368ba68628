# --- START OF FILE src/version.py ---
"""
Single source of truth for NbdAttach version and app information.
All other components should import from this module.
"""

__version__ = "0.4.2"
__app_name__ = "NbdAttach"
__app_description__ = "Attach a user-space NBD backend to a kernel nbd device and tear it down cleanly."
__license__ = "GNU General Public License v3.0"


def get_version_info():
    """Return a dictionary with all version and app information."""
    return {
        "version": __version__,
        "app_name": __app_name__,
        "description": __app_description__,
        "license": __license__,
    }

# --- END OF FILE src/version.py ---
